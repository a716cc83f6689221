"""
学习文档生成器
从单篇文章或一组收藏句子生成 StudyDocument（摘要、知识点、难点、术语）

模型输出格式不符时降级为最小文档（customContent保存原始输出），不向外抛出；
只有生成接口本身的硬失败（网络、认证）以 AIServiceError 传出
"""
from typing import List, Optional

from pydantic import ValidationError
import structlog

from app.services.ai_service import TextGenerationPort
from app.services.article_service import FavoriteItem
from app.services.structured_output import Degraded, extract_json_object, truncate_text
from app.schemas.readcast import StudyDocument

logger = structlog.get_logger()

ARTICLE_CHAR_LIMIT = 8000
FALLBACK_SUMMARY_LENGTH = 200
FAVORITES_FALLBACK_TITLE = "收藏内容复习文档"

DIFFICULTY_INSTRUCTIONS = {
    "low": "使用简单词汇和短句，提供基础知识点和简单的难点解释，适合初学者。",
    "medium": "使用标准词汇和中等长度句子，提供核心知识点和适度的难点分析，适合中级学习者。",
    "high": "使用高级词汇和复杂句式，提供深入的知识点和复杂的难点解析，适合高级学习者。",
}

ARTICLE_TYPE_INSTRUCTIONS = {
    "politics": "重点关注事件的前因后果、时间线、背景信息。",
    "news": "重点关注事件的前因后果、时间线、背景信息。",
    "sports": "重点关注专业术语、比赛规则、球员/队伍背景、技术分析。",
    "technology": "重点关注技术概念、应用场景、发展趋势。",
}

BILINGUAL_INSTRUCTION = """IMPORTANT: You are an English teacher helping students learn English and understand cultural context. Generate content in BILINGUAL format with PRIMARY FOCUS ON ENGLISH.

Guidelines:
- Use English as the MAIN language (80-90% English content)
- Chinese should only be used for BRIEF explanations, translations, or cultural context (10-20% Chinese)
- Format: "English content (中文简要解释)" or "English explanation - 中文补充说明"
- For knowledge points: Provide English explanation first, then brief Chinese translation or cultural note
- For difficulties: Explain in English with Chinese only for key terms or cultural context
- For terminology: English definition first, Chinese translation as supplementary
- Keep Chinese minimal - only when it helps understand English or cultural context"""

ENGLISH_ONLY_INSTRUCTION = (
    "IMPORTANT: Generate all content in ENGLISH ONLY. Do not use Chinese characters. "
    "All explanations, knowledge points, difficulties, and terminology should be in English."
)

DOCUMENT_JSON_SHAPE = """Return your response as a JSON object with this structure:
{
  "title": "文档标题",
  "summary": "摘要（2-3句话）",
  "knowledgePoints": [{"point": "知识点1", "explanation": "详细解释"}],
  "difficulties": [{"difficulty": "难点1", "explanation": "详细解析", "examples": ["例句1", "例句2"]}],
  "terminology": [{"term": "术语1", "definition": "定义", "context": "上下文"}],
  "customContent": "根据用户要求添加的额外内容（如果有）"
}"""


def language_instruction(language: str) -> str:
    return ENGLISH_ONLY_INSTRUCTION if language == "english" else BILINGUAL_INSTRUCTION


def _custom_requirements_text(custom_requirements: Optional[str]) -> str:
    return f"用户自定义要求：{custom_requirements}" if custom_requirements else ""


def build_article_system_prompt(difficulty: str, language: str, article_type: Optional[str] = None) -> str:
    parts = [
        "You are an expert educational content creator. Your task is to create a comprehensive study "
        "document that focuses on knowledge points and difficulties from an article.",
        DIFFICULTY_INSTRUCTIONS[difficulty],
    ]
    type_instruction = ARTICLE_TYPE_INSTRUCTIONS.get(article_type or "")
    if type_instruction:
        parts.append(type_instruction)
    parts.extend([
        language_instruction(language),
        DOCUMENT_JSON_SHAPE,
        "Important: Focus on extracting KNOWLEDGE POINTS (what the reader should learn) and "
        "DIFFICULTIES (challenging concepts that need explanation).",
    ])
    return "\n\n".join(parts)


def build_favorites_system_prompt(difficulty: str, language: str) -> str:
    return "\n\n".join([
        "You are an expert educational content creator. Your task is to create a comprehensive review "
        "document based on saved favorite sentences.",
        DIFFICULTY_INSTRUCTIONS[difficulty],
        language_instruction(language),
        DOCUMENT_JSON_SHAPE,
        "Focus on organizing the favorite sentences into meaningful knowledge points and identifying "
        "difficulties that need explanation.",
    ])


def format_favorites(favorites: List[FavoriteItem]) -> str:
    """把收藏句子格式化为 序号/句子/解释/来源 文本"""
    blocks = []
    for idx, fav in enumerate(favorites, start=1):
        text = f"{idx}. {fav.original_sentence or fav.sentence}"
        if fav.explanation:
            text += f"\n   解释：{fav.explanation}"
        if fav.article_title:
            text += f"\n   来源：{fav.article_title}"
        blocks.append(text)
    return "\n\n".join(blocks)


def degraded_document(raw_text: str, fallback_title: str) -> StudyDocument:
    """模型输出不可用时的最小文档"""
    raw_text = raw_text or ""
    return StudyDocument(
        title=fallback_title,
        summary=raw_text[:FALLBACK_SUMMARY_LENGTH] or fallback_title,
        custom_content=raw_text or fallback_title,
    )


def parse_study_document(raw_text: str, fallback_title: str) -> StudyDocument:
    """
    解析模型输出为 StudyDocument

    JSON缺失、无法解析、字段类型不符，或者解析结果没有摘要/正文时，都降级为最小文档
    """
    parsed = extract_json_object(raw_text)
    if isinstance(parsed, Degraded):
        logger.warning("学习文档解析降级", reason=parsed.reason)
        return degraded_document(raw_text, fallback_title)

    try:
        document = StudyDocument.model_validate(parsed.value)
    except ValidationError as e:
        logger.warning("学习文档字段校验失败，降级处理", error=str(e))
        return degraded_document(raw_text, fallback_title)

    if not document.summary.strip() or not document.has_body():
        logger.warning("学习文档内容不完整，降级处理")
        return degraded_document(raw_text, fallback_title)

    if not document.title.strip():
        document.title = fallback_title
    return document


async def generate_article_document(
    ai: TextGenerationPort,
    title: str,
    content: str,
    difficulty: str,
    language: str = "bilingual",
    custom_requirements: Optional[str] = None,
    article_type: Optional[str] = None,
) -> StudyDocument:
    """生成文章学习文档"""
    result = await ai.invoke(
        build_article_system_prompt(difficulty, language, article_type),
        "Article Title: {title}\n\nArticle Content:\n{content}\n\n{custom_requirements}\n\n"
        "Please create a comprehensive study document focusing on knowledge points and difficulties.",
        {
            "title": title or "",
            "content": truncate_text(content, ARTICLE_CHAR_LIMIT),
            "custom_requirements": _custom_requirements_text(custom_requirements),
        },
    )
    logger.info("文章学习文档生成完成", difficulty=difficulty, language=language, length=len(result.text))
    return parse_study_document(result.text, f"{title} - 学习文档")


async def generate_favorites_document(
    ai: TextGenerationPort,
    favorites: List[FavoriteItem],
    difficulty: str,
    language: str = "bilingual",
    custom_requirements: Optional[str] = None,
    selection: str = "selected",
) -> StudyDocument:
    """生成收藏复习文档"""
    scope = "今日收藏的所有内容" if selection == "today" else "用户选择的收藏内容"
    result = await ai.invoke(
        build_favorites_system_prompt(difficulty, language),
        "Based on {scope}, create a review document:\n\nFavorite Sentences:\n{favorites}\n\n"
        "{custom_requirements}\n\n"
        "Please create a comprehensive review document that organizes these sentences into knowledge "
        "points and difficulties.",
        {
            "scope": scope,
            "favorites": format_favorites(favorites),
            "custom_requirements": _custom_requirements_text(custom_requirements),
        },
    )
    logger.info("收藏复习文档生成完成", count=len(favorites), difficulty=difficulty, language=language)
    return parse_study_document(result.text, FAVORITES_FALLBACK_TITLE)
