"""
文本分析Agent
每个Agent = 任务专用提示 + 文本生成接口 + 结构化解析与降级策略
Agent本身不访问数据库，也不产生生成调用之外的副作用
"""
import re
from typing import AsyncIterator, Optional

from pydantic import ValidationError
import structlog

from app.schemas.article import CleanedArticle, KeywordsResult, SentimentResult
from app.services.ai_service import AIServiceError, TextGenerationPort
from app.services.structured_output import Degraded, extract_json_object, truncate_text

logger = structlog.get_logger()

# 各任务的输入字符预算
SUMMARY_CHAR_LIMIT = 8000
KEYWORDS_CHAR_LIMIT = 6000
SENTIMENT_CHAR_LIMIT = 4000
CLASSIFY_CHAR_LIMIT = 2000
TRANSLATE_CONTEXT_CHAR_LIMIT = 500
CLEAN_CHAR_LIMIT = 8000
CLEAN_FALLBACK_CHAR_LIMIT = 10000
QA_CHAR_LIMIT = 6000

ARTICLE_CATEGORIES = (
    "sports",
    "politics",
    "technology",
    "business",
    "science",
    "entertainment",
    "general",
)


async def summarize_article(ai: TextGenerationPort, title: str, content: str) -> str:
    """生成文章中文摘要（纯文本）"""
    result = await ai.invoke(
        "You are an expert news summarizer. Provide a concise and comprehensive summary of the article "
        "in Chinese, including main points, key information, and important details.",
        "Title: {title}\n\nContent:\n{content}\n\n"
        "Please provide a comprehensive summary of this article in Chinese.",
        {"title": title or "N/A", "content": truncate_text(content, SUMMARY_CHAR_LIMIT)},
    )
    return result.text


async def extract_keywords(ai: TextGenerationPort, title: str, content: str) -> KeywordsResult:
    """
    提取关键词和主题分类

    解析失败时把原始输出按逗号切分，取前10个作为关键词
    """
    result = await ai.invoke(
        """You are a keyword extraction expert. Extract the most important keywords and categorize them from the given article.
Return your response as a JSON object with this structure:
{
  "keywords": ["keyword1", "keyword2", ...],
  "categories": ["category1", "category2", ...]
}
Keywords should be important terms, names, concepts mentioned in the article.
Categories should be the main topics or themes.""",
        "Title: {title}\n\nContent:\n{content}\n\nPlease extract keywords and categories from this article.",
        {"title": title or "N/A", "content": truncate_text(content, KEYWORDS_CHAR_LIMIT)},
        temperature=0.2,
    )

    parsed = extract_json_object(result.text)
    if not isinstance(parsed, Degraded):
        try:
            return KeywordsResult.model_validate(parsed.value)
        except ValidationError as e:
            parsed = Degraded(result.text, str(e))

    logger.warning("关键词解析降级", reason=parsed.reason)
    keywords = [token.strip() for token in parsed.raw_text.split(",")[:10] if token.strip()]
    return KeywordsResult(keywords=keywords, categories=[])


async def analyze_sentiment(ai: TextGenerationPort, text: str) -> SentimentResult:
    """情感分析，解析失败时返回中性结果并附带原始输出"""
    result = await ai.invoke(
        """You are a sentiment analysis expert. Analyze the sentiment of the given text.
Return your response as a JSON object with this structure:
{
  "sentiment": "positive" | "negative" | "neutral",
  "score": 0.0-1.0,
  "explanation": "detailed explanation in Chinese"
}""",
        "Text to analyze:\n{text}\n\nPlease analyze the sentiment.",
        {"text": truncate_text(text, SENTIMENT_CHAR_LIMIT)},
    )

    parsed = extract_json_object(result.text)
    if not isinstance(parsed, Degraded):
        try:
            return SentimentResult.model_validate(parsed.value)
        except ValidationError as e:
            parsed = Degraded(result.text, str(e))

    logger.warning("情感分析解析降级", reason=parsed.reason)
    return SentimentResult(sentiment="neutral", score=0.5, explanation=parsed.raw_text)


async def classify_article_type(ai: TextGenerationPort, title: str, content: str) -> str:
    """文章分类，无法识别时归为general"""
    result = await ai.invoke(
        """You are an article classifier. Classify the article into one of these categories:
- sports: Sports news, NBA, football, soccer, Olympics, etc.
- politics: Political news, elections, government, policy, etc.
- technology: Tech news, AI, software, hardware, startups, etc.
- business: Business news, finance, economy, markets, etc.
- science: Science news, research, discoveries, health, medicine, etc.
- entertainment: Entertainment news, movies, music, celebrities, etc.
- general: General news that doesn't fit other categories

Return only the category name (e.g., "sports", "politics", "technology", etc.) or "general" if unsure.""",
        "Title: {title}\nContent preview: {content}\n\nClassify this article into one category.",
        {"title": title or "N/A", "content": truncate_text(content, CLASSIFY_CHAR_LIMIT)},
    )

    answer = result.text.lower().strip()
    for category in ARTICLE_CATEGORIES:
        if category in answer:
            return category
    return "general"


async def translate_text(
    ai: TextGenerationPort,
    text: str,
    context_title: Optional[str] = None,
    context_content: Optional[str] = None,
) -> str:
    """英译中，可附带文章上下文"""
    result = await ai.invoke(
        "You are a professional translator. Translate the given English text to Chinese accurately, "
        "maintaining the original meaning and tone.",
        "Article context:\nTitle: {title}\nContent preview: {preview}\n\n"
        "Please translate the following text to Chinese:\n{text}",
        {
            "title": context_title or "N/A",
            "preview": truncate_text(context_content, TRANSLATE_CONTEXT_CHAR_LIMIT) or "N/A",
            "text": text,
        },
    )
    return result.text


def _normalize_paragraphs(text: str) -> str:
    text = re.sub(r'\n{3,}', '\n\n', text)
    text = re.sub(r'[ \t]+', ' ', text)
    return text.strip()


def basic_clean_content(raw_content: str) -> str:
    """不依赖AI的基础清理：去HTML标签、URL和方括号内容，保留段落"""
    cleaned = re.sub(r'<[^>]*>', '', raw_content or "")
    cleaned = re.sub(r'https?://\S+', '', cleaned)
    cleaned = re.sub(r'\[.*?\]', '', cleaned)
    cleaned = _normalize_paragraphs(cleaned)[:CLEAN_FALLBACK_CHAR_LIMIT]
    return cleaned or (raw_content or "")[:CLEAN_FALLBACK_CHAR_LIMIT]


async def clean_article_content(
    ai: TextGenerationPort,
    raw_content: str,
    title: Optional[str] = None,
) -> CleanedArticle:
    """
    使用AI清理文章正文（去除图片地址、广告、导航等），保留段落结构

    AI调用失败或输出无法使用时退回基础清理，不向外抛出
    """
    title = title or "Untitled Article"
    try:
        result = await ai.invoke(
            """You are an article content cleaner expert. Your task is to clean and extract the main article content from raw HTML or text, removing:
1. Image URLs and image references
2. Advertisement content
3. Navigation menus and headers
4. Footer information
5. Social media sharing buttons
6. Comments sections
7. Related article links
8. Any other non-essential content

Keep only:
- The main article title
- The main article body text
- Important paragraphs and sentences

IMPORTANT: Preserve paragraph structure! Use double newlines (\\n\\n) to separate paragraphs. Do NOT merge all text into a single paragraph.

Return your response as a JSON object with this structure:
{
  "title": "cleaned title",
  "content": "cleaned article content (pure text, no HTML tags, no URLs, but MUST preserve paragraph breaks)",
  "removedElements": ["list of removed elements"]
}""",
            "Title: {title}\n\nRaw Content:\n{content}\n\n"
            "Please clean this article content and extract only the essential text, preserving paragraph structure.",
            {"title": title, "content": truncate_text(raw_content, CLEAN_CHAR_LIMIT)},
            temperature=0.2,
        )
    except AIServiceError as e:
        logger.warning("AI清理不可用，使用基础清理", error=str(e))
        return CleanedArticle(
            title=title,
            content=basic_clean_content(raw_content),
            removed_elements=["AI service unavailable, using basic cleanup"],
        )

    parsed = extract_json_object(result.text)
    if not isinstance(parsed, Degraded):
        try:
            cleaned = CleanedArticle.model_validate({"title": title, **parsed.value})
            cleaned.content = _normalize_paragraphs(cleaned.content)
            if len(cleaned.content) >= 10:
                return cleaned
        except ValidationError as e:
            logger.warning("清理结果校验失败", error=str(e))

    # 没有JSON时直接使用模型输出的文本，在句末补段落分隔
    text = re.sub(r'([.!?])\s+([A-Z][a-z])', r'\1\n\n\2', result.text.strip())
    text = _normalize_paragraphs(text)
    if len(text) >= 10:
        return CleanedArticle(title=title, content=text, removed_elements=[])

    logger.warning("AI清理输出过短，使用基础清理")
    return CleanedArticle(
        title=title,
        content=basic_clean_content(raw_content),
        removed_elements=["AI processing failed, using basic cleanup"],
    )


async def answer_question_stream(
    ai: TextGenerationPort,
    question: str,
    title: Optional[str],
    content: Optional[str],
) -> AsyncIterator[str]:
    """基于文章内容流式回答问题"""
    async for chunk in ai.stream(
        "You are a question-answering expert. Answer questions based on the provided article context. "
        "If the answer cannot be found in the article, say so clearly. Provide answers in Chinese.",
        "Article:\nTitle: {title}\nContent: {content}\n\nQuestion: {question}\n\n"
        "Please answer the question based on the article.",
        {
            "title": title or "N/A",
            "content": truncate_text(content, QA_CHAR_LIMIT) or "N/A",
            "question": question,
        },
    ):
        yield chunk
