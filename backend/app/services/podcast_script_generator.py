"""
播客脚本生成器
把学习文档转换为单人讲解或师生对话形式的播客脚本
"""
from pydantic import ValidationError
import structlog

from app.schemas.readcast import PodcastScript, PodcastSegment, StudyDocument
from app.services.ai_service import TextGenerationPort
from app.services.structured_output import Degraded, extract_json_object, truncate_text
from app.services.tts_service import detect_language

logger = structlog.get_logger()

KNOWLEDGE_POINTS_CHAR_LIMIT = 3000
DIFFICULTIES_CHAR_LIMIT = 3000
TERMINOLOGY_CHAR_LIMIT = 1000

MODE_INSTRUCTIONS = {
    "solo": "生成单人播客脚本。你是一位英语老师，通过播客形式讲解文章中的重点单词、搭配、习语和地道表达。"
            "使用第一人称，语言自然流畅，适合播客朗读。",
    "dialogue": "生成对话播客脚本。创建两个角色：一位英语老师（Teacher）和一位学生（Student）。"
                "老师负责讲解文章中的重点单词、搭配、习语和地道表达，学生可以提问或回应。"
                "每个对话段落需要标注说话人。",
}

BILINGUAL_INSTRUCTION = """IMPORTANT: Generate script in BILINGUAL format with PRIMARY FOCUS ON ENGLISH (80-90% English, 10-20% Chinese for brief explanations).

Guidelines:
- Focus on teaching English vocabulary, collocations, idioms, and authentic expressions from the article
- Use English as the main language, Chinese only for brief clarifications or cultural notes
- Mark language for each segment (use 'zh' for Chinese segments, 'en' for English segments)"""

ENGLISH_ONLY_INSTRUCTION = (
    "IMPORTANT: Generate script in ENGLISH ONLY. Focus on teaching English vocabulary, collocations, "
    "idioms, and authentic expressions. Do not use Chinese characters. Mark language as 'en' for all segments."
)

SCRIPT_JSON_SHAPE = """Return your response as a JSON object with this structure:
{
  "mode": "solo or dialogue",
  "intro": "开场白（1-2句话）",
  "segments": [{"speaker": "说话人（仅对话模式需要）", "content": "内容", "language": "zh或en"}],
  "outro": "结尾总结（1-2句话）"
}"""

FALLBACK_TEXT = {
    "bilingual": {
        "intro": "欢迎收听本期学习播客。",
        "outro": "感谢收听，我们下期再见。",
        "content": "今天我们来学习这篇文档的内容。",
    },
    "english": {
        "intro": "Welcome to this episode of our learning podcast.",
        "outro": "Thanks for listening. See you next time.",
        "content": "Today we will study the content of this document.",
    },
}


def build_system_prompt(mode: str, language: str) -> str:
    return "\n\n".join([
        "You are an English teacher creating an educational podcast script. Your task is to TEACH English "
        "vocabulary, collocations, idioms, and authentic expressions from a study document. "
        "This is NOT a translation podcast.",
        MODE_INSTRUCTIONS[mode],
        ENGLISH_ONLY_INSTRUCTION if language == "english" else BILINGUAL_INSTRUCTION,
        "The script should be engaging and educational, include an introduction and conclusion, "
        "and break content into digestible segments focusing on different language points.",
        SCRIPT_JSON_SHAPE,
    ])


def flatten_document(document: StudyDocument) -> dict:
    """把文档字段展开为提示文本，各字段按预算截断"""
    knowledge_points = "\n".join(
        f"{idx}. {kp.point}: {kp.explanation}"
        for idx, kp in enumerate(document.knowledge_points, start=1)
    )

    difficulty_lines = []
    for idx, diff in enumerate(document.difficulties, start=1):
        line = f"{idx}. {diff.difficulty}: {diff.explanation}"
        if diff.examples:
            line += "\n   示例: " + ", ".join(diff.examples)
        difficulty_lines.append(line)

    terminology = "\n".join(f"{t.term}: {t.definition}" for t in document.terminology) or "无"

    return {
        "title": document.title,
        "summary": document.summary,
        "knowledge_points": truncate_text(knowledge_points, KNOWLEDGE_POINTS_CHAR_LIMIT),
        "difficulties": truncate_text("\n".join(difficulty_lines), DIFFICULTIES_CHAR_LIMIT),
        "terminology": truncate_text(terminology, TERMINOLOGY_CHAR_LIMIT),
    }


def fallback_script(document: StudyDocument, mode: str, language: str) -> PodcastScript:
    """模型输出不可用时的单段脚本"""
    texts = FALLBACK_TEXT["english" if language == "english" else "bilingual"]
    content = document.summary or texts["content"]
    return PodcastScript(
        mode=mode,
        intro=texts["intro"],
        segments=[PodcastSegment(content=content, language=detect_language(content))],
        outro=texts["outro"],
    )


async def generate_podcast_script(
    ai: TextGenerationPort,
    document: StudyDocument,
    mode: str,
    language: str = "bilingual",
) -> PodcastScript:
    """
    生成播客脚本

    解析失败或没有可用片段时返回单段兜底脚本；返回结果的mode总是使用调用方请求的mode
    """
    result = await ai.invoke(
        build_system_prompt(mode, language),
        "Document Title: {title}\n\nSummary: {summary}\n\nKnowledge Points:\n{knowledge_points}\n\n"
        "Difficulties:\n{difficulties}\n\nTerminology: {terminology}\n\n"
        "Please create a " + mode + " podcast script based on this document.",
        flatten_document(document),
        temperature=0.5,
    )

    parsed = extract_json_object(result.text)
    if isinstance(parsed, Degraded):
        logger.warning("播客脚本解析降级", reason=parsed.reason, mode=mode)
        return fallback_script(document, mode, language)

    try:
        script = PodcastScript.model_validate({**parsed.value, "mode": mode})
    except ValidationError as e:
        logger.warning("播客脚本字段校验失败，使用兜底脚本", error=str(e))
        return fallback_script(document, mode, language)

    script.segments = [segment for segment in script.segments if segment.content.strip()]
    if not script.segments:
        logger.warning("播客脚本没有可用片段，使用兜底脚本", mode=mode)
        return fallback_script(document, mode, language)

    logger.info("播客脚本生成完成", mode=mode, language=language, segments=len(script.segments))
    return script
