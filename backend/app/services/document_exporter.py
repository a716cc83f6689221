"""
学习文档导出
将 StudyDocument 导出为JSON或Markdown格式（PDF见 pdf_renderer）
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from app.schemas.readcast import StudyDocument

DIFFICULTY_LABELS = {
    "low": "低",
    "medium": "中",
    "high": "高",
}

LANGUAGE_LABELS = {
    "bilingual": "双语",
    "english": "全英文",
}


@dataclass
class ExportMetadata:
    """导出元数据"""
    title: str
    difficulty: str
    kind: str
    language: str = "bilingual"
    article_title: Optional[str] = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def get_difficulty_text(difficulty: str) -> str:
    return DIFFICULTY_LABELS.get(difficulty, difficulty)


def export_to_json(document: StudyDocument, metadata: ExportMetadata) -> str:
    """
    导出为JSON信封：{"metadata": {...}, "content": {...}}

    content 即文档本身的存储结构，可直接还原为 StudyDocument
    """
    export_data = {
        "metadata": {
            "title": document.title or metadata.title,
            "articleTitle": metadata.article_title,
            "difficulty": metadata.difficulty,
            "type": metadata.kind,
            "language": metadata.language or "bilingual",
            "generatedAt": metadata.generated_at.isoformat(),
        },
        "content": document.to_storage(),
    }
    return json.dumps(export_data, ensure_ascii=False, indent=2)


def export_to_markdown(document: StudyDocument, metadata: ExportMetadata) -> str:
    """
    导出为Markdown

    章节顺序固定：标题、元信息、摘要、知识点、难点解析、术语表、补充内容，
    摘要固定输出，其余内容为空的章节不输出
    """
    lines = []

    # 标题
    lines.append(f"# {document.title or metadata.title}")
    lines.append("")

    # 元信息
    if metadata.article_title:
        lines.append(f"**原文：** {metadata.article_title}")
        lines.append("")
    lines.append(f"**难度：** {get_difficulty_text(metadata.difficulty)}")
    lines.append(f"**语言：** {LANGUAGE_LABELS.get(metadata.language, metadata.language)}")
    lines.append(f"**生成时间：** {metadata.generated_at.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append("")
    lines.append("---")
    lines.append("")

    # 摘要
    lines.append("## 摘要")
    lines.append("")
    lines.append(document.summary or "暂无摘要")
    lines.append("")
    lines.append("---")
    lines.append("")

    # 知识点
    if document.knowledge_points:
        lines.append("## 知识点")
        lines.append("")
        for index, kp in enumerate(document.knowledge_points, start=1):
            lines.append(f"### {index}. {kp.point}")
            lines.append("")
            lines.append(kp.explanation)
            lines.append("")
        lines.append("---")
        lines.append("")

    # 难点解析
    if document.difficulties:
        lines.append("## 难点解析")
        lines.append("")
        for index, diff in enumerate(document.difficulties, start=1):
            lines.append(f"### {index}. {diff.difficulty}")
            lines.append("")
            lines.append(diff.explanation)
            lines.append("")
            if diff.examples:
                lines.append("**示例：**")
                lines.append("")
                for example in diff.examples:
                    lines.append(f"- {example}")
                lines.append("")
        lines.append("---")
        lines.append("")

    # 术语表
    if document.terminology:
        lines.append("## 术语表")
        lines.append("")
        for index, term in enumerate(document.terminology, start=1):
            lines.append(f"### {index}. {term.term}")
            lines.append("")
            lines.append(f"**定义：** {term.definition}")
            lines.append("")
            if term.context:
                lines.append(f"**上下文：** {term.context}")
                lines.append("")
        lines.append("---")
        lines.append("")

    # 补充内容
    if document.custom_content:
        lines.append("## 补充内容")
        lines.append("")
        lines.append(document.custom_content)
        lines.append("")

    return "\n".join(lines)
