"""
学习文档与播客相关的Pydantic Schema
对外JSON使用camelCase，输入同时接受snake_case
"""
import json
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DifficultyLevel = Literal["low", "medium", "high"]
LanguageMode = Literal["bilingual", "english"]
ExportFormat = Literal["pdf", "json", "md"]
PodcastMode = Literal["solo", "dialogue"]
SubjectType = Literal["article", "favorites"]


class CamelModel(BaseModel):
    """camelCase别名基类"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- 学习文档 ----------

class KnowledgePoint(CamelModel):
    point: str
    explanation: str = ""


class DifficultyItem(CamelModel):
    difficulty: str
    explanation: str = ""
    examples: Optional[List[str]] = None


class TermItem(CamelModel):
    term: str
    definition: str = ""
    context: Optional[str] = None


class StudyDocument(CamelModel):
    """学习文档（摘要、知识点、难点、术语）"""
    title: str = ""
    summary: str = ""
    knowledge_points: List[KnowledgePoint] = Field(default_factory=list)
    difficulties: List[DifficultyItem] = Field(default_factory=list)
    terminology: List[TermItem] = Field(default_factory=list)
    custom_content: Optional[str] = None

    @field_validator("knowledge_points", "difficulties", "terminology", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []

    def has_body(self) -> bool:
        """摘要之外至少有一项内容"""
        return bool(self.knowledge_points or self.difficulties or self.custom_content)

    def to_storage(self) -> dict:
        """序列化为存储结构"""
        return self.model_dump(by_alias=True, mode="json")


# ---------- 播客脚本 ----------

class PodcastSegment(CamelModel):
    speaker: Optional[str] = None
    content: str
    language: Optional[Literal["zh", "en"]] = None

    @field_validator("language", mode="before")
    @classmethod
    def _normalize_language(cls, value):
        # 模型偶尔返回 "chinese"/"english" 等写法，无法识别的交给自动检测
        if isinstance(value, str):
            value = value.strip().lower()
            if value in ("zh", "chinese", "cn", "zh-cn"):
                return "zh"
            if value in ("en", "english"):
                return "en"
        return None


class PodcastScript(CamelModel):
    """播客脚本，segments顺序即播放顺序"""
    mode: PodcastMode
    segments: List[PodcastSegment] = Field(default_factory=list)
    intro: Optional[str] = None
    outro: Optional[str] = None

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ---------- 请求 ----------

class _GenerateRequestBase(CamelModel):
    difficulty: DifficultyLevel
    language: LanguageMode = "bilingual"
    custom_requirements: Optional[str] = None
    force_new: bool = False
    format: ExportFormat = "pdf"

    @field_validator("format", mode="before")
    @classmethod
    def _lower_format(cls, value):
        if value is None:
            return "pdf"
        return value.lower() if isinstance(value, str) else value

    @field_validator("language", mode="before")
    @classmethod
    def _default_language(cls, value):
        return value or "bilingual"

    @field_validator("custom_requirements", mode="before")
    @classmethod
    def _blank_as_none(cls, value):
        # 空字符串与未填写视为同一缓存key
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ArticleDocumentRequest(_GenerateRequestBase):
    """生成文章学习文档请求"""
    article_id: int


class FavoritesDocumentRequest(_GenerateRequestBase):
    """生成收藏复习文档请求"""
    type: Literal["today", "selected"]
    favorite_ids: Optional[List[int]] = None


class PodcastScriptRequest(CamelModel):
    """生成播客脚本请求"""
    document_id: Optional[int] = None
    document_content: Optional[StudyDocument] = None
    mode: PodcastMode
    language: LanguageMode = "bilingual"

    @field_validator("document_content", mode="before")
    @classmethod
    def _parse_document_json(cls, value):
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                raise ValueError("documentContent is not valid JSON")
        return value


class PodcastAudioRequest(CamelModel):
    """生成播客音频请求"""
    document_id: Optional[int] = None
    script: PodcastScript
    mode: Optional[PodcastMode] = None


# ---------- 响应 ----------

class DocumentGenerateResponse(CamelModel):
    """生成文档响应（fileUrl与jsonContent二选一）"""
    success: bool = True
    document_id: int
    document: StudyDocument
    format: ExportFormat
    cache_hit: bool
    file_url: Optional[str] = None
    json_content: Optional[str] = None


class PodcastScriptResponse(CamelModel):
    success: bool = True
    script: PodcastScript


class PodcastAudioResponse(CamelModel):
    success: bool = True
    podcast_url: str


class PodcastResponse(CamelModel):
    success: bool = True
    script: PodcastScript
    podcast_url: str


class DocumentHistoryItem(CamelModel):
    id: int
    difficulty: str
    language: str
    custom_requirements: Optional[str] = None
    pdf_url: Optional[str] = None
    podcast_url: Optional[str] = None
    created_at: datetime


class DocumentHistoryResponse(CamelModel):
    success: bool = True
    documents: List[DocumentHistoryItem]


class DocumentDetailResponse(CamelModel):
    success: bool = True
    document_id: int
    document: StudyDocument
    difficulty: str
    language: str
    custom_requirements: Optional[str] = None
    pdf_url: Optional[str] = None
    podcast_url: Optional[str] = None
    podcast_mode: Optional[str] = None
    podcast_script: Optional[PodcastScript] = None
    created_at: datetime
