"""
文章与文本分析相关的Pydantic Schema
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from app.schemas.readcast import CamelModel


class ArticleCreateRequest(CamelModel):
    """导入文章请求（content与url二选一，同时提供时优先content）"""
    content: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    source: Optional[str] = None
    type: Optional[str] = None
    clean: bool = Field(False, description="是否使用AI清理正文")

    @model_validator(mode="after")
    def _require_content_or_url(self):
        if not (self.content and self.content.strip()) and not self.url:
            raise ValueError("Either content or url must be provided")
        return self


class ArticleResponse(CamelModel):
    id: int
    title: Optional[str] = None
    content: str
    url: Optional[str] = None
    source: Optional[str] = None
    type: Optional[str] = None
    created_at: datetime


class SummaryResponse(CamelModel):
    article_id: int
    summary: str


class KeywordsResult(CamelModel):
    keywords: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


class SentimentResult(CamelModel):
    sentiment: Literal["positive", "negative", "neutral"] = "neutral"
    score: float = Field(0.5, ge=0.0, le=1.0)
    explanation: str = ""


class CleanedArticle(CamelModel):
    title: str
    content: str
    removed_elements: List[str] = Field(default_factory=list)


class ClassifyResponse(CamelModel):
    article_id: int
    type: str


class TranslateRequest(CamelModel):
    text: str = Field(..., min_length=1)
    article_id: Optional[int] = None


class TranslateResponse(CamelModel):
    translation: str


class AskRequest(CamelModel):
    question: str = Field(..., min_length=1)
