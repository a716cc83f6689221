"""
学习文档模型（生成结果缓存单元）
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, JSON, Index, func
from sqlalchemy.dialects.postgresql import JSONB
from app.core.database import Base

# PostgreSQL下使用JSONB，其他数据库使用通用JSON
JSONType = JSON().with_variant(JSONB, "postgresql")


class ReadcastDocument(Base):
    """
    学习文档表

    缓存key：(subject_type, article_id, user_id, difficulty, language, custom_requirements)
    - 参数完全相同且document_content不为空时复用已有记录
    - 多条匹配时按创建时间取最新一条
    - pdf_path / podcast_path 指向的文件归该记录所有
    """
    __tablename__ = "readcast_documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_type = Column(String(20), nullable=False, comment="来源类型（article/favorites）")
    article_id = Column(Integer, ForeignKey("articles.id", ondelete="SET NULL"), nullable=True, comment="文章ID（收藏文档为空）")
    user_id = Column(String(100), nullable=False, comment="用户ID")
    difficulty = Column(String(10), nullable=False, comment="难度（low/medium/high）")
    language = Column(String(20), nullable=False, default="bilingual", comment="语言模式（bilingual/english）")
    custom_requirements = Column(Text, nullable=True, comment="用户自定义要求")
    document_content = Column(JSONType, nullable=True, comment="学习文档内容")
    pdf_path = Column(String(255), nullable=True, comment="PDF文件名")
    podcast_path = Column(String(255), nullable=True, comment="播客音频文件名")
    podcast_mode = Column(String(20), nullable=True, comment="播客模式（solo/dialogue）")
    podcast_script = Column(JSONType, nullable=True, comment="播客脚本")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="创建时间")
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now(), comment="更新时间")

    __table_args__ = (
        Index("ix_readcast_documents_lookup", "user_id", "subject_type", "article_id", "difficulty", "language"),
    )

    def __repr__(self):
        return f"<ReadcastDocument(id={self.id}, subject_type={self.subject_type}, user_id={self.user_id})>"
