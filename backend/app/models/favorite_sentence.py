"""
收藏句子模型
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, func
from app.core.database import Base


class FavoriteSentence(Base):
    """收藏句子表"""
    __tablename__ = "favorite_sentences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    article_id = Column(Integer, ForeignKey("articles.id", ondelete="CASCADE"), nullable=True, comment="来源文章ID")
    user_id = Column(String(100), nullable=False, index=True, comment="用户ID")
    sentence = Column(Text, nullable=False, comment="收藏的句子")
    original_sentence = Column(Text, nullable=True, comment="原句")
    explanation = Column(Text, nullable=True, comment="解释")
    tags = Column(String(500), nullable=True, comment="标签（逗号分隔）")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="收藏时间")

    def __repr__(self):
        return f"<FavoriteSentence(id={self.id}, user_id={self.user_id})>"
