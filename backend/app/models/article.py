"""
文章模型
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, func
from app.core.database import Base


class Article(Base):
    """文章表（新闻原文）"""
    __tablename__ = "articles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=True, comment="文章标题")
    content = Column(Text, nullable=False, comment="文章正文")
    url = Column(String(1000), nullable=True, comment="来源URL")
    source = Column(String(255), nullable=True, comment="来源站点")
    type = Column(String(50), nullable=True, comment="文章分类（sports/politics/technology等）")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="创建时间")
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now(), comment="更新时间")

    def __repr__(self):
        return f"<Article(id={self.id}, title={self.title}, type={self.type})>"
