"""
数据模型模块
"""
from app.models.article import Article
from app.models.favorite_sentence import FavoriteSentence
from app.models.readcast_document import ReadcastDocument

__all__ = [
    "Article",
    "FavoriteSentence",
    "ReadcastDocument",
]
