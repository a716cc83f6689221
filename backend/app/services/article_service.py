"""
文章与收藏句子数据访问
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.models.article import Article
from app.models.favorite_sentence import FavoriteSentence
from app.services.article_parser import parse_article_from_text, parse_article_from_url
from app.utils.processing_exception import invalid_input, not_found

logger = structlog.get_logger()


@dataclass
class FavoriteItem:
    """生成复习文档用的收藏条目"""
    sentence: str
    original_sentence: Optional[str] = None
    explanation: Optional[str] = None
    tags: Optional[str] = None
    article_title: Optional[str] = None


def start_of_utc_day(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


class ArticleService:
    """文章服务"""

    @staticmethod
    async def create_article(
        db: AsyncSession,
        content: Optional[str] = None,
        url: Optional[str] = None,
        title: Optional[str] = None,
        source: Optional[str] = None,
        type: Optional[str] = None,
    ) -> Article:
        """
        导入文章

        同时提供content和url时优先使用content（例如从新闻API获取的数据），
        只有url时抓取网页提取正文
        """
        if content and content.strip():
            parsed = parse_article_from_text(content, title)
            if source:
                parsed.source = source
        elif url:
            parsed = await parse_article_from_url(url)
        else:
            raise invalid_input("Either content or url must be provided")

        article = Article(
            title=parsed.title,
            content=parsed.content,
            url=url,
            source=parsed.source or "导入",
            type=type,
        )
        db.add(article)
        await db.commit()
        await db.refresh(article)
        logger.info("文章导入成功", article_id=article.id, source=article.source)
        return article

    @staticmethod
    async def get_article_by_id(db: AsyncSession, article_id: int) -> Article:
        """获取文章，不存在时抛出not_found"""
        article = await db.get(Article, article_id)
        if article is None:
            raise not_found("Article not found", article_id=article_id)
        return article

    @staticmethod
    async def update_article_type(db: AsyncSession, article_id: int, article_type: str) -> None:
        article = await ArticleService.get_article_by_id(db, article_id)
        article.type = article_type
        await db.commit()

    @staticmethod
    async def get_favorite_sentences(
        db: AsyncSession,
        user_id: str,
        selection: str,
        favorite_ids: Optional[List[int]] = None,
    ) -> List[FavoriteItem]:
        """
        获取用户收藏

        Args:
            selection: today 表示UTC当天的收藏，selected 表示favorite_ids指定的收藏
        """
        query = (
            select(FavoriteSentence, Article.title)
            .outerjoin(Article, FavoriteSentence.article_id == Article.id)
            .where(FavoriteSentence.user_id == user_id)
        )
        if selection == "today":
            query = query.where(FavoriteSentence.created_at >= start_of_utc_day())
        else:
            if not favorite_ids:
                raise invalid_input("favoriteIds is required when type is selected")
            query = query.where(FavoriteSentence.id.in_(favorite_ids))

        result = await db.execute(query.order_by(FavoriteSentence.created_at, FavoriteSentence.id))
        return [
            FavoriteItem(
                sentence=fav.sentence,
                original_sentence=fav.original_sentence,
                explanation=fav.explanation,
                tags=fav.tags,
                article_title=article_title,
            )
            for fav, article_title in result.all()
        ]
