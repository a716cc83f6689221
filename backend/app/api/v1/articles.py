"""
文章API
导入文章以及摘要、关键词、情感、分类、翻译、问答等分析功能
"""
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.api.deps import get_text_generation_port
from app.core.database import get_db
from app.core.security import get_current_user_id
from app.schemas.article import (
    ArticleCreateRequest,
    ArticleResponse,
    AskRequest,
    ClassifyResponse,
    KeywordsResult,
    SentimentResult,
    SummaryResponse,
    TranslateRequest,
    TranslateResponse,
)
from app.services import text_agents
from app.services.ai_service import TextGenerationPort
from app.services.article_service import ArticleService

logger = structlog.get_logger()
router = APIRouter(prefix="/articles", tags=["articles"], dependencies=[Depends(get_current_user_id)])


@router.post("", response_model=ArticleResponse)
async def create_article(
    request: ArticleCreateRequest,
    db: AsyncSession = Depends(get_db),
    ai: TextGenerationPort = Depends(get_text_generation_port),
):
    """
    导入文章

    提供content时直接保存，只有url时抓取网页；clean为true时再用AI清理正文
    """
    article = await ArticleService.create_article(
        db,
        content=request.content,
        url=request.url,
        title=request.title,
        source=request.source,
        type=request.type,
    )
    if request.clean:
        cleaned = await text_agents.clean_article_content(ai, article.content, article.title)
        article.content = cleaned.content
        await db.commit()
        await db.refresh(article)
        logger.info("文章正文已清理", article_id=article.id, removed=cleaned.removed_elements)
    return ArticleResponse.model_validate(article, from_attributes=True)


@router.get("/{article_id}", response_model=ArticleResponse)
async def get_article(article_id: int, db: AsyncSession = Depends(get_db)):
    article = await ArticleService.get_article_by_id(db, article_id)
    return ArticleResponse.model_validate(article, from_attributes=True)


@router.post("/{article_id}/summary", response_model=SummaryResponse)
async def summarize_article(
    article_id: int,
    db: AsyncSession = Depends(get_db),
    ai: TextGenerationPort = Depends(get_text_generation_port),
):
    """生成文章摘要"""
    article = await ArticleService.get_article_by_id(db, article_id)
    summary = await text_agents.summarize_article(ai, article.title or "", article.content)
    return SummaryResponse(article_id=article.id, summary=summary)


@router.post("/{article_id}/keywords", response_model=KeywordsResult)
async def extract_keywords(
    article_id: int,
    db: AsyncSession = Depends(get_db),
    ai: TextGenerationPort = Depends(get_text_generation_port),
):
    article = await ArticleService.get_article_by_id(db, article_id)
    return await text_agents.extract_keywords(ai, article.title or "", article.content)


@router.post("/{article_id}/sentiment", response_model=SentimentResult)
async def analyze_sentiment(
    article_id: int,
    db: AsyncSession = Depends(get_db),
    ai: TextGenerationPort = Depends(get_text_generation_port),
):
    article = await ArticleService.get_article_by_id(db, article_id)
    return await text_agents.analyze_sentiment(ai, article.content)


@router.post("/{article_id}/classify", response_model=ClassifyResponse)
async def classify_article(
    article_id: int,
    db: AsyncSession = Depends(get_db),
    ai: TextGenerationPort = Depends(get_text_generation_port),
):
    """判断文章类型并保存"""
    article = await ArticleService.get_article_by_id(db, article_id)
    article_type = await text_agents.classify_article_type(ai, article.title or "", article.content)
    await ArticleService.update_article_type(db, article.id, article_type)
    return ClassifyResponse(article_id=article.id, type=article_type)


@router.post("/translate", response_model=TranslateResponse)
async def translate(
    request: TranslateRequest,
    db: AsyncSession = Depends(get_db),
    ai: TextGenerationPort = Depends(get_text_generation_port),
):
    """翻译文本，提供articleId时带上文章作为上下文"""
    context_title = context_content = None
    if request.article_id is not None:
        article = await ArticleService.get_article_by_id(db, request.article_id)
        context_title, context_content = article.title, article.content
    translation = await text_agents.translate_text(ai, request.text, context_title, context_content)
    return TranslateResponse(translation=translation)


@router.post("/{article_id}/ask")
async def ask_question(
    article_id: int,
    request: AskRequest,
    db: AsyncSession = Depends(get_db),
    ai: TextGenerationPort = Depends(get_text_generation_port),
):
    """基于文章流式回答问题（纯文本流）"""
    article = await ArticleService.get_article_by_id(db, article_id)
    logger.info("收到文章问答请求", article_id=article_id, question_length=len(request.question))
    return StreamingResponse(
        text_agents.answer_question_stream(ai, request.question, article.title, article.content),
        media_type="text/plain; charset=utf-8",
    )
