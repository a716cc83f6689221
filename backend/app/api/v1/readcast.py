"""
学习文档与播客API
"""
from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
import structlog

from app.api.deps import get_document_service, get_speech_synthesizer
from app.core.security import get_current_user_id
from app.models.readcast_document import ReadcastDocument
from app.schemas.readcast import (
    ArticleDocumentRequest,
    DocumentDetailResponse,
    DocumentGenerateResponse,
    DocumentHistoryItem,
    DocumentHistoryResponse,
    FavoritesDocumentRequest,
    PodcastAudioRequest,
    PodcastAudioResponse,
    PodcastResponse,
    PodcastScript,
    PodcastScriptRequest,
    PodcastScriptResponse,
    StudyDocument,
)
from app.services.document_service import (
    GeneratedDocument,
    ReadcastDocumentService,
    document_file_url,
    podcast_file_url,
)
from app.services.tts_service import PodcastAudioSynthesizer
from app.utils.file_utils import get_content_type

logger = structlog.get_logger()
router = APIRouter(prefix="/readcast", tags=["readcast"])


def _generate_response(result: GeneratedDocument) -> DocumentGenerateResponse:
    # JSON格式直接返回内容，其余返回下载地址
    return DocumentGenerateResponse(
        document_id=result.record.id,
        document=result.document,
        format=result.format,
        cache_hit=result.cache_hit,
        file_url=None if result.format == "json" else result.file_url,
        json_content=result.json_content,
    )


@router.post("/article/generate", response_model=DocumentGenerateResponse, response_model_exclude_none=True)
async def generate_article_document(
    request: ArticleDocumentRequest,
    user_id: str = Depends(get_current_user_id),
    service: ReadcastDocumentService = Depends(get_document_service),
):
    """生成文章学习文档"""
    logger.info(
        "收到文章学习文档请求",
        article_id=request.article_id,
        difficulty=request.difficulty,
        language=request.language,
        format=request.format,
        force_new=request.force_new,
    )
    result = await service.generate_article_document(user_id, request)
    return _generate_response(result)


@router.post("/favorites/generate", response_model=DocumentGenerateResponse, response_model_exclude_none=True)
async def generate_favorites_document(
    request: FavoritesDocumentRequest,
    user_id: str = Depends(get_current_user_id),
    service: ReadcastDocumentService = Depends(get_document_service),
):
    """生成收藏复习文档"""
    logger.info("收到收藏复习文档请求", type=request.type, difficulty=request.difficulty, format=request.format)
    result = await service.generate_favorites_document(user_id, request)
    return _generate_response(result)


@router.get("/article/{article_id}/documents", response_model=DocumentHistoryResponse)
async def list_article_documents(
    article_id: int,
    user_id: str = Depends(get_current_user_id),
    service: ReadcastDocumentService = Depends(get_document_service),
):
    """文章的历史学习文档"""
    records = await service.list_article_documents(article_id, user_id)
    return DocumentHistoryResponse(
        documents=[
            DocumentHistoryItem(
                id=record.id,
                difficulty=record.difficulty,
                language=record.language,
                custom_requirements=record.custom_requirements,
                pdf_url=document_file_url(record.pdf_path),
                podcast_url=podcast_file_url(record.podcast_path),
                created_at=record.created_at,
            )
            for record in records
        ]
    )


def _detail_response(record: ReadcastDocument) -> DocumentDetailResponse:
    return DocumentDetailResponse(
        document_id=record.id,
        document=StudyDocument.model_validate(record.document_content),
        difficulty=record.difficulty,
        language=record.language,
        custom_requirements=record.custom_requirements,
        pdf_url=document_file_url(record.pdf_path),
        podcast_url=podcast_file_url(record.podcast_path),
        podcast_mode=record.podcast_mode,
        podcast_script=PodcastScript.model_validate(record.podcast_script) if record.podcast_script else None,
        created_at=record.created_at,
    )


@router.get("/document/{document_id}", response_model=DocumentDetailResponse)
async def get_document_detail(
    document_id: int,
    user_id: str = Depends(get_current_user_id),
    service: ReadcastDocumentService = Depends(get_document_service),
):
    """学习文档详情（含播客信息）"""
    record = await service.get_document(document_id, user_id)
    return _detail_response(record)


@router.post("/podcast/script", response_model=PodcastScriptResponse)
async def generate_podcast_script(
    request: PodcastScriptRequest,
    user_id: str = Depends(get_current_user_id),
    service: ReadcastDocumentService = Depends(get_document_service),
):
    """生成播客脚本（第一步，供用户预览和编辑）"""
    script = await service.create_podcast_script(
        user_id,
        mode=request.mode,
        language=request.language,
        document_id=request.document_id,
        document_content=request.document_content,
    )
    return PodcastScriptResponse(script=script)


@router.post("/podcast/audio", response_model=PodcastAudioResponse)
async def generate_podcast_audio(
    request: PodcastAudioRequest,
    user_id: str = Depends(get_current_user_id),
    service: ReadcastDocumentService = Depends(get_document_service),
    synthesizer: PodcastAudioSynthesizer = Depends(get_speech_synthesizer),
):
    """根据脚本生成播客音频（第二步）"""
    logger.info(
        "收到播客音频请求",
        document_id=request.document_id,
        mode=request.mode or request.script.mode,
        segments=len(request.script.segments),
    )
    filename = await service.create_podcast_audio(
        user_id,
        request.script,
        synthesizer,
        document_id=request.document_id,
        mode=request.mode,
    )
    return PodcastAudioResponse(podcast_url=podcast_file_url(filename))


@router.post("/podcast", response_model=PodcastResponse)
async def generate_podcast(
    request: PodcastScriptRequest,
    user_id: str = Depends(get_current_user_id),
    service: ReadcastDocumentService = Depends(get_document_service),
    synthesizer: PodcastAudioSynthesizer = Depends(get_speech_synthesizer),
):
    """一次生成脚本和音频"""
    script = await service.create_podcast_script(
        user_id,
        mode=request.mode,
        language=request.language,
        document_id=request.document_id,
        document_content=request.document_content,
    )
    filename = await service.create_podcast_audio(
        user_id,
        script,
        synthesizer,
        document_id=request.document_id,
        mode=request.mode,
    )
    return PodcastResponse(script=script, podcast_url=podcast_file_url(filename))


@router.get("/download/{kind}/{filename}")
async def download_file(
    kind: str,
    filename: str,
    user_id: str = Depends(get_current_user_id),
    service: ReadcastDocumentService = Depends(get_document_service),
):
    """下载导出文件或播客音频（只能下载自己的文件）"""
    path = await service.resolve_download(user_id, kind, filename)
    return FileResponse(path, media_type=get_content_type(filename), filename=filename)
