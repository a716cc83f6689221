"""
学习文档缓存与存储服务

缓存key：(subject_type, article_id, user_id, difficulty, language, custom_requirements)
- 参数相同且已有文档内容时复用最新一条记录，force_new 时跳过查找
- 导出格式独立按需生成：缓存命中不代表已有PDF
- 只有PDF文件名记录在文档上；JSON/Markdown每次请求重新写出带时间戳的文件
"""
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.core.config import settings
from app.models.readcast_document import ReadcastDocument
from app.schemas.readcast import (
    ArticleDocumentRequest,
    FavoritesDocumentRequest,
    PodcastScript,
    StudyDocument,
)
from app.services import study_document_generator
from app.services.ai_service import AIServiceError, TextGenerationPort
from app.services.article_service import ArticleService
from app.services.document_exporter import ExportMetadata, export_to_json, export_to_markdown
from app.services.pdf_renderer import render_pdf
from app.services.podcast_script_generator import generate_podcast_script
from app.services.tts_service import PodcastAudioSynthesizer
from app.utils.file_utils import (
    generate_artifact_filename,
    get_artifact_owner,
    get_file_extension,
    is_safe_filename,
    remove_file,
    save_file,
)
from app.utils.processing_exception import ErrorType, ReadcastException, invalid_input, not_found

logger = structlog.get_logger()

DOWNLOAD_PREFIX = "/api/v1/readcast/download"


def document_file_url(filename: Optional[str]) -> Optional[str]:
    return f"{DOWNLOAD_PREFIX}/document/{filename}" if filename else None


def podcast_file_url(filename: Optional[str]) -> Optional[str]:
    return f"{DOWNLOAD_PREFIX}/podcast/{filename}" if filename else None


def persistence_error(stage: str, error: Exception, **details) -> ReadcastException:
    """文档已生成但保存失败"""
    return ReadcastException(
        ErrorType.PERSISTENCE_FAILED,
        f"文档已生成但保存失败: {error}",
        error_details={"stage": stage, "document_generated": True, **details},
    )


@dataclass
class GeneratedDocument:
    """一次文档生成请求的结果"""
    record: ReadcastDocument
    document: StudyDocument
    cache_hit: bool
    format: str
    filename: Optional[str] = None
    json_content: Optional[str] = None

    @property
    def file_url(self) -> Optional[str]:
        return document_file_url(self.filename)


class ReadcastDocumentService:
    """学习文档服务"""

    def __init__(
        self,
        db: AsyncSession,
        ai: TextGenerationPort,
        documents_dir: Optional[str] = None,
        podcasts_dir: Optional[str] = None,
        pdf_renderer: Callable[[StudyDocument, ExportMetadata], bytes] = render_pdf,
    ):
        self.db = db
        self.ai = ai
        self.documents_dir = documents_dir or settings.get_documents_dir()
        self.podcasts_dir = podcasts_dir or settings.get_podcasts_dir()
        self.pdf_renderer = pdf_renderer

    # ---------- 缓存 ----------

    async def find_cached(
        self,
        subject_type: str,
        article_id: Optional[int],
        user_id: str,
        difficulty: str,
        language: str,
        custom_requirements: Optional[str],
    ) -> Optional[ReadcastDocument]:
        """查找参数完全匹配的最新文档（两个空的自定义要求视为相等）"""
        query = select(ReadcastDocument).where(
            ReadcastDocument.subject_type == subject_type,
            ReadcastDocument.user_id == user_id,
            ReadcastDocument.difficulty == difficulty,
            ReadcastDocument.language == language,
            ReadcastDocument.document_content.is_not(None),
        )
        if article_id is None:
            query = query.where(ReadcastDocument.article_id.is_(None))
        else:
            query = query.where(ReadcastDocument.article_id == article_id)
        if custom_requirements is None:
            query = query.where(ReadcastDocument.custom_requirements.is_(None))
        else:
            query = query.where(ReadcastDocument.custom_requirements == custom_requirements)

        query = query.order_by(ReadcastDocument.created_at.desc(), ReadcastDocument.id.desc()).limit(1)
        result = await self.db.execute(query)
        return result.scalars().first()

    async def resolve_or_generate(
        self,
        subject_type: str,
        article_id: Optional[int],
        user_id: str,
        difficulty: str,
        language: str,
        custom_requirements: Optional[str],
        force_new: bool,
        generate: Callable[[], Awaitable[StudyDocument]],
    ) -> Tuple[ReadcastDocument, StudyDocument, bool]:
        """
        命中缓存时复用文档，否则调用generate生成并插入新记录

        Returns:
            (记录, 文档, 是否命中缓存)
        """
        if not force_new:
            cached = await self.find_cached(
                subject_type, article_id, user_id, difficulty, language, custom_requirements
            )
            if cached is not None:
                logger.info("使用已有学习文档", document_id=cached.id, subject_type=subject_type)
                return cached, StudyDocument.model_validate(cached.document_content), True

        try:
            document = await generate()
        except AIServiceError as e:
            raise ReadcastException(ErrorType.GENERATION_FAILED, f"学习文档生成失败: {e}") from e

        record = ReadcastDocument(
            subject_type=subject_type,
            article_id=article_id,
            user_id=user_id,
            difficulty=difficulty,
            language=language,
            custom_requirements=custom_requirements,
            document_content=document.to_storage(),
        )
        try:
            self.db.add(record)
            await self.db.commit()
            await self.db.refresh(record)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("保存学习文档失败", error=str(e), subject_type=subject_type)
            raise persistence_error("record_insert", e)

        logger.info("新学习文档已保存", document_id=record.id, subject_type=subject_type, force_new=force_new)
        return record, document, False

    # ---------- 导出 ----------

    def _write_artifact(self, filename: str, content, document_id: int) -> str:
        try:
            return save_file(self.documents_dir, filename, content)
        except OSError as e:
            logger.error("导出文件写入失败", filename=filename, error=str(e))
            raise persistence_error("file_write", e, document_id=document_id)

    def _pdf_exists(self, record: ReadcastDocument) -> bool:
        return bool(record.pdf_path) and os.path.isfile(os.path.join(self.documents_dir, record.pdf_path))

    async def export_artifact(
        self,
        record: ReadcastDocument,
        document: StudyDocument,
        export_format: str,
        metadata: ExportMetadata,
        ref: str,
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        生成请求格式的导出文件

        Returns:
            (文件名, JSON内容)；PDF已存在时直接复用
        """
        user_id = record.user_id

        if export_format == "pdf":
            if self._pdf_exists(record):
                return record.pdf_path, None
            filename = generate_artifact_filename(record.subject_type, ref, user_id, "pdf")
            self._write_artifact(filename, self.pdf_renderer(document, metadata), record.id)
            try:
                record.pdf_path = filename
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise persistence_error("record_update", e, document_id=record.id)
            logger.info("PDF已生成", document_id=record.id, filename=filename)
            return filename, None

        if export_format == "json":
            content = export_to_json(document, metadata)
            filename = generate_artifact_filename(record.subject_type, ref, user_id, "json")
            self._write_artifact(filename, content, record.id)
            return filename, content

        if export_format == "md":
            filename = generate_artifact_filename(record.subject_type, ref, user_id, "md")
            self._write_artifact(filename, export_to_markdown(document, metadata), record.id)
            return filename, None

        raise invalid_input("Invalid format. Must be pdf, json, or md")

    # ---------- 生成 ----------

    async def generate_article_document(self, user_id: str, request: ArticleDocumentRequest) -> GeneratedDocument:
        """生成（或复用）文章学习文档并导出"""
        article = await ArticleService.get_article_by_id(self.db, request.article_id)

        async def _generate() -> StudyDocument:
            return await study_document_generator.generate_article_document(
                self.ai,
                title=article.title or "",
                content=article.content,
                difficulty=request.difficulty,
                language=request.language,
                custom_requirements=request.custom_requirements,
                article_type=article.type,
            )

        record, document, cache_hit = await self.resolve_or_generate(
            "article",
            article.id,
            user_id,
            request.difficulty,
            request.language,
            request.custom_requirements,
            request.force_new,
            _generate,
        )
        metadata = ExportMetadata(
            title=document.title,
            article_title=article.title,
            difficulty=request.difficulty,
            kind="article",
            language=request.language,
        )
        filename, json_content = await self.export_artifact(record, document, request.format, metadata, str(article.id))
        return GeneratedDocument(record, document, cache_hit, request.format, filename, json_content)

    async def generate_favorites_document(self, user_id: str, request: FavoritesDocumentRequest) -> GeneratedDocument:
        """生成（或复用）收藏复习文档并导出"""
        favorites = await ArticleService.get_favorite_sentences(
            self.db, user_id, request.type, request.favorite_ids
        )
        if not favorites:
            raise not_found("No favorite sentences found", type=request.type)

        async def _generate() -> StudyDocument:
            return await study_document_generator.generate_favorites_document(
                self.ai,
                favorites,
                difficulty=request.difficulty,
                language=request.language,
                custom_requirements=request.custom_requirements,
                selection=request.type,
            )

        record, document, cache_hit = await self.resolve_or_generate(
            "favorites",
            None,
            user_id,
            request.difficulty,
            request.language,
            request.custom_requirements,
            request.force_new,
            _generate,
        )
        metadata = ExportMetadata(
            title=document.title,
            difficulty=request.difficulty,
            kind="favorites",
            language=request.language,
        )
        filename, json_content = await self.export_artifact(record, document, request.format, metadata, request.type)
        return GeneratedDocument(record, document, cache_hit, request.format, filename, json_content)

    # ---------- 查询 ----------

    async def list_article_documents(self, article_id: int, user_id: str) -> List[ReadcastDocument]:
        """文章的历史文档，最新在前"""
        result = await self.db.execute(
            select(ReadcastDocument)
            .where(
                ReadcastDocument.subject_type == "article",
                ReadcastDocument.article_id == article_id,
                ReadcastDocument.user_id == user_id,
            )
            .order_by(ReadcastDocument.created_at.desc(), ReadcastDocument.id.desc())
        )
        return list(result.scalars().all())

    async def get_document(self, document_id: int, user_id: str) -> ReadcastDocument:
        """获取文档，不属于该用户时同样返回not_found"""
        record = await self.db.get(ReadcastDocument, document_id)
        if record is None or record.user_id != user_id or record.document_content is None:
            raise not_found("Document not found", document_id=document_id)
        return record

    # ---------- 播客 ----------

    async def save_podcast_script(self, document_id: int, user_id: str, script: PodcastScript) -> None:
        record = await self.get_document(document_id, user_id)
        try:
            record.podcast_mode = script.mode
            record.podcast_script = script.to_storage()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise persistence_error("record_update", e, document_id=document_id)

    async def attach_podcast(self, document_id: int, user_id: str, filename: str, mode: str) -> None:
        """记录播客文件，替换时删除旧文件"""
        record = await self.get_document(document_id, user_id)
        previous = record.podcast_path
        try:
            record.podcast_path = filename
            record.podcast_mode = mode
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise persistence_error("record_update", e, document_id=document_id)

        if previous and previous != filename:
            remove_file(os.path.join(self.podcasts_dir, previous))
            logger.info("旧播客文件已删除", document_id=document_id, filename=previous)

    async def create_podcast_script(
        self,
        user_id: str,
        mode: str,
        language: str,
        document_id: Optional[int] = None,
        document_content: Optional[StudyDocument] = None,
    ) -> PodcastScript:
        """
        生成播客脚本（第一步）

        提供document_id时读取并回写对应文档，否则使用请求中的文档内容
        """
        if document_id is not None:
            record = await self.get_document(document_id, user_id)
            document = StudyDocument.model_validate(record.document_content)
        elif document_content is not None:
            document = document_content
        else:
            raise invalid_input("documentId or documentContent is required")

        try:
            script = await generate_podcast_script(self.ai, document, mode, language)
        except AIServiceError as e:
            raise ReadcastException(ErrorType.GENERATION_FAILED, f"播客脚本生成失败: {e}") from e

        if document_id is not None:
            await self.save_podcast_script(document_id, user_id, script)
        return script

    async def create_podcast_audio(
        self,
        user_id: str,
        script: PodcastScript,
        synthesizer: PodcastAudioSynthesizer,
        document_id: Optional[int] = None,
        mode: Optional[str] = None,
    ) -> str:
        """生成播客音频（第二步），返回文件名"""
        if document_id is not None:
            # 先校验归属，避免为他人的文档调用语音接口
            await self.get_document(document_id, user_id)

        filename = await synthesizer.synthesize(script, self.podcasts_dir, owner=user_id)
        if document_id is not None:
            await self.attach_podcast(document_id, user_id, filename, mode or script.mode)
        return filename

    # ---------- 下载 ----------

    async def resolve_download(self, user_id: str, kind: str, filename: str) -> str:
        """
        校验下载权限并返回文件路径

        PDF必须被该用户的某条文档记录引用；JSON/Markdown不入库，以文件名中的userId段判断归属；
        播客由记录引用或文件名中的userId段判断（未关联文档的播客只有后者）。
        无权访问与不存在一律返回not_found
        """
        if kind not in ("document", "podcast"):
            raise invalid_input("Invalid type. Must be document or podcast")
        if not is_safe_filename(filename):
            raise not_found("File not found")

        if kind == "podcast":
            column = ReadcastDocument.podcast_path
            directory = self.podcasts_dir
            allowed = (
                await self._is_referenced(column, filename, user_id)
                or get_artifact_owner(filename) == user_id
            )
        else:
            directory = self.documents_dir
            if get_file_extension(filename) == "pdf":
                allowed = await self._is_referenced(ReadcastDocument.pdf_path, filename, user_id)
            else:
                allowed = get_artifact_owner(filename) == user_id

        if not allowed:
            logger.warning("下载请求无权访问", kind=kind, filename=filename, user_id=user_id)
            raise not_found("File not found")

        path = os.path.join(directory, filename)
        if not os.path.isfile(path):
            raise not_found("File not found")
        return path

    async def _is_referenced(self, column, filename: str, user_id: str) -> bool:
        result = await self.db.execute(
            select(ReadcastDocument.id)
            .where(column == filename, ReadcastDocument.user_id == user_id)
            .limit(1)
        )
        return result.first() is not None
