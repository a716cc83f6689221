"""
ReadcastDocumentService测试（缓存、导出、播客记录、下载权限）
"""
import asyncio
import json
import os

import pytest

from app.models.article import Article
from app.models.favorite_sentence import FavoriteSentence
from app.models.readcast_document import ReadcastDocument
from app.schemas.readcast import (
    ArticleDocumentRequest,
    FavoritesDocumentRequest,
    PodcastScript,
    PodcastSegment,
    StudyDocument,
)
from app.services.audio_merger import AudioMerger
from app.services.document_service import ReadcastDocumentService
from app.services.tts_service import PodcastAudioSynthesizer
from app.utils.file_utils import get_artifact_owner
from app.utils.processing_exception import ErrorType, ReadcastException

from conftest import FailingTextPort, FakeTextPort, RecordedSleep, RecordingSpeechClient, study_document_json


class CountingRenderer:
    def __init__(self):
        self.calls = 0

    def __call__(self, document, metadata):
        self.calls += 1
        return b"%PDF-1.4 fake " + document.title.encode("utf-8")


@pytest.fixture
def renderer():
    return CountingRenderer()


@pytest.fixture
def ai():
    return FakeTextPort(default=study_document_json())


@pytest.fixture
def make_service(storage_dirs, ai, renderer):
    documents_dir, podcasts_dir = storage_dirs

    def _make(db, port=None):
        return ReadcastDocumentService(
            db, port or ai, documents_dir=documents_dir, podcasts_dir=podcasts_dir, pdf_renderer=renderer
        )

    return _make


@pytest.fixture
async def article(db_session):
    article = Article(title="Climate Talks", content="Countries agreed on a new deal. " * 20, source="BBC")
    db_session.add(article)
    await db_session.commit()
    await db_session.refresh(article)
    return article


def _request(article_id, **overrides):
    values = dict(article_id=article_id, difficulty="medium", language="bilingual", format="json")
    values.update(overrides)
    return ArticleDocumentRequest(**values)


# ---------- 缓存 ----------

@pytest.mark.asyncio
async def test_second_request_hits_cache(db_session, make_service, ai, article):
    service = make_service(db_session)
    first = await service.generate_article_document("alice", _request(article.id))
    second = await service.generate_article_document("alice", _request(article.id))

    assert first.cache_hit is False
    assert second.cache_hit is True
    assert second.record.id == first.record.id
    assert second.document == first.document
    assert len(ai.calls) == 1


@pytest.mark.asyncio
async def test_force_new_creates_new_record(db_session, make_service, ai, article):
    service = make_service(db_session)
    first = await service.generate_article_document("alice", _request(article.id))
    forced = await service.generate_article_document("alice", _request(article.id, force_new=True))
    again = await service.generate_article_document("alice", _request(article.id))

    assert forced.cache_hit is False
    assert forced.record.id != first.record.id
    # 多条匹配时取最新一条
    assert again.record.id == forced.record.id
    assert len(ai.calls) == 2


@pytest.mark.asyncio
async def test_cache_key_fields(db_session, make_service, ai, article):
    service = make_service(db_session)
    base = await service.generate_article_document("alice", _request(article.id, custom_requirements=""))

    blank = await service.generate_article_document("alice", _request(article.id))
    assert blank.record.id == base.record.id

    others = [
        ("alice", _request(article.id, difficulty="high")),
        ("alice", _request(article.id, language="english")),
        ("alice", _request(article.id, custom_requirements="多讲习语")),
        ("bob", _request(article.id)),
    ]
    ids = set()
    for user_id, request in others:
        result = await service.generate_article_document(user_id, request)
        assert result.cache_hit is False
        ids.add(result.record.id)
    assert base.record.id not in ids
    assert len(ids) == 4


@pytest.mark.asyncio
async def test_unknown_article(db_session, make_service):
    with pytest.raises(ReadcastException) as exc_info:
        await make_service(db_session).generate_article_document("alice", _request(999))
    assert exc_info.value.error_type == ErrorType.NOT_FOUND


@pytest.mark.asyncio
async def test_generation_failure_inserts_nothing(db_session, make_service, article):
    service = make_service(db_session, FailingTextPort())
    with pytest.raises(ReadcastException) as exc_info:
        await service.generate_article_document("alice", _request(article.id))

    assert exc_info.value.error_type == ErrorType.GENERATION_FAILED
    assert await service.list_article_documents(article.id, "alice") == []


@pytest.mark.asyncio
async def test_degraded_document_is_cached(db_session, make_service, article):
    service = make_service(db_session, FakeTextPort(default="plain text answer"))
    result = await service.generate_article_document("alice", _request(article.id))

    assert result.document.custom_content == "plain text answer"
    assert result.record.document_content["customContent"] == "plain text answer"


# ---------- 导出 ----------

@pytest.mark.asyncio
async def test_json_export_returns_content(db_session, make_service, storage_dirs, article):
    result = await make_service(db_session).generate_article_document("alice", _request(article.id))

    exported = json.loads(result.json_content)
    assert StudyDocument.model_validate(exported["content"]) == result.document
    assert exported["metadata"]["articleTitle"] == "Climate Talks"
    assert result.filename.startswith(f"article_{article.id}_alice_")
    assert os.path.isfile(os.path.join(storage_dirs[0], result.filename))
    assert result.record.pdf_path is None


@pytest.mark.asyncio
async def test_markdown_export_written(db_session, make_service, storage_dirs, article):
    result = await make_service(db_session).generate_article_document("alice", _request(article.id, format="md"))

    assert result.filename.endswith(".md")
    assert result.file_url == f"/api/v1/readcast/download/document/{result.filename}"
    with open(os.path.join(storage_dirs[0], result.filename), encoding="utf-8") as f:
        assert f.read().startswith("# Climate Talks - 学习文档")


@pytest.mark.asyncio
async def test_pdf_is_rendered_once_and_reused(db_session, make_service, renderer, storage_dirs, article):
    service = make_service(db_session)
    first = await service.generate_article_document("alice", _request(article.id, format="pdf"))
    second = await service.generate_article_document("alice", _request(article.id, format="pdf"))

    assert renderer.calls == 1
    assert second.filename == first.filename
    assert second.record.pdf_path == first.filename

    # 文件丢失时重新生成
    os.remove(os.path.join(storage_dirs[0], first.filename))
    third = await service.generate_article_document("alice", _request(article.id, format="pdf"))
    assert renderer.calls == 2
    assert third.filename != first.filename
    assert third.record.id == first.record.id


@pytest.mark.asyncio
async def test_cached_document_without_pdf_gets_one(db_session, make_service, renderer, article):
    service = make_service(db_session)
    json_result = await service.generate_article_document("alice", _request(article.id, format="json"))
    pdf_result = await service.generate_article_document("alice", _request(article.id, format="pdf"))

    assert pdf_result.cache_hit is True
    assert pdf_result.record.id == json_result.record.id
    assert pdf_result.record.pdf_path == pdf_result.filename
    assert renderer.calls == 1


@pytest.mark.asyncio
async def test_concurrent_requests_for_missing_pdf(session_factory, make_service, article):
    """同一缓存文档并发请求PDF：两者都成功，最终记录的路径是其中之一"""
    async with session_factory() as session:
        cached = await make_service(session).generate_article_document("alice", _request(article.id))

    async with session_factory() as session_a, session_factory() as session_b:
        results = await asyncio.gather(
            make_service(session_a).generate_article_document("alice", _request(article.id, format="pdf")),
            make_service(session_b).generate_article_document("alice", _request(article.id, format="pdf")),
        )

    assert all(result.record.id == cached.record.id for result in results)
    async with session_factory() as session:
        record = await session.get(ReadcastDocument, cached.record.id)
    assert record.pdf_path in {result.filename for result in results}


@pytest.mark.asyncio
async def test_file_write_failure_is_persistence_error(db_session, ai, renderer, tmp_path, article):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("x")
    service = ReadcastDocumentService(
        db_session, ai, documents_dir=str(blocker / "documents"), podcasts_dir=str(tmp_path), pdf_renderer=renderer
    )
    with pytest.raises(ReadcastException) as exc_info:
        await service.generate_article_document("alice", _request(article.id, format="pdf"))

    error = exc_info.value
    assert error.error_type == ErrorType.PERSISTENCE_FAILED
    assert error.error_details["stage"] == "file_write"
    assert error.error_details["document_generated"] is True
    # 文档本身已保存，可以重试导出
    assert len(await service.list_article_documents(article.id, "alice")) == 1


# ---------- 收藏 ----------

@pytest.mark.asyncio
async def test_favorites_document(db_session, make_service, ai, article):
    db_session.add_all([
        FavoriteSentence(user_id="alice", article_id=article.id, sentence="s1", original_sentence="Deal struck."),
        FavoriteSentence(user_id="alice", sentence="s2", explanation="解释"),
        FavoriteSentence(user_id="bob", sentence="not mine"),
    ])
    await db_session.commit()

    service = make_service(db_session)
    request = FavoritesDocumentRequest(type="today", difficulty="low", format="md")
    first = await service.generate_favorites_document("alice", request)
    second = await service.generate_favorites_document("alice", request)

    assert first.record.subject_type == "favorites"
    assert first.record.article_id is None
    assert first.filename.startswith("favorites_today_alice_")
    assert second.record.id == first.record.id
    favorites_text = ai.calls[0]["variables"]["favorites"]
    assert "Deal struck." in favorites_text and "来源：Climate Talks" in favorites_text
    assert "not mine" not in favorites_text


@pytest.mark.asyncio
async def test_selected_favorites(db_session, make_service, ai):
    favorite = FavoriteSentence(user_id="alice", sentence="chosen one")
    other = FavoriteSentence(user_id="alice", sentence="left out")
    db_session.add_all([favorite, other])
    await db_session.commit()

    service = make_service(db_session)
    await service.generate_favorites_document(
        "alice", FavoritesDocumentRequest(type="selected", favorite_ids=[favorite.id], difficulty="high")
    )
    assert "chosen one" in ai.calls[0]["variables"]["favorites"]
    assert "left out" not in ai.calls[0]["variables"]["favorites"]

    with pytest.raises(ReadcastException) as exc_info:
        await service.generate_favorites_document(
            "alice", FavoritesDocumentRequest(type="selected", difficulty="high")
        )
    assert exc_info.value.error_type == ErrorType.INVALID_INPUT


@pytest.mark.asyncio
async def test_no_favorites(db_session, make_service, ai):
    with pytest.raises(ReadcastException) as exc_info:
        await make_service(db_session).generate_favorites_document(
            "alice", FavoritesDocumentRequest(type="today", difficulty="low")
        )
    assert exc_info.value.error_type == ErrorType.NOT_FOUND
    assert ai.calls == []


# ---------- 查询 ----------

@pytest.mark.asyncio
async def test_history_and_ownership(db_session, make_service, article):
    service = make_service(db_session)
    first = await service.generate_article_document("alice", _request(article.id))
    second = await service.generate_article_document("alice", _request(article.id, difficulty="low"))
    await service.generate_article_document("bob", _request(article.id))

    history = await service.list_article_documents(article.id, "alice")
    assert [record.id for record in history] == [second.record.id, first.record.id]

    assert (await service.get_document(first.record.id, "alice")).id == first.record.id
    with pytest.raises(ReadcastException) as exc_info:
        await service.get_document(first.record.id, "bob")
    assert exc_info.value.error_type == ErrorType.NOT_FOUND


# ---------- 播客 ----------

def _synthesizer(speech_client=None):
    return PodcastAudioSynthesizer(
        speech_client=speech_client or RecordingSpeechClient(),
        merger=AudioMerger("ffmpeg-not-installed"),
        sleep=RecordedSleep(),
    )


@pytest.mark.asyncio
async def test_podcast_script_saved_on_document(db_session, make_service, ai, article):
    service = make_service(db_session)
    generated = await service.generate_article_document("alice", _request(article.id))

    ai.replies.append(json.dumps({
        "intro": "Hello", "segments": [{"content": "Segment one"}], "outro": "Bye",
    }))
    script = await service.create_podcast_script("alice", mode="solo", language="english",
                                                 document_id=generated.record.id)

    record = await service.get_document(generated.record.id, "alice")
    assert record.podcast_mode == "solo"
    assert PodcastScript.model_validate(record.podcast_script) == script
    assert "Climate Talks - 学习文档" in ai.calls[-1]["variables"]["title"]


@pytest.mark.asyncio
async def test_podcast_script_from_content_or_nothing(db_session, make_service, ai):
    service = make_service(db_session)
    ai.replies.append(json.dumps({"segments": [{"content": "From content"}]}))
    script = await service.create_podcast_script(
        "alice", mode="dialogue", language="bilingual",
        document_content=StudyDocument(title="Inline", summary="s", custom_content="c"),
    )
    assert script.segments[0].content == "From content"

    with pytest.raises(ReadcastException) as exc_info:
        await service.create_podcast_script("alice", mode="solo", language="bilingual")
    assert exc_info.value.error_type == ErrorType.INVALID_INPUT


@pytest.mark.asyncio
async def test_podcast_audio_replaces_previous_file(db_session, make_service, storage_dirs, article):
    service = make_service(db_session)
    generated = await service.generate_article_document("alice", _request(article.id))
    script = PodcastScript(mode="solo", segments=[PodcastSegment(content="Hello there")])

    first = await service.create_podcast_audio("alice", script, _synthesizer(), document_id=generated.record.id)
    second = await service.create_podcast_audio(
        "alice", script, _synthesizer(), document_id=generated.record.id, mode="dialogue"
    )

    podcasts_dir = storage_dirs[1]
    assert not os.path.exists(os.path.join(podcasts_dir, first))
    assert os.path.isfile(os.path.join(podcasts_dir, second))
    record = await service.get_document(generated.record.id, "alice")
    assert record.podcast_path == second
    assert record.podcast_mode == "dialogue"


@pytest.mark.asyncio
async def test_podcast_audio_for_foreign_document(db_session, make_service, article):
    service = make_service(db_session)
    generated = await service.generate_article_document("alice", _request(article.id))
    speech_client = RecordingSpeechClient()
    script = PodcastScript(mode="solo", segments=[PodcastSegment(content="Hello")])

    with pytest.raises(ReadcastException) as exc_info:
        await service.create_podcast_audio("bob", script, _synthesizer(speech_client), document_id=generated.record.id)
    assert exc_info.value.error_type == ErrorType.NOT_FOUND
    assert speech_client.calls == []


# ---------- 下载 ----------

@pytest.mark.asyncio
async def test_resolve_download_access_control(db_session, make_service, storage_dirs, article):
    service = make_service(db_session)
    pdf = await service.generate_article_document("alice", _request(article.id, format="pdf"))
    md = await service.generate_article_document("alice", _request(article.id, format="md"))
    audio = await service.create_podcast_audio(
        "alice", PodcastScript(mode="solo", segments=[PodcastSegment(content="Hi")]), _synthesizer(),
        document_id=pdf.record.id,
    )

    assert await service.resolve_download("alice", "document", pdf.filename) == os.path.join(
        storage_dirs[0], pdf.filename
    )
    assert (await service.resolve_download("alice", "document", md.filename)).endswith(md.filename)
    assert (await service.resolve_download("alice", "podcast", audio)).endswith(audio)

    denied = [
        ("bob", "document", pdf.filename),
        ("bob", "document", md.filename),
        ("bob", "podcast", audio),
        ("alice", "document", "../secret.pdf"),
        ("alice", "document", "article_1_alice_0_abcdef.pdf"),
        ("alice", "podcast", "podcast_solo_0_abcdef.mp3"),
    ]
    for user_id, kind, filename in denied:
        with pytest.raises(ReadcastException) as exc_info:
            await service.resolve_download(user_id, kind, filename)
        assert exc_info.value.error_type == ErrorType.NOT_FOUND

    with pytest.raises(ReadcastException) as exc_info:
        await service.resolve_download("alice", "video", pdf.filename)
    assert exc_info.value.error_type == ErrorType.INVALID_INPUT


@pytest.mark.asyncio
async def test_podcast_without_document_is_downloadable_by_owner(db_session, make_service, storage_dirs):
    service = make_service(db_session)
    script = PodcastScript(mode="solo", segments=[PodcastSegment(content="Hello there")])
    filename = await service.create_podcast_audio("alice", script, _synthesizer())

    assert get_artifact_owner(filename) == "alice"
    assert await service.resolve_download("alice", "podcast", filename) == os.path.join(storage_dirs[1], filename)
    with pytest.raises(ReadcastException) as exc_info:
        await service.resolve_download("bob", "podcast", filename)
    assert exc_info.value.error_type == ErrorType.NOT_FOUND
