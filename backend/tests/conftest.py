"""
pytest配置和fixtures
"""
import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

# 在导入app之前指定测试配置
_test_root = tempfile.mkdtemp(prefix="readcast-test-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_test_root}/readcast.db")
os.environ.setdefault("STORAGE_DIR", os.path.join(_test_root, "storage"))
os.environ.setdefault("AUTH_TOKENS", "token-alice:alice,token-bob:bob")
os.environ.setdefault("FFMPEG_BINARY", "ffmpeg-not-installed")

# 添加backend路径到sys.path
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from app.core.database import Base, init_db
from app.services.ai_service import AIServiceError, GenerationResult
from app.services.tts_service import SpeechRateLimitError

ID3_HEX = b"ID3".hex()

ScriptedReply = Union[str, Exception, Callable[[str, str, Dict], str]]


class FakeTextPort:
    """
    按顺序返回预设回复的文本生成端口

    回复可以是字符串、异常（调用时抛出）或根据提示生成文本的函数；
    回复用完后返回default
    """

    def __init__(self, replies: Optional[List[ScriptedReply]] = None, default: str = ""):
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Dict] = []
        self.stream_chunks: List[str] = []

    def _next_reply(self, system_prompt: str, user_template: str, variables: Dict) -> str:
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(system_prompt, user_template, variables)
        return reply

    async def invoke(self, system_prompt, user_template, variables=None, temperature=0.3):
        variables = variables or {}
        self.calls.append({
            "system_prompt": system_prompt,
            "user_template": user_template,
            "variables": variables,
            "temperature": temperature,
        })
        return GenerationResult(text=self._next_reply(system_prompt, user_template, variables), model="fake")

    async def stream(self, system_prompt, user_template, variables=None, temperature=0.3):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_template": user_template,
            "variables": variables or {},
            "temperature": temperature,
        })
        for chunk in self.stream_chunks:
            yield chunk


class FailingTextPort(FakeTextPort):
    """所有调用都失败的端口"""

    async def invoke(self, system_prompt, user_template, variables=None, temperature=0.3):
        raise AIServiceError("AI服务调用失败: connection refused")


class RecordingSpeechClient:
    """记录调用顺序的语音接口，返回以ID3开头的hex音频"""

    def __init__(self, failures: Optional[List[Exception]] = None):
        self.failures = list(failures or [])
        self.calls: List[Dict] = []

    async def synthesize_segment(self, text, voice, audio_settings):
        self.calls.append({"text": text, "voice": voice, "audio_settings": audio_settings})
        if self.failures:
            raise self.failures.pop(0)
        return ID3_HEX + text.encode("utf-8").hex()


class RecordedSleep:
    """替代asyncio.sleep，只记录等待时长"""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


def study_document_json(**overrides) -> str:
    import json

    data = {
        "title": "Climate Talks - 学习文档",
        "summary": "各国在气候大会上达成新的减排协议。",
        "knowledgePoints": [
            {"point": "reach an agreement", "explanation": "达成协议"},
            {"point": "carbon emissions", "explanation": "碳排放"},
        ],
        "difficulties": [
            {"difficulty": "long noun phrases", "explanation": "长名词短语", "examples": ["the landmark deal"]},
        ],
        "terminology": [],
    }
    data.update(overrides)
    return json.dumps(data, ensure_ascii=False)


@pytest.fixture
def fake_ai():
    return FakeTextPort()


@pytest.fixture
def recorded_sleep():
    return RecordedSleep()


@pytest.fixture
def rate_limit_error():
    return SpeechRateLimitError("Minimax API rate limit: rate limit exceeded")


@pytest.fixture
def storage_dirs(tmp_path):
    documents = tmp_path / "documents"
    podcasts = tmp_path / "podcasts"
    documents.mkdir()
    podcasts.mkdir()
    return str(documents), str(podcasts)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
async def async_engine(db_path):
    """
    每个测试独立的SQLite数据库

    使用NullPool，连接不跨事件循环复用
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sync_db(db_path):
    """同步建表和准备数据（API测试使用）"""
    engine = create_engine(f"sqlite:///{db_path}", poolclass=NullPool)
    import app.models  # noqa: F401

    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        yield session
    engine.dispose()


@pytest.fixture
def speech_client():
    return RecordingSpeechClient()


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer token-alice"}


@pytest.fixture
def api_client(sync_db, db_path, fake_ai, speech_client, recorded_sleep, storage_dirs):
    """
    替换数据库、文本生成端口和语音合成器的TestClient

    不进入TestClient上下文，不触发启动事件
    """
    from fastapi import Depends
    from fastapi.testclient import TestClient

    from app.api import deps
    from app.core.database import get_db
    from app.main import app
    from app.services.audio_merger import AudioMerger
    from app.services.document_service import ReadcastDocumentService
    from app.services.pdf_renderer import render_pdf
    from app.services.tts_service import PodcastAudioSynthesizer

    documents_dir, podcasts_dir = storage_dirs
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    def override_document_service(
        db: AsyncSession = Depends(get_db),
        ai=Depends(deps.get_text_generation_port),
    ):
        return ReadcastDocumentService(
            db, ai, documents_dir=documents_dir, podcasts_dir=podcasts_dir,
            pdf_renderer=lambda document, metadata: render_pdf(document, metadata, font_dirs=[]),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_text_generation_port] = lambda: fake_ai
    app.dependency_overrides[deps.get_document_service] = override_document_service
    app.dependency_overrides[deps.get_speech_synthesizer] = lambda: PodcastAudioSynthesizer(
        speech_client=speech_client,
        merger=AudioMerger("ffmpeg-not-installed"),
        sleep=recorded_sleep,
    )
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
