"""
路由共用依赖
"""
from typing import AsyncIterator, Dict, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.services.ai_service import GenerationResult, TextGenerationPort, get_ai_service
from app.services.document_service import ReadcastDocumentService
from app.services.tts_service import PodcastAudioSynthesizer


class LazyTextGenerationPort:
    """
    首次调用时才创建AI服务

    下载、历史等不调用模型的接口在未配置API Key时也能正常使用
    """

    async def invoke(
        self,
        system_prompt: str,
        user_template: str,
        variables: Optional[Dict[str, object]] = None,
        temperature: float = 0.3,
    ) -> GenerationResult:
        return await get_ai_service().invoke(system_prompt, user_template, variables, temperature)

    async def stream(
        self,
        system_prompt: str,
        user_template: str,
        variables: Optional[Dict[str, object]] = None,
        temperature: float = 0.3,
    ) -> AsyncIterator[str]:
        async for chunk in get_ai_service().stream(system_prompt, user_template, variables, temperature):
            yield chunk


def get_text_generation_port() -> TextGenerationPort:
    return LazyTextGenerationPort()


def get_speech_synthesizer() -> PodcastAudioSynthesizer:
    return PodcastAudioSynthesizer()


def get_document_service(
    db: AsyncSession = Depends(get_db),
    ai: TextGenerationPort = Depends(get_text_generation_port),
) -> ReadcastDocumentService:
    return ReadcastDocumentService(db, ai)
