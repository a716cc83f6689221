"""
播客音频合成 - Minimax TTS集成

脚本按 intro → segments → outro 的顺序逐段调用语音接口（串行，不并发），
每段按语言和说话人选择音色，最后合并为一个MP3文件
"""
import asyncio
import base64
import binascii
import os
import re
import time
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from app.core.config import settings
from app.schemas.readcast import PodcastScript
from app.services.audio_merger import AudioMerger
from app.utils.file_utils import generate_artifact_filename
from app.utils.processing_exception import ErrorType, ReadcastException, invalid_input

logger = structlog.get_logger()

_CHINESE_CHAR = re.compile(r'[\u4e00-\u9fa5]')
_HEX_PAYLOAD = re.compile(r'^[0-9a-fA-F]+$')
_WHITESPACE = re.compile(r'\s+')

PRIMARY_VOICE = "male"
SECONDARY_VOICE = "female"

# 音色配置（key: {语言}-{音色类型}）
VOICE_CONFIGS: Dict[str, Dict] = {
    "zh-male": {"voice_id": "male-qn-qingse", "speed": 1.0, "vol": 1.0, "pitch": 0, "emotion": "neutral"},
    "zh-female": {"voice_id": "female-shaonv", "speed": 1.0, "vol": 1.0, "pitch": 0, "emotion": "neutral"},
    "en-male": {"voice_id": "male-qn-qingse", "speed": 1.0, "vol": 1.0, "pitch": 0, "emotion": "neutral"},
    "en-female": {"voice_id": "female-shaonv", "speed": 1.0, "vol": 1.0, "pitch": 0, "emotion": "neutral"},
}

AUDIO_SETTINGS = {
    "sample_rate": 32000,
    "bitrate": 128000,
    "format": "mp3",
    "channel": 1,
}


class SpeechServiceError(Exception):
    """语音接口错误（不可重试）"""


class SpeechRateLimitError(SpeechServiceError):
    """语音接口限流"""


class SpeechNetworkError(SpeechServiceError):
    """网络错误或网关临时不可用"""


def detect_language(text: str) -> str:
    """包含中文字符则认为是中文，否则为英文"""
    return "zh" if _CHINESE_CHAR.search(text or "") else "en"


def decode_audio_payload(payload: str) -> bytes:
    """
    解码语音接口返回的音频数据

    数据可能是十六进制字符串（以ID3的十六进制 494433 开头，或全部为十六进制字符），
    否则按base64解码
    """
    cleaned = _WHITESPACE.sub("", payload or "")
    try:
        if cleaned.startswith("494433") or _HEX_PAYLOAD.match(cleaned):
            return bytes.fromhex(cleaned)
        # 补齐缺失的padding
        return base64.b64decode(cleaned + "=" * (-len(cleaned) % 4))
    except (ValueError, binascii.Error) as e:
        raise SpeechServiceError(f"Failed to decode audio payload: {e}") from e


def check_audio_signature(audio: bytes) -> bool:
    """检查MP3文件头（ID3v2标签或MPEG帧同步），未知格式只记录警告"""
    if audio[:3] == b"ID3":
        return True
    header = audio[:2].hex()
    if header in ("fffb", "fff3", "fff2"):
        return True
    logger.warning("音频数据没有标准MP3文件头", header=audio[:10].hex())
    return False


class SpeechClient(Protocol):
    """语音接口：返回编码后的音频字符串，失败时抛出 SpeechServiceError 及其子类"""

    async def synthesize_segment(self, text: str, voice: Dict, audio_settings: Dict) -> str:
        ...


class MinimaxSpeechClient:
    """Minimax t2a_v2 接口客户端（单次调用，不含重试）"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.MINIMAX_API_KEY
        self.endpoint = f"{(api_base or settings.MINIMAX_API_BASE).rstrip('/')}/t2a_v2"
        self.model = model or settings.MINIMAX_TTS_MODEL
        self.timeout = timeout or settings.TTS_TIMEOUT_SECONDS
        self._transport = transport

    async def synthesize_segment(self, text: str, voice: Dict, audio_settings: Dict) -> str:
        if not self.api_key:
            raise SpeechServiceError("MINIMAX_API_KEY未配置，请在.env文件中设置")

        payload = {
            "model": self.model,
            "text": text,
            "stream": False,
            "voice_setting": voice,
            "audio_setting": audio_settings,
            "subtitle_enable": False,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.TransportError as e:
            # 包含超时、连接重置、DNS失败
            raise SpeechNetworkError(f"{type(e).__name__}: {e}") from e

        if response.status_code == 429:
            raise SpeechRateLimitError("Minimax API rate limit (HTTP 429)")
        if response.status_code in (502, 503, 504):
            raise SpeechNetworkError(f"Minimax API temporarily unavailable (HTTP {response.status_code})")

        try:
            data = response.json()
        except ValueError:
            raise SpeechServiceError(f"API returned status {response.status_code}: {response.text[:200]}")

        if not isinstance(data, dict):
            raise SpeechServiceError(f"Unexpected response from Minimax API: {response.text[:200]}")

        base_resp = data.get("base_resp") or {}
        status_code = base_resp.get("status_code", 0)
        if status_code != 0:
            message = base_resp.get("status_msg") or "Unknown error"
            if status_code == 1002 or "rate limit" in message.lower():
                raise SpeechRateLimitError(f"Minimax API rate limit: {message}")
            raise SpeechServiceError(f"Minimax API error: {message}")

        if response.status_code != 200:
            raise SpeechServiceError(f"API returned status {response.status_code}: {response.text[:200]}")

        audio = self._find_audio(data)
        if not audio:
            raise SpeechServiceError("Minimax API response missing audio data")
        return audio

    @staticmethod
    def _find_audio(data: Dict) -> Optional[str]:
        inner = data.get("data")
        if isinstance(inner, dict):
            if inner.get("audio"):
                return inner["audio"]
        if isinstance(data.get("audio"), str) and data["audio"]:
            return data["audio"]
        if isinstance(inner, dict):
            for key, value in inner.items():
                if isinstance(value, str) and len(value) > 100:
                    logger.info("从其他字段读取音频数据", key=key)
                    return value
        return None


class SpeakerVoiceResolver(Protocol):
    """说话人 → 音色类型 的解析策略"""

    def resolve(self, speaker: Optional[str], mode: str) -> str:
        ...


class MarkerVoiceResolver:
    """
    按说话人标记分配音色

    对话模式下说话人命中任一主讲标记时使用主音色，否则使用次音色；
    单字符标记（如 A、1）按独立词匹配，其他标记按子串匹配，均不区分大小写
    """

    DEFAULT_MARKERS = ("a", "1", "主持人", "host", "teacher")

    def __init__(self, markers: Sequence[str] = DEFAULT_MARKERS):
        self.markers = tuple(m.lower() for m in markers)

    def is_primary(self, speaker: str) -> bool:
        name = speaker.lower()
        tokens = set(re.split(r'[^0-9a-z\u4e00-\u9fa5]+', name))
        for marker in self.markers:
            if len(marker) == 1:
                if marker in tokens:
                    return True
            elif marker in name:
                return True
        return False

    def resolve(self, speaker: Optional[str], mode: str) -> str:
        if mode == "dialogue" and speaker and self.is_primary(speaker):
            return PRIMARY_VOICE
        return SECONDARY_VOICE


SleepFunc = Callable[[float], Awaitable[None]]


class PodcastAudioSynthesizer:
    """播客音频合成器"""

    def __init__(
        self,
        speech_client: Optional[SpeechClient] = None,
        voice_resolver: Optional[SpeakerVoiceResolver] = None,
        merger: Optional[AudioMerger] = None,
        sleep: SleepFunc = asyncio.sleep,
        max_attempts: Optional[int] = None,
        segment_delay: Optional[float] = None,
    ):
        self.speech_client = speech_client or MinimaxSpeechClient()
        self.voice_resolver = voice_resolver or MarkerVoiceResolver()
        self.merger = merger or AudioMerger()
        self._sleep = sleep
        self.max_attempts = max_attempts or settings.TTS_MAX_RETRIES
        self.segment_delay = settings.TTS_SEGMENT_DELAY_SECONDS if segment_delay is None else segment_delay

    @staticmethod
    def _backoff(retry_state) -> float:
        """限流按 attempt*5s 线性等待，网络错误按 attempt*2s"""
        error = retry_state.outcome.exception()
        attempt = retry_state.attempt_number
        if isinstance(error, SpeechRateLimitError):
            wait = attempt * settings.TTS_RATE_LIMIT_BACKOFF_SECONDS
        else:
            wait = attempt * settings.TTS_NETWORK_BACKOFF_SECONDS
        logger.warning(
            "语音接口调用失败，等待后重试",
            attempt=attempt,
            wait_seconds=wait,
            error=str(error),
            rate_limited=isinstance(error, SpeechRateLimitError),
        )
        return wait

    async def synthesize_segment(self, text: str, language: str, voice_type: str) -> bytes:
        """
        合成单段音频（带重试）

        Raises:
            ReadcastException: speech_rate_limited（限流重试耗尽）或 speech_failed
        """
        limit = settings.TTS_MAX_TEXT_LENGTH
        if len(text) > limit:
            logger.warning("文本过长，已截断", length=len(text), limit=limit)
            text = text[:limit]

        voice = VOICE_CONFIGS.get(f"{language}-{voice_type}", VOICE_CONFIGS["zh-male"])

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self._backoff,
                retry=retry_if_exception_type((SpeechRateLimitError, SpeechNetworkError)),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    payload = await self.speech_client.synthesize_segment(text, voice, AUDIO_SETTINGS)
        except SpeechRateLimitError as e:
            raise ReadcastException(
                ErrorType.SPEECH_RATE_LIMITED,
                f"Minimax API rate limit exceeded. Please wait a moment and try again. "
                f"(Attempted {self.max_attempts} times)",
                error_details={"reason": str(e)},
            ) from e
        except SpeechNetworkError as e:
            raise ReadcastException(
                ErrorType.SPEECH_FAILED,
                f"Failed to generate audio after {self.max_attempts} attempts: {e}",
            ) from e
        except SpeechServiceError as e:
            raise ReadcastException(ErrorType.SPEECH_FAILED, f"Failed to generate audio: {e}") from e

        try:
            audio = decode_audio_payload(payload)
        except SpeechServiceError as e:
            raise ReadcastException(ErrorType.SPEECH_FAILED, str(e)) from e
        check_audio_signature(audio)
        return audio

    async def synthesize(self, script: PodcastScript, output_dir: str, owner: Optional[str] = None) -> str:
        """
        合成整期播客

        Args:
            script: 播客脚本
            output_dir: 输出目录
            owner: 用户ID，写入文件名用于下载归属校验

        Returns:
            输出文件名（不含目录）
        """
        segments = [s for s in script.segments if s.content and s.content.strip()]
        if not (script.intro or segments or script.outro):
            raise invalid_input("Podcast script has no content")

        buffers: List[bytes] = []
        start = time.monotonic()

        if script.intro:
            buffers.append(await self.synthesize_segment(script.intro, detect_language(script.intro), SECONDARY_VOICE))

        for index, segment in enumerate(segments):
            # 片段之间稍作停顿，降低限流概率
            if index > 0 and self.segment_delay > 0:
                await self._sleep(self.segment_delay)
            language = segment.language or detect_language(segment.content)
            voice_type = self.voice_resolver.resolve(segment.speaker, script.mode)
            logger.info("生成片段音频", index=index + 1, total=len(segments), language=language, voice=voice_type)
            buffers.append(await self.synthesize_segment(segment.content, language, voice_type))

        if script.outro:
            buffers.append(await self.synthesize_segment(script.outro, detect_language(script.outro), SECONDARY_VOICE))

        if owner:
            filename = generate_artifact_filename("podcast", script.mode, owner, "mp3")
        else:
            filename = f"podcast_{script.mode}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}.mp3"
        method = await self.merger.merge(buffers, os.path.join(output_dir, filename))
        logger.info(
            "播客音频生成完成",
            filename=filename,
            steps=len(buffers),
            merge_method=method,
            elapsed=round(time.monotonic() - start, 2),
        )
        return filename
