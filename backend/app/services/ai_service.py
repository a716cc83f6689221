"""
AI服务 - DeepSeek API集成
提供统一的文本生成接口（所有Agent共用）
"""
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional, Protocol

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI
import structlog
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
)

from app.core.config import settings

logger = structlog.get_logger()


@dataclass
class GenerationResult:
    """一次生成调用的结果"""
    text: str
    model: Optional[str] = None
    total_tokens: int = 0


class AIServiceError(Exception):
    """AI服务硬失败（网络、认证、重试耗尽）"""


class TextGenerationPort(Protocol):
    """文本生成能力接口，测试中可注入假实现"""

    async def invoke(
        self,
        system_prompt: str,
        user_template: str,
        variables: Optional[Dict[str, object]] = None,
        temperature: float = 0.3,
    ) -> GenerationResult:
        ...

    def stream(
        self,
        system_prompt: str,
        user_template: str,
        variables: Optional[Dict[str, object]] = None,
        temperature: float = 0.3,
    ) -> AsyncIterator[str]:
        ...


def build_messages(system_prompt: str, user_template: str, variables: Optional[Dict[str, object]] = None):
    """
    构造对话消息

    只对用户模板做变量替换，系统提示原样发送（其中的JSON示例包含花括号）
    """
    user_message = user_template.format(**variables) if variables else user_template
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_message})
    return messages


def _is_retryable_error(exception: Exception) -> bool:
    """
    判断错误是否可重试

    Args:
        exception: 异常对象

    Returns:
        如果可重试返回True
    """
    # 网络错误和超时，可重试
    if isinstance(exception, (APIConnectionError, APITimeoutError, ConnectionError, TimeoutError)):
        return True

    if isinstance(exception, APIStatusError):
        # 429 Too Many Requests - 限流，可重试
        if exception.status_code == 429:
            return True
        # 5xx服务器错误，可重试
        if 500 <= exception.status_code < 600:
            return True

    return False


class AIService:
    """AI服务类，封装DeepSeek API调用"""

    def __init__(self, api_key: Optional[str] = None, api_base: Optional[str] = None, model: Optional[str] = None):
        """
        初始化AI服务

        Args:
            api_key: DeepSeek API密钥，如果为None则从配置读取
            api_base: DeepSeek API基础URL，如果为None则从配置读取
            model: 模型名称，如果为None则从配置读取
        """
        self.api_key = api_key or settings.DEEPSEEK_API_KEY
        self.api_base = api_base or settings.DEEPSEEK_API_BASE
        self.model = model or settings.DEEPSEEK_MODEL

        if not self.api_key:
            raise AIServiceError("DeepSeek API Key未配置，请在.env文件中设置DEEPSEEK_API_KEY")

        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.api_base
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_retryable_error),
        reraise=True
    )
    async def _chat_completion(self, messages, temperature: float):
        return await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
        )

    async def invoke(
        self,
        system_prompt: str,
        user_template: str,
        variables: Optional[Dict[str, object]] = None,
        temperature: float = 0.3,
    ) -> GenerationResult:
        """
        生成文本（带重试机制）

        Args:
            system_prompt: 系统提示（原样发送）
            user_template: 用户消息模板，使用 {name} 占位
            variables: 模板变量
            temperature: 温度参数

        Returns:
            GenerationResult
        """
        messages = build_messages(system_prompt, user_template, variables)
        try:
            response = await self._chat_completion(messages, temperature)
        except Exception as e:
            logger.error("AI调用失败", model=self.model, error=str(e), error_type=type(e).__name__)
            raise AIServiceError(f"AI服务调用失败: {e}") from e

        content = (response.choices[0].message.content or "").strip()
        total_tokens = response.usage.total_tokens if response.usage else 0
        logger.info("AI调用成功", model=self.model, tokens=total_tokens)
        return GenerationResult(text=content, model=self.model, total_tokens=total_tokens)

    async def stream(
        self,
        system_prompt: str,
        user_template: str,
        variables: Optional[Dict[str, object]] = None,
        temperature: float = 0.3,
    ) -> AsyncIterator[str]:
        """
        流式生成文本

        Yields:
            流式返回的文本块
        """
        messages = build_messages(system_prompt, user_template, variables)
        try:
            response_stream = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                stream=True,
            )
            async for chunk in response_stream:
                if chunk.choices:
                    delta = chunk.choices[0].delta
                    if delta and delta.content:
                        yield delta.content
        except Exception as e:
            logger.error("流式AI调用失败", model=self.model, error=str(e))
            raise AIServiceError(f"AI服务调用失败: {e}") from e


# 全局AI服务实例（延迟初始化）
_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """获取AI服务实例（单例模式）"""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
