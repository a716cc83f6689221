"""
处理异常类
定义明确的错误类型、HTTP状态和用户提示
"""
from typing import Dict, Optional
from enum import Enum


class ErrorType(str, Enum):
    """错误类型枚举"""
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    GENERATION_FAILED = "generation_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    SPEECH_RATE_LIMITED = "speech_rate_limited"
    SPEECH_FAILED = "speech_failed"
    EXTRACTION_FAILED = "extraction_failed"


# 错误类型到HTTP状态码的映射
_STATUS_CODES = {
    ErrorType.INVALID_INPUT: 400,
    ErrorType.NOT_FOUND: 404,
    ErrorType.GENERATION_FAILED: 502,
    ErrorType.PERSISTENCE_FAILED: 500,
    ErrorType.SPEECH_RATE_LIMITED: 503,
    ErrorType.SPEECH_FAILED: 502,
    ErrorType.EXTRACTION_FAILED: 422,
}


class ReadcastException(Exception):
    """业务异常类"""

    def __init__(
        self,
        error_type: ErrorType,
        error_message: str,
        error_details: Optional[Dict] = None,
        hint: Optional[str] = None
    ):
        """
        初始化业务异常

        Args:
            error_type: 错误类型
            error_message: 简短的错误消息
            error_details: 错误详情
            hint: 用户可执行的补救建议，为None时使用默认建议
        """
        super().__init__(error_message)
        self.error_type = error_type
        self.error_message = error_message
        self.error_details = error_details or {}
        self.hint = hint if hint is not None else UserHintMapper.get_hint(error_type)

    @property
    def status_code(self) -> int:
        return _STATUS_CODES.get(self.error_type, 500)

    def to_dict(self) -> Dict:
        """转换为响应体"""
        payload = {
            "error": self.error_message,
            "errorType": self.error_type.value,
        }
        if self.hint:
            payload["hint"] = self.hint
        if self.error_details:
            payload["details"] = self.error_details
        return payload


class UserHintMapper:
    """用户补救建议映射器"""

    _HINTS = {
        ErrorType.GENERATION_FAILED: "AI服务暂时不可用，请稍后重试",
        ErrorType.SPEECH_RATE_LIMITED: "语音服务请求过于频繁，请稍等片刻后重试",
        ErrorType.SPEECH_FAILED: "语音合成失败，请稍后重试或缩短脚本内容",
        ErrorType.EXTRACTION_FAILED: "请尝试直接粘贴文章内容，或检查URL是否正确",
        ErrorType.PERSISTENCE_FAILED: "文档已生成但保存失败，请检查存储空间后重试",
    }

    @staticmethod
    def get_hint(error_type: ErrorType) -> Optional[str]:
        """
        根据错误类型获取默认补救建议

        输入错误和资源不存在没有通用建议，返回None
        """
        return UserHintMapper._HINTS.get(error_type)


def not_found(message: str, **details) -> ReadcastException:
    """构造资源不存在异常（访问他人资源同样返回该异常）"""
    return ReadcastException(ErrorType.NOT_FOUND, message, error_details=details or None)


def invalid_input(message: str, **details) -> ReadcastException:
    """构造输入校验异常"""
    return ReadcastException(ErrorType.INVALID_INPUT, message, error_details=details or None)
