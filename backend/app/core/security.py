"""
请求认证
Bearer token 到用户ID的解析，token格式对业务层不透明
"""
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import structlog

from app.core.config import settings

logger = structlog.get_logger()

# token -> userId，返回None表示无效
TokenResolver = Callable[[str], Optional[str]]

_bearer_scheme = HTTPBearer(auto_error=False)


def settings_token_resolver(token: str) -> Optional[str]:
    """从 AUTH_TOKENS 配置中解析用户ID"""
    return settings.get_auth_tokens().get(token)


_token_resolver: TokenResolver = settings_token_resolver


def set_token_resolver(resolver: TokenResolver) -> None:
    """替换token解析策略（例如接入外部认证服务）"""
    global _token_resolver
    _token_resolver = resolver


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> str:
    """获取当前请求的用户ID（FastAPI依赖）"""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="未提供认证信息",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = _token_resolver(credentials.credentials)
    if not user_id:
        logger.warning("无效的认证token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="认证信息无效",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
