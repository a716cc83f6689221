"""
数据库连接配置（异步）
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
import structlog

from app.core.config import settings

logger = structlog.get_logger()

# SQLite不支持连接池参数
_engine_kwargs = {"echo": False, "pool_pre_ping": True}
if not settings.DATABASE_URL.startswith("sqlite"):
    _engine_kwargs.update(pool_size=5, max_overflow=10)

engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db():
    """获取数据库会话（FastAPI依赖）"""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db(bind=None):
    """
    初始化表结构（幂等，可在每次启动时执行）

    Args:
        bind: 异步引擎，默认使用全局engine
    """
    import app.models  # noqa: F401  注册所有模型

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("数据库表结构已就绪")
