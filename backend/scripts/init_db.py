"""
数据库初始化脚本
用于在容器启动后创建表结构（可重复执行）
"""
import asyncio
import os
import sys
from pathlib import Path

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.core.config import settings
from app.core.database import engine, init_db
from app.core.logging import setup_logging
import structlog

logger = structlog.get_logger()


async def main():
    """创建表结构和存储目录"""
    setup_logging()
    try:
        logger.info("开始初始化数据库...", database_url=settings.DATABASE_URL.split("@")[-1])
        await init_db()

        for directory in (settings.get_documents_dir(), settings.get_podcasts_dir()):
            os.makedirs(directory, exist_ok=True)
        logger.info("存储目录已就绪", storage_dir=settings.STORAGE_DIR)
    except Exception as e:
        logger.error("数据库初始化失败", error=str(e))
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
