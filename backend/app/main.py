"""
ReadCast英语学习系统 - FastAPI应用入口
"""
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from app.core.config import settings
from app.core.database import init_db
from app.core.logging import setup_logging
from app.api.v1 import articles as articles_router
from app.api.v1 import readcast as readcast_router
from app.services.ai_service import AIServiceError
from app.utils.processing_exception import ErrorType, ReadcastException

# 配置日志
setup_logging()
logger = structlog.get_logger()

# 创建FastAPI应用
app = FastAPI(
    title=settings.APP_NAME,
    description="文章学习文档与英语学习播客生成服务",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(articles_router.router, prefix="/api/v1")
app.include_router(readcast_router.router, prefix="/api/v1")

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReadcastException)
async def readcast_exception_handler(request: Request, exc: ReadcastException):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "请求处理失败",
        path=request.url.path,
        error_type=exc.error_type.value,
        error=exc.error_message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(AIServiceError)
async def ai_service_exception_handler(request: Request, exc: AIServiceError):
    error = ReadcastException(ErrorType.GENERATION_FAILED, str(exc))
    logger.error("AI服务不可用", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    error = ReadcastException(
        ErrorType.INVALID_INPUT,
        "请求参数无效",
        error_details={"errors": errors},
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.on_event("startup")
async def startup_event():
    """应用启动事件"""
    logger.info("应用启动", version="1.0.0")

    for directory in (settings.get_documents_dir(), settings.get_podcasts_dir()):
        os.makedirs(directory, exist_ok=True)

    await init_db()


@app.on_event("shutdown")
async def shutdown_event():
    """应用关闭事件"""
    logger.info("应用关闭")


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": "ReadCast API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {"status": "healthy"}
