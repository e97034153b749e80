"""
互动与排序一致性引擎 - FastAPI应用主入口
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from engagement.core.config import settings
from engagement.core.exceptions import EngagementError
from engagement.db.database import init_db
from engagement.api import comments, follow, notifications, reactions, users, videos
from engagement.schemas.common import ResponseModel
from engagement.services.maintenance import run_maintenance_worker

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    worker = None
    if settings.MAINTENANCE_WORKER_ENABLED:
        worker = asyncio.create_task(run_maintenance_worker())
        logger.info("maintenance worker started (interval=%ss)", settings.MAINTENANCE_INTERVAL_SECONDS)
    try:
        yield
    finally:
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass


# 创建FastAPI应用
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="关注、点赞、观看、Feed排序与通知的一致性引擎",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(EngagementError)
async def engagement_error_handler(request: Request, exc: EngagementError):
    """引擎异常统一转换为标准响应"""
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ResponseModel(code=exc.status_code, message=exc.message).model_dump(),
    )


# 注册路由
app.include_router(follow.router)
app.include_router(reactions.router)
app.include_router(videos.router)
app.include_router(comments.router)
app.include_router(notifications.router)
app.include_router(users.router)


@app.get("/")
async def root():
    """根路径"""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "message": "互动引擎API正在运行"
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
