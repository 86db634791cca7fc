"""
FastAPI应用主入口
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.routes import admin_donations as admin_donation_routes
from api.routes import donations as donation_routes
from api.routes import payments as payments_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables
from infrastructure.external.cache import (
    init_redis_client,
    shutdown_redis_client,
)
from infrastructure.realtime.brokers import (
    InMemoryRealtimeBroker,
    RedisRealtimeBroker,
)
from infrastructure.realtime.event_publisher import RealtimeEventPublisher
from redis.exceptions import RedisError


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


def _select_broker(redis_ready: bool):
    """REALTIME_BROKER: auto -> redis(可用时) 否则 inmemory"""
    provider = (settings.REALTIME_BROKER or "auto").lower()
    if provider in {"redis", "auto"} and redis_ready:
        logger.info("realtime_broker_selected", provider="redis")
        return RedisRealtimeBroker()
    if provider == "redis":
        logger.warning("realtime_broker_redis_unavailable", message="falling back to in-memory broker")
    logger.info("realtime_broker_selected", provider="inmemory")
    return InMemoryRealtimeBroker()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)"
        )

    redis_ready = False
    if settings.redis.url:
        try:
            await init_redis_client()
            redis_ready = True
            logger.info("redis_initialized")
        except (RedisError, OSError) as exc:
            logger.error("redis_init_failed", error=str(exc))

    # 捐赠事件 -> 运营看板
    broker = _select_broker(redis_ready)
    app.state.realtime_broker = broker
    app.state.event_publisher = RealtimeEventPublisher(broker)

    yield

    await broker.aclose()
    if redis_ready:
        await shutdown_redis_client()
        logger.info("redis_shutdown")
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="捐赠支付对账服务：收银台会话、网关回调对账与项目累计金额",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(payments_routes.router, prefix="/api/v1")
app.include_router(donation_routes.router, prefix="/api/v1")
app.include_router(admin_donation_routes.router, prefix="/api/v1")


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
        message="Welcome"
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
