"""
FastAPI 应用入口：支付网关接入与 Webhook 投递
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import payments as payments_routes
from api.routes import webhooks as webhooks_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.database import create_tables
from infrastructure.external.payments import close_gateways, get_gateway_selector
from infrastructure.external.webhooks import close_webhook_transport


configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DEBUG:
        # 开发环境直接建表
        await create_tables()
        logger.info("database_initialized")

    # 网关配置错误时拒绝启动
    gateway = get_gateway_selector().resolve()
    logger.info(
        "payment_gateway_ready",
        provider=gateway.provider,
        methods=len(gateway.list_available_methods()),
    )

    try:
        yield
    finally:
        await close_gateways()
        await close_webhook_transport()
        logger.info("application_shutdown")


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Payment gateway integration and signed webhook delivery",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # 后添加的在外层：CORS -> RequestID -> Logging
    application.add_middleware(LoggingMiddleware)
    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(application)
    application.include_router(payments_routes.router, prefix="/api/v1")
    application.include_router(webhooks_routes.router, prefix="/api/v1")
    return application


app = create_app()


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={"name": settings.PROJECT_NAME, "version": settings.VERSION, "docs": "/docs"},
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """存活检查，附带当前生效的支付渠道"""
    return success_response(
        data={"status": "healthy", "payment_provider": get_gateway_selector().active_provider()},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
