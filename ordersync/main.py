from typing import Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
from datetime import datetime, timezone
from ordersync.config import settings
from ordersync.database import RedisClient, check_all_databases, create_tables, shutdown_databases
from ordersync.errors import OrderSyncError
from ordersync.api.middleware import RateLimitMiddleware, RequestLoggingMiddleware, TimeoutMiddleware
from ordersync.api.routes import integrations, pedidos
from ordersync.services.aggregator_cache import AggregatorCache
from ordersync.services.scheduler_service import SchedulerService
from ordersync.services.sync_service import OrderSyncService, get_default_sync_service
from ordersync.services.token_provider import OAuthConnector
from ordersync.utils.logger import get_loggers
logger = get_loggers("Main")


async def order_sync_error_handler(request: Request, exc: OrderSyncError):
    logger.warning(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    detail = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": str(err.get("msg"))}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={
        "ok": False,
        "error": "Invalid request body",
        "code": "validation_error",
        "retryable": False,
        "detail": detail,
    })


def create_application(sync_service: Optional[OrderSyncService] = None,
                       aggregator_cache: Optional[AggregatorCache] = None,
                       oauth_connector: Optional[OAuthConnector] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None
    )
    sync_service = sync_service or get_default_sync_service()
    app.state.sync_service = sync_service
    app.state.aggregator_cache = aggregator_cache or AggregatorCache(sync_service.aggregate_counts)
    app.state.oauth_connector = oauth_connector or OAuthConnector(
        sync_service.token_provider.vault, sync_service.store)
    app.state.scheduler = None

    app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
    app.add_middleware(
        RateLimitMiddleware,
        redis_client=RedisClient.get_client(),
        requests_per_minute=settings.RATE_LIMIT_PER_MINUTE,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(OrderSyncError, order_sync_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(pedidos.router, prefix="/api/v1")
    app.include_router(integrations.router, prefix="/api/v1")

    @app.on_event("startup")
    async def startup_event():
        if settings.AUTO_CREATE_TABLES:
            await create_tables()
        if settings.ENABLE_BACKGROUND_SYNC:
            app.state.scheduler = SchedulerService()
            app.state.scheduler.start()
        logger.info(f"{settings.APP_NAME} v{settings.VERSION} started successfully!")

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown()
        await shutdown_databases()

    @app.get("/")
    async def root():
        return {
            "message": f"Welcome to {settings.APP_NAME}",
            "version": settings.VERSION,
            "status": "healthy"
        }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/health/dependencies")
    async def dependencies_health():
        checks = await check_all_databases()
        healthy = all(v is not False for v in checks.values())
        return JSONResponse(status_code=200 if healthy else 503,
                            content={"status": "healthy" if healthy else "degraded", **checks})

    return app


app = create_application()


if __name__ == "__main__":
    uvicorn.run(
        "ordersync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning"
    )
