"""Bucket store: FastAPI service with a background expiry sweeper."""

from __future__ import annotations

import asyncio

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bucketd import __version__
from bucketd.config import Settings, get_settings
from bucketd.deps import build_engine
from bucketd.errors import BucketError
from bucketd.routers import buckets, health
from bucketd.schemas.common import ErrorResponse

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()

NO_CACHE_HEADERS = {
    "Cache-Control": "private, max-age=0, no-cache, no-store",
    "Pragma": "no-cache",
}

INVALID_REQUEST = ErrorResponse(message="Invalid request")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="Bucket Store", version=__version__)
    app.state.settings = settings
    app.state.engine = build_engine(settings)
    app.state.sweeper_task = None

    @app.on_event("startup")
    async def startup():
        engine = app.state.engine
        engine.store.prepare_root(purge=settings.purge_storage_on_startup)
        if not settings.access_token:
            logger.warning(
                "access_control_disabled",
                hint="Set BUCKETD_ACCESS_TOKEN to protect private endpoints",
            )
        app.state.sweeper_task = asyncio.create_task(engine.sweeper.run())
        logger.info("bucket_store_ready", storage_root=str(engine.store.root))

    @app.on_event("shutdown")
    async def shutdown():
        task = app.state.sweeper_task
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        removed = await app.state.engine.registry.purge()
        logger.info("bucket_store_shutdown", buckets_removed=removed)

    @app.middleware("http")
    async def no_cache(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(NO_CACHE_HEADERS)
        return response

    @app.exception_handler(BucketError)
    async def handle_bucket_error(request: Request, exc: BucketError):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(code=exc.code, message=exc.message).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.info("invalid_request", path=request.url.path, errors=str(exc.errors()))
        return JSONResponse(status_code=400, content=INVALID_REQUEST.model_dump())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("internal_server_error", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(status_code=400, content=INVALID_REQUEST.model_dump())

    app.include_router(health.router)
    app.include_router(buckets.router)
    return app


app = create_app()
