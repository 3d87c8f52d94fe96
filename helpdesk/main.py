# helpdesk/main.py
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from helpdesk.core.config import Settings, get_settings
from helpdesk.core.database import Database
from helpdesk.core.errors import register_error_handlers
from helpdesk.core.logging import setup_logging
from helpdesk.core.middleware import (
    BodySizeLimitMiddleware,
    RateLimiter,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
)
from helpdesk.ticket.routes import legacy_router
from helpdesk.ticket.routes import router as ticket_router
from helpdesk.ticket.routes import stats_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    database: Database = app.state.database
    logger.info("Starting {} ({})", settings.APP_NAME, settings.ENVIRONMENT)

    await run_in_threadpool(database.wait_until_ready)
    await run_in_threadpool(database.create_all)
    app.state.started_at = time.monotonic()

    yield

    logger.info("Shutting down {}", settings.APP_NAME)
    database.dispose()


system_router = APIRouter(tags=["Health"])


@system_router.get("/health")
def health(request: Request):
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        request.app.state.database.ping()
    except SQLAlchemyError as exc:
        logger.error("Health check failed: {}", exc)
        return JSONResponse(
            status_code=503,
            content={
                "status": "ERROR",
                "timestamp": timestamp,
                "database": "Disconnected",
                "error": "Database connection failed",
            },
        )
    started_at = getattr(request.app.state, "started_at", None)
    return {
        "status": "OK",
        "timestamp": timestamp,
        "database": "Connected",
        "uptime": round(time.monotonic() - started_at, 3) if started_at is not None else 0.0,
    }


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESC,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database or Database(settings)

    register_error_handlers(app)

    # Starlette runs the last added middleware first
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.MAX_BODY_BYTES)
    if settings.RATE_LIMIT_ENABLED:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=RateLimiter(settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS),
            path_prefix=settings.API_PREFIX,
        )
    app.add_middleware(RequestLoggingMiddleware)

    if settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=".*",  # reflect any origin during development
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Routers
    app.include_router(ticket_router, prefix=settings.API_PREFIX)
    app.include_router(stats_router, prefix=settings.API_PREFIX)
    app.include_router(system_router, prefix=settings.API_PREFIX)
    app.include_router(legacy_router, prefix=settings.API_PREFIX)

    return app


app = create_app()
