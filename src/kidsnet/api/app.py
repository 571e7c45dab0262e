"""kidsnet FastAPI app: factory plus the lifespan that owns the access engine.

The lifespan is the only place the engine and its reconciliation loop are
started and stopped; routes reach the engine through app.state.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.responses import JSONResponse

from kidsnet.access.engine import AccessEngine
from kidsnet.api.error_handlers import register_error_handlers
from kidsnet.api.rate_limit import limiter
from kidsnet.api.routes import audit, health, home, metrics, schedules
from kidsnet.config import Settings
from kidsnet.db.session import create_async_engine_from_url, create_session_factory, init_db
from kidsnet.log_config import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the store, load subjects and saved state, and run the loop until shutdown.

    An unreadable subjects file or unreachable database fails startup.
    """
    settings: Settings = app.state.settings
    configure_logging(log_level=settings.log_level, log_format=settings.log_format)

    db_engine = create_async_engine_from_url(
        settings.database_url,
        pool_timeout=settings.db_pool_timeout,
        connect_timeout=settings.db_connect_timeout,
    )
    try:
        await init_db(db_engine)
        session_factory = create_session_factory(db_engine)
        access_engine = await AccessEngine.from_settings(settings, session_factory)
    except Exception:
        await db_engine.dispose()
        raise

    await access_engine.start()
    app.state.db_engine = db_engine
    app.state.session_factory = session_factory
    app.state.engine = access_engine

    await logger.ainfo(
        "startup_complete",
        subject_count=len(access_engine.subjects),
        timezone=settings.timezone,
        database_url=settings.database_url.split("://")[0] + "://***",
    )

    try:
        yield
    finally:
        await access_engine.close()
        await db_engine.dispose()
        await logger.ainfo("shutdown_complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the app. Settings come from the environment unless passed in (tests pass them)."""
    if settings is None:
        from kidsnet.config import get_settings
        settings = get_settings()

    app = FastAPI(
        title="kidsnet",
        description="Household network access control for pfSense and UniFi",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings

    # The household PWA is served from another origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Authorization", "Content-Type"],
    )

    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded"},
        )

    app.include_router(home.router)
    app.include_router(schedules.router)
    app.include_router(audit.router)
    app.include_router(metrics.router)
    app.include_router(health.router)

    register_error_handlers(app)

    return app
