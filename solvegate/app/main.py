import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from solvegate.app.api import (
    admin_router,
    auth_router,
    history_router,
    solve_router,
    users_router,
)
from solvegate.app.core.cache import get_cache
from solvegate.app.core.config import settings
from solvegate.app.core.http_client import init_http_client
from solvegate.app.core.logging import get_logger, setup_logging
from solvegate.app.db import models  # noqa: F401 - import to register models
from solvegate.app.db.async_session import close_async_engine, get_async_engine
from solvegate.app.db.init_db import init_database, verify_connection
from solvegate.app.exceptions import GatewayException, StoreError
from solvegate.app.middleware.rate_limit import RateLimiter, RateLimitMiddleware, sweep_periodically
from solvegate.app.middleware.request_id import RequestIdMiddleware
from solvegate.app.middleware.request_size import RequestSizeLimitMiddleware
from solvegate.app.providers.factory import get_provider
from solvegate.app.services.completion_gateway import get_completion_gateway


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)
    rate_limiter = RateLimiter()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Initializes shared resources (HTTP connection pool, database schema,
        completion provider) on startup and cleans up on shutdown, waiting
        for in-flight charges before the engine is closed.
        """
        async with init_http_client() as http_client:
            if not await verify_connection():
                logger.error("Database connection failed!")
                raise RuntimeError("Cannot connect to database")

            await init_database()

            provider = get_provider(http_client)
            logger.info(
                "Application startup complete",
                extra={
                    "provider": provider.name,
                    "cache": get_cache().name,
                    "debug_mode": settings.debug,
                },
            )

            sweeper = asyncio.create_task(
                sweep_periodically(rate_limiter, settings.rate_limit_cleanup_interval_seconds)
            )

            yield {"http_client": http_client}

            sweeper.cancel()
            await get_completion_gateway().drain()

        await get_cache().close()
        await close_async_engine()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="SolveGate",
        description="Usage-metered homework solving gateway with per-user quotas and a daily cost budget",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(RateLimitMiddleware, limiter=rate_limiter)
    app.state.rate_limiter = rate_limiter

    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=settings.max_request_body_bytes)

    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )

    app.include_router(auth_router)
    app.include_router(solve_router)
    app.include_router(users_router)
    app.include_router(history_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> JSONResponse:
        """Health check with database and cache status."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}

        try:
            async with get_async_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            health_status["components"]["database"] = {"status": "ok"}
        except (SQLAlchemyError, OSError) as e:
            health_status["status"] = "degraded"
            health_status["components"]["database"] = {
                "status": "error",
                "error": str(e)[:100],  # Truncate for security
            }

        cache = get_cache()
        if cache.name == "disabled":
            health_status["components"]["cache"] = {"status": "disabled"}
        elif await cache.ping():
            health_status["components"]["cache"] = {"status": "ok", "type": cache.name}
        else:
            # The cache only backs best-effort counters
            health_status["components"]["cache"] = {"status": "error", "type": cache.name}

        status_code = 200 if health_status["status"] == "ok" else 503
        return JSONResponse(status_code=status_code, content=health_status)

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Map gateway exceptions to their status code and stable error body."""
        headers = None
        if exc.status_code == 401:
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=headers,
        )

    @app.exception_handler(OperationalError)
    async def store_outage_handler(request: Request, exc: OperationalError) -> JSONResponse:
        """Report an unreachable account store as a retryable 503."""
        logger.error(
            "Account store unavailable",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "error": str(exc.orig)[:200],
            },
        )
        error = StoreError()
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_response(),
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client. Debug mode includes the
        exception message.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
            },
        )

        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                },
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,
            },
        )

    return app


# Create the application instance
app = create_app()
