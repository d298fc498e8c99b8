"""
FastAPI application for crown settlement.

Mounts the cron trigger, operator, public crown, payment profile, queue and
monitoring routers. Every request gets an ``X-Request-ID`` that is bound
into the structlog context for the duration of the request.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crown_settlement import __version__
from crown_settlement.config import get_settings
from crown_settlement.database.connection import close_db, init_db
from crown_settlement.monitoring.logging import setup_logging

from .routes import (
    admin_router,
    cron_router,
    monitoring_router,
    payment_router,
    public_router,
    queue_router,
)

setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()

# Health checks and scrapes would drown out the request log
UNLOGGED_PATHS = {"/health/live", "/health/ready", "/metrics"}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """Create tables on startup and dispose of the engine on shutdown."""
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
        settlement_timezone=settings.settlement_timezone,
        settlement_time=f"{settings.settlement_hour:02d}:{settings.settlement_minute:02d}",
    )
    if not settings.cron_secret:
        logger.warning("cron_secret_not_configured")

    try:
        await init_db()
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    try:
        await close_db()
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


app = FastAPI(
    title="Crown Settlement",
    description=(
        "Nightly crown auction settlement. Charges the highest eligible bidder "
        "off-session through Stripe and publishes the day's champion."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "X-Cron-Secret", "X-Request-ID"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """Bind a request id (inbound or generated) and log request timing."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    path = request.url.path
    quiet = path in UNLOGGED_PATHS
    start = time.perf_counter()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=path,
    )
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        if not quiet:
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=round(time.perf_counter() - start, 4),
            )
        return response
    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=round(time.perf_counter() - start, 4),
        )
        raise
    finally:
        structlog.contextvars.clear_contextvars()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": "Internal server error"},
    )


app.include_router(cron_router)
app.include_router(admin_router)
app.include_router(public_router)
app.include_router(payment_router)
app.include_router(queue_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Service information."""
    return {
        "service": settings.app_name,
        "version": __version__,
        "environment": settings.app_env,
        "test_mode": settings.is_test_mode,
        "crown": "/crown",
        "queue": "/queue/tier",
        "settle": "/cron/settle-crown",
        "health": "/health",
        "metrics": "/metrics",
    }


def main() -> None:
    """Run the API under uvicorn."""
    import uvicorn

    uvicorn.run(
        "crown_settlement.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
