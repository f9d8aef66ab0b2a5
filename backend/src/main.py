"""Briefing API - Main FastAPI Application."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routes import briefing, health
from src.core.config import settings
from src.core.exceptions import BriefingServiceError, sanitize_error


# Configure logging: JSON for production (stdout is captured), text for dev
def _configure_logging() -> None:
    """Set up logging based on LOG_FORMAT / LOG_LEVEL settings.

    json: Structured JSON via python-json-logger (for production).
    text: Human-readable format (for local development).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if settings.LOG_FORMAT == "json":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "service",
            },
            static_fields={"app": "briefing-api"},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)


_configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> Any:
    """Application lifespan handler for startup and shutdown events."""
    from src.onboarding.briefing_manager import BriefingManager
    from src.onboarding.briefing_poller import PollerConfig

    config = PollerConfig.from_settings()
    logger.info(
        "Starting briefing API (upstream=%s, max_attempts=%d, timeout budget %.0fs)",
        settings.ENRICHMENT_API_URL,
        config.max_attempts,
        config.timeout_budget_seconds,
    )
    yield
    logger.info("Shutting down briefing API...")
    await BriefingManager.get_instance().shutdown()


app = FastAPI(
    title="Briefing API",
    description="Post-registration company enrichment briefing",
    version="1.0.0",
    lifespan=lifespan,
)

CORS_ORIGINS = settings.cors_origins_list
logger.info("CORS allowed origins: %s", CORS_ORIGINS)

# Cookies must flow, so credentials are allowed for the configured origins only
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(briefing.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


@app.get("/", tags=["system"])
async def root() -> dict[str, str]:
    """Root endpoint returning API information."""
    return {
        "name": "Briefing API",
        "version": "1.0.0",
        "description": "Post-registration company enrichment briefing",
    }


@app.get("/health", tags=["system"])
async def root_health_check() -> dict[str, str]:
    """Root liveness probe. Returns 200 if the process is running."""
    return {"status": "healthy"}


@app.exception_handler(BriefingServiceError)
async def briefing_exception_handler(
    request: Request, exc: BriefingServiceError
) -> JSONResponse:
    """Handle briefing-service exceptions with a consistent JSON shape."""
    request_id = str(uuid.uuid4())
    logger.warning(
        "Briefing service exception occurred",
        extra={
            "code": exc.code,
            "status_code": exc.status_code,
            "request_id": request_id,
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "code": exc.code,
            "request_id": request_id,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions without leaking internals."""
    request_id = str(uuid.uuid4())
    logger.exception(
        "Unhandled exception occurred",
        exc_info=exc,
        extra={
            "request_id": request_id,
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": sanitize_error(exc),
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
        },
    )
