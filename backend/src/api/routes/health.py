"""Health check API routes.

Provides:
- GET /health: liveness plus a count of live briefings (public)
"""

import logging
import time
from typing import Any

from fastapi import APIRouter, status

from src.api.deps import Manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_VERSION = "1.0.0"


@router.get("", status_code=status.HTTP_200_OK)
async def health_check(manager: Manager) -> dict[str, Any]:
    """Lightweight health check. No authentication required."""
    return {
        "status": "healthy",
        "version": _VERSION,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "briefings": len(manager),
    }
