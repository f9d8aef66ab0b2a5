"""FastAPI dependencies for session identity and shared services."""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.core.config import settings
from src.onboarding.briefing_manager import BriefingManager

logger = logging.getLogger(__name__)


async def get_session_token(request: Request) -> str:
    """Extract the upstream session cookie.

    The cookie is forwarded to the product API as-is; validating it is
    the product API's job.

    Raises:
        HTTPException: 401 if the cookie is missing.
    """
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        logger.warning("AUTH: No session cookie provided in request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return token


def get_briefing_manager() -> BriefingManager:
    """Process-wide briefing manager."""
    return BriefingManager.get_instance()


SessionToken = Annotated[str, Depends(get_session_token)]
Manager = Annotated[BriefingManager, Depends(get_briefing_manager)]
