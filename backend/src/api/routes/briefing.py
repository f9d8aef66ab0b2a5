"""API routes for the post-registration company briefing.

Provides:
- GET  /briefing: current briefing snapshot
- POST /briefing/start: start (or supersede) the poll session
- POST /briefing/retry: re-trigger enrichment and restart polling
- POST /briefing/cancel: stop polling (idempotent)
- GET  /briefing/events: SSE stream of snapshots until the briefing completes or is cancelled
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Response, status
from fastapi.responses import StreamingResponse

from src.api.deps import Manager, SessionToken
from src.onboarding.briefing_manager import FINAL_EVENT_TYPES, session_key
from src.onboarding.models import BriefingEntryPoint, BriefingSnapshot
from src.onboarding.phase_controller import is_final

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/briefing", tags=["briefing"])

HEARTBEAT_SECONDS = 30.0


@router.get("", response_model=BriefingSnapshot)
async def get_briefing(session_token: SessionToken, manager: Manager) -> BriefingSnapshot:
    """Current briefing record, onboarding phase and timeline step."""
    return manager.get_snapshot(session_token)


@router.post("/start", response_model=BriefingSnapshot, status_code=status.HTTP_202_ACCEPTED)
async def start_briefing(
    session_token: SessionToken,
    manager: Manager,
    entry_point: BriefingEntryPoint = BriefingEntryPoint.REGISTRATION,
) -> BriefingSnapshot:
    """Start polling the enrichment job for this session.

    A session that is already polling is cancelled and replaced.
    """
    snapshot = manager.start(session_token, entry_point)
    logger.info("Briefing started via API", extra={"entry_point": entry_point.value})
    return snapshot


@router.post("/retry", response_model=BriefingSnapshot, status_code=status.HTTP_202_ACCEPTED)
async def retry_briefing(session_token: SessionToken, manager: Manager) -> BriefingSnapshot:
    """Ask the server to re-run enrichment and restart polling."""
    return manager.retry(session_token)


@router.post("/cancel", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_briefing(session_token: SessionToken, manager: Manager) -> Response:
    """Stop polling. Safe to call repeatedly."""
    manager.cancel(session_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/events")
async def briefing_events(session_token: SessionToken, manager: Manager) -> StreamingResponse:
    """Stream briefing snapshots via SSE.

    Sends the current snapshot first, then one event per change. The
    stream ends once the briefing completes or is cancelled.
    """
    key = session_key(session_token)
    manager.get_snapshot(session_token)  # 404 before the stream opens
    event_bus = manager.event_bus

    async def event_stream():  # type: ignore[no-untyped-def]
        async with event_bus.subscription(key) as queue:
            current = manager.get_snapshot(session_token)
            yield f"data: {current.model_dump_json()}\n\n"
            if is_final(current):
                return
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                except TimeoutError:
                    yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
                    continue
                yield f"data: {json.dumps(event.data)}\n\n"
                if event.event_type in FINAL_EVENT_TYPES:
                    return

    return StreamingResponse(event_stream(), media_type="text/event-stream")
