"""User-requested retry of a company enrichment job."""

import asyncio
import logging
from typing import Protocol

from src.onboarding.briefing_poller import BriefingPoller
from src.onboarding.models import BriefingEntryPoint, PollSession

logger = logging.getLogger(__name__)

RETRYING_STATUS = "retrying"


class ReenrichmentTrigger(Protocol):
    """Anything that can ask the server to re-run enrichment."""

    async def trigger_reenrichment(self) -> bool: ...


class RetryCoordinator:
    """Fires the re-enrichment request and restarts the poller.

    The POST is fire-and-forget: its result is logged, never raised. The
    poll loop started right after it decides whether enrichment actually
    went anywhere.
    """

    def __init__(self, trigger: ReenrichmentTrigger, poller: BriefingPoller) -> None:
        self._trigger = trigger
        self._poller = poller
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def pending_triggers(self) -> int:
        """Number of re-enrichment requests still in flight."""
        return len(self._pending)

    def retry(self, entry_point: BriefingEntryPoint | None = None) -> PollSession:
        """Trigger re-enrichment and restart polling immediately.

        Must be called from a running event loop. The record keeps its
        fields; its status resets to polling with enrichment status
        ``retrying`` so the UI shows progress before the first round-trip.

        Args:
            entry_point: Entry point for the new session; defaults to the
                previous session's.

        Returns:
            The new poll session.
        """
        previous = self._poller.session
        if entry_point is None:
            entry_point = previous.entry_point if previous else BriefingEntryPoint.REGISTRATION

        task = asyncio.create_task(self._trigger.trigger_reenrichment(), name="briefing-reenrich")
        self._pending.add(task)
        task.add_done_callback(self._on_trigger_done)

        session = self._poller.start(enrichment_status=RETRYING_STATUS, entry_point=entry_point)
        logger.info("Briefing retry requested, new session %s", session.session_id)
        return session

    def cancel_pending(self) -> None:
        """Cancel re-enrichment requests that have not finished yet."""
        for task in list(self._pending):
            task.cancel()

    def _on_trigger_done(self, task: "asyncio.Task[bool]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Re-enrichment trigger raised %s", type(exc).__name__, exc_info=exc)
        elif not task.result():
            logger.info("Re-enrichment trigger was not accepted; polling continues")
