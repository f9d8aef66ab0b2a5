"""Registry of briefing pollers, one per upstream browser session.

Both the registration flow and the first-visit view go through this
manager; they differ only in the ``entry_point`` they pass to ``start``.

Each briefing holds a client carrying the raw session cookie, so stopped
briefings are evicted once they have been untouched for the retention
window and nobody is streaming their events.
"""

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar

from src.core.config import settings
from src.core.event_bus import BriefingEvent, EventBus
from src.core.exceptions import BriefingNotFoundError, ValidationError
from src.onboarding.briefing_poller import BriefingPoller, PollerConfig
from src.onboarding.enrichment_client import EnrichmentClient
from src.onboarding.models import (
    BriefingEntryPoint,
    BriefingOutcome,
    BriefingSnapshot,
    OnboardingPhase,
    PollerState,
)
from src.onboarding.retry_coordinator import RetryCoordinator

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], EnrichmentClient]

# Event types after which a stream has nothing more to wait for
FINAL_EVENT_TYPES = frozenset({"briefing.complete", "briefing.cancelled"})


@dataclass
class _Briefing:
    poller: BriefingPoller
    coordinator: RetryCoordinator
    touched_at: float


def session_key(session_token: str) -> str:
    """Stable, log-safe key for a session cookie value."""
    if not session_token:
        raise ValidationError("Session token is required", field="session_token")
    return hashlib.sha256(session_token.encode("utf-8")).hexdigest()[:32]


def event_type_for(snapshot: BriefingSnapshot) -> str:
    """Event type under which a snapshot is published."""
    if snapshot.onboarding_phase is OnboardingPhase.COMPLETE:
        return "briefing.complete"
    if snapshot.outcome is BriefingOutcome.CANCELLED:
        return "briefing.cancelled"
    return "briefing.update"


class BriefingManager:
    """Creates, supersedes and tears down briefings per session.

    Must be used from a single event loop (the API server's).
    """

    _instance: ClassVar["BriefingManager | None"] = None

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        config: PollerConfig | None = None,
        event_bus: EventBus | None = None,
        *,
        retention_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_factory = client_factory or EnrichmentClient
        self._config = config
        self.event_bus = event_bus or EventBus.get_instance()
        self.retention_seconds = (
            settings.BRIEFING_RETENTION_SECONDS if retention_seconds is None else retention_seconds
        )
        self._clock = clock
        self._briefings: dict[str, _Briefing] = {}

    @classmethod
    def get_instance(cls) -> "BriefingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def __len__(self) -> int:
        return len(self._briefings)

    def start(
        self,
        session_token: str,
        entry_point: BriefingEntryPoint = BriefingEntryPoint.REGISTRATION,
    ) -> BriefingSnapshot:
        """Start polling for a session, superseding any session already running.

        Args:
            session_token: Upstream session cookie value.
            entry_point: Flow the briefing is started from.

        Returns:
            Snapshot right after the session started.
        """
        key = session_key(session_token)
        self.evict_expired()
        briefing = self._briefings.get(key)
        if briefing is None:
            briefing = self._create(key, session_token)
        briefing.touched_at = self._clock()
        briefing.poller.start(entry_point=entry_point)
        return briefing.poller.snapshot()

    def retry(self, session_token: str) -> BriefingSnapshot:
        """Re-trigger enrichment and restart polling for an existing briefing.

        Raises:
            BriefingNotFoundError: If the session has no briefing (never
                started, or evicted after the retention window).
        """
        briefing = self._get(session_key(session_token))
        briefing.coordinator.retry()
        return briefing.poller.snapshot()

    def cancel(self, session_token: str) -> None:
        """Cancel a session's polling. No-op if nothing is running."""
        key = session_key(session_token)
        self.evict_expired()
        briefing = self._briefings.get(key)
        if briefing is not None:
            briefing.touched_at = self._clock()
            briefing.poller.cancel()

    def get_snapshot(self, session_token: str) -> BriefingSnapshot:
        """Current snapshot for a session.

        Raises:
            BriefingNotFoundError: If the session has no briefing.
        """
        return self._get(session_key(session_token)).poller.snapshot()

    def evict_expired(self) -> int:
        """Drop stopped briefings idle for longer than the retention window.

        A briefing is kept while it polls or while a stream is subscribed
        to it. Returns the number of briefings dropped.
        """
        cutoff = self._clock() - self.retention_seconds
        expired = [
            key
            for key, briefing in self._briefings.items()
            if briefing.touched_at <= cutoff
            and briefing.poller.state is not PollerState.POLLING
            and self.event_bus.subscriber_count(key) == 0
        ]
        for key in expired:
            self._discard(key)
        if expired:
            logger.info("Evicted %d idle briefing(s)", len(expired))
        return len(expired)

    async def shutdown(self) -> None:
        """Cancel every poller and pending re-enrichment request."""
        count = len(self._briefings)
        for key in list(self._briefings):
            self._discard(key)
        if count:
            logger.info("Briefing manager shut down %d briefing(s)", count)

    def _get(self, key: str) -> _Briefing:
        self.evict_expired()
        briefing = self._briefings.get(key)
        if briefing is None:
            raise BriefingNotFoundError()
        briefing.touched_at = self._clock()
        return briefing

    def _discard(self, key: str) -> None:
        briefing = self._briefings.pop(key)
        briefing.poller.cancel(notify=False)
        briefing.coordinator.cancel_pending()

    def _create(self, key: str, session_token: str) -> _Briefing:
        client = self._client_factory(session_token)

        async def publish(snapshot: BriefingSnapshot) -> None:
            current = self._briefings.get(key)
            if current is not None:
                current.touched_at = self._clock()
            await self.event_bus.publish(
                BriefingEvent(
                    session_key=key,
                    event_type=event_type_for(snapshot),
                    data=snapshot.model_dump(mode="json"),
                )
            )

        poller = BriefingPoller(client, self._config, on_update=publish)
        briefing = _Briefing(
            poller=poller,
            coordinator=RetryCoordinator(client, poller),
            touched_at=self._clock(),
        )
        self._briefings[key] = briefing
        logger.info("Briefing created for session %s", key[:8])
        return briefing
