"""Poll loop that watches a company enrichment job after registration.

State machine::

    IDLE ──start()──▶ POLLING ──terminal verdict──▶ READY
                         │
                         └──attempts exhausted──▶ TIMED_OUT

    READY / TIMED_OUT ──start() (retry)──▶ POLLING
    any state ──cancel()──▶ IDLE

One poll task per session issues requests strictly one after another, so
responses are processed in issue order. A second task advances the
cosmetic timeline step on its own cadence. ``cancel()`` marks the session
cancelled and cancels both tasks; the cancelled flag is re-checked after
every await so a late response can never touch a newer session's record.
Listeners get one final snapshot when a live session is cancelled, so
streams can close.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from src.core.config import Settings, settings
from src.core.exceptions import EnrichmentFetchError
from src.core.resilience import backoff_delay
from src.onboarding import profile_merger, status_classifier
from src.onboarding.models import (
    BriefingEntryPoint,
    BriefingRecord,
    BriefingSnapshot,
    BriefingStatus,
    EnrichmentVerdict,
    PollerState,
    PollSession,
)
from src.onboarding.phase_controller import PhaseController

logger = logging.getLogger(__name__)

UpdateListener = Callable[[BriefingSnapshot], Awaitable[None]]


class ProfileSource(Protocol):
    """Anything that can fetch one profile-context payload."""

    async def fetch_profile_context(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class PollerConfig:
    """Timing policy for the poll loop.

    The timeout is a ceiling on attempts, not on wall-clock time; the
    effective budget is ``timeout_budget_seconds``.
    """

    initial_delay: float = 2.0
    poll_interval: float = 2.5
    max_attempts: int = 90
    timeline_interval: float = 3.0
    timeline_max_step: int = 4
    backoff_factor: float = 1.0
    max_poll_interval: float = 30.0

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "PollerConfig":
        """Build the policy from application settings."""
        config = config or settings
        return cls(
            initial_delay=config.BRIEFING_INITIAL_DELAY_SECONDS,
            poll_interval=config.BRIEFING_POLL_INTERVAL_SECONDS,
            max_attempts=config.BRIEFING_MAX_ATTEMPTS,
            timeline_interval=config.BRIEFING_TIMELINE_INTERVAL_SECONDS,
            timeline_max_step=config.BRIEFING_TIMELINE_MAX_STEP,
            backoff_factor=config.BRIEFING_BACKOFF_FACTOR,
            max_poll_interval=config.BRIEFING_MAX_POLL_INTERVAL_SECONDS,
        )

    def delay_after(self, attempt: int) -> float:
        """Delay between attempt ``attempt`` and the next one."""
        return backoff_delay(
            attempt,
            self.poll_interval,
            factor=self.backoff_factor,
            max_delay=self.max_poll_interval,
        )

    @property
    def timeout_budget_seconds(self) -> float:
        """Wall-clock time spent waiting before the poller gives up."""
        return self.initial_delay + sum(
            self.delay_after(attempt) for attempt in range(1, self.max_attempts)
        )


class BriefingPoller:
    """Owns one briefing record and the poll session that fills it.

    Not thread-safe: all methods must be called from the event loop the
    poller's tasks run on.
    """

    def __init__(
        self,
        client: ProfileSource,
        config: PollerConfig | None = None,
        *,
        record: BriefingRecord | None = None,
        on_update: UpdateListener | None = None,
    ) -> None:
        """Initialize the poller in the IDLE state.

        Args:
            client: Source of profile-context payloads.
            config: Timing policy; defaults to application settings.
            record: Existing record to continue from, if any.
            on_update: Async listener called with a snapshot on every change.
        """
        self._client = client
        self.config = config or PollerConfig.from_settings()
        self._record = record
        self._on_update = on_update
        self._phase = PhaseController(timeline_max_step=self.config.timeline_max_step)
        self._state = PollerState.IDLE
        self._session: PollSession | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._timeline_task: asyncio.Task[None] | None = None

    # -- Read-only views ------------------------------------------------------

    @property
    def state(self) -> PollerState:
        """Current poller state."""
        return self._state

    @property
    def record(self) -> BriefingRecord | None:
        """Current briefing record (None until the first start)."""
        return self._record

    @property
    def session(self) -> PollSession | None:
        """Current or most recently resolved session."""
        return self._session

    @property
    def attempt_count(self) -> int:
        return self._session.attempt_count if self._session else 0

    @property
    def timeline_step(self) -> int:
        return self._phase.timeline_step(self._session)

    def snapshot(self) -> BriefingSnapshot:
        """Read-only projection for the presentation layer."""
        return self._phase.snapshot(
            self._state, self._record, self._session, self.config.max_attempts
        )

    # -- Lifecycle ------------------------------------------------------------

    def start(
        self,
        *,
        enrichment_status: str = "in_progress",
        entry_point: BriefingEntryPoint = BriefingEntryPoint.REGISTRATION,
    ) -> PollSession:
        """Begin a new poll session, superseding any live one.

        Must be called from a running event loop. Record fields are kept;
        only ``status`` and ``enrichment_status`` are reset.

        Args:
            enrichment_status: Status shown until the first round-trip lands.
            entry_point: Where the briefing was started from.

        Returns:
            The new session.
        """
        self.cancel(notify=False)

        base = self._record or BriefingRecord()
        self._record = base.model_copy(
            update={"status": BriefingStatus.POLLING, "enrichment_status": enrichment_status}
        )
        session = PollSession(max_attempts=self.config.max_attempts, entry_point=entry_point)
        self._session = session
        self._state = PollerState.POLLING

        self._poll_task = asyncio.create_task(
            self._poll(session), name=f"briefing-poll-{session.session_id}"
        )
        self._timeline_task = asyncio.create_task(
            self._advance_timeline(session), name=f"briefing-timeline-{session.session_id}"
        )
        logger.info(
            "Briefing session %s started (entry_point=%s, max_attempts=%d)",
            session.session_id,
            entry_point.value,
            session.max_attempts,
        )
        self._schedule_notify(session)
        return session

    def cancel(self, *, notify: bool = True) -> None:
        """Stop the current session without touching the record.

        Safe to call in any state and any number of times. Stopping a live
        session sends listeners one last snapshot (``outcome=cancelled``)
        unless ``notify`` is False.
        """
        session = self._session
        stopped: PollSession | None = None
        if session is not None and not session.cancelled:
            session.cancelled = True
            if self._state is PollerState.POLLING:
                stopped = session
                logger.info(
                    "Briefing session %s cancelled after %d attempts",
                    session.session_id,
                    session.attempt_count,
                )
        for task in (self._poll_task, self._timeline_task):
            if task is not None and not task.done():
                task.cancel()
        self._poll_task = None
        self._timeline_task = None
        self._state = PollerState.IDLE
        if stopped is not None and notify:
            self._schedule_delivery(self.snapshot())

    async def wait(self) -> PollerState:
        """Wait for the current poll task to finish and return the final state."""
        task = self._poll_task
        if task is not None:
            await asyncio.wait({task})
        return self._state

    async def __aenter__(self) -> "BriefingPoller":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        self.cancel()

    # -- Poll loop ------------------------------------------------------------

    async def _poll(self, session: PollSession) -> None:
        delay = self.config.initial_delay
        while True:
            await asyncio.sleep(delay)
            if session.cancelled:
                return

            payload: dict[str, Any] | None = None
            try:
                payload = await self._client.fetch_profile_context()
            except EnrichmentFetchError as e:
                logger.info(
                    "Briefing session %s attempt %d soft failure: %s",
                    session.session_id,
                    session.attempt_count + 1,
                    e.reason,
                )
            except Exception:
                logger.exception(
                    "Briefing session %s attempt %d failed unexpectedly",
                    session.session_id,
                    session.attempt_count + 1,
                )

            session.attempt_count += 1
            if session.cancelled:
                return

            verdict = EnrichmentVerdict.PENDING
            if payload is not None:
                try:
                    record = profile_merger.merge(self._require_record(), payload)
                    payload_verdict = status_classifier.classify(payload)
                except Exception:
                    # Keep the previous record; the attempt still counts
                    logger.exception(
                        "Briefing session %s could not apply payload from attempt %d",
                        session.session_id,
                        session.attempt_count,
                    )
                else:
                    self._record = record
                    verdict = payload_verdict

            if verdict is not EnrichmentVerdict.PENDING:
                await self._resolve(session, PollerState.READY, verdict)
                return
            if session.exhausted:
                await self._resolve(session, PollerState.TIMED_OUT, verdict)
                return

            await self._notify(session)
            delay = self.config.delay_after(session.attempt_count)

    async def _resolve(
        self, session: PollSession, state: PollerState, verdict: EnrichmentVerdict
    ) -> None:
        record = self._require_record()
        update: dict[str, Any] = {
            "status": BriefingStatus.TIMEOUT
            if state is PollerState.TIMED_OUT
            else BriefingStatus.READY
        }
        if verdict is EnrichmentVerdict.READY and record.enrichment_status in (
            "in_progress",
            "retrying",
        ):
            # profileEnriched=true without a status string
            update["enrichment_status"] = "complete"
        self._record = record.model_copy(update=update)
        self._state = state

        if self._timeline_task is not None and not self._timeline_task.done():
            self._timeline_task.cancel()
        self._timeline_task = None

        logger.info(
            "Briefing session %s resolved as %s after %d attempts (enrichment_status=%s)",
            session.session_id,
            state.value,
            session.attempt_count,
            self._record.enrichment_status,
        )
        await self._notify(session)

    async def _advance_timeline(self, session: PollSession) -> None:
        while session.timeline_step < self.config.timeline_max_step:
            await asyncio.sleep(self.config.timeline_interval)
            if session.cancelled:
                return
            session.timeline_step += 1
            await self._notify(session)

    def _require_record(self) -> BriefingRecord:
        if self._record is None:
            raise RuntimeError("BriefingPoller has no record; call start() first")
        return self._record

    # -- Listener fan-out -----------------------------------------------------

    def _schedule_notify(self, session: PollSession) -> None:
        if self._on_update is None:
            return
        task = asyncio.get_running_loop().create_task(self._notify(session))
        task.add_done_callback(_log_task_failure)

    def _schedule_delivery(self, snapshot: BriefingSnapshot) -> None:
        if self._on_update is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; final snapshot for %s not sent", snapshot.session_id)
            return
        task = loop.create_task(self._deliver(snapshot))
        task.add_done_callback(_log_task_failure)

    async def _notify(self, session: PollSession) -> None:
        if self._on_update is None or session.cancelled:
            return
        await self._deliver(self.snapshot())

    async def _deliver(self, snapshot: BriefingSnapshot) -> None:
        if self._on_update is None:
            return
        try:
            await self._on_update(snapshot)
        except Exception:
            logger.exception("Briefing update listener failed for session %s", snapshot.session_id)


def _log_task_failure(task: "asyncio.Task[None]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Briefing notification task failed", exc_info=task.exception())
