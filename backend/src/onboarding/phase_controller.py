"""Projection of poller state onto the onboarding phases shown in the UI.

Holds no state of its own: every value is derived from the poller's
current record and session.
"""

from src.onboarding.models import (
    BriefingEntryPoint,
    BriefingOutcome,
    BriefingRecord,
    BriefingSnapshot,
    BriefingStatus,
    OnboardingPhase,
    PollerState,
    PollSession,
)
from src.onboarding.status_classifier import FAILED_STATUSES


def derive_onboarding_phase(record: BriefingRecord | None) -> OnboardingPhase:
    """signup before any briefing exists, briefing while polling, complete after."""
    if record is None:
        return OnboardingPhase.SIGNUP
    if record.status is BriefingStatus.POLLING:
        return OnboardingPhase.BRIEFING
    return OnboardingPhase.COMPLETE


def derive_outcome(state: PollerState, record: BriefingRecord | None) -> BriefingOutcome:
    """Distinguish "server said no" from "we stopped asking".

    Both end as a retry prompt in the UI; ``record.status`` alone only
    separates them through the mirrored enrichment status string.
    """
    if state is PollerState.TIMED_OUT:
        return BriefingOutcome.GAVE_UP
    if state is PollerState.READY and record is not None:
        if record.enrichment_status in FAILED_STATUSES:
            return BriefingOutcome.SERVER_FAILED
        return BriefingOutcome.ENRICHED
    if state is PollerState.IDLE and record is not None:
        return BriefingOutcome.CANCELLED
    return BriefingOutcome.PENDING


def is_final(snapshot: BriefingSnapshot) -> bool:
    """Whether the briefing has stopped changing until the next start or retry."""
    return (
        snapshot.onboarding_phase is OnboardingPhase.COMPLETE
        or snapshot.outcome is BriefingOutcome.CANCELLED
    )


class PhaseController:
    """Builds read-only snapshots for the presentation layer."""

    def __init__(self, timeline_max_step: int = 4) -> None:
        self.timeline_max_step = timeline_max_step

    def timeline_step(self, session: PollSession | None) -> int:
        """Cosmetic progress step, clamped to the configured maximum."""
        if session is None:
            return 0
        return max(0, min(session.timeline_step, self.timeline_max_step))

    def snapshot(
        self,
        state: PollerState,
        record: BriefingRecord | None,
        session: PollSession | None,
        max_attempts: int,
    ) -> BriefingSnapshot:
        """Project poller state onto a BriefingSnapshot.

        Args:
            state: Current poller state.
            record: Current briefing record, None before the first start.
            session: Current or most recent poll session.
            max_attempts: Attempt ceiling configured on the poller.

        Returns:
            The snapshot, with copies of mutable data.
        """
        entry_point: BriefingEntryPoint | None = session.entry_point if session else None
        return BriefingSnapshot(
            record=record.model_copy(deep=True) if record is not None else None,
            onboarding_phase=derive_onboarding_phase(record),
            outcome=derive_outcome(state, record),
            poller_state=state,
            timeline_step=self.timeline_step(session),
            attempt_count=session.attempt_count if session else 0,
            max_attempts=session.max_attempts if session else max_attempts,
            session_id=session.session_id if session else None,
            entry_point=entry_point,
        )
