"""Pydantic models for the post-registration briefing state machine."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class BriefingStatus(str, Enum):
    """Lifecycle of the briefing record itself (not the transport)."""

    POLLING = "polling"
    READY = "ready"
    TIMEOUT = "timeout"


class StatusBucket(str, Enum):
    """Partition of the open server status vocabulary."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    UNKNOWN = "unknown"


class EnrichmentVerdict(str, Enum):
    """Classifier outcome for one profile payload."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class PollerState(str, Enum):
    """States of the briefing poller."""

    IDLE = "idle"
    POLLING = "polling"
    READY = "ready"
    TIMED_OUT = "timed_out"


class OnboardingPhase(str, Enum):
    """Coarse onboarding phase shown by the presentation layer."""

    SIGNUP = "signup"
    BRIEFING = "briefing"
    COMPLETE = "complete"


class BriefingOutcome(str, Enum):
    """How the latest session ended, if it has."""

    PENDING = "pending"
    ENRICHED = "enriched"
    SERVER_FAILED = "server_failed"
    GAVE_UP = "gave_up"
    CANCELLED = "cancelled"


class BriefingEntryPoint(str, Enum):
    """Where the briefing was started from."""

    REGISTRATION = "registration"
    FIRST_VISIT = "first_visit"


class ObjectionResponse(BaseModel):
    """A likely objection and a suggested response."""

    objection: str
    response: str = ""


class BriefingRecord(BaseModel):
    """Accumulating company intelligence shown to a newly registered user."""

    status: BriefingStatus = BriefingStatus.POLLING
    enrichment_status: str = "unknown"
    quality_score: float = 0.0
    company_snapshot: str = ""
    target_audience: list[str] = Field(default_factory=list)
    target_audience_segments: list[str] = Field(default_factory=list)
    call_angles: list[str] = Field(default_factory=list)
    objections: list[ObjectionResponse] = Field(default_factory=list)
    competitors: list[str] = Field(default_factory=list)
    unique_selling_points: list[str] = Field(default_factory=list)
    decision_makers: list[str] = Field(default_factory=list)
    next_actions: list[str] = Field(default_factory=list)
    confidence: str | None = None  # low, medium, high
    error_code: str | None = None
    server_attempts: int | None = None
    last_updated: str | None = None


@dataclass
class PollSession:
    """Ephemeral state for one run of the poll loop."""

    max_attempts: int
    entry_point: BriefingEntryPoint = BriefingEntryPoint.REGISTRATION
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempt_count: int = 0
    cancelled: bool = False
    timeline_step: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def exhausted(self) -> bool:
        """True once the attempt ceiling has been reached."""
        return self.attempt_count >= self.max_attempts


class BriefingSnapshot(BaseModel):
    """Read-only view handed to the presentation layer."""

    record: BriefingRecord | None = None
    onboarding_phase: OnboardingPhase
    outcome: BriefingOutcome
    poller_state: PollerState
    timeline_step: int = 0
    attempt_count: int = 0
    max_attempts: int
    session_id: str | None = None
    entry_point: BriefingEntryPoint | None = None
