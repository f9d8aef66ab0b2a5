"""Per-session fan-out of briefing snapshots to SSE streams.

Every open stream owns a bounded asyncio.Queue registered under the
session key it watches. A stream that falls behind loses its oldest
events rather than the newest, so the final event of a briefing is
always delivered.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar

logger = logging.getLogger(__name__)

MAX_QUEUE_SIZE = 100

EventQueue = asyncio.Queue["BriefingEvent"]


@dataclass
class BriefingEvent:
    """One published briefing snapshot."""

    session_key: str
    event_type: str  # briefing.update, briefing.complete, briefing.cancelled
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class EventBus:
    """Routes briefing events to the streams watching each session key."""

    _instance: ClassVar["EventBus | None"] = None

    def __init__(self) -> None:
        self._streams: dict[str, set[EventQueue]] = {}

    @classmethod
    def get_instance(cls) -> "EventBus":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def subscriber_count(self, session_key: str) -> int:
        return len(self._streams.get(session_key, ()))

    def subscribe(self, session_key: str) -> EventQueue:
        """Register a new stream for ``session_key`` and return its queue."""
        queue: EventQueue = asyncio.Queue(maxsize=MAX_QUEUE_SIZE)
        self._streams.setdefault(session_key, set()).add(queue)
        return queue

    def unsubscribe(self, session_key: str, queue: EventQueue) -> None:
        """Remove a stream. Unknown keys and queues are ignored."""
        streams = self._streams.get(session_key)
        if streams is None:
            return
        streams.discard(queue)
        if not streams:
            self._streams.pop(session_key, None)

    @asynccontextmanager
    async def subscription(self, session_key: str) -> AsyncIterator[EventQueue]:
        """Subscribe for the duration of an ``async with`` block."""
        queue = self.subscribe(session_key)
        try:
            yield queue
        finally:
            self.unsubscribe(session_key, queue)

    async def publish(self, event: BriefingEvent) -> int:
        """Deliver ``event`` to every stream of its session.

        Returns:
            Number of streams the event was queued on.
        """
        streams = self._streams.get(event.session_key)
        if not streams:
            return 0
        for queue in streams:
            if queue.full():
                dropped = queue.get_nowait()
                logger.warning(
                    "Briefing stream for %s is behind; dropped %s",
                    event.session_key[:8],
                    dropped.event_type,
                )
            queue.put_nowait(event)
        return len(streams)
