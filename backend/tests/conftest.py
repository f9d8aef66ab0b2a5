"""Shared fixtures for briefing tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from src.onboarding.briefing_poller import PollerConfig

PENDING_PAYLOAD: dict[str, Any] = {"enrichmentMeta": {"status": "in_progress"}}


class ScriptedProfileSource:
    """Profile source that replays scripted responses.

    Each scripted item is either a payload dict or an exception instance
    to raise. Once the script runs out, ``default`` is returned forever.
    """

    def __init__(
        self,
        responses: list[Any] | None = None,
        default: dict[str, Any] | None = None,
        reenrich_result: bool | BaseException = True,
    ) -> None:
        self._responses = list(responses or [])
        self._default = default if default is not None else PENDING_PAYLOAD
        self.calls = 0
        self.reenrich_calls = 0
        self.reenrich_result = reenrich_result

    async def fetch_profile_context(self) -> dict[str, Any]:
        self.calls += 1
        item = self._responses.pop(0) if self._responses else self._default
        if isinstance(item, BaseException):
            raise item
        return item

    async def trigger_reenrichment(self) -> bool:
        self.reenrich_calls += 1
        if isinstance(self.reenrich_result, BaseException):
            raise self.reenrich_result
        return self.reenrich_result


class BlockingProfileSource:
    """Profile source whose single response is held until released."""

    def __init__(self, payload: dict[str, Any]) -> None:
        self.payload = payload
        self.calls = 0
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_profile_context(self) -> dict[str, Any]:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.payload

    async def trigger_reenrichment(self) -> bool:
        return True


@pytest.fixture
def fast_config() -> PollerConfig:
    """Poller policy with no waiting between attempts."""
    return PollerConfig(
        initial_delay=0.0,
        poll_interval=0.0,
        max_attempts=90,
        timeline_interval=0.0,
        timeline_max_step=4,
    )


@pytest.fixture
def slow_config() -> PollerConfig:
    """Poller policy that never reaches its first attempt during a test."""
    return PollerConfig(
        initial_delay=60.0,
        poll_interval=60.0,
        max_attempts=90,
        timeline_interval=60.0,
        timeline_max_step=4,
    )


@pytest.fixture
def scripted_source() -> type[ScriptedProfileSource]:
    return ScriptedProfileSource


@pytest.fixture
def blocking_source() -> type[BlockingProfileSource]:
    return BlockingProfileSource
