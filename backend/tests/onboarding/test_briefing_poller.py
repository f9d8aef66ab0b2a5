"""Tests for the briefing poll loop."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import pytest

from src.core.config import Settings
from src.core.exceptions import EnrichmentFetchError
from src.onboarding import profile_merger
from src.onboarding.briefing_poller import BriefingPoller, PollerConfig
from src.onboarding.models import (
    BriefingEntryPoint,
    BriefingOutcome,
    BriefingRecord,
    BriefingSnapshot,
    BriefingStatus,
    OnboardingPhase,
    PollerState,
)

READY_PAYLOAD: dict[str, Any] = {
    "profileEnriched": True,
    "enrichmentMeta": {"status": "complete", "qualityScore": 81},
    "aiProfile": {
        "companyDescription": "Acme builds widgets.",
        "callAngles": ["Angle A"],
    },
}


async def _until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _spin() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_spin(), timeout)


class TestPollerConfig:
    """Timing policy."""

    def test_default_budget(self) -> None:
        config = PollerConfig()
        assert config.timeout_budget_seconds == pytest.approx(224.5)

    def test_fixed_cadence_by_default(self) -> None:
        config = PollerConfig()
        assert [config.delay_after(n) for n in (1, 2, 50)] == [2.5, 2.5, 2.5]

    def test_backoff_is_bounded(self) -> None:
        config = PollerConfig(backoff_factor=2.0, max_poll_interval=30.0)
        assert [config.delay_after(n) for n in range(1, 7)] == [2.5, 5.0, 10.0, 20.0, 30.0, 30.0]

    def test_from_settings(self) -> None:
        config = PollerConfig.from_settings(
            Settings(BRIEFING_MAX_ATTEMPTS=10, BRIEFING_POLL_INTERVAL_SECONDS=1.0)
        )
        assert config.max_attempts == 10
        assert config.poll_interval == 1.0
        assert config.timeout_budget_seconds == pytest.approx(2.0 + 9 * 1.0)


class TestPollerLifecycle:
    """State transitions from start to a terminal state."""

    @pytest.mark.asyncio
    async def test_ready_after_three_rounds(self, fast_config, scripted_source) -> None:
        source = scripted_source(
            [
                {"enrichmentMeta": {"status": "in_progress"}},
                {
                    "aiProfile": {
                        "enrichmentMeta": {"status": "in_progress"},
                        "competitors": ["Globex"],
                    }
                },
                READY_PAYLOAD,
            ]
        )
        poller = BriefingPoller(source, fast_config)
        poller.start()

        assert await poller.wait() is PollerState.READY
        assert poller.attempt_count == 3
        assert source.calls == 3
        assert poller.record is not None
        assert poller.record.status is BriefingStatus.READY
        assert poller.record.enrichment_status == "complete"
        assert poller.record.company_snapshot == "Acme builds widgets."
        assert poller.record.competitors == ["Globex"]
        assert poller.record.quality_score == 81.0

        snapshot = poller.snapshot()
        assert snapshot.onboarding_phase is OnboardingPhase.COMPLETE
        assert snapshot.outcome is BriefingOutcome.ENRICHED

    @pytest.mark.asyncio
    async def test_times_out_after_exactly_max_attempts(self, fast_config, scripted_source) -> None:
        source = scripted_source()
        poller = BriefingPoller(source, fast_config)
        poller.start()

        assert await poller.wait() is PollerState.TIMED_OUT
        assert source.calls == 90
        assert poller.attempt_count == 90
        assert poller.record is not None
        assert poller.record.status is BriefingStatus.TIMEOUT

        snapshot = poller.snapshot()
        assert snapshot.outcome is BriefingOutcome.GAVE_UP
        assert snapshot.onboarding_phase is OnboardingPhase.COMPLETE

    @pytest.mark.asyncio
    async def test_fetch_failures_count_as_attempts(self, fast_config, scripted_source) -> None:
        source = scripted_source(
            [EnrichmentFetchError("http_status", status_code=500), READY_PAYLOAD]
        )
        poller = BriefingPoller(source, fast_config)
        poller.start()

        assert await poller.wait() is PollerState.READY
        assert poller.attempt_count == 2

    @pytest.mark.asyncio
    async def test_only_failures_still_time_out(self, scripted_source) -> None:
        config = PollerConfig(
            initial_delay=0.0, poll_interval=0.0, max_attempts=5, timeline_interval=0.0
        )
        source = scripted_source([EnrichmentFetchError("not_json")] * 5)
        poller = BriefingPoller(source, config)
        poller.start()

        assert await poller.wait() is PollerState.TIMED_OUT
        assert source.calls == 5

    @pytest.mark.asyncio
    async def test_oversized_quality_score_does_not_stop_polling(self, scripted_source) -> None:
        config = PollerConfig(
            initial_delay=0.0, poll_interval=0.0, max_attempts=5, timeline_interval=0.0
        )
        source = scripted_source(
            [{"enrichmentMeta": {"status": "in_progress", "qualityScore": 10**400}}]
        )
        poller = BriefingPoller(source, config)
        poller.start()

        assert await poller.wait() is PollerState.TIMED_OUT
        assert source.calls == 5
        assert poller.record is not None
        assert poller.record.quality_score == 0.0

    @pytest.mark.asyncio
    async def test_unexpected_source_error_is_a_counted_attempt(
        self, fast_config, scripted_source, caplog: pytest.LogCaptureFixture
    ) -> None:
        source = scripted_source([RuntimeError("socket reset"), READY_PAYLOAD])
        poller = BriefingPoller(source, fast_config)

        with caplog.at_level(logging.ERROR, logger="src.onboarding.briefing_poller"):
            poller.start()
            assert await poller.wait() is PollerState.READY

        assert poller.attempt_count == 2
        failures = [r for r in caplog.records if "failed unexpectedly" in r.getMessage()]
        assert len(failures) == 1
        assert failures[0].exc_info is not None

    @pytest.mark.asyncio
    async def test_payload_that_cannot_be_applied_keeps_record(
        self,
        fast_config,
        scripted_source,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        real_merge = profile_merger.merge
        calls = 0

        def flaky_merge(previous: BriefingRecord, payload: dict[str, Any]) -> BriefingRecord:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise TypeError("unexpected payload shape")
            return real_merge(previous, payload)

        monkeypatch.setattr(profile_merger, "merge", flaky_merge)
        source = scripted_source([READY_PAYLOAD, READY_PAYLOAD])
        poller = BriefingPoller(source, fast_config)

        with caplog.at_level(logging.ERROR, logger="src.onboarding.briefing_poller"):
            poller.start()
            assert await poller.wait() is PollerState.READY

        assert poller.attempt_count == 2
        assert poller.record is not None
        assert poller.record.company_snapshot == "Acme builds widgets."
        assert any("could not apply payload" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_server_failure_is_terminal(self, fast_config, scripted_source) -> None:
        source = scripted_source(
            [
                {"enrichmentMeta": {"status": "in_progress"}},
                {"enrichmentMeta": {"status": "failed", "errorCode": "provider_down"}},
            ]
        )
        poller = BriefingPoller(source, fast_config)
        poller.start()

        assert await poller.wait() is PollerState.READY
        assert poller.record is not None
        assert poller.record.status is BriefingStatus.READY
        assert poller.record.enrichment_status == "failed"
        assert poller.record.error_code == "provider_down"
        assert poller.snapshot().outcome is BriefingOutcome.SERVER_FAILED

    @pytest.mark.asyncio
    async def test_enriched_flag_without_status_reads_complete(
        self, fast_config, scripted_source
    ) -> None:
        source = scripted_source([{"profileEnriched": True}])
        poller = BriefingPoller(source, fast_config)
        poller.start()

        assert await poller.wait() is PollerState.READY
        assert poller.record is not None
        assert poller.record.enrichment_status == "complete"

    @pytest.mark.asyncio
    async def test_start_resets_status_and_keeps_fields(self, slow_config, scripted_source) -> None:
        record = BriefingRecord(
            status=BriefingStatus.TIMEOUT,
            enrichment_status="timeout",
            company_snapshot="Known",
            quality_score=50.0,
        )
        poller = BriefingPoller(scripted_source(), slow_config, record=record)
        session = poller.start(entry_point=BriefingEntryPoint.FIRST_VISIT)
        try:
            assert poller.state is PollerState.POLLING
            assert poller.record is not None
            assert poller.record.status is BriefingStatus.POLLING
            assert poller.record.enrichment_status == "in_progress"
            assert poller.record.company_snapshot == "Known"
            assert poller.record.quality_score == 50.0
            assert session.entry_point is BriefingEntryPoint.FIRST_VISIT
            assert poller.attempt_count == 0
            assert poller.snapshot().onboarding_phase is OnboardingPhase.BRIEFING
        finally:
            poller.cancel()

    def test_idle_snapshot_before_start(self, scripted_source) -> None:
        poller = BriefingPoller(scripted_source(), PollerConfig())
        snapshot = poller.snapshot()
        assert snapshot.record is None
        assert snapshot.onboarding_phase is OnboardingPhase.SIGNUP
        assert snapshot.poller_state is PollerState.IDLE
        assert snapshot.outcome is BriefingOutcome.PENDING


class TestCancellation:
    """Cancel, supersede and late responses."""

    @pytest.mark.asyncio
    async def test_cancel_mid_flight_discards_response(self, fast_config, blocking_source) -> None:
        source = blocking_source(READY_PAYLOAD)
        poller = BriefingPoller(source, fast_config)
        poller.start()
        before = poller.record

        await _until(source.started.is_set)
        poller.cancel()
        source.release.set()
        for _ in range(10):
            await asyncio.sleep(0)

        assert poller.state is PollerState.IDLE
        assert poller.record == before
        assert poller.record is not None
        assert poller.record.status is BriefingStatus.POLLING
        assert poller.snapshot().outcome is BriefingOutcome.CANCELLED

    @pytest.mark.asyncio
    async def test_late_response_after_cancel_flag_is_ignored(self, fast_config) -> None:
        class CancellingSource:
            def __init__(self) -> None:
                self.poller: BriefingPoller | None = None
                self.calls = 0

            async def fetch_profile_context(self) -> dict[str, Any]:
                self.calls += 1
                assert self.poller is not None
                self.poller.cancel()
                return READY_PAYLOAD

        source = CancellingSource()
        poller = BriefingPoller(source, fast_config)
        source.poller = poller
        poller.start()
        before = poller.record

        await _until(lambda: source.calls == 1)
        for _ in range(10):
            await asyncio.sleep(0)

        assert poller.state is PollerState.IDLE
        assert poller.record == before
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, slow_config, scripted_source) -> None:
        poller = BriefingPoller(scripted_source(), slow_config)
        poller.cancel()
        poller.start()
        poller.cancel()
        poller.cancel()

        assert poller.state is PollerState.IDLE
        assert await poller.wait() is PollerState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_before_first_attempt_makes_no_request(
        self, slow_config, scripted_source
    ) -> None:
        source = scripted_source()
        poller = BriefingPoller(source, slow_config)
        poller.start()
        await asyncio.sleep(0)
        poller.cancel()
        await asyncio.sleep(0)

        assert source.calls == 0

    @pytest.mark.asyncio
    async def test_new_session_supersedes_old(self, fast_config, blocking_source) -> None:
        source = blocking_source(READY_PAYLOAD)
        poller = BriefingPoller(source, fast_config)
        first = poller.start()
        await _until(source.started.is_set)

        second = poller.start()
        assert first.cancelled
        assert not second.cancelled
        assert poller.session is second

        source.release.set()
        assert await poller.wait() is PollerState.READY
        assert poller.attempt_count == 1
        assert first.attempt_count == 0

    @pytest.mark.asyncio
    async def test_context_manager_cancels(self, slow_config, scripted_source) -> None:
        async with BriefingPoller(scripted_source(), slow_config) as poller:
            session = poller.start()
            assert poller.state is PollerState.POLLING

        assert session.cancelled
        assert poller.state is PollerState.IDLE


class TestTimeline:
    """Cosmetic progress steps."""

    @pytest.mark.asyncio
    async def test_timeline_advances_to_max_and_stops(self, scripted_source) -> None:
        config = PollerConfig(initial_delay=60.0, poll_interval=60.0, timeline_interval=0.0)
        poller = BriefingPoller(scripted_source(), config)
        poller.start()
        try:
            await _until(lambda: poller.timeline_step == 4)
            for _ in range(10):
                await asyncio.sleep(0)
            assert poller.timeline_step == 4
            assert poller.state is PollerState.POLLING
        finally:
            poller.cancel()

    @pytest.mark.asyncio
    async def test_timeline_resets_on_new_session(self, scripted_source) -> None:
        config = PollerConfig(initial_delay=60.0, poll_interval=60.0, timeline_interval=0.0)
        poller = BriefingPoller(scripted_source(), config)
        poller.start()
        try:
            await _until(lambda: poller.timeline_step == 4)
            poller.start()
            assert poller.timeline_step == 0
        finally:
            poller.cancel()


class TestListener:
    """Snapshots pushed to the update listener."""

    @pytest.mark.asyncio
    async def test_listener_sees_terminal_snapshot(self, fast_config, scripted_source) -> None:
        seen: list[BriefingSnapshot] = []

        async def listener(snapshot: BriefingSnapshot) -> None:
            seen.append(snapshot)

        source = scripted_source([{"enrichmentMeta": {"status": "queued"}}, READY_PAYLOAD])
        poller = BriefingPoller(source, fast_config, on_update=listener)
        poller.start()
        await poller.wait()

        assert seen
        assert seen[-1].poller_state is PollerState.READY
        assert seen[-1].onboarding_phase is OnboardingPhase.COMPLETE
        assert any(s.poller_state is PollerState.POLLING for s in seen)

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_stop_polling(
        self, fast_config, scripted_source, caplog: pytest.LogCaptureFixture
    ) -> None:
        async def listener(_snapshot: BriefingSnapshot) -> None:
            raise RuntimeError("listener boom")

        source = scripted_source([{"enrichmentMeta": {"status": "queued"}}, READY_PAYLOAD])
        poller = BriefingPoller(source, fast_config, on_update=listener)
        with caplog.at_level(logging.ERROR, logger="src.onboarding.briefing_poller"):
            poller.start()
            assert await poller.wait() is PollerState.READY

        assert any("listener failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_no_updates_after_cancel(self, fast_config, blocking_source) -> None:
        seen: list[BriefingSnapshot] = []

        async def listener(snapshot: BriefingSnapshot) -> None:
            seen.append(snapshot)

        source = blocking_source(READY_PAYLOAD)
        poller = BriefingPoller(source, fast_config, on_update=listener)
        poller.start()
        await _until(source.started.is_set)
        poller.cancel()
        for _ in range(5):
            await asyncio.sleep(0)
        count = len(seen)

        source.release.set()
        for _ in range(10):
            await asyncio.sleep(0)

        assert len(seen) == count
        assert seen[-1].outcome is BriefingOutcome.CANCELLED
        assert seen[-1].poller_state is PollerState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_sends_one_final_snapshot(self, slow_config, scripted_source) -> None:
        seen: list[BriefingSnapshot] = []

        async def listener(snapshot: BriefingSnapshot) -> None:
            seen.append(snapshot)

        poller = BriefingPoller(scripted_source(), slow_config, on_update=listener)
        poller.start()
        await _until(lambda: len(seen) == 1)

        poller.cancel()
        poller.cancel()
        for _ in range(5):
            await asyncio.sleep(0)

        assert len(seen) == 2
        assert seen[-1].outcome is BriefingOutcome.CANCELLED
        assert seen[-1].onboarding_phase is OnboardingPhase.BRIEFING

    @pytest.mark.asyncio
    async def test_superseding_start_sends_no_cancelled_snapshot(
        self, slow_config, scripted_source
    ) -> None:
        seen: list[BriefingSnapshot] = []

        async def listener(snapshot: BriefingSnapshot) -> None:
            seen.append(snapshot)

        poller = BriefingPoller(scripted_source(), slow_config, on_update=listener)
        poller.start()
        second = poller.start()
        for _ in range(5):
            await asyncio.sleep(0)

        assert all(s.outcome is not BriefingOutcome.CANCELLED for s in seen)
        assert seen[-1].session_id == second.session_id
        poller.cancel(notify=False)
