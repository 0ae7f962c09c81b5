"""Tests for debounced validation scheduling."""

from __future__ import annotations

import asyncio

import pytest

from pikelens.daemon.scheduler import DocumentState, ValidationScheduler

URI = "file:///project/main.pike"


class Recorder:
    """Validation callback that records calls and can be held open."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int, str]] = []
        self.gate: asyncio.Event | None = None
        self.fail_next = False
        self.active = 0
        self.peak = 0

    async def __call__(self, uri: str, version: int, text: str) -> None:
        self.calls.append((uri, version, text))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_next:
                self.fail_next = False
                raise RuntimeError("analysis blew up")
        finally:
            self.active -= 1

    @property
    def versions(self) -> list[int]:
        return [version for _, version, _ in self.calls]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def scheduler(recorder: Recorder) -> ValidationScheduler:
    return ValidationScheduler(validate=recorder, debounce_ms=50)


class TestDebounce:
    """Edits are coalesced; validation rate is bounded by the debounce window."""

    @pytest.mark.asyncio
    async def test_given_burst_of_edits_when_settled_then_single_validation_of_latest(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        for version in range(1, 21):
            scheduler.on_change(URI, version, f"v{version}")

        await scheduler.wait_idle(URI)

        assert recorder.calls == [(URI, 20, "v20")]

    @pytest.mark.asyncio
    async def test_given_spaced_edits_when_settled_then_one_validation_each(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        for version in range(1, 6):
            scheduler.on_change(URI, version, f"v{version}")
            await scheduler.wait_idle(URI)

        assert recorder.versions == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_given_edit_when_scheduled_then_pending_until_timer_fires(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        scheduler.on_change(URI, 1, "v1")

        assert scheduler.state(URI) is DocumentState.PENDING
        assert recorder.calls == []
        await scheduler.wait_idle(URI)
        assert scheduler.state(URI) is DocumentState.IDLE

    def test_given_out_of_range_debounce_when_built_then_clamped(self, recorder: Recorder) -> None:
        assert ValidationScheduler(validate=recorder, debounce_ms=1).debounce_ms == 50
        assert ValidationScheduler(validate=recorder, debounce_ms=60_000).debounce_ms == 2000


class TestImmediateValidation:
    @pytest.mark.asyncio
    async def test_given_open_when_scheduled_then_running_without_debounce(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        scheduler.on_open(URI, 1, "v1")

        assert scheduler.state(URI) is DocumentState.RUNNING
        await scheduler.wait_idle(URI)
        assert recorder.versions == [1]

    @pytest.mark.asyncio
    async def test_given_pending_edit_when_saved_then_timer_replaced_by_immediate_run(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        scheduler.on_change(URI, 1, "v1")
        scheduler.on_save(URI)

        assert scheduler.state(URI) is DocumentState.RUNNING
        await scheduler.wait_idle(URI)
        await asyncio.sleep(0.08)
        assert recorder.versions == [1]

    @pytest.mark.asyncio
    async def test_given_unknown_document_when_saved_without_text_then_ignored(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        scheduler.on_save(URI)

        assert scheduler.state(URI) is DocumentState.IDLE
        assert scheduler.status.states == {}


class TestWhileRunning:
    """At most one run per document; newer input queues a follow-up."""

    @pytest.mark.asyncio
    async def test_given_edits_during_run_when_finished_then_one_debounced_rerun(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        recorder.gate = asyncio.Event()
        scheduler.on_open(URI, 1, "v1")
        await asyncio.sleep(0)

        scheduler.on_change(URI, 2, "v2")
        scheduler.on_change(URI, 3, "v3")
        assert scheduler.state(URI) is DocumentState.RUNNING
        recorder.gate.set()
        await scheduler.wait_idle(URI)

        assert recorder.versions == [1, 3]

    @pytest.mark.asyncio
    async def test_given_save_during_run_when_finished_then_immediate_rerun(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        recorder.gate = asyncio.Event()
        scheduler.on_open(URI, 1, "v1")
        await asyncio.sleep(0)

        scheduler.on_save(URI, 2, "v2")
        recorder.gate.set()
        await scheduler.wait_idle(URI)

        assert recorder.versions == [1, 2]

    @pytest.mark.asyncio
    async def test_given_two_documents_when_opened_then_validated_concurrently(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        recorder.gate = asyncio.Event()
        scheduler.on_open("file:///a.pike", 1, "a")
        scheduler.on_open("file:///b.pike", 1, "b")
        await asyncio.sleep(0)

        status = scheduler.status
        assert status.running == 2
        assert status.pending == 0

        recorder.gate.set()
        await scheduler.wait_all_idle()
        assert scheduler.status.runs_completed == 2

    @pytest.mark.asyncio
    async def test_given_failing_run_when_finished_then_later_edits_still_validate(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        recorder.fail_next = True
        scheduler.on_open(URI, 1, "v1")
        await scheduler.wait_idle(URI)

        scheduler.on_change(URI, 2, "v2")
        await scheduler.wait_idle(URI)

        assert recorder.versions == [1, 2]
        assert scheduler.state(URI) is DocumentState.IDLE


class TestCloseAndStop:
    @pytest.mark.asyncio
    async def test_given_pending_edit_when_closed_then_never_validated(
        self, recorder: Recorder
    ) -> None:
        closed: list[str] = []
        scheduler = ValidationScheduler(validate=recorder, debounce_ms=50, on_closed=closed.append)

        scheduler.on_change(URI, 1, "v1")
        scheduler.on_close(URI)
        await asyncio.sleep(0.1)

        assert recorder.calls == []
        assert closed == [URI]
        assert scheduler.state(URI) is DocumentState.IDLE

    @pytest.mark.asyncio
    async def test_given_run_in_flight_when_closed_then_no_rerun(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        recorder.gate = asyncio.Event()
        scheduler.on_open(URI, 1, "v1")
        await asyncio.sleep(0)
        scheduler.on_change(URI, 2, "v2")

        scheduler.on_close(URI)
        recorder.gate.set()
        await asyncio.sleep(0.1)

        assert recorder.versions == [1]
        assert scheduler.status.states == {}

    @pytest.mark.asyncio
    async def test_given_run_in_flight_when_closed_and_reopened_then_runs_one_after_another(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        recorder.gate = asyncio.Event()
        scheduler.on_open(URI, 7, "old")
        await asyncio.sleep(0)

        scheduler.on_close(URI)
        scheduler.on_open(URI, 1, "new")
        await asyncio.sleep(0)

        assert recorder.versions == [7]
        assert scheduler.state(URI) is DocumentState.RUNNING

        recorder.gate.set()
        await scheduler.wait_idle(URI)

        assert recorder.versions == [7, 1]
        assert recorder.peak == 1
        assert scheduler.state(URI) is DocumentState.IDLE

    @pytest.mark.asyncio
    async def test_given_closed_during_run_when_saved_without_text_then_ignored(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        recorder.gate = asyncio.Event()
        scheduler.on_open(URI, 1, "v1")
        await asyncio.sleep(0)

        scheduler.on_close(URI)
        scheduler.on_save(URI)
        recorder.gate.set()
        await asyncio.sleep(0.1)

        assert recorder.versions == [1]
        assert URI not in scheduler.status.states
        assert recorder.versions == [1]

    @pytest.mark.asyncio
    async def test_given_running_and_pending_when_stopped_then_all_cancelled(
        self, scheduler: ValidationScheduler, recorder: Recorder
    ) -> None:
        recorder.gate = asyncio.Event()
        scheduler.on_open("file:///a.pike", 1, "a")
        scheduler.on_change("file:///b.pike", 1, "b")
        await asyncio.sleep(0)

        await scheduler.stop()
        await asyncio.sleep(0.08)

        assert scheduler.status.states == {}
        assert recorder.versions == [1]
