"""Debounced validation scheduling.

Per document:

    IDLE --edit--> PENDING --timer--> RUNNING --done--> IDLE
                     ^  |edit resets       |edit: rerun after a fresh timer
                     +--+                  |open/save: rerun immediately

Open and save skip the debounce. At most one validation per document is
in flight; different documents validate concurrently.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from pikelens.config.constants import DEBOUNCE_MS_DEFAULT, DEBOUNCE_MS_MAX, DEBOUNCE_MS_MIN

logger = structlog.get_logger()

ValidateFn = Callable[[str, int, str], Awaitable[object]]


class DocumentState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"


@dataclass
class _Slot:
    version: int = 0
    text: str = ""
    state: DocumentState = DocumentState.IDLE
    timer: asyncio.Task[None] | None = None
    run: asyncio.Task[None] | None = None
    dirty: bool = False
    rerun_now: bool = False
    closed: bool = False
    idle: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self) -> None:
        self.idle.set()


@dataclass
class SchedulerStatus:
    """Current scheduler status."""

    states: dict[str, DocumentState]
    runs_completed: int

    @property
    def pending(self) -> int:
        return sum(1 for s in self.states.values() if s is DocumentState.PENDING)

    @property
    def running(self) -> int:
        return sum(1 for s in self.states.values() if s is DocumentState.RUNNING)


@dataclass
class ValidationScheduler:
    """Coalesces bursts of edits into a bounded rate of validations."""

    validate: ValidateFn
    debounce_ms: int = DEBOUNCE_MS_DEFAULT
    on_closed: Callable[[str], None] | None = None

    _docs: dict[str, _Slot] = field(default_factory=dict, init=False)
    _runs: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self.debounce_ms = min(max(self.debounce_ms, DEBOUNCE_MS_MIN), DEBOUNCE_MS_MAX)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    def state(self, uri: str) -> DocumentState:
        slot = self._docs.get(uri)
        return slot.state if slot else DocumentState.IDLE

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_change(self, uri: str, version: int, text: str) -> None:
        slot = self._slot(uri, version, text)
        if slot.state is DocumentState.RUNNING:
            slot.dirty = True
            return
        self._arm_timer(uri, slot)

    def on_open(self, uri: str, version: int, text: str) -> None:
        self._validate_now(uri, self._slot(uri, version, text))

    def on_save(self, uri: str, version: int | None = None, text: str | None = None) -> None:
        slot = self._docs.get(uri)
        if (slot is None or slot.closed) and (version is None or text is None):
            return
        self._validate_now(uri, self._slot(uri, version, text))

    def on_close(self, uri: str) -> None:
        slot = self._docs.get(uri)
        if slot is not None:
            self._cancel_timer(slot)
            slot.dirty = slot.rerun_now = False
            if slot.run is not None and not slot.run.done():
                # Stays registered until the run ends; a reopen queues behind it.
                slot.closed = True
            else:
                del self._docs[uri]
                slot.state = DocumentState.IDLE
                slot.idle.set()
        logger.debug("document_closed", uri=uri)
        if self.on_closed is not None:
            self.on_closed(uri)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _slot(self, uri: str, version: int | None, text: str | None) -> _Slot:
        slot = self._docs.get(uri)
        if slot is None:
            slot = self._docs[uri] = _Slot()
        slot.closed = False
        if version is not None:
            slot.version = version
        if text is not None:
            slot.text = text
        return slot

    def _validate_now(self, uri: str, slot: _Slot) -> None:
        if slot.state is DocumentState.RUNNING:
            slot.rerun_now = True
            return
        self._cancel_timer(slot)
        self._start_run(uri, slot)

    def _cancel_timer(self, slot: _Slot) -> None:
        if slot.timer is not None and not slot.timer.done():
            slot.timer.cancel()
        slot.timer = None

    def _arm_timer(self, uri: str, slot: _Slot) -> None:
        self._cancel_timer(slot)
        slot.state = DocumentState.PENDING
        slot.idle.clear()
        slot.timer = asyncio.get_running_loop().create_task(self._debounced(uri, slot))

    async def _debounced(self, uri: str, slot: _Slot) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            return
        slot.timer = None
        if self._docs.get(uri) is slot:
            self._start_run(uri, slot)

    def _start_run(self, uri: str, slot: _Slot) -> None:
        slot.state = DocumentState.RUNNING
        slot.dirty = False
        slot.rerun_now = False
        slot.idle.clear()
        slot.run = asyncio.get_running_loop().create_task(self._run(uri, slot, slot.version, slot.text))

    async def _run(self, uri: str, slot: _Slot, version: int, text: str) -> None:
        try:
            await self.validate(uri, version, text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("validation_run_failed", uri=uri, version=version, error=str(e))
        finally:
            self._runs += 1
            slot.run = None
            self._after_run(uri, slot)

    def _after_run(self, uri: str, slot: _Slot) -> None:
        if slot.closed and self._docs.get(uri) is slot:
            del self._docs[uri]
        if self._docs.get(uri) is not slot:
            slot.state = DocumentState.IDLE
            slot.idle.set()
        elif slot.rerun_now:
            self._start_run(uri, slot)
        elif slot.dirty:
            self._arm_timer(uri, slot)
        else:
            slot.state = DocumentState.IDLE
            slot.idle.set()

    # ------------------------------------------------------------------
    # Waiting and shutdown
    # ------------------------------------------------------------------

    async def wait_idle(self, uri: str) -> None:
        """Wait until the document has no pending or running validation."""
        while (slot := self._docs.get(uri)) is not None and slot.state is not DocumentState.IDLE:
            await slot.idle.wait()

    async def wait_all_idle(self) -> None:
        for uri in list(self._docs):
            await self.wait_idle(uri)

    async def stop(self) -> None:
        """Cancel every timer and in-flight run."""
        slots, self._docs = list(self._docs.values()), {}
        tasks: list[asyncio.Task[None]] = []
        for slot in slots:
            self._cancel_timer(slot)
            if slot.run is not None and not slot.run.done():
                slot.run.cancel()
                tasks.append(slot.run)
            slot.state = DocumentState.IDLE
            slot.idle.set()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("validation_scheduler_stopped", cancelled=len(tasks))

    @property
    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            states={uri: slot.state for uri, slot in self._docs.items()},
            runs_completed=self._runs,
        )
