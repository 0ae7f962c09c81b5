"""RPC client over the analyzer worker.

One long-lived worker, many concurrent callers. Each call gets a fresh id
from a counter that is never reset, so a response can never be delivered
under an id that belonged to an earlier request. Identical in-flight
requests share one wire request.

The bridge applies no timeouts and no retries. Callers wrap calls in
``asyncio.timeout`` and decide whether to re-issue after a crash.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from pikelens.bridge.process import WorkerProcess, build_argv
from pikelens.bridge.protocol import (
    AnalysisSection,
    AnalyzeResult,
    DebugResult,
    FindOccurrencesResult,
    IncludeResolveResult,
    InheritedMembersResult,
    IntrospectionResult,
    ParseResult,
    StdlibResolveResult,
    TokenizeResult,
    WireCompletionContext,
    WireRequest,
    WireResponse,
    WireToken,
    request_key,
)
from pikelens.config.constants import DEFAULT_FILENAME
from pikelens.config.models import BridgeConfig
from pikelens.core.errors import (
    BridgeCrashed,
    BridgeError,
    BridgeRequestError,
    BridgeResponseError,
    BridgeStopped,
    ProcessSpawnError,
)

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

FATAL_STDERR = re.compile(
    r"segmentation fault|fatal error|out of memory|pike died",
    re.IGNORECASE,
)
VERSION_PATTERN = re.compile(r"Pike v(\d+\.\d+)")


@dataclass(frozen=True, slots=True)
class BridgeHealth:
    """Operator-facing snapshot of the worker."""

    running: bool
    pid: int | None
    uptime_sec: float
    restarts: int
    generation: int
    pending: int
    recent_errors: tuple[str, ...]
    executable: str
    analyzer_path: str | None
    spawn_error: str | None


@dataclass(slots=True)
class _Pending:
    method: str
    future: asyncio.Future[Any]


@dataclass
class Bridge:
    """Request/response RPC over one worker process."""

    config: BridgeConfig = field(default_factory=BridgeConfig)
    stop_grace_sec: float = 2.0

    _process: WorkerProcess | None = field(default=None, init=False)
    _readers: list[asyncio.Task[None]] = field(default_factory=list, init=False)
    _next_id: int = field(default=0, init=False)
    _pending: dict[int, _Pending] = field(default_factory=dict, init=False)
    _inflight: dict[str, asyncio.Task[Any]] = field(default_factory=dict, init=False)
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _start_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _spawn_error: ProcessSpawnError | None = field(default=None, init=False)
    _recent_errors: deque[str] = field(init=False)
    _generation: int = field(default=0, init=False)
    _spawns: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self._recent_errors = deque(maxlen=self.config.recent_errors_max)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.alive

    @property
    def generation(self) -> int:
        """Bumped every time a worker instance goes away (crash or stop)."""
        return self._generation

    @property
    def spawn_error(self) -> ProcessSpawnError | None:
        return self._spawn_error

    @property
    def available(self) -> bool:
        """True if a call would reach a worker (running, or startable)."""
        return self.running or self._spawn_error is None

    async def start(self) -> None:
        """Spawn the worker. No-op if already running.

        An explicit start always retries, even after an earlier spawn failure.

        Raises:
            ProcessSpawnError: If the worker cannot be started.
        """
        async with self._start_lock:
            if self.running:
                return
            try:
                await self._spawn()
            except ProcessSpawnError as e:
                if self._spawn_error != e:
                    logger.error("bridge_spawn_failed", error=e.message, **e.details)
                self._spawn_error = e
                raise
            self._spawn_error = None

    async def _spawn(self) -> None:
        stale = self._process
        if stale is not None:
            # Exited, but its stdout reader has not reached EOF yet.
            returncode = stale.returncode
            self._on_crash(stale, lambda method: BridgeCrashed.exited(returncode, method))
            await self._cancel_readers()
        argv = build_argv(self.config.executable, self.config.analyzer_path)
        process = WorkerProcess(argv=argv, cwd=self.config.working_dir, env=self.config.env or None)
        await process.spawn()
        self._process = process
        self._spawns += 1
        self._readers = [
            asyncio.create_task(self._read_stdout(process), name="bridge-stdout"),
            asyncio.create_task(self._read_stderr(process), name="bridge-stderr"),
        ]
        logger.info("bridge_started", pid=process.pid, restarts=max(0, self._spawns - 1))

    async def _ensure_started(self) -> WorkerProcess:
        if not self.running:
            if self._spawn_error is not None:
                raise self._spawn_error
            await self.start()
        assert self._process is not None
        return self._process

    async def stop(self) -> None:
        """Terminate the worker. Pending calls reject with BridgeStopped."""
        async with self._start_lock:
            process = self._process
            if process is None:
                return
            self._detach(process)
            self._reject_pending(BridgeStopped.during)
            clean = await process.terminate(self.stop_grace_sec)
            await self._cancel_readers()
            logger.info("bridge_stopped", pid=process.pid, clean=clean)

    def _detach(self, process: WorkerProcess) -> bool:
        """Forget ``process`` if it is still current. Returns False if stale."""
        if self._process is not process:
            return False
        self._process = None
        self._generation += 1
        return True

    async def _cancel_readers(self) -> None:
        current = asyncio.current_task()
        readers = [t for t in self._readers if t is not current]
        self._readers = []
        for task in readers:
            task.cancel()
        await asyncio.gather(*readers, return_exceptions=True)

    def _on_crash(self, process: WorkerProcess, error_for: Callable[[str], BridgeError]) -> None:
        if not self._detach(process):
            return
        logger.warning(
            "bridge_crashed",
            pid=process.pid,
            returncode=process.returncode,
            pending=len(self._pending),
            generation=self._generation,
        )
        self._reject_pending(error_for)

    def _reject_pending(self, error_for: Callable[[str], BridgeError]) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(error_for(entry.method))

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    async def _read_stdout(self, process: WorkerProcess) -> None:
        async for line in process.stdout_lines():
            self._handle_line(line)
        returncode = await process.wait()
        self._on_crash(process, lambda method: BridgeCrashed.exited(returncode, method))

    async def _read_stderr(self, process: WorkerProcess) -> None:
        async for line in process.stderr_lines():
            logger.debug("worker_stderr", line=line[:500])
            if "error" in line.lower():
                self._recent_errors.append(line)
            if FATAL_STDERR.search(line):
                self._recent_errors.append(line)
                process.kill()
                self._on_crash(process, lambda _method, line=line: BridgeCrashed.fatal_output(line))
                return

    def _handle_line(self, line: str) -> None:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("worker_non_json_output", line=line[:200])
            return
        if not isinstance(payload, dict) or not isinstance(payload.get("id"), int):
            logger.debug("worker_unmatched_output", line=line[:200])
            return

        entry = self._pending.pop(payload["id"], None)
        if entry is None:
            logger.debug("bridge_unknown_response_id", id=payload["id"])
            return
        if entry.future.done():
            return

        try:
            response = WireResponse.model_validate(payload)
        except ValidationError as e:
            entry.future.set_exception(BridgeResponseError.invalid(entry.method, str(e.errors()[0]["msg"])))
            return
        if response.error is not None:
            entry.future.set_exception(
                BridgeRequestError.from_worker(entry.method, response.error.message, response.error.code)
            )
        else:
            entry.future.set_result(response.result)

    # ------------------------------------------------------------------
    # RPC
    # ------------------------------------------------------------------

    async def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send one request and await its result.

        Raises:
            ProcessSpawnError: Worker cannot be started.
            BridgeCrashed: Worker died before answering.
            BridgeStopped: Bridge was stopped before answering.
            BridgeRequestError: Worker answered with an error object.
            BridgeResponseError: Worker answered with a malformed response.
        """
        params = params or {}
        key = request_key(method, params)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._request(method, params))
            self._inflight[key] = task
            task.add_done_callback(partial(self._forget_inflight, key))
        return await asyncio.shield(task)

    def _forget_inflight(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            task.exception()  # mark retrieved; shielded callers may all be gone

    async def _request(self, method: str, params: dict[str, Any]) -> Any:
        process = await self._ensure_started()

        self._next_id += 1
        request = WireRequest(id=self._next_id, method=method, params=params)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = _Pending(method=method, future=future)

        try:
            async with self._write_lock:
                await process.send_line(request.encode())
        except ConnectionError as e:
            self._pending.pop(request.id, None)
            if not future.done():
                raise BridgeCrashed.exited(process.returncode, method) from e

        logger.debug("bridge_request", id=request.id, method=method)
        return await future

    async def _typed(self, method: str, params: dict[str, Any], model: type[M]) -> M:
        result = await self.call(method, params)
        try:
            return model.model_validate(result)
        except ValidationError as e:
            raise BridgeResponseError.invalid(method, str(e.errors()[0]["msg"])) from e

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def analyze(
        self,
        code: str,
        include: Sequence[AnalysisSection],
        filename: str | None = None,
        version: int | None = None,
    ) -> AnalyzeResult:
        params: dict[str, Any] = {
            "code": code,
            "filename": filename or DEFAULT_FILENAME,
            "include": list(include),
        }
        if version is not None:
            params["version"] = version
        return await self._typed("analyze", params, AnalyzeResult)

    async def parse(self, code: str, filename: str | None = None) -> ParseResult:
        params = {"code": code, "filename": filename or DEFAULT_FILENAME, "line": 1}
        return await self._typed("parse", params, ParseResult)

    async def introspect(self, code: str, filename: str | None = None) -> IntrospectionResult:
        params = {"code": code, "filename": filename or DEFAULT_FILENAME}
        return await self._typed("introspect", params, IntrospectionResult)

    async def tokenize(self, code: str) -> list[WireToken]:
        result = await self._typed("tokenize", {"code": code}, TokenizeResult)
        return result.tokens

    async def find_occurrences(self, code: str) -> FindOccurrencesResult:
        return await self._typed("find_occurrences", {"code": code}, FindOccurrencesResult)

    async def resolve_stdlib(self, module_path: str) -> StdlibResolveResult:
        return await self._typed("resolve_stdlib", {"module": module_path}, StdlibResolveResult)

    async def resolve_include(self, include_path: str, current_file: str) -> IncludeResolveResult:
        params = {"includePath": include_path, "currentFile": current_file}
        return await self._typed("resolve_include", params, IncludeResolveResult)

    async def get_inherited(self, class_name: str) -> InheritedMembersResult:
        return await self._typed("get_inherited", {"class": class_name}, InheritedMembersResult)

    async def get_completion_context(self, code: str, line: int, character: int) -> WireCompletionContext:
        """Worker-side classification. ``line`` is 1-based."""
        params = {"code": code, "line": line, "character": character}
        return await self._typed("get_completion_context", params, WireCompletionContext)

    async def set_debug(self, enabled: bool) -> DebugResult:
        return await self._typed("set_debug", {"enabled": 1 if enabled else 0}, DebugResult)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> BridgeHealth:
        process = self._process
        return BridgeHealth(
            running=self.running,
            pid=process.pid if process else None,
            uptime_sec=process.uptime_sec if process else 0.0,
            restarts=max(0, self._spawns - 1),
            generation=self._generation,
            pending=len(self._pending),
            recent_errors=tuple(self._recent_errors),
            executable=self.config.executable,
            analyzer_path=self.config.analyzer_path,
            spawn_error=self._spawn_error.message if self._spawn_error else None,
        )

    async def probe_version(self) -> str | None:
        """Run ``<executable> --version`` and extract ``X.Y`` from ``Pike vX.Y``."""
        try:
            argv = build_argv(self.config.executable)
            proc = await asyncio.create_subprocess_exec(
                *argv,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except (BridgeError, OSError) as e:
            logger.debug("bridge_version_probe_failed", error=str(e))
            return None
        if proc.returncode != 0:
            return None
        # Pike prints its banner on stderr.
        match = VERSION_PATTERN.search(stdout.decode(errors="replace") + stderr.decode(errors="replace"))
        return match.group(1) if match else None
