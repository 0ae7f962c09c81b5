"""OS process wrapper for the analyzer worker.

Owns nothing but the child process and its pipes. Request correlation,
crash policy and restarts live in ``pikelens.bridge.client``.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from pikelens.core.errors import ProcessSpawnError

logger = structlog.get_logger()

# Analyze responses for large files easily exceed asyncio's 64 KiB default.
STREAM_LIMIT = 64 * 1024 * 1024


def build_argv(executable: str, analyzer_path: str | None = None) -> list[str]:
    """Resolve the worker command line.

    Raises:
        ProcessSpawnError: If the executable is not on PATH or the
            analyzer script does not exist.
    """
    resolved = shutil.which(executable)
    if resolved is None:
        raise ProcessSpawnError.executable_not_found(executable)
    argv = [resolved]
    if analyzer_path is not None:
        script = Path(analyzer_path).expanduser()
        if not script.is_file():
            raise ProcessSpawnError.script_not_found(str(script))
        argv.append(str(script))
    return argv


@dataclass
class WorkerProcess:
    """A spawned worker with line-oriented stdio."""

    argv: list[str]
    cwd: str | None = None
    env: dict[str, str] | None = None

    _proc: asyncio.subprocess.Process | None = field(default=None, init=False)
    _started_at: float | None = field(default=None, init=False)

    async def spawn(self) -> None:
        env = {**os.environ, **self.env} if self.env else None
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=env,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise ProcessSpawnError.executable_not_found(self.argv[0]) from e
        except OSError as e:
            raise ProcessSpawnError.os_error(self.argv[0], str(e)) from e
        self._started_at = time.monotonic()
        logger.debug("worker_spawned", pid=self._proc.pid, argv=self.argv)

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc else None

    @property
    def alive(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def uptime_sec(self) -> float:
        if self._started_at is None or not self.alive:
            return 0.0
        return time.monotonic() - self._started_at

    async def send_line(self, data: bytes) -> None:
        """Write one framed line. Raises ConnectionError if the pipe is gone."""
        if self._proc is None or self._proc.stdin is None:
            raise ConnectionResetError("worker stdin is not open")
        self._proc.stdin.write(data)
        await self._proc.stdin.drain()

    async def stdout_lines(self) -> AsyncIterator[str]:
        assert self._proc is not None and self._proc.stdout is not None
        async for line in self._read_lines(self._proc.stdout):
            yield line

    async def stderr_lines(self) -> AsyncIterator[str]:
        assert self._proc is not None and self._proc.stderr is not None
        async for line in self._read_lines(self._proc.stderr):
            yield line

    @staticmethod
    async def _read_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line over STREAM_LIMIT; the reader has discarded it.
                logger.warning("worker_line_too_long", limit=STREAM_LIMIT)
                continue
            if not raw:
                return
            line = raw.decode(errors="replace").rstrip("\r\n")
            if line:
                yield line

    async def wait(self) -> int | None:
        if self._proc is None:
            return None
        return await self._proc.wait()

    def kill(self) -> None:
        if self.alive:
            assert self._proc is not None
            with contextlib.suppress(ProcessLookupError):
                self._proc.kill()

    async def terminate(self, grace_sec: float = 2.0) -> bool:
        """Close stdin, SIGTERM, then SIGKILL after ``grace_sec``.

        Returns:
            True if the worker exited within the grace period.
        """
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return True

        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()

        try:
            async with asyncio.timeout(grace_sec):
                await proc.wait()
            return True
        except TimeoutError:
            logger.warning("worker_kill_after_grace", pid=proc.pid, grace_sec=grace_sec)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            return False
