"""Lazy stdlib module index.

Modules are loaded one dotted path at a time, on first request, through
the worker's ``resolve_stdlib``. Nothing is loaded eagerly: introspecting
some bootstrap modules destabilizes the worker.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from pikelens.config.constants import (
    COMMON_STDLIB_MODULES,
    STDLIB_INHERIT_BYTES,
    STDLIB_SYMBOL_BYTES,
)
from pikelens.core.errors import (
    BridgeCrashed,
    BridgeError,
    BridgeStopped,
    ModuleResolutionFailure,
    ProcessSpawnError,
)
from pikelens.index.models import StdlibModule, Symbol

if TYPE_CHECKING:
    from pikelens.bridge.client import Bridge
    from pikelens.bridge.protocol import StdlibResolveResult
    from pikelens.config.models import StdlibConfig

logger = structlog.get_logger()

MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class StdlibStats:
    module_count: int
    symbol_count: int
    memory_bytes: int
    negative_count: int
    hits: int
    misses: int
    negative_hits: int
    evictions: int


@dataclass(frozen=True, slots=True)
class _Failure:
    reason: str
    expires_at: float
    generation: int


@dataclass
class StdlibIndex:
    """LRU cache of stdlib modules keyed by full dotted path.

    ``Stdio`` and ``Stdio.File`` are independent entries. Failed lookups
    are remembered until ``negative_ttl_sec`` passes or the worker is
    replaced, whichever comes first.
    """

    bridge: Bridge
    max_modules: int = 50
    budget_bytes: int = 20 * MB
    negative_ttl_sec: float = 300.0
    clock: Callable[[], float] = time.monotonic

    _modules: OrderedDict[str, StdlibModule] = field(default_factory=OrderedDict, init=False)
    _failures: dict[str, _Failure] = field(default_factory=dict, init=False)
    _loading: dict[str, asyncio.Task[StdlibModule | None]] = field(default_factory=dict, init=False)
    _memory_bytes: int = field(default=0, init=False)
    _hits: int = field(default=0, init=False)
    _misses: int = field(default=0, init=False)
    _negative_hits: int = field(default=0, init=False)
    _evictions: int = field(default=0, init=False)

    @classmethod
    def from_config(cls, bridge: Bridge, config: StdlibConfig) -> StdlibIndex:
        return cls(
            bridge=bridge,
            max_modules=config.max_modules,
            budget_bytes=int(config.budget_mb * MB),
            negative_ttl_sec=config.negative_ttl_sec,
        )

    async def get_module(self, path: str) -> StdlibModule | None:
        """Return the module at ``path``, loading it on first use.

        Concurrent requests for the same missing path share one worker call.
        Returns None when the module does not exist or cannot be loaded.
        """
        path = path.strip().strip(".")
        if not path:
            return None

        module = self._modules.get(path)
        if module is not None:
            self._modules.move_to_end(path)
            self._hits += 1
            return module

        failure = self._failures.get(path)
        if failure is not None:
            if failure.expires_at > self.clock() and failure.generation == self.bridge.generation:
                self._negative_hits += 1
                return None
            del self._failures[path]

        task = self._loading.get(path)
        if task is None:
            self._misses += 1
            task = asyncio.ensure_future(self._load(path))
            self._loading[path] = task
            task.add_done_callback(lambda _t, path=path: self._loading.pop(path, None))
        return await asyncio.shield(task)

    async def _load(self, path: str) -> StdlibModule | None:
        try:
            result = await self.bridge.resolve_stdlib(path)
        except (BridgeCrashed, BridgeStopped, ProcessSpawnError) as e:
            # Worker availability problems are not a property of the module.
            logger.debug("stdlib_load_unavailable", path=path, error=str(e))
            return None
        except BridgeError as e:
            self._remember_failure(path, e.message)
            return None

        if not result.found:
            self._remember_failure(path, result.error or "module not found")
            return None

        module = self._build(path, result)
        self._store(module)
        logger.debug("stdlib_module_loaded", path=path, symbols=len(module.symbols))
        return module

    def _remember_failure(self, path: str, reason: str) -> None:
        err = ModuleResolutionFailure.not_found(path, reason)
        self._failures[path] = _Failure(
            reason=reason,
            expires_at=self.clock() + self.negative_ttl_sec,
            generation=self.bridge.generation,
        )
        logger.debug("stdlib_module_unresolved", path=path, error=err.message)

    def _build(self, path: str, result: StdlibResolveResult) -> StdlibModule:
        symbols: dict[str, Symbol] = {}
        for group in (result.symbols, result.functions, result.variables, result.classes):
            for wire in group:
                sym = Symbol.from_introspected(wire)
                if sym is not None:
                    symbols.setdefault(sym.name, sym)
        inherits = tuple(info.path for info in result.inherits)
        return StdlibModule(
            path=path,
            symbols=symbols,
            resolved_path=result.path,
            inherits=inherits,
            loaded_at=self.clock(),
            size_bytes=len(symbols) * STDLIB_SYMBOL_BYTES + len(inherits) * STDLIB_INHERIT_BYTES,
        )

    def _store(self, module: StdlibModule) -> None:
        if module.size_bytes > self.budget_bytes:
            logger.warning("stdlib_module_too_large", path=module.path, size_bytes=module.size_bytes)
            return
        old = self._modules.pop(module.path, None)
        if old is not None:
            self._memory_bytes -= old.size_bytes
        self._modules[module.path] = module
        self._memory_bytes += module.size_bytes

        while len(self._modules) > self.max_modules or self._memory_bytes > self.budget_bytes:
            victim_path, victim = next(iter(self._modules.items()))
            if victim_path == module.path:
                break
            del self._modules[victim_path]
            self._memory_bytes -= victim.size_bytes
            self._evictions += 1
            logger.debug("stdlib_module_evicted", path=victim_path)

    async def preload_common(self) -> int:
        """Warm frequently used modules. Returns how many loaded."""
        loaded = 0
        for path in COMMON_STDLIB_MODULES:
            if await self.get_module(path) is not None:
                loaded += 1
        logger.info("stdlib_preloaded", loaded=loaded, requested=len(COMMON_STDLIB_MODULES))
        return loaded

    def is_cached(self, path: str) -> bool:
        return path in self._modules

    def clear(self) -> None:
        self._modules.clear()
        self._failures.clear()
        self._memory_bytes = 0

    def stats(self) -> StdlibStats:
        return StdlibStats(
            module_count=len(self._modules),
            symbol_count=sum(len(m.symbols) for m in self._modules.values()),
            memory_bytes=self._memory_bytes,
            negative_count=len(self._failures),
            hits=self._hits,
            misses=self._misses,
            negative_hits=self._negative_hits,
            evictions=self._evictions,
        )
