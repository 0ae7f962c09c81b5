"""Type database: compiled program info per document, bounded by memory.

Eviction policy when over budget:
- whole entries only
- closed documents before open documents
- oldest ``compiled_at`` first within each group
- never the entry that was just inserted

An entry that alone exceeds the budget is not stored at all.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from pikelens.core.errors import CacheBudgetExceeded, StaleVersionWrite
from pikelens.index.models import CompiledProgramInfo, Symbol

if TYPE_CHECKING:
    from pikelens.config.models import CacheConfig

logger = structlog.get_logger()

MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class SymbolLocation:
    uri: str
    symbol: Symbol


@dataclass(frozen=True, slots=True)
class TypeDatabaseStats:
    program_count: int
    open_count: int
    symbol_count: int
    total_bytes: int
    budget_bytes: int
    evictions: int

    @property
    def utilization_percent(self) -> float:
        return 100.0 * self.total_bytes / self.budget_bytes if self.budget_bytes else 0.0


@dataclass
class TypeDatabase:
    """Memory-bounded store of CompiledProgramInfo keyed by URI.

    Invariant after every mutation:
        total_bytes == sum(p.size_bytes for p in programs()) <= budget_bytes
    """

    budget_bytes: int = 50 * MB

    _programs: dict[str, CompiledProgramInfo] = field(default_factory=dict, init=False)
    _inserted: dict[str, int] = field(default_factory=dict, init=False)
    _counter: int = field(default=0, init=False)
    _open: set[str] = field(default_factory=set, init=False)
    _closed: set[str] = field(default_factory=set, init=False)
    _by_name: dict[str, dict[str, Symbol]] = field(default_factory=dict, init=False)
    _names_by_uri: dict[str, tuple[str, ...]] = field(default_factory=dict, init=False)
    _total_bytes: int = field(default=0, init=False)
    _evictions: int = field(default=0, init=False)

    @classmethod
    def from_config(cls, config: CacheConfig) -> TypeDatabase:
        return cls(budget_bytes=int(config.type_db_budget_mb * MB))

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def set_program(self, info: CompiledProgramInfo) -> bool:
        """Insert or replace the entry for ``info.uri``, then enforce the budget.

        Returns:
            True if stored. False for stale versions and oversized entries.
        """
        current = self._programs.get(info.uri)
        if current is not None and info.uri not in self._closed and info.version < current.version:
            err = StaleVersionWrite.rejected(info.uri, info.version, current.version)
            logger.debug("type_db_stale_write", error=err.message, **err.details)
            return False

        if info.size_bytes > self.budget_bytes:
            err = CacheBudgetExceeded.over(info.size_bytes, self.budget_bytes)
            logger.warning("type_db_entry_too_large", uri=info.uri, error=err.message)
            return False

        if current is not None:
            self._remove(info.uri)

        self._counter += 1
        self._programs[info.uri] = info
        self._inserted[info.uri] = self._counter
        self._total_bytes += info.size_bytes

        names = tuple(info.symbols)
        self._names_by_uri[info.uri] = names
        for name in names:
            self._by_name.setdefault(name, {})[info.uri] = info.symbols[name]

        self._closed.discard(info.uri)
        self._enforce_budget(protect=info.uri)
        return True

    def _enforce_budget(self, protect: str) -> None:
        if self._total_bytes <= self.budget_bytes:
            return
        err = CacheBudgetExceeded.over(self._total_bytes, self.budget_bytes)
        logger.debug("type_db_over_budget", **err.details)

        victims = sorted(
            (uri for uri in self._programs if uri != protect),
            key=lambda uri: (uri in self._open, self._programs[uri].compiled_at, self._inserted[uri]),
        )
        for uri in victims:
            if self._total_bytes <= self.budget_bytes:
                break
            size = self._programs[uri].size_bytes
            self._remove(uri)
            self._evictions += 1
            logger.debug("type_db_evicted", uri=uri, size_bytes=size, was_open=uri in self._open)

    def remove_program(self, uri: str) -> bool:
        if uri not in self._programs:
            return False
        self._remove(uri)
        return True

    def _remove(self, uri: str) -> None:
        info = self._programs.pop(uri)
        del self._inserted[uri]
        self._closed.discard(uri)
        self._total_bytes -= info.size_bytes
        for name in self._names_by_uri.pop(uri, ()):
            holders = self._by_name.get(name)
            if holders is None:
                continue
            holders.pop(uri, None)
            if not holders:
                del self._by_name[name]

    def mark_open(self, uri: str) -> None:
        self._open.add(uri)

    def reopen(self, uri: str) -> bool:
        """Mark ``uri`` open, dropping any program kept from before its last close.

        Returns:
            True if a kept program was dropped.
        """
        self._open.add(uri)
        if uri not in self._closed:
            return False
        self._closed.discard(uri)
        return self.remove_program(uri)

    def mark_closed(self, uri: str) -> None:
        """Keep the program for workspace lookups. Its version no longer guards writes."""
        self._open.discard(uri)
        if uri in self._programs:
            self._closed.add(uri)

    def is_open(self, uri: str) -> bool:
        return uri in self._open

    def get_program(self, uri: str) -> CompiledProgramInfo | None:
        return self._programs.get(uri)

    def programs(self) -> list[CompiledProgramInfo]:
        return list(self._programs.values())

    def find_symbol(self, name: str) -> list[SymbolLocation]:
        """Every program that declares ``name``, in insertion order."""
        holders = self._by_name.get(name, {})
        return [SymbolLocation(uri=uri, symbol=sym) for uri, sym in holders.items()]

    def memory_stats(self) -> TypeDatabaseStats:
        return TypeDatabaseStats(
            program_count=len(self._programs),
            open_count=len(self._open & self._programs.keys()),
            symbol_count=sum(len(names) for names in self._names_by_uri.values()),
            total_bytes=self._total_bytes,
            budget_bytes=self.budget_bytes,
            evictions=self._evictions,
        )

    def clear(self) -> None:
        self._programs.clear()
        self._inserted.clear()
        self._by_name.clear()
        self._names_by_uri.clear()
        self._open.clear()
        self._closed.clear()
        self._total_bytes = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._programs)

    def __iter__(self) -> Iterator[CompiledProgramInfo]:
        return iter(list(self._programs.values()))

    def __contains__(self, uri: object) -> bool:
        return uri in self._programs
