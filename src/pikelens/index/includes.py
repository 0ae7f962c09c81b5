"""``#include`` resolution: find the file, parse it, keep it briefly."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from pikelens.core.errors import BridgeError
from pikelens.index.documents import uri_to_path
from pikelens.index.models import Symbol
from pikelens.index.symbols import SymbolTable

if TYPE_CHECKING:
    from pikelens.bridge.client import Bridge

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ResolvedInclude:
    original_path: str
    resolved_path: str
    table: SymbolTable
    loaded_at: float


def strip_include_target(target: str) -> str:
    """``"foo.h"`` / ``<foo.h>`` / ``#include "foo.h"`` -> ``foo.h``."""
    target = target.strip()
    if target.startswith("#include"):
        target = target[len("#include") :].strip()
    target = target.lstrip("#").strip()
    if len(target) >= 2 and target[0] + target[-1] in ('""', "<>"):
        target = target[1:-1]
    return target


@dataclass
class IncludeResolver:
    """Resolves include directives via the worker, caching parsed files by path."""

    bridge: Bridge
    ttl_sec: float = 30.0
    clock: Callable[[], float] = time.monotonic

    _cache: dict[str, ResolvedInclude] = field(default_factory=dict, init=False)

    async def resolve(self, directive: Symbol, current_uri: str) -> ResolvedInclude | None:
        """Resolve one ``#include`` symbol. Returns None on any failure."""
        include_path = strip_include_target(directive.directive_target)
        if not include_path:
            return None
        try:
            result = await self.bridge.resolve_include(include_path, uri_to_path(current_uri))
        except BridgeError as e:
            logger.debug("include_resolve_failed", include=include_path, error=str(e))
            return None
        if not result.exists or not result.path:
            logger.debug("include_not_found", include=include_path, uri=current_uri)
            return None

        now = self.clock()
        cached = self._cache.get(result.path)
        if cached is not None and now - cached.loaded_at < self.ttl_sec:
            return cached

        table = await self._parse_file(result.path)
        if table is None:
            return None
        resolved = ResolvedInclude(
            original_path=result.original_path or include_path,
            resolved_path=result.path,
            table=table,
            loaded_at=now,
        )
        self._cache[result.path] = resolved
        return resolved

    async def _parse_file(self, path: str) -> SymbolTable | None:
        try:
            text = await asyncio.to_thread(Path(path).read_text, errors="replace")
        except OSError as e:
            logger.debug("include_read_failed", path=path, error=str(e))
            return None
        try:
            response = await self.bridge.analyze(text, ["parse"], path)
        except BridgeError as e:
            logger.debug("include_parse_failed", path=path, error=str(e))
            return None
        parse = response.result.parse
        if parse is None:
            return SymbolTable()
        roots = tuple(s for s in (Symbol.from_wire(w) for w in parse.symbols) if s is not None)
        return SymbolTable(roots)

    def invalidate(self, path: str | None = None) -> None:
        if path is None:
            self._cache.clear()
        else:
            self._cache.pop(path, None)
