"""In-process test doubles and builders shared across test packages."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from pikelens.bridge.client import BridgeHealth
from pikelens.bridge.protocol import (
    AnalyzeResult,
    DebugResult,
    FindOccurrencesResult,
    IncludeResolveResult,
    StdlibResolveResult,
    TokenOccurrence,
    WireSymbol,
    WireToken,
)
from pikelens.core.errors import BridgeError, ProcessSpawnError
from pikelens.daemon.engine import AnalysisEngine
from pikelens.index.models import DocumentCacheEntry, Position, Symbol, SymbolKind
from pikelens.index.symbols import SymbolTable

AnalyzeHandler = Callable[[str, list[str], str | None, int | None], AnalyzeResult]


class FakeBridge:
    """Duck-typed stand-in for ``Bridge``. Responses are configured per test."""

    def __init__(self) -> None:
        self.running = True
        self.generation = 0
        self.spawn_error: ProcessSpawnError | None = None
        self.calls: list[tuple[str, Any]] = []

        self.analyze_handler: AnalyzeHandler = lambda *_: AnalyzeResult()
        self.analyze_error: BridgeError | None = None
        self.analyze_gate: asyncio.Event | None = None
        self.parses: dict[str, AnalyzeResult] = {}

        self.stdlib_modules: dict[str, StdlibResolveResult] = {}
        self.stdlib_error: BridgeError | None = None
        self.stdlib_gate: asyncio.Event | None = None

        self.include_paths: dict[str, str] = {}
        self.tokens: list[WireToken] = []
        self.tokenize_error: BridgeError | None = None
        self.occurrences: list[TokenOccurrence] = []
        self.debug: bool | None = None

    @property
    def available(self) -> bool:
        return self.running or self.spawn_error is None

    def method_calls(self, method: str) -> list[Any]:
        return [args for name, args in self.calls if name == method]

    def health(self) -> BridgeHealth:
        return BridgeHealth(
            running=self.running,
            pid=4242 if self.running else None,
            uptime_sec=0.0,
            restarts=self.generation,
            generation=self.generation,
            pending=0,
            recent_errors=(),
            executable="pike",
            analyzer_path=None,
            spawn_error=self.spawn_error.message if self.spawn_error else None,
        )

    async def probe_version(self) -> str | None:
        return None if self.spawn_error else "8.0"

    async def start(self) -> None:
        self.calls.append(("start", None))
        if self.spawn_error is not None:
            raise self.spawn_error
        self.running = True

    async def stop(self) -> None:
        self.calls.append(("stop", None))
        if self.running:
            self.running = False
            self.generation += 1

    async def analyze(
        self,
        code: str,
        include: Sequence[str],
        filename: str | None = None,
        version: int | None = None,
    ) -> AnalyzeResult:
        self.calls.append(("analyze", (code, list(include), filename, version)))
        if self.analyze_gate is not None:
            await self.analyze_gate.wait()
        if self.analyze_error is not None:
            raise self.analyze_error
        if filename in self.parses:
            return self.parses[filename]
        return self.analyze_handler(code, list(include), filename, version)

    async def tokenize(self, code: str) -> list[WireToken]:
        self.calls.append(("tokenize", code))
        if self.tokenize_error is not None:
            raise self.tokenize_error
        return self.tokens

    async def find_occurrences(self, code: str) -> FindOccurrencesResult:
        self.calls.append(("find_occurrences", code))
        return FindOccurrencesResult(occurrences=self.occurrences)

    async def resolve_stdlib(self, module_path: str) -> StdlibResolveResult:
        self.calls.append(("resolve_stdlib", module_path))
        if self.stdlib_gate is not None:
            await self.stdlib_gate.wait()
        if self.stdlib_error is not None:
            raise self.stdlib_error
        return self.stdlib_modules.get(module_path, StdlibResolveResult(found=False, error="not found"))

    async def resolve_include(self, include_path: str, current_file: str) -> IncludeResolveResult:
        self.calls.append(("resolve_include", (include_path, current_file)))
        resolved = self.include_paths.get(include_path)
        if resolved is None:
            return IncludeResolveResult(path="", exists=False, original_path=include_path)
        return IncludeResolveResult(path=resolved, exists=True, original_path=include_path)

    async def set_debug(self, enabled: bool) -> DebugResult:
        self.calls.append(("set_debug", enabled))
        self.debug = enabled
        return DebugResult(debug_mode=int(enabled), message="ok")


# =============================================================================
# Builders
# =============================================================================


def wire_symbol(
    name: str,
    kind: str = "variable",
    *,
    line: int = 1,
    column: int | None = None,
    children: Iterable[dict[str, Any]] = (),
    classname: str | None = None,
    type: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Parse-symbol payload as the worker sends it (1-based line)."""
    payload: dict[str, Any] = {
        "name": name,
        "kind": kind,
        "position": {"file": "test.pike", "line": line},
        "children": list(children),
    }
    if column is not None:
        payload["position"]["column"] = column
    if classname is not None:
        payload["classname"] = classname
    if type is not None:
        payload["type"] = type
    return payload


def analysis(
    *,
    parse: list[dict[str, Any]] | None = None,
    introspect: list[dict[str, Any]] | None = None,
    compile_diagnostics: list[dict[str, Any]] | None = None,
    uninitialized: list[dict[str, Any]] | None = None,
    tokens: list[dict[str, Any]] | None = None,
    failures: dict[str, dict[str, str]] | None = None,
) -> AnalyzeResult:
    """Build an analyze response. Sections left as None are omitted."""
    result: dict[str, Any] = {}
    if parse is not None:
        result["parse"] = {"symbols": parse, "diagnostics": []}
    if introspect is not None or compile_diagnostics is not None:
        result["introspect"] = {
            "success": introspect is not None,
            "symbols": introspect or [],
            "diagnostics": compile_diagnostics or [],
        }
    if uninitialized is not None:
        result["diagnostics"] = {"diagnostics": uninitialized}
    if tokens is not None:
        result["tokenize"] = {"tokens": tokens}
    return AnalyzeResult.model_validate({"result": result, "failures": failures or {}})


def stdlib_result(path: str, *names: str, inherits: Sequence[str] = ()) -> StdlibResolveResult:
    return StdlibResolveResult.model_validate(
        {
            "found": True,
            "path": f"/usr/lib/pike/modules/{path.replace('.', '.pmod/')}.pmod",
            "module": path,
            "symbols": [{"name": n, "kind": "function"} for n in names],
            "inherits": [{"path": p} for p in inherits],
        }
    )


def sym(
    name: str,
    kind: SymbolKind = SymbolKind.VARIABLE,
    *,
    children: Sequence[Symbol] = (),
    classname: str | None = None,
    line: int = 0,
    type: dict[str, Any] | None = None,
) -> Symbol:
    return Symbol(
        name=name,
        kind=kind,
        position=Position(line, 0),
        children=tuple(children),
        classname=classname,
        type=type,
    )


def entry(uri: str, *symbols: Symbol, version: int = 1) -> DocumentCacheEntry:
    return DocumentCacheEntry(uri=uri, version=version, table=SymbolTable(tuple(symbols)))


def to_wire_symbols(payloads: Iterable[dict[str, Any]]) -> list[WireSymbol]:
    return [WireSymbol.model_validate(p) for p in payloads]


def wire_engine(engine: AnalysisEngine, bridge: FakeBridge) -> AnalysisEngine:
    """Point every component of ``engine`` at ``bridge``."""
    engine.bridge = bridge  # type: ignore[assignment]
    engine.stdlib.bridge = bridge  # type: ignore[assignment]
    engine.includes.bridge = bridge  # type: ignore[assignment]
    engine.classifier.bridge = bridge  # type: ignore[assignment]
    engine.pipeline.bridge = bridge  # type: ignore[assignment]
    return engine
