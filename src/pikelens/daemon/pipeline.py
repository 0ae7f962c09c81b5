"""One validation run: analyze a document and publish the results.

analyze -> diagnostics + symbol table + position index
        -> document cache, type database (both version checked)
        -> diagnostics sink
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from pikelens.config.constants import ANALYZE_INCLUDE
from pikelens.core.errors import (
    BridgeCrashed,
    BridgeError,
    BridgeStopped,
    ProcessSpawnError,
)
from pikelens.core.logging import validation_context
from pikelens.daemon.diagnostics import collect_diagnostics
from pikelens.index.documents import DocumentCache, uri_to_path
from pikelens.index.models import CompiledProgramInfo, Diagnostic, DocumentCacheEntry, Symbol
from pikelens.index.positions import build_position_index
from pikelens.index.symbols import SymbolTable, merge_symbols
from pikelens.index.typedb import TypeDatabase

if TYPE_CHECKING:
    from pikelens.bridge.client import Bridge
    from pikelens.bridge.protocol import AnalyzeResult, IntrospectedSymbol, WireToken
    from pikelens.config.models import PikeLensConfig

logger = structlog.get_logger()

DiagnosticsSink = Callable[[str, list[Diagnostic]], Awaitable[None] | None]


def _introspected_map(symbols: list[IntrospectedSymbol]) -> dict[str, Symbol]:
    result: dict[str, Symbol] = {}
    for wire in symbols:
        sym = Symbol.from_introspected(wire)
        if sym is not None:
            result.setdefault(sym.name, sym)
    return result


@dataclass
class ValidationPipeline:
    """Runs validations and writes their results. Stateless per run."""

    bridge: Bridge
    documents: DocumentCache
    typedb: TypeDatabase
    sink: DiagnosticsSink | None = None
    max_problems: int = 100
    timeout_sec: float = 30.0

    _generations: dict[str, int] = field(default_factory=dict, init=False)
    _unavailable: bool = field(default=False, init=False)
    _completed: int = field(default=0, init=False)

    @classmethod
    def from_config(
        cls,
        config: PikeLensConfig,
        *,
        bridge: Bridge,
        documents: DocumentCache,
        typedb: TypeDatabase,
        sink: DiagnosticsSink | None = None,
    ) -> ValidationPipeline:
        return cls(
            bridge=bridge,
            documents=documents,
            typedb=typedb,
            sink=sink,
            max_problems=config.validation.max_problems,
            timeout_sec=config.timeouts.validate_sec,
        )

    @property
    def completed(self) -> int:
        return self._completed

    def forget(self, uri: str) -> None:
        """Document closed: any run still in flight for it is discarded."""
        self._generations[uri] = self._generations.get(uri, 0) + 1

    def _closed_since(self, uri: str, generation: int) -> bool:
        return self._generations.get(uri, 0) != generation

    async def validate(self, uri: str, version: int, text: str) -> list[Diagnostic] | None:
        """Validate one document version.

        Returns:
            The published diagnostics, or None if the run was skipped
            (worker unavailable, stale version, document closed).
        """
        generation = self._generations.get(uri, 0)
        with validation_context(uri, version):
            return await self._validate(uri, version, text, generation)

    async def _validate(self, uri: str, version: int, text: str, generation: int) -> list[Diagnostic] | None:
        try:
            async with asyncio.timeout(self.timeout_sec):
                analysis = await self.bridge.analyze(text, ANALYZE_INCLUDE, uri_to_path(uri), version)
        except (ProcessSpawnError, BridgeCrashed, BridgeStopped) as e:
            if not self._unavailable:
                logger.warning("validation_unavailable", error=str(e))
                self._unavailable = True
            return None
        except TimeoutError:
            logger.warning("validation_timeout", timeout_sec=self.timeout_sec)
            return None
        except BridgeError as e:
            logger.warning("validation_failed", error=str(e))
            return None

        if self._unavailable:
            logger.info("validation_recovered")
            self._unavailable = False

        if analysis.failures:
            logger.debug("validation_partial", failed=sorted(analysis.failures))

        diagnostics = collect_diagnostics(analysis, text, uri, self.max_problems)
        previous = self.documents.get(uri)
        table = self._build_table(analysis, previous)
        positions = await build_position_index(
            text,
            table.names(),
            tokens=self._tokens(analysis),
            bridge=self.bridge,
        )

        if self._closed_since(uri, generation):
            logger.debug("validation_discarded_closed")
            return None

        entry = DocumentCacheEntry(
            uri=uri,
            version=version,
            table=table,
            diagnostics=tuple(diagnostics),
            symbol_positions=positions,
            text=text,
        )
        if not self.documents.set(entry):
            return None

        program = self._program_info(uri, version, analysis, table)
        if program is not None:
            self.typedb.set_program(program)

        await self._emit(uri, diagnostics)
        self._completed += 1
        logger.debug("validation_complete", symbols=len(table), diagnostics=len(diagnostics))
        return diagnostics

    @staticmethod
    def _build_table(analysis: AnalyzeResult, previous: DocumentCacheEntry | None) -> SymbolTable:
        parse = analysis.result.parse
        introspect = analysis.result.introspect
        if parse is None and introspect is None and previous is not None:
            # Keep the last good symbols while the document does not analyze.
            return previous.table

        parsed = [s for s in (Symbol.from_wire(w) for w in (parse.symbols if parse else [])) if s is not None]
        introspected = list(_introspected_map(introspect.symbols).values()) if introspect else []
        return SymbolTable(merge_symbols(parsed, introspected))

    @staticmethod
    def _tokens(analysis: AnalyzeResult) -> list[WireToken] | None:
        if analysis.result.tokenize is not None:
            return analysis.result.tokenize.tokens
        if analysis.result.parse is not None:
            return analysis.result.parse.tokens
        return None

    @staticmethod
    def _program_info(
        uri: str, version: int, analysis: AnalyzeResult, table: SymbolTable
    ) -> CompiledProgramInfo | None:
        introspect = analysis.result.introspect
        if introspect is None or not introspect.success or not introspect.symbols:
            return None
        return CompiledProgramInfo(
            uri=uri,
            version=version,
            symbols=_introspected_map(introspect.symbols),
            functions=_introspected_map(introspect.functions),
            variables=_introspected_map(introspect.variables),
            classes=_introspected_map(introspect.classes),
            inherits=tuple(info.path for info in introspect.inherits),
            imports=frozenset(s.directive_target for s in table.imports()),
        )

    async def _emit(self, uri: str, diagnostics: list[Diagnostic]) -> None:
        if self.sink is None:
            return
        try:
            result = self.sink(uri, diagnostics)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("diagnostics_sink_failed", error=str(e))
