"""Analysis engine: the entry points used by the language server."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from types import TracebackType

import structlog

from pikelens.bridge.client import Bridge, BridgeHealth
from pikelens.config.models import PikeLensConfig
from pikelens.core.errors import BridgeError, ProcessSpawnError
from pikelens.daemon.pipeline import DiagnosticsSink, ValidationPipeline
from pikelens.daemon.scheduler import SchedulerStatus, ValidationScheduler
from pikelens.index.context import CompletionContextClassifier, classify_text
from pikelens.index.documents import DocumentCache
from pikelens.index.includes import IncludeResolver
from pikelens.index.models import CompletionContext, Diagnostic, StdlibModule
from pikelens.index.resolver import Lookup, Resolution, WaterfallResolver
from pikelens.index.stdlib import StdlibIndex, StdlibStats
from pikelens.index.typedb import TypeDatabase, TypeDatabaseStats

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class EngineHealth:
    """Snapshot of every component."""

    bridge: BridgeHealth
    scheduler: SchedulerStatus
    documents: int
    typedb: TypeDatabaseStats
    stdlib: StdlibStats
    validations_completed: int


@dataclass
class AnalysisEngine:
    """
    Orchestrates analysis components.

    Components:
    - Bridge: the analyzer worker process
    - ValidationScheduler / ValidationPipeline: debounced diagnostics
    - DocumentCache / TypeDatabase: per-document symbols and compiled programs
    - StdlibIndex / IncludeResolver / WaterfallResolver: name resolution
    - CompletionContextClassifier: cursor context for completion and hover
    """

    config: PikeLensConfig = field(default_factory=PikeLensConfig)
    sink: DiagnosticsSink | None = None

    bridge: Bridge = field(init=False)
    documents: DocumentCache = field(init=False)
    typedb: TypeDatabase = field(init=False)
    stdlib: StdlibIndex = field(init=False)
    includes: IncludeResolver = field(init=False)
    resolver: WaterfallResolver = field(init=False)
    classifier: CompletionContextClassifier = field(init=False)
    pipeline: ValidationPipeline = field(init=False)
    scheduler: ValidationScheduler = field(init=False)

    def __post_init__(self) -> None:
        config = self.config
        self.bridge = Bridge(config=config.bridge, stop_grace_sec=config.timeouts.bridge_stop_sec)
        self.documents = DocumentCache()
        self.typedb = TypeDatabase.from_config(config.cache)
        self.stdlib = StdlibIndex.from_config(self.bridge, config.stdlib)
        self.includes = IncludeResolver(self.bridge, ttl_sec=config.resolution.include_ttl_sec)
        self.resolver = WaterfallResolver(
            documents=self.documents,
            typedb=self.typedb,
            stdlib=self.stdlib,
            includes=self.includes,
            max_inherit_depth=config.resolution.max_inherit_depth,
        )
        self.classifier = CompletionContextClassifier(self.bridge)
        self.pipeline = ValidationPipeline.from_config(
            config,
            bridge=self.bridge,
            documents=self.documents,
            typedb=self.typedb,
            sink=self.sink,
        )
        self.scheduler = ValidationScheduler(
            validate=self.pipeline.validate,
            debounce_ms=config.validation.debounce_ms,
            on_closed=self._evict,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the worker. A worker that cannot be spawned leaves the engine degraded, not failed."""
        logger.info("engine_starting", executable=self.config.bridge.executable)
        try:
            await self.bridge.start()
        except ProcessSpawnError as e:
            logger.warning("engine_degraded", reason=e.message)
            return

        if self.config.bridge.debug:
            try:
                await self.bridge.set_debug(True)
            except BridgeError as e:
                logger.warning("set_debug_failed", error=str(e))

        if self.config.stdlib.preload:
            loaded = await self.stdlib.preload_common()
            logger.info("stdlib_preloaded", modules=loaded)

        logger.info("engine_started", pid=self.bridge.health().pid)

    async def stop(self) -> None:
        """Cancel pending validations, then stop the worker."""
        logger.info("engine_stopping")
        await self.scheduler.stop()
        await self.bridge.stop()
        logger.info("engine_stopped")

    async def __aenter__(self) -> AnalysisEngine:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Document events
    # ------------------------------------------------------------------

    def on_document_opened(self, uri: str, version: int, text: str) -> None:
        self.typedb.reopen(uri)
        self.scheduler.on_open(uri, version, text)

    def on_document_changed(self, uri: str, version: int, text: str) -> None:
        self.scheduler.on_change(uri, version, text)

    def on_document_saved(self, uri: str, version: int | None = None, text: str | None = None) -> None:
        self.scheduler.on_save(uri, version, text)

    def on_document_closed(self, uri: str) -> None:
        self.scheduler.on_close(uri)

    def _evict(self, uri: str) -> None:
        # The compiled program stays in the type database for workspace lookups;
        # closed entries are evicted first under memory pressure.
        self.pipeline.forget(uri)
        self.documents.delete(uri)
        self.typedb.mark_closed(uri)

    async def validate(self, uri: str, version: int, text: str) -> list[Diagnostic]:
        """Validate now and wait for the result.

        Returns:
            Diagnostics for ``version`` (or a newer version validated in the
            meantime). Empty if the worker is unavailable.
        """
        self.scheduler.on_save(uri, version, text)
        await self.scheduler.wait_idle(uri)
        entry = self.documents.get(uri)
        if entry is None or entry.version < version:
            return []
        return list(entry.diagnostics)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def resolve_symbol(self, qualified_name: str, context_uri: str) -> Lookup:
        """Resolve a plain (``foo``) or qualified (``A.b``, ``a->b``, ``A::b``) name."""
        try:
            async with asyncio.timeout(self.config.timeouts.request_sec):
                return await self.resolver.lookup(qualified_name, context_uri)
        except TimeoutError:
            logger.warning("resolve_timeout", name=qualified_name, uri=context_uri)
            return Lookup(symbol=None, warnings=())

    async def visible_symbols(self, uri: str) -> Resolution:
        return await self.resolver.visible_symbols(uri)

    async def get_completion_context(self, text: str, line: int, character: int) -> CompletionContext:
        try:
            async with asyncio.timeout(self.config.timeouts.request_sec):
                return await self.classifier.classify(text, line, character)
        except TimeoutError:
            logger.warning("completion_context_timeout", line=line, character=character)
            return classify_text(text, line, character)

    async def get_module(self, dotted_path: str) -> StdlibModule | None:
        try:
            async with asyncio.timeout(self.config.timeouts.request_sec):
                return await self.stdlib.get_module(dotted_path)
        except TimeoutError:
            logger.warning("stdlib_module_timeout", module=dotted_path)
            return None

    def health(self) -> EngineHealth:
        return EngineHealth(
            bridge=self.bridge.health(),
            scheduler=self.scheduler.status,
            documents=len(self.documents),
            typedb=self.typedb.memory_stats(),
            stdlib=self.stdlib.stats(),
            validations_completed=self.pipeline.completed,
        )
