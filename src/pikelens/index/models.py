"""Domain models for analysis results.

Everything here is an immutable snapshot. Caches replace whole objects,
so a reader holding a reference never sees a half-written entry.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pikelens.config.constants import (
    PROGRAM_IMPORT_BYTES,
    PROGRAM_INHERIT_BYTES,
    PROGRAM_SYMBOL_BYTES,
)

if TYPE_CHECKING:
    from pikelens.bridge.protocol import IntrospectedSymbol, WirePosition, WireSymbol
    from pikelens.index.symbols import SymbolTable


class SymbolKind(Enum):
    CLASS = "class"
    METHOD = "method"
    VARIABLE = "variable"
    CONSTANT = "constant"
    TYPEDEF = "typedef"
    ENUM = "enum"
    ENUM_CONSTANT = "enum_constant"
    INHERIT = "inherit"
    IMPORT = "import"
    MODULE = "module"

    @classmethod
    def from_wire(cls, kind: str | None) -> SymbolKind:
        """Map worker kinds. Introspection says ``function`` where parse says ``method``."""
        if kind == "function":
            return cls.METHOD
        try:
            return cls(kind)
        except ValueError:
            return cls.VARIABLE


@dataclass(frozen=True, slots=True)
class Position:
    """Zero-based line and character."""

    line: int
    character: int

    @classmethod
    def from_wire(cls, pos: WirePosition) -> Position:
        column = pos.column - 1 if pos.column else 0
        return cls(line=max(0, pos.line - 1), character=max(0, column))


@dataclass(frozen=True, slots=True)
class Range:
    start: Position
    end: Position


def _documentation_text(doc: Any) -> str | None:
    if isinstance(doc, str):
        return doc or None
    if isinstance(doc, dict):
        text = doc.get("text")
        return text if isinstance(text, str) and text else None
    return None


@dataclass(frozen=True, slots=True)
class Symbol:
    """A declared name.

    ``position`` is None for introspection-only symbols; they resolve but
    cannot be navigated to. ``classname`` holds the target of inherit,
    import and #include directives.
    """

    name: str
    kind: SymbolKind
    position: Position | None = None
    type: dict[str, Any] | None = None
    modifiers: tuple[str, ...] = ()
    children: tuple[Symbol, ...] = ()
    documentation: str | None = None
    classname: str | None = None
    qualified_name: str | None = None
    file: str | None = None

    @property
    def navigable(self) -> bool:
        return self.position is not None

    @property
    def is_include(self) -> bool:
        return self.kind is SymbolKind.IMPORT and self.name.startswith("#")

    @property
    def directive_target(self) -> str:
        """Path named by an inherit/import/#include directive."""
        return self.classname or self.name

    @classmethod
    def from_wire(cls, sym: WireSymbol) -> Symbol | None:
        """Convert a parse symbol. Returns None for nameless symbols."""
        if not sym.name:
            return None
        children = tuple(c for c in (cls.from_wire(child) for child in sym.children) if c is not None)
        return cls(
            name=sym.name,
            kind=SymbolKind.from_wire(sym.kind),
            position=Position.from_wire(sym.position) if sym.position else None,
            type=sym.type,
            modifiers=tuple(sym.modifiers),
            children=children,
            documentation=_documentation_text(sym.documentation),
            classname=sym.classname,
            file=sym.position.file if sym.position else None,
        )

    @classmethod
    def from_introspected(cls, sym: IntrospectedSymbol) -> Symbol | None:
        if not sym.name:
            return None
        return cls(
            name=sym.name,
            kind=SymbolKind.from_wire(sym.kind),
            type=sym.type,
            modifiers=tuple(sym.modifiers),
            documentation=_documentation_text(sym.documentation),
        )


class DiagnosticSeverity(IntEnum):
    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4

    @classmethod
    def from_wire(cls, severity: str) -> DiagnosticSeverity:
        return {
            "warning": cls.WARNING,
            "info": cls.INFORMATION,
            "information": cls.INFORMATION,
            "hint": cls.HINT,
        }.get(severity, cls.ERROR)


@dataclass(frozen=True, slots=True)
class Diagnostic:
    range: Range
    severity: DiagnosticSeverity
    message: str
    source: str = "pike"

    def to_dict(self) -> dict[str, Any]:
        return {
            "range": {
                "start": {"line": self.range.start.line, "character": self.range.start.character},
                "end": {"line": self.range.end.line, "character": self.range.end.character},
            },
            "severity": int(self.severity),
            "message": self.message,
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class DocumentCacheEntry:
    """Latest analyzed snapshot of one open document."""

    uri: str
    version: int
    table: SymbolTable
    diagnostics: tuple[Diagnostic, ...] = ()
    symbol_positions: Mapping[str, tuple[Position, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    text: str = ""


def estimate_program_size(symbol_count: int, inherit_count: int, import_count: int = 0) -> int:
    """Deterministic size estimate in bytes."""
    return (
        symbol_count * PROGRAM_SYMBOL_BYTES
        + inherit_count * PROGRAM_INHERIT_BYTES
        + import_count * PROGRAM_IMPORT_BYTES
    )


@dataclass(frozen=True, slots=True)
class CompiledProgramInfo:
    """Type database entry: introspected view of one compiled document."""

    uri: str
    version: int
    symbols: Mapping[str, Symbol]
    functions: Mapping[str, Symbol] = field(default_factory=lambda: MappingProxyType({}))
    variables: Mapping[str, Symbol] = field(default_factory=lambda: MappingProxyType({}))
    classes: Mapping[str, Symbol] = field(default_factory=lambda: MappingProxyType({}))
    inherits: tuple[str, ...] = ()
    imports: frozenset[str] = frozenset()
    compiled_at: float = field(default_factory=time.monotonic)
    size_bytes: int = -1

    def __post_init__(self) -> None:
        if self.size_bytes < 0:
            size = estimate_program_size(len(self.symbols), len(self.inherits), len(self.imports))
            object.__setattr__(self, "size_bytes", size)


@dataclass(frozen=True, slots=True)
class StdlibModule:
    """A fully loaded stdlib module. Partial loads are never stored."""

    path: str
    symbols: Mapping[str, Symbol]
    resolved_path: str | None = None
    inherits: tuple[str, ...] = ()
    loaded_at: float = field(default_factory=time.monotonic)
    size_bytes: int = 0


class ResolutionTier(Enum):
    CURRENT = "current"
    INCLUDE = "include"
    IMPORT = "import"
    INHERIT = "inherit"
    STDLIB = "stdlib"
    WORKSPACE = "workspace"


@dataclass(frozen=True, slots=True)
class ResolvedSymbol:
    """A symbol plus where it came from. ``origin`` is a URI or file path."""

    symbol: Symbol
    origin: str | None
    tier: ResolutionTier


@dataclass(frozen=True, slots=True)
class ResolutionWarning:
    kind: str
    message: str
    chain: tuple[str, ...] = ()


class ContextKind(Enum):
    GLOBAL = "global"
    IDENTIFIER = "identifier"
    MEMBER_ACCESS = "member_access"
    SCOPE_ACCESS = "scope_access"


@dataclass(frozen=True, slots=True)
class CompletionContext:
    context: ContextKind
    object_name: str = ""
    prefix: str = ""
    operator: str = ""
