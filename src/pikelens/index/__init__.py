"""Symbol caches, stdlib index, waterfall resolver and context classifier."""

from pikelens.index.context import CompletionContextClassifier, classify_text, classify_tokens
from pikelens.index.documents import DocumentCache
from pikelens.index.includes import IncludeResolver
from pikelens.index.models import (
    CompiledProgramInfo,
    CompletionContext,
    ContextKind,
    Diagnostic,
    DiagnosticSeverity,
    DocumentCacheEntry,
    Position,
    Range,
    ResolutionTier,
    ResolutionWarning,
    ResolvedSymbol,
    StdlibModule,
    Symbol,
    SymbolKind,
)
from pikelens.index.resolver import Lookup, Resolution, WaterfallResolver
from pikelens.index.stdlib import StdlibIndex
from pikelens.index.symbols import SymbolTable
from pikelens.index.typedb import TypeDatabase

__all__ = [
    "CompiledProgramInfo",
    "CompletionContext",
    "CompletionContextClassifier",
    "ContextKind",
    "Diagnostic",
    "DiagnosticSeverity",
    "DocumentCache",
    "DocumentCacheEntry",
    "IncludeResolver",
    "Lookup",
    "Position",
    "Range",
    "Resolution",
    "ResolutionTier",
    "ResolutionWarning",
    "ResolvedSymbol",
    "StdlibIndex",
    "StdlibModule",
    "Symbol",
    "SymbolKind",
    "SymbolTable",
    "TypeDatabase",
    "WaterfallResolver",
    "classify_text",
    "classify_tokens",
]
