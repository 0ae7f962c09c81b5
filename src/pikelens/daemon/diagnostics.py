"""Worker diagnostics to editor diagnostics.

Worker lines are 1-based; everything produced here is 0-based.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from pikelens.core.errors import AnalysisError, IntrospectionFailure, ParseError
from pikelens.index.models import Diagnostic, DiagnosticSeverity, Position, Range

if TYPE_CHECKING:
    from pikelens.bridge.protocol import (
        AnalyzeFailure,
        AnalyzeResult,
        UninitializedDiagnostic,
        WireDiagnostic,
    )

# Module-resolution noise the compiler emits for code that is fine in context.
SKIP_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"Index .* not present in module",
        r"Indexed module was:",
        r"Illegal program identifier",
        r"Not a valid program specifier",
        r"Failed to evaluate constant expression",
    )
)

_COMMENT_STARTS = ("//", "*", "/*")
_COMMENT_HIGHLIGHT = 10
_UNNAMED_HIGHLIGHT = 10


def should_skip(message: str) -> bool:
    return any(p.search(message) for p in SKIP_PATTERNS)


def convert_compile_diagnostic(diag: WireDiagnostic, lines: list[str]) -> Diagnostic:
    """Compiler diagnostic: whole line from the column (or first non-blank) onwards."""
    line = max(0, diag.position.line - 1)
    text = lines[line] if line < len(lines) else ""

    if diag.position.column:
        start = diag.position.column - 1
    else:
        stripped = len(text) - len(text.lstrip())
        start = stripped if text.strip() else 0
    end = len(text)

    if text.strip().startswith(_COMMENT_STARTS):
        end = min(start + _COMMENT_HIGHLIGHT, len(text))
    if end <= start:
        end = min(start + max(1, len(text.strip())), len(text))

    end_pos = Position(line, max(end, start))
    if diag.end_position is not None and diag.end_position.column:
        candidate = Position(max(0, diag.end_position.line - 1), diag.end_position.column - 1)
        if (candidate.line, candidate.character) > (line, start):
            end_pos = candidate

    return Diagnostic(
        range=Range(Position(line, start), end_pos),
        severity=DiagnosticSeverity.from_wire(diag.severity),
        message=diag.message,
    )


def convert_uninitialized(diag: UninitializedDiagnostic) -> Diagnostic:
    line = max(0, (diag.position.line if diag.position else 1) - 1)
    start = max(0, diag.position.character if diag.position else 0)
    width = len(diag.variable) if diag.variable else _UNNAMED_HIGHLIGHT
    return Diagnostic(
        range=Range(Position(line, start), Position(line, start + width)),
        severity=DiagnosticSeverity.WARNING if diag.severity == "warning" else DiagnosticSeverity.ERROR,
        message=diag.message,
        source="pike-uninitialized" if diag.variable else "pike",
    )


def failure_diagnostic(section: str, failure: AnalyzeFailure, uri: str) -> Diagnostic:
    """A failed analyze section becomes a warning at the top of the file."""
    err: AnalysisError
    if section == "parse":
        err = ParseError.from_worker(uri, failure.message)
    else:
        err = IntrospectionFailure.from_worker(uri, failure.message)
    origin = Position(0, 0)
    return Diagnostic(
        range=Range(origin, origin),
        severity=DiagnosticSeverity.WARNING,
        message=err.message,
        source="pikelens",
    )


def collect_diagnostics(analysis: AnalyzeResult, text: str, uri: str, max_problems: int) -> list[Diagnostic]:
    """All diagnostics for one analyze response, noise removed, capped."""
    lines = text.split("\n")
    out: list[Diagnostic] = []

    for section in ("parse", "introspect"):
        failure = analysis.failure(section)  # type: ignore[arg-type]
        if failure is not None:
            out.append(failure_diagnostic(section, failure, uri))

    sections = analysis.result
    compile_diags: list[WireDiagnostic] = []
    if sections.introspect is not None:
        compile_diags = sections.introspect.diagnostics
    elif sections.parse is not None:
        compile_diags = sections.parse.diagnostics

    for diag in compile_diags:
        if len(out) >= max_problems:
            return out
        if should_skip(diag.message):
            continue
        out.append(convert_compile_diagnostic(diag, lines))

    if sections.diagnostics is not None:
        for extra in sections.diagnostics.diagnostics:
            if len(out) >= max_problems:
                return out
            out.append(convert_uninitialized(extra))

    return out[:max_problems]
