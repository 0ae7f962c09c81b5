"""Wire models for the analyzer worker protocol.

Requests and responses are single JSON objects, one per line:

    -> {"id": 7, "method": "tokenize", "params": {"code": "..."}}
    <- {"id": 7, "result": {"tokens": [...]}}
    <- {"id": 8, "error": {"message": "...", "code": -32000}}

Result payloads are validated here so the rest of the package works with
typed objects instead of raw dicts. Unknown fields are ignored; the worker
adds timing metadata (``_perf``) that nothing downstream needs.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

AnalysisSection = Literal["parse", "introspect", "diagnostics", "tokenize"]


class WireModel(BaseModel):
    """Base for worker payloads: lenient on extras, accepts camelCase aliases."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# =============================================================================
# Envelope
# =============================================================================


class WireRequest(WireModel):
    id: int
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    def encode(self) -> bytes:
        """Serialize to one newline-terminated line."""
        return (json.dumps(self.model_dump(), separators=(",", ":")) + "\n").encode()


class WireError(WireModel):
    message: str
    code: int | None = None


class WireResponse(WireModel):
    id: int
    result: Any = None
    error: WireError | None = None


def request_key(method: str, params: dict[str, Any]) -> str:
    """Deduplication key: identical method and params share one wire request."""
    return f"{method}:{json.dumps(params, sort_keys=True, separators=(',', ':'))}"


# =============================================================================
# Symbols and positions
# =============================================================================


class WirePosition(WireModel):
    """Worker position. ``line`` is 1-based, ``column`` is 1-based when present."""

    file: str | None = None
    line: int = 1
    column: int | None = None


class WireSymbol(WireModel):
    name: str | None = None
    kind: str = "variable"
    modifiers: list[str] = Field(default_factory=list)
    position: WirePosition | None = None
    type: dict[str, Any] | None = None
    children: list[WireSymbol] = Field(default_factory=list)
    inherited: bool | None = None
    inherited_from: str | None = Field(default=None, alias="inheritedFrom")
    classname: str | None = None
    documentation: dict[str, Any] | str | None = None


class IntrospectedSymbol(WireModel):
    name: str | None = None
    kind: str = "variable"
    type: dict[str, Any] | None = None
    modifiers: list[str] = Field(default_factory=list)
    documentation: dict[str, Any] | str | None = None
    inherited: bool | None = None
    inherited_from: str | None = Field(default=None, alias="inheritedFrom")


class InheritanceInfo(WireModel):
    path: str
    program_id: str | None = None
    source_name: str | None = None
    label: str | None = None


class WireToken(WireModel):
    """Lexical token. ``line`` is 1-based, ``character`` 0-based or -1 when unknown."""

    text: str
    line: int
    character: int = -1
    file: int | str | None = None


class WireDiagnostic(WireModel):
    message: str
    severity: str = "error"
    position: WirePosition = Field(default_factory=WirePosition)
    end_position: WirePosition | None = Field(default=None, alias="endPosition")


class LinePosition(WireModel):
    line: int = 1
    character: int = 0


class UninitializedDiagnostic(WireModel):
    message: str
    severity: str = "warning"
    position: LinePosition | None = None
    variable: str | None = None
    type: str | None = None
    state: str | None = None


# =============================================================================
# Method results
# =============================================================================


class ParseResult(WireModel):
    symbols: list[WireSymbol] = Field(default_factory=list)
    diagnostics: list[WireDiagnostic] = Field(default_factory=list)
    tokens: list[WireToken] | None = None


class IntrospectionResult(WireModel):
    success: bool = False
    symbols: list[IntrospectedSymbol] = Field(default_factory=list)
    functions: list[IntrospectedSymbol] = Field(default_factory=list)
    variables: list[IntrospectedSymbol] = Field(default_factory=list)
    classes: list[IntrospectedSymbol] = Field(default_factory=list)
    inherits: list[InheritanceInfo] = Field(default_factory=list)
    diagnostics: list[WireDiagnostic] = Field(default_factory=list)


class UninitializedResult(WireModel):
    diagnostics: list[UninitializedDiagnostic] = Field(default_factory=list)


class TokenizeResult(WireModel):
    tokens: list[WireToken] = Field(default_factory=list)


class AnalyzeFailure(WireModel):
    message: str
    kind: str = ""


class AnalyzeSections(WireModel):
    parse: ParseResult | None = None
    introspect: IntrospectionResult | None = None
    diagnostics: UninitializedResult | None = None
    tokenize: TokenizeResult | None = None


class AnalyzeResult(WireModel):
    """Partial-success analyze response.

    Each requested section is present in either ``result`` or ``failures``.
    """

    result: AnalyzeSections = Field(default_factory=AnalyzeSections)
    failures: dict[str, AnalyzeFailure] = Field(default_factory=dict)

    def failure(self, section: AnalysisSection) -> AnalyzeFailure | None:
        return self.failures.get(section)


class TokenOccurrence(WireModel):
    text: str
    line: int
    character: int


class FindOccurrencesResult(WireModel):
    occurrences: list[TokenOccurrence] = Field(default_factory=list)


class StdlibResolveResult(WireModel):
    found: bool = False
    path: str | None = None
    module: str | None = None
    symbols: list[IntrospectedSymbol] = Field(default_factory=list)
    functions: list[IntrospectedSymbol] = Field(default_factory=list)
    variables: list[IntrospectedSymbol] = Field(default_factory=list)
    classes: list[IntrospectedSymbol] = Field(default_factory=list)
    inherits: list[InheritanceInfo] = Field(default_factory=list)
    error: str | None = None


class IncludeResolveResult(WireModel):
    path: str = ""
    exists: bool = False
    original_path: str = Field(default="", alias="originalPath")


class InheritedMembersResult(WireModel):
    found: bool = False
    members: list[IntrospectedSymbol] = Field(default_factory=list)


class WireCompletionContext(WireModel):
    context: Literal["none", "global", "member_access", "scope_access", "identifier"] = "none"
    object_name: str = Field(default="", alias="objectName")
    prefix: str = ""
    operator: Literal["->", ".", "::", ""] = ""


class DebugResult(WireModel):
    debug_mode: int = 0
    message: str = ""
