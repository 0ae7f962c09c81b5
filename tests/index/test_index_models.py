"""Tests for analysis domain models."""

from __future__ import annotations

import pytest

from pikelens.bridge.protocol import WirePosition, WireSymbol
from pikelens.index.models import (
    Diagnostic,
    DiagnosticSeverity,
    Position,
    Range,
    StdlibModule,
    Symbol,
    SymbolKind,
)
from pikelens.index.resolver import module_symbol


class TestPosition:
    @pytest.mark.parametrize(
        ("line", "column", "expected"),
        [
            (1, 1, Position(0, 0)),
            (10, 5, Position(9, 4)),
            (3, None, Position(2, 0)),
            (0, 0, Position(0, 0)),
        ],
    )
    def test_given_wire_position_when_converted_then_zero_based(
        self, line: int, column: int | None, expected: Position
    ) -> None:
        assert Position.from_wire(WirePosition(line=line, column=column)) == expected


class TestSymbol:
    def test_given_documentation_mapping_when_converted_then_text_kept(self) -> None:
        wire = WireSymbol.model_validate({"name": "f", "kind": "method", "documentation": {"text": "Does f."}})
        symbol = Symbol.from_wire(wire)
        assert symbol is not None
        assert symbol.documentation == "Does f."
        assert symbol.navigable is False

    def test_given_include_directive_when_checked_then_is_include(self) -> None:
        directive = Symbol(name="#include", kind=SymbolKind.IMPORT, classname='"x.h"')
        plain_import = Symbol(name="Stdio", kind=SymbolKind.IMPORT)

        assert directive.is_include
        assert directive.directive_target == '"x.h"'
        assert not plain_import.is_include
        assert plain_import.directive_target == "Stdio"


class TestDiagnostic:
    def test_given_diagnostic_when_serialized_then_lsp_shape(self) -> None:
        diag = Diagnostic(
            range=Range(Position(2, 4), Position(2, 9)),
            severity=DiagnosticSeverity.WARNING,
            message="Unused variable",
        )

        assert diag.to_dict() == {
            "range": {"start": {"line": 2, "character": 4}, "end": {"line": 2, "character": 9}},
            "severity": 2,
            "message": "Unused variable",
            "source": "pike",
        }

    @pytest.mark.parametrize(
        ("wire", "expected"),
        [
            ("error", DiagnosticSeverity.ERROR),
            ("warning", DiagnosticSeverity.WARNING),
            ("info", DiagnosticSeverity.INFORMATION),
            ("hint", DiagnosticSeverity.HINT),
            ("fatal", DiagnosticSeverity.ERROR),
        ],
    )
    def test_given_wire_severity_when_mapped_then_lsp_severity(self, wire: str, expected: DiagnosticSeverity) -> None:
        assert DiagnosticSeverity.from_wire(wire) is expected


class TestModuleSymbol:
    def test_given_nested_module_when_wrapped_then_last_component_named(self) -> None:
        module = StdlibModule(path="Stdio.File", symbols={}, resolved_path="/lib/Stdio.pmod/File.pike")

        symbol = module_symbol(module)

        assert symbol.name == "File"
        assert symbol.kind is SymbolKind.MODULE
        assert symbol.qualified_name == "Stdio.File"
        assert symbol.file == "/lib/Stdio.pmod/File.pike"
