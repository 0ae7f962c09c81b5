"""Tests for config/constants.py."""

from pikelens.config.constants import (
    ANALYZE_INCLUDE,
    COMMON_STDLIB_MODULES,
    DEBOUNCE_MS_DEFAULT,
    DEBOUNCE_MS_MAX,
    DEBOUNCE_MS_MIN,
    PROGRAM_IMPORT_BYTES,
    PROGRAM_INHERIT_BYTES,
    PROGRAM_SYMBOL_BYTES,
)


class TestConstants:
    def test_debounce_default_within_bounds(self) -> None:
        assert DEBOUNCE_MS_MIN <= DEBOUNCE_MS_DEFAULT <= DEBOUNCE_MS_MAX

    def test_program_size_weights(self) -> None:
        assert (PROGRAM_SYMBOL_BYTES, PROGRAM_INHERIT_BYTES, PROGRAM_IMPORT_BYTES) == (1024, 512, 64)

    def test_full_validation_requests_every_section(self) -> None:
        assert set(ANALYZE_INCLUDE) == {"parse", "introspect", "diagnostics", "tokenize"}

    def test_common_modules_include_nested_path(self) -> None:
        assert "Stdio" in COMMON_STDLIB_MODULES
        assert "Stdio.File" in COMMON_STDLIB_MODULES
