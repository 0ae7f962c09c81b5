"""Configuration constants.

Values here are protocol constraints and implementation details that are not
user-configurable. For configurable values, see models.py.
"""

# =============================================================================
# Validation debounce bounds
# =============================================================================

DEBOUNCE_MS_DEFAULT = 250
"""Default quiet period before an edited document is validated."""

DEBOUNCE_MS_MIN = 50
"""Lower bound; below this typing triggers per-keystroke compiles."""

DEBOUNCE_MS_MAX = 2000
"""Upper bound; above this diagnostics stop feeling live."""

# =============================================================================
# Size estimation (bytes)
# =============================================================================

PROGRAM_SYMBOL_BYTES = 1024
PROGRAM_INHERIT_BYTES = 512
PROGRAM_IMPORT_BYTES = 64

STDLIB_SYMBOL_BYTES = 400
STDLIB_INHERIT_BYTES = 200

# =============================================================================
# Worker protocol
# =============================================================================

ANALYZE_INCLUDE = ("parse", "introspect", "diagnostics", "tokenize")
"""Sections requested from the worker for a full validation."""

COMMON_STDLIB_MODULES = ("Stdio", "Array", "String", "Mapping", "Stdio.File")
"""Modules warmed by StdlibIndex.preload_common()."""

DEFAULT_FILENAME = "input.pike"
"""Filename sent to the worker when a document has no file path."""
