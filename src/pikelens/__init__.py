"""pikelens: incremental analysis and symbol resolution for Pike tooling."""

__version__ = "0.1.0"
