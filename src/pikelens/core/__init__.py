"""Core module exports."""

from pikelens.core.errors import (
    BridgeCrashed,
    BridgeError,
    BridgeStopped,
    ConfigError,
    ErrorCode,
    InternalError,
    PikeLensError,
    ProcessSpawnError,
)
from pikelens.core.logging import (
    configure_logging,
    current_run_id,
    get_logger,
    validation_context,
)
from pikelens.core.progress import spinner, status

__all__ = [
    # Errors
    "PikeLensError",
    "ErrorCode",
    "ConfigError",
    "BridgeError",
    "BridgeCrashed",
    "BridgeStopped",
    "ProcessSpawnError",
    "InternalError",
    # Logging
    "configure_logging",
    "current_run_id",
    "get_logger",
    "validation_context",
    # Progress
    "spinner",
    "status",
]
