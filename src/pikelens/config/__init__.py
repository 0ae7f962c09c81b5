"""Config module exports."""

from pikelens.config.loader import PikeLensSettings, load_config
from pikelens.config.models import (
    BridgeConfig,
    CacheConfig,
    LoggingConfig,
    PikeLensConfig,
    ResolutionConfig,
    StdlibConfig,
    TimeoutsConfig,
    ValidationConfig,
)

__all__ = [
    "load_config",
    "PikeLensConfig",
    "PikeLensSettings",
    "BridgeConfig",
    "CacheConfig",
    "LoggingConfig",
    "ResolutionConfig",
    "StdlibConfig",
    "TimeoutsConfig",
    "ValidationConfig",
]
