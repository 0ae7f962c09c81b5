"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (PIKELENS__SECTION__KEY)
3. Project YAML (.pikelens/config.yaml)
4. Global YAML (~/.config/pikelens/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    PIKELENS__<SECTION>__<KEY>=<VALUE>

Examples:
    PIKELENS__LOGGING__LEVEL=DEBUG
    PIKELENS__BRIDGE__EXECUTABLE=/opt/pike/bin/pike
    PIKELENS__VALIDATION__DEBOUNCE_MS=400
    PIKELENS__CACHE__TYPE_DB_BUDGET_MB=64
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from pikelens.config.constants import (
    DEBOUNCE_MS_DEFAULT,
    DEBOUNCE_MS_MAX,
    DEBOUNCE_MS_MIN,
)

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        PIKELENS__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every bridge request.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class BridgeConfig(BaseModel):
    """Worker process configuration.

    Env vars:
        PIKELENS__BRIDGE__EXECUTABLE: Pike interpreter (name on PATH or absolute path)
        PIKELENS__BRIDGE__ANALYZER_PATH: Analyzer entry script passed to the interpreter
        PIKELENS__BRIDGE__WORKING_DIR: Working directory for the worker
    """

    executable: str = Field(
        default="pike",
        description="Interpreter executable. Resolved on PATH unless absolute.",
    )
    analyzer_path: str | None = Field(
        default=None,
        description="Analyzer script run by the interpreter. None runs the executable bare.",
    )
    working_dir: str | None = Field(
        default=None,
        description="Working directory for the worker. Default: current directory.",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the worker.",
    )
    recent_errors_max: int = Field(
        default=5,
        ge=1,
        description="Number of stderr error lines kept for the health snapshot.",
    )
    debug: bool = Field(
        default=False,
        description="Ask the analyzer to emit debug output on stderr.",
    )


class ValidationConfig(BaseModel):
    """Validation pipeline configuration.

    Env vars:
        PIKELENS__VALIDATION__DEBOUNCE_MS: Quiet period before validating an edited document
        PIKELENS__VALIDATION__MAX_PROBLEMS: Diagnostics cap per document
    """

    debounce_ms: int = Field(
        default=DEBOUNCE_MS_DEFAULT,
        ge=DEBOUNCE_MS_MIN,
        le=DEBOUNCE_MS_MAX,
        description="Debounce delay. TRADEOFF: lower feels faster but recompiles more often.",
    )
    max_problems: int = Field(
        default=100,
        ge=1,
        description="Maximum diagnostics reported per document.",
    )


class CacheConfig(BaseModel):
    """Type database configuration.

    Env vars:
        PIKELENS__CACHE__TYPE_DB_BUDGET_MB: Memory budget for compiled program info
    """

    type_db_budget_mb: float = Field(
        default=50.0,
        gt=0,
        description="Estimated memory ceiling for the type database. "
        "RISK: too low evicts open documents and degrades completion.",
    )


class StdlibConfig(BaseModel):
    """Stdlib index configuration.

    Env vars:
        PIKELENS__STDLIB__MAX_MODULES: Maximum cached modules
        PIKELENS__STDLIB__NEGATIVE_TTL_SEC: How long a failed module lookup is remembered
    """

    max_modules: int = Field(default=50, ge=1)
    budget_mb: float = Field(default=20.0, gt=0)
    negative_ttl_sec: float = Field(
        default=300.0,
        ge=0,
        description="Failed lookups are retried after this long, or after a worker restart.",
    )
    preload: bool = Field(
        default=False,
        description="Warm common modules at startup.",
    )


class ResolutionConfig(BaseModel):
    """Module resolution configuration."""

    include_ttl_sec: float = Field(
        default=30.0,
        ge=0,
        description="How long parsed #include files are reused.",
    )
    max_inherit_depth: int = Field(
        default=32,
        ge=1,
        description="Depth bound for inheritance traversal.",
    )


class TimeoutsConfig(BaseModel):
    """Timeout configuration. Applied by callers of the bridge, not the bridge itself.

    Env vars:
        PIKELENS__TIMEOUTS__VALIDATE_SEC: Max time for one document validation
    """

    bridge_stop_sec: float = Field(
        default=2.0,
        description="Grace period after SIGTERM before the worker is killed.",
    )
    validate_sec: float = Field(
        default=30.0,
        description="Max time for a full analyze call.",
    )
    request_sec: float = Field(
        default=10.0,
        description="Max time for light requests (tokenize, resolve).",
    )


class PikeLensConfig(BaseModel):
    """Root configuration for pikelens."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    stdlib: StdlibConfig = Field(default_factory=StdlibConfig)
    resolution: ResolutionConfig = Field(default_factory=ResolutionConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
