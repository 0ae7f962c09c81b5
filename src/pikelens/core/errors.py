"""pikelens error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Bridge
- 4xxx: Analysis
- 9xxx: Internal

Bridge errors are raised to callers of the bridge. Analysis errors are
internal to the engine: they become diagnostics, resolution warnings or log
events, and never escape the public entry points.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_FILE_NOT_FOUND = 2004

    # Bridge (3xxx)
    BRIDGE_SPAWN_FAILED = 3001
    BRIDGE_CRASHED = 3002
    BRIDGE_STOPPED = 3003
    BRIDGE_REQUEST_FAILED = 3004
    BRIDGE_BAD_RESPONSE = 3005

    # Analysis (4xxx)
    PARSE_ERROR = 4001
    INTROSPECTION_FAILURE = 4002
    MODULE_RESOLUTION_FAILURE = 4003
    CACHE_BUDGET_EXCEEDED = 4004
    STALE_VERSION_WRITE = 4005

    # Internal (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_TIMEOUT = 9002


@dataclass(frozen=True, slots=True)
class PikeLensError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'BRIDGE_CRASHED')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(PikeLensError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


# =============================================================================
# Bridge
# =============================================================================


class BridgeError(PikeLensError):
    """Errors raised by the worker bridge."""


class ProcessSpawnError(BridgeError):
    """The worker process cannot be started. Fatal until reconfigured."""

    @classmethod
    def executable_not_found(cls, executable: str) -> "ProcessSpawnError":
        return cls(
            code=ErrorCode.BRIDGE_SPAWN_FAILED,
            message=f"Worker executable not found: {executable}",
            details={"executable": executable},
        )

    @classmethod
    def script_not_found(cls, path: str) -> "ProcessSpawnError":
        return cls(
            code=ErrorCode.BRIDGE_SPAWN_FAILED,
            message=f"Analyzer script not found: {path}",
            details={"analyzer_path": path},
        )

    @classmethod
    def os_error(cls, executable: str, reason: str) -> "ProcessSpawnError":
        return cls(
            code=ErrorCode.BRIDGE_SPAWN_FAILED,
            message=f"Failed to spawn {executable}: {reason}",
            details={"executable": executable, "reason": reason},
        )


class BridgeCrashed(BridgeError):
    """The worker died while requests were pending."""

    @classmethod
    def exited(cls, returncode: int | None, method: str | None = None) -> "BridgeCrashed":
        return cls(
            code=ErrorCode.BRIDGE_CRASHED,
            message=f"Worker process exited with code {returncode}",
            retryable=True,
            details={"returncode": returncode, "method": method},
        )

    @classmethod
    def fatal_output(cls, line: str) -> "BridgeCrashed":
        return cls(
            code=ErrorCode.BRIDGE_CRASHED,
            message=f"Worker reported a fatal fault: {line}",
            retryable=True,
            details={"stderr": line},
        )


class BridgeStopped(BridgeError):
    """The bridge was stopped while requests were pending."""

    @classmethod
    def during(cls, method: str) -> "BridgeStopped":
        return cls(
            code=ErrorCode.BRIDGE_STOPPED,
            message=f"Bridge stopped before '{method}' completed",
            retryable=True,
            details={"method": method},
        )


class BridgeRequestError(BridgeError):
    """The worker answered with an error object."""

    @classmethod
    def from_worker(cls, method: str, message: str, code: int | None = None) -> "BridgeRequestError":
        return cls(
            code=ErrorCode.BRIDGE_REQUEST_FAILED,
            message=f"Worker error in '{method}': {message}",
            details={"method": method, "worker_code": code},
        )


class BridgeResponseError(BridgeError):
    """The worker answered with a payload of the wrong shape."""

    @classmethod
    def invalid(cls, method: str, reason: str) -> "BridgeResponseError":
        return cls(
            code=ErrorCode.BRIDGE_BAD_RESPONSE,
            message=f"Malformed response to '{method}': {reason}",
            details={"method": method, "reason": reason},
        )


# =============================================================================
# Analysis
# =============================================================================


class AnalysisError(PikeLensError):
    """Per-document analysis failures. Never raised past the engine."""


class ParseError(AnalysisError):
    @classmethod
    def from_worker(cls, uri: str, reason: str) -> "ParseError":
        return cls(
            code=ErrorCode.PARSE_ERROR,
            message=f"Parse failed: {reason}",
            details={"uri": uri},
        )


class IntrospectionFailure(AnalysisError):
    @classmethod
    def from_worker(cls, uri: str, reason: str) -> "IntrospectionFailure":
        return cls(
            code=ErrorCode.INTROSPECTION_FAILURE,
            message=f"Introspection failed: {reason}",
            details={"uri": uri},
        )


class ModuleResolutionFailure(AnalysisError):
    @classmethod
    def not_found(cls, name: str, reason: str = "no source matched") -> "ModuleResolutionFailure":
        return cls(
            code=ErrorCode.MODULE_RESOLUTION_FAILURE,
            message=f"Cannot resolve '{name}': {reason}",
            details={"name": name},
        )


class CacheBudgetExceeded(AnalysisError):
    @classmethod
    def over(cls, total_bytes: int, budget_bytes: int) -> "CacheBudgetExceeded":
        return cls(
            code=ErrorCode.CACHE_BUDGET_EXCEEDED,
            message=f"Type database at {total_bytes} bytes exceeds budget {budget_bytes}",
            details={"total_bytes": total_bytes, "budget_bytes": budget_bytes},
        )


class StaleVersionWrite(AnalysisError):
    @classmethod
    def rejected(cls, uri: str, version: int, current: int) -> "StaleVersionWrite":
        return cls(
            code=ErrorCode.STALE_VERSION_WRITE,
            message=f"Version {version} of {uri} is older than cached version {current}",
            details={"uri": uri, "version": version, "current": current},
        )


class InternalError(PikeLensError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
