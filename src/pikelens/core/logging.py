"""Structured logging for the engine and CLI.

Every event emitted during a validation run carries ``run_id``, ``uri`` and
``version``, including events from bridge calls made on the run's behalf
(asyncio tasks copy the context they are created in). Console output is
suppressed while a Rich spinner is live.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog

from pikelens.core.progress import ConsoleSuppressingFilter

if TYPE_CHECKING:
    from pikelens.config.models import LoggingConfig, LogOutputConfig

# Third-party loggers that are only noise at DEBUG.
_QUIET_LOGGERS = ("asyncio",)

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


@contextmanager
def validation_context(uri: str, version: int) -> Iterator[str]:
    """Bind a fresh run id plus the document identity for the duration of a run.

    Yields:
        The run id.
    """
    run_id = uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(run_id=run_id, uri=uri, version=version):
        yield run_id


def current_run_id() -> str | None:
    run_id = structlog.contextvars.get_contextvars().get("run_id")
    return run_id if isinstance(run_id, str) else None


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Configure structlog. Pass config for multi-output, or use simple params.

    Args:
        config: Logging configuration with outputs
        json_format: Use JSON format for simple setup
        level: Default log level
    """
    from pikelens.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level,  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )

    default_level = _LEVEL_MAP.get(config.level.upper(), logging.INFO)
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(default_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfigured by tests and by the CLI's -v flag.
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(default_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for output in config.outputs:
        handler = _build_handler(output, shared_processors)
        handler.setLevel(_LEVEL_MAP.get((output.level or config.level).upper(), default_level))
        root_logger.addHandler(handler)


def _build_handler(output: LogOutputConfig, shared_processors: list[structlog.types.Processor]) -> logging.Handler:
    is_console = output.destination in ("stderr", "stdout")
    handler: logging.Handler
    if output.destination == "stderr":
        handler = logging.StreamHandler(sys.stderr)
    elif output.destination == "stdout":
        handler = logging.StreamHandler(sys.stdout)
    else:
        path = Path(output.destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a")

    renderer: structlog.types.Processor
    if output.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=is_console and sys.stderr.isatty(),
            pad_event_to=0,
            pad_level=False,
        )
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared_processors))

    if is_console:
        handler.addFilter(ConsoleSuppressingFilter())
    return handler


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger  # type: ignore[no-any-return]
