"""Validation scheduling and the analysis engine facade."""

from pikelens.daemon.engine import AnalysisEngine, EngineHealth
from pikelens.daemon.pipeline import DiagnosticsSink, ValidationPipeline
from pikelens.daemon.scheduler import DocumentState, SchedulerStatus, ValidationScheduler

__all__ = [
    "AnalysisEngine",
    "DiagnosticsSink",
    "DocumentState",
    "EngineHealth",
    "SchedulerStatus",
    "ValidationPipeline",
    "ValidationScheduler",
]
