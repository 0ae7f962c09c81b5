"""Analyzer worker bridge: process wrapper, wire protocol, RPC client."""

from pikelens.bridge.client import Bridge, BridgeHealth
from pikelens.bridge.process import WorkerProcess, build_argv
from pikelens.bridge.protocol import AnalyzeResult, WireSymbol, WireToken

__all__ = [
    "Bridge",
    "BridgeHealth",
    "WorkerProcess",
    "build_argv",
    "AnalyzeResult",
    "WireSymbol",
    "WireToken",
]
