"""pikelens health command - show analyzer worker status."""

import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click
from rich.table import Table

from pikelens.cli.utils import project_config, project_option
from pikelens.config.models import PikeLensConfig
from pikelens.core.progress import get_console, spinner
from pikelens.daemon.engine import AnalysisEngine


async def _collect(config: PikeLensConfig) -> dict[str, Any]:
    async with AnalysisEngine(config=config) as engine:
        version = await engine.bridge.probe_version()
        health = engine.health()
        return {"version": version, "bridge": asdict(health.bridge)}


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@project_option
def health_command(as_json: bool, project: Path | None) -> None:
    """Start the analyzer worker and report its health."""
    config = project_config(project)

    with spinner("Starting analyzer"):
        report = asyncio.run(_collect(config))

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return

    bridge = report["bridge"]
    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Worker", "[green]running[/green]" if bridge["running"] else "[red]not running[/red]")
    table.add_row("Pike version", report["version"] or "unknown")
    table.add_row("Executable", bridge["executable"])
    table.add_row("Analyzer", bridge["analyzer_path"] or "-")
    if bridge["pid"] is not None:
        table.add_row("PID", str(bridge["pid"]))
    table.add_row("Restarts", str(bridge["restarts"]))
    if bridge["spawn_error"]:
        table.add_row("Spawn error", f"[red]{bridge['spawn_error']}[/red]")
    for line in bridge["recent_errors"]:
        table.add_row("Recent error", line)

    get_console().print(table)
