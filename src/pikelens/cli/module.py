"""pikelens module command - list the symbols of a stdlib module."""

import asyncio
import json
from pathlib import Path

import click
from rich.table import Table

from pikelens.cli.utils import project_config, project_option
from pikelens.config.models import PikeLensConfig
from pikelens.core.progress import get_console, spinner
from pikelens.daemon.engine import AnalysisEngine
from pikelens.index.models import StdlibModule
from pikelens.index.symbols import extract_type_name


async def _load(config: PikeLensConfig, path: str) -> tuple[StdlibModule | None, str | None]:
    async with AnalysisEngine(config=config) as engine:
        module = await engine.get_module(path)
        spawn_error = engine.bridge.spawn_error
        return module, spawn_error.message if spawn_error else None


@click.command()
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@project_option
def module_command(path: str, as_json: bool, project: Path | None) -> None:
    """Print the symbols of stdlib module PATH (e.g. Stdio.File)."""
    config = project_config(project)

    with spinner(f"Resolving {path}"):
        module, spawn_error = asyncio.run(_load(config, path))

    if module is None:
        reason = spawn_error or "not found"
        raise click.ClickException(f"Module {path}: {reason}")

    rows = sorted(module.symbols.values(), key=lambda s: s.name)
    if as_json:
        click.echo(
            json.dumps(
                {
                    "module": module.path,
                    "resolved_path": module.resolved_path,
                    "inherits": list(module.inherits),
                    "symbols": [
                        {"name": s.name, "kind": s.kind.value, "type": extract_type_name(s.type)} for s in rows
                    ],
                },
                indent=2,
            )
        )
        return

    table = Table(title=f"{module.path} ({module.resolved_path or 'builtin'})")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Type", style="dim")
    for sym in rows:
        table.add_row(sym.name, sym.kind.value, extract_type_name(sym.type) or "")
    get_console().print(table)
    if module.inherits:
        get_console().print(f"Inherits: {', '.join(module.inherits)}", highlight=False)
