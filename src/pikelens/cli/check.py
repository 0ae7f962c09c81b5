"""pikelens check command - validate files and print their diagnostics."""

import asyncio
import json
from pathlib import Path

import click

from pikelens.cli.utils import project_config, project_option
from pikelens.config.models import PikeLensConfig
from pikelens.core.progress import pluralize, spinner, status
from pikelens.daemon.engine import AnalysisEngine
from pikelens.index.documents import path_to_uri
from pikelens.index.models import Diagnostic, DiagnosticSeverity

EXIT_WORKER_UNAVAILABLE = 2


class WorkerUnavailable(click.ClickException):
    exit_code = EXIT_WORKER_UNAVAILABLE


def format_diagnostic(path: Path, diag: Diagnostic) -> str:
    """``file:line:col: severity: message`` with 1-based line and column."""
    start = diag.range.start
    severity = diag.severity.name.lower()
    return f"{path}:{start.line + 1}:{start.character + 1}: {severity}: {diag.message} [{diag.source}]"


async def _check(config: PikeLensConfig, files: list[Path]) -> dict[Path, list[Diagnostic]]:
    async with AnalysisEngine(config=config) as engine:
        spawn_error = engine.bridge.spawn_error
        if spawn_error is not None:
            raise WorkerUnavailable(f"Analyzer worker unavailable: {spawn_error.message}")
        results: dict[Path, list[Diagnostic]] = {}
        for path in files:
            text = path.read_text(encoding="utf-8", errors="replace")
            results[path] = await engine.validate(path_to_uri(path), 1, text)
        return results


@click.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@project_option
def check_command(files: tuple[Path, ...], as_json: bool, project: Path | None) -> None:
    """Validate Pike FILES and print diagnostics.

    Exits 1 if any error was reported, 2 if the analyzer cannot be started.
    """
    config = project_config(project)

    with spinner(f"Checking {pluralize(len(files), 'file')}"):
        results = asyncio.run(_check(config, list(files)))

    errors = sum(1 for diags in results.values() for d in diags if d.severity is DiagnosticSeverity.ERROR)
    total = sum(len(diags) for diags in results.values())

    if as_json:
        click.echo(
            json.dumps(
                {str(path): [d.to_dict() for d in diags] for path, diags in results.items()},
                indent=2,
            )
        )
    else:
        for path, diags in results.items():
            for diag in diags:
                click.echo(format_diagnostic(path, diag))
        if errors:
            status(f"{pluralize(errors, 'error')}, {pluralize(total, 'problem')} total", style="error")
        elif total:
            status(pluralize(total, "problem"), style="warning")
        else:
            status("No problems found", style="success")

    if errors:
        raise SystemExit(1)
