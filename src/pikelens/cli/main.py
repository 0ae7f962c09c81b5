"""pikelens CLI - pikelens command."""

import click

from pikelens import __version__
from pikelens.cli.check import check_command
from pikelens.cli.health import health_command
from pikelens.cli.module import module_command
from pikelens.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="pikelens")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """pikelens - Pike analysis backend: diagnostics, symbols and stdlib lookup."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(level="DEBUG" if verbose else "WARNING")


cli.add_command(check_command, name="check")
cli.add_command(health_command, name="health")
cli.add_command(module_command, name="module")


if __name__ == "__main__":
    cli()
