"""CLI utilities."""

from pathlib import Path

import click

from pikelens.config.loader import load_config
from pikelens.config.models import PikeLensConfig
from pikelens.core.errors import ConfigError

project_option = click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory holding .pikelens/config.yaml (default: current directory)",
)


def project_config(project: Path | None) -> PikeLensConfig:
    """Load configuration for a project directory.

    Raises:
        click.ClickException: If the configuration is invalid
    """
    try:
        return load_config(project.resolve() if project else None)
    except ConfigError as e:
        raise click.ClickException(f"Invalid configuration: {e.message}") from e
