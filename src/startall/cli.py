#!/usr/bin/env python3
"""Main CLI entry point for startall."""
import logging
from pathlib import Path

import click

from .config import DEFAULT_CONFIG_FILE, load_config
from .manifest import ManifestError, load_manifest
from .session import Session
from .tui.app import run_app, setup_logging

logger = logging.getLogger(__name__)


@click.command()
@click.argument("config_file", default=DEFAULT_CONFIG_FILE, required=False,
                type=click.Path(dir_okay=False))
def cli(config_file):
    """Run the package.json scripts in the current directory side by side."""
    setup_logging()

    try:
        commands = load_manifest(Path.cwd())
    except ManifestError as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()

    if not commands:
        click.echo("No npm scripts found in package.json", err=True)
        raise click.Abort()

    config = load_config(config_file)
    session = Session.create(commands, config, Path(config_file))
    logger.info(f"Loaded {len(commands)} commands, config {config_file}")

    message = run_app(session)
    if message:
        click.echo(message)


if __name__ == "__main__":
    cli()
