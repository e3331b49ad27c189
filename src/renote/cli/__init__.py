"""Command line entry points for renote."""

import logging

import typer
from typer import Typer

from ..orchestrator.config_cli import orchestrator_config_app
from .orchestrator import orchestrator_app


cli = Typer(help="renote command line tools")
cli.add_typer(orchestrator_app, name="orchestrator")
cli.add_typer(orchestrator_config_app, name="config")


@cli.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


__all__ = ["cli", "orchestrator_app", "orchestrator_config_app"]
