"""CLI commands for orchestrator configuration management."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
import yaml

from .config import (
    DEFAULT_CONFIG_PATH,
    ConfigurationError,
    ConfigurationManager,
    OrchestratorConfig,
)


orchestrator_config_app = typer.Typer(
    help="Manage orchestrator configuration",
    name="config",
)


@orchestrator_config_app.command("validate")
def validate_config(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        help="Path to configuration file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Show detailed validation output",
    ),
) -> None:
    """Validate orchestrator configuration."""
    manager = ConfigurationManager(config_path=config_path)
    errors = manager.validate()

    if errors:
        typer.echo(f"❌ Configuration validation failed: {config_path}")
        typer.echo("\nErrors:")
        for error in errors:
            typer.echo(f"  - {error}")
        raise typer.Exit(code=1)

    typer.echo(f"✅ Configuration is valid: {config_path}")
    if verbose:
        config = manager.load()
        typer.echo("\nConfiguration details:")
        typer.echo(f"  Queue: {config.queue.database_path}")
        typer.echo(
            f"  Dispatcher: batch {config.dispatcher.batch_size}, "
            f"poll {config.dispatcher.busy_delay_seconds:g}-{config.dispatcher.max_delay_seconds:g}s"
        )
        typer.echo(f"  Retry: {config.retry.max_retries} retries, {config.retry.base_delay_minutes:g}m base delay")
        typer.echo(f"  Rate limits: {', '.join(sorted(config.rate_limits.services)) or 'none'}")
        typer.echo(
            f"  Scheduling: every {config.scheduling.frequent_interval_minutes}m, "
            f"off-hours {config.scheduling.off_hours_start}-{config.scheduling.off_hours_end} "
            f"({config.scheduling.timezone})"
        )


@orchestrator_config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        help="Path to configuration file",
    ),
    section: Optional[str] = typer.Option(
        None,
        "--section",
        help="Show specific section (queue, dispatcher, retry, rate_limits, scheduling)",
    ),
    format: str = typer.Option(
        "yaml",
        "--format",
        help="Output format (yaml or json)",
    ),
) -> None:
    """Display the effective orchestrator configuration."""
    try:
        config = ConfigurationManager(config_path=config_path).load()
    except ConfigurationError as exc:
        typer.echo(f"❌ Failed to load configuration: {exc}")
        raise typer.Exit(code=1)

    data = config.model_dump(mode="json")
    if section:
        if section not in data:
            typer.echo(f"❌ Unknown section: {section}")
            typer.echo(f"Available sections: {', '.join(data.keys())}")
            raise typer.Exit(code=1)
        data = {section: data[section]}

    if format == "json":
        typer.echo(json.dumps(data, indent=2))
    else:
        typer.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


@orchestrator_config_app.command("init")
def init_config(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        help="Path to configuration file",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Write a configuration file with the default settings."""
    if config_path.exists() and not force:
        typer.echo(f"❌ Configuration already exists: {config_path}")
        typer.echo("   Use --force to overwrite")
        raise typer.Exit(code=1)

    config = OrchestratorConfig()
    ConfigurationManager(config_path=config_path).save(config)

    typer.echo(f"✅ Configuration initialized: {config_path}")
    typer.echo("\nDefault settings:")
    typer.echo(f"  Queue: {config.queue.database_path}")
    typer.echo(f"  Retry: {config.retry.max_retries} retries")
    typer.echo(f"  Frequent sync: every {config.scheduling.frequent_interval_minutes} minutes")
