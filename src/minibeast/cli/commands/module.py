"""CLI commands for inspecting and clearing persisted module deployments.

Implements 'minibeast status' and 'minibeast clear'. Both work on the
snapshot files only and never call AWS.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager

import click

from minibeast.config.loader import load_settings
from minibeast.deploy import state
from minibeast.lib.errors import ConfigError, DeploymentError
from minibeast.lib.logging_config import get_logger, setup_logging
from minibeast.models.config import ServerSettings
from minibeast.models.deployment import validate_module_name
from minibeast.models.snapshot import ModuleSnapshot

logger = get_logger(__name__)


@contextmanager
def handle_module_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in module commands.

    Exit codes:
        2: Configuration error
        3: Snapshot read/write error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)


def _module_argument(
    ctx: click.Context, param: click.Parameter, value: str
) -> str:
    try:
        return validate_module_name(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _settings(data_dir: str | None) -> ServerSettings:
    return load_settings(overrides={"data_dir": data_dir})


def _display_snapshot(snapshot: ModuleSnapshot) -> None:
    deployment = snapshot.deployment
    resources = snapshot.resources

    click.secho(f"Module '{snapshot.module}' is deployed", fg="green", bold=True)
    click.echo(f"  Deployment ID:  {deployment.id}")
    click.echo(f"  Completed at:   {deployment.completed_at or '-'}")
    click.echo(f"  Region:         {resources.region or '-'}")
    click.echo(f"  Image:          {deployment.image_name or '-'}")
    click.echo(f"  Workflow:       {resources.step_function_arn}")
    click.echo(f"  Cluster:        {resources.ecs_cluster}")
    click.echo(f"  Task family:    {resources.task_definition_family or '-'}")
    click.echo(f"  Repository:     {resources.ecr_repository or '-'}")
    if resources.log_groups.possible_ecs_logs:
        groups = ", ".join(resources.log_groups.possible_ecs_logs)
        click.echo(f"  Log groups:     {groups}")


@click.command()
@click.argument("module", callback=_module_argument)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding deployment snapshots (default: .minibeast)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def status(module: str, data_dir: str | None, verbose: bool) -> None:
    """Show the persisted deployment of MODULE.

    Invalid or partial snapshots are removed while reading. Exits with
    status 1 when the module is not deployed.

    Example:

        minibeast status validator
    """
    setup_logging(verbose=verbose, quiet=not verbose)

    with handle_module_errors():
        settings = _settings(data_dir)
        snapshot = state.load_snapshot(settings.modules_dir, module)

    if snapshot is None:
        click.secho(f"Module '{module}' is not deployed", fg="yellow")
        sys.exit(1)

    _display_snapshot(snapshot)


@click.command()
@click.argument("module", callback=_module_argument)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding deployment snapshots (default: .minibeast)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def clear(module: str, data_dir: str | None, verbose: bool) -> None:
    """Delete the persisted deployment of MODULE so it can be redeployed.

    AWS resources are left untouched.

    Example:

        minibeast clear validator
    """
    setup_logging(verbose=verbose, quiet=not verbose)

    with handle_module_errors():
        settings = _settings(data_dir)
        removed = state.clear_snapshot(settings.modules_dir, module)

    click.secho(
        f"Module '{module}' cleared for redeployment. {removed} files removed.",
        fg="green",
    )
