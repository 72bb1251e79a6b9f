"""CLI command for running the deployer API.

Implements the 'minibeast serve' command.
"""

from __future__ import annotations

import asyncio
import sys

import click

from minibeast.config.loader import load_settings
from minibeast.lib.errors import ConfigError
from minibeast.lib.logging_config import get_logger, setup_logging
from minibeast.models.config import ServerSettings

logger = get_logger(__name__)


@click.command()
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to listen on (default: 3002)",
)
@click.option(
    "--host",
    "-h",
    type=str,
    default=None,
    help="Host to bind to (default: 127.0.0.1 for local-only access)",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for deployment snapshots and uploads (default: .minibeast)",
)
@click.option(
    "--cors-origins",
    type=str,
    default=None,
    help="Comma-separated list of allowed CORS origins",
)
@click.option(
    "--debug/--no-debug",
    default=None,
    help="Enable debug logging",
)
def serve(
    port: int | None,
    host: str | None,
    data_dir: str | None,
    cors_origins: str | None,
    debug: bool | None,
) -> None:
    """Start the deployer HTTP API.

    Flags override MINIBEAST_* environment variables, which override the
    built-in defaults. A ``.env`` file in the working directory is read
    first.

    Example:

        minibeast serve

        minibeast serve --port 4000 --data-dir /var/lib/minibeast
    """
    setup_logging(verbose=bool(debug), quiet=not debug)

    try:
        settings = load_settings(
            overrides={
                "host": host,
                "port": port,
                "data_dir": data_dir,
                "cors_origins": cors_origins,
                "debug": debug,
            }
        )
        if settings.debug and not debug:
            setup_logging(verbose=True, quiet=False)

        logger.info(
            f"Serve command invoked: host={settings.host}, port={settings.port}, "
            f"data_dir={settings.data_dir}, debug={settings.debug}"
        )
        asyncio.run(_run_server(settings))

    except ConfigError as e:
        logger.error(f"Configuration error: {e}", exc_info=True)
        click.secho("Error: Invalid server configuration", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Server interrupted by user (Ctrl+C)")
        click.echo()
        click.secho("Server stopped.", fg="yellow")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.secho(f"Error: {str(e)}", fg="red", err=True)
        sys.exit(1)


async def _run_server(settings: ServerSettings) -> None:
    """Run the HTTP server until interrupted.

    Server start and stop are driven by the application lifespan.

    Args:
        settings: Resolved server settings.
    """
    import uvicorn

    from minibeast.serve.server import DeployerServer

    server = DeployerServer(settings)
    app = server.create_app()

    _display_startup_info(settings)

    config = uvicorn.Config(
        app=app,
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )
    await uvicorn.Server(config).serve()


def _display_startup_info(settings: ServerSettings) -> None:
    """Display server startup information."""
    click.echo()
    click.secho("=" * 60, fg="cyan")
    click.secho("  MiniBeast Data Deployer", fg="cyan", bold=True)
    click.secho("=" * 60, fg="cyan")
    click.echo()
    click.echo(f"  URL:      http://{settings.host}:{settings.port}")
    click.echo(f"  Data:     {settings.data_dir}")
    click.echo(f"  Uploads:  {settings.upload_dir}")
    click.echo()
    click.secho("  Endpoints:", bold=True)
    click.echo("    POST /api/deploy                         Start a deployment")
    click.echo("    GET  /api/deployment/{id}/status         Poll progress")
    click.echo("    POST /api/deployment/{id}/retry          Retry a failed run")
    click.echo("    POST /api/stepfunction/execute           Start a validation run")
    click.echo("    GET  /health                             Health check")
    click.echo("    GET  /ready                              Readiness check")
    click.echo()
    click.secho("  Press Ctrl+C to stop", fg="yellow")
    click.secho("=" * 60, fg="cyan")
    click.echo()
