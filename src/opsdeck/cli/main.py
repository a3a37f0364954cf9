"""Click CLI group: gateway/dashboard servers, allowlist and Portainer login."""

from __future__ import annotations

import asyncio
import json

import click
import uvicorn

from opsdeck.config import get_settings, validate_settings_for_env
from opsdeck.errors import OpsdeckError
from opsdeck.logging import configure_logging
from opsdeck.runner.allowlist import AllowlistStore


@click.group()
def cli() -> None:
    """Opsdeck operations dashboard CLI."""


@cli.command("serve-runner")
@click.option("--host", type=str, default=None, help="Bind address (default: RUNNER_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: RUNNER_PORT).")
def serve_runner(host: str | None, port: int | None) -> None:
    """Run the execution gateway."""
    settings = get_settings()
    validate_settings_for_env(settings)
    if not settings.runner_token.strip():
        raise click.ClickException("RUNNER_TOKEN must be set to start the gateway")
    configure_logging(settings.log_level)
    uvicorn.run(
        "opsdeck.runner.app:create_app",
        factory=True,
        host=host or settings.runner_host,
        port=port or settings.runner_port,
        log_config=None,
    )


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default: BIND_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: BIND_PORT).")
def serve(host: str | None, port: int | None) -> None:
    """Run the dashboard API."""
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "opsdeck.main:create_app",
        factory=True,
        host=host or settings.bind_host,
        port=port or settings.bind_port,
        log_config=None,
    )


@cli.group()
def allowlist() -> None:
    """Inspect the gateway allowlist."""


@allowlist.command("show")
@click.option(
    "--data-dir",
    type=click.Path(path_type=str),
    default=None,
    help="Override allowlist directory (default: RUNNER_DATA_DIR).",
)
def allowlist_show(data_dir: str | None) -> None:
    """Print the allowlist the gateway would load."""
    store = AllowlistStore.in_dir(data_dir or get_settings().runner_data_dir)
    click.echo(json.dumps(store.load().to_dict(), indent=2))


@cli.command("portainer-login")
@click.option("--username", prompt=True, help="Portainer username.")
@click.option("--password", prompt=True, hide_input=True, help="Portainer password.")
def portainer_login(username: str, password: str) -> None:
    """Log in to Portainer and write the token file."""
    from opsdeck.portainer.client import PortainerClient

    client = PortainerClient()
    try:
        token, persisted = asyncio.run(client.login(username, password))
    except OpsdeckError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"token file: {get_settings().portainer_token_path}")
    click.echo(f"persisted: {'yes' if persisted else 'no'}")
    if token.expires_at is not None:
        click.echo(f"expires at: {token.expires_at.isoformat()}")
