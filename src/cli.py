"""Click CLI for running the ADX import mediator."""

from __future__ import annotations

import json
import logging

import click
import uvicorn

from src.config.settings import ConfigError, MediatorSettings, load_mediator_config
from src.models import RelayConfig
from src.proxy.app import build_app

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.option("--mediator-config", default=None, help="Path to the mediator descriptor JSON.")
@click.option("--log-level", default="INFO", help="Logging level.")
@click.pass_context
def cli(ctx: click.Context, mediator_config: str | None, log_level: str) -> None:
    """ADX import mediator CLI."""
    logging.basicConfig(level=log_level.upper(), format=_LOG_FORMAT)
    ctx.ensure_object(dict)
    try:
        settings = MediatorSettings.from_env()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj["settings"] = settings.with_overrides(mediator_config_path=mediator_config)


@cli.command()
@click.option(
    "--standalone/--register", default=None,
    help="Use the bundled config instead of registering with OpenHIM.",
)
@click.option("--host", default=None, help="Interface to bind.")
@click.option("--port", type=int, default=None, help="Port to listen on.")
@click.pass_context
def serve(ctx: click.Context, standalone: bool | None, host: str | None, port: int | None) -> None:
    """Start the mediator HTTP server."""
    settings: MediatorSettings = ctx.obj["settings"]
    register = None if standalone is None else not standalone
    settings = settings.with_overrides(register=register, host=host, port=port)
    try:
        app = build_app(settings)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(
        f"Mediator listening on http://{settings.host}:{settings.port} "
        f"({'registered' if settings.register else 'standalone'} mode)",
        err=True,
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        timeout_graceful_shutdown=settings.shutdown_timeout,
    )


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the bundled default relay config."""
    settings: MediatorSettings = ctx.obj["settings"]
    try:
        mediator = load_mediator_config(settings.mediator_config_path)
        relay = RelayConfig.model_validate(mediator.config)
    except (ConfigError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(
        {"urn": mediator.urn, "config": relay.model_dump(by_alias=True)}, indent=2,
    ))
