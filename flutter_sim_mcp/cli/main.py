#!/usr/bin/env python3
"""
Command-line interface for flutter-sim-mcp.

Provides commands to run the MCP server and to check the local toolchain.
"""

from __future__ import annotations

import asyncio
import shutil
import sys
from typing import Any, TypeGuard

import pydantic
import typer

from flutter_sim_mcp.config.base import LOG_LEVELS, get_settings
from flutter_sim_mcp.config.mcp import McpServerSettings, Transport
from flutter_sim_mcp.mcp.server import build_state, run_server
from flutter_sim_mcp.mcp.utils import configure_logging

app = typer.Typer(
    name='flutter-sim-mcp',
    help='MCP server for isolated Flutter iOS simulator sessions',
    add_completion=False,
)


def _is_transport(value: str) -> TypeGuard[Transport]:
    """Type guard for supported MCP transports."""
    return value in ('stdio', 'streamable-http')


def _validate_transport(value: str | None) -> str | None:
    """Validate transport for typer callback."""
    if value is None or _is_transport(value):
        return value
    raise typer.BadParameter("Must be 'stdio' or 'streamable-http'")


def _validate_log_level(value: str | None) -> str | None:
    if value is None or value.upper() in LOG_LEVELS:
        return value
    raise typer.BadParameter(f'Must be one of {", ".join(LOG_LEVELS)}')


def load_settings(**overrides: Any) -> McpServerSettings:
    """
    Load settings from the environment and apply command-line overrides.

    Overrides are validated like any other setting. None means "not given".

    Raises:
        pydantic.ValidationError: If a setting is invalid
        FileNotFoundError: If LOAD_ENV_FILE names a missing file
    """
    config = get_settings(McpServerSettings)
    given = {key: value for key, value in overrides.items() if value is not None}
    if not given:
        return config
    return McpServerSettings.model_validate({**config.model_dump(), **given})


@app.command()
def serve(
    transport: str | None = typer.Option(
        None, '--transport', '-t', help='stdio (default) or streamable-http', callback=_validate_transport
    ),
    host: str | None = typer.Option(None, '--host', help='Bind address for streamable-http (default: 0.0.0.0)'),
    port: int | None = typer.Option(None, '--port', '-p', help='Port for streamable-http (default: 3000)'),
    allowed_prefix: str | None = typer.Option(
        None, '--allowed-prefix', help='Project paths must be inside this directory (default: /Users/)'
    ),
    log_level: str | None = typer.Option(None, '--log-level', help='Server log level', callback=_validate_log_level),
) -> None:
    """Run the MCP server. All sessions are ended on exit."""
    try:
        config = load_settings(
            TRANSPORT=transport,
            HOST=host,
            PORT=port,
            ALLOWED_PATH_PREFIX=allowed_prefix,
            LOG_LEVEL=log_level,
        )
    except (pydantic.ValidationError, FileNotFoundError) as e:
        typer.secho(f'Error: Invalid configuration: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    configure_logging(config.LOG_LEVEL)

    typer.echo(f'{config.APP_NAME} {config.VERSION}', err=True)
    typer.echo(f'  Transport:      {config.TRANSPORT}', err=True)
    if config.TRANSPORT == 'streamable-http':
        typer.echo(f'  Listening on:   {config.HOST}:{config.PORT}', err=True)
    typer.echo(f'  Allowed prefix: {config.ALLOWED_PATH_PREFIX}', err=True)

    try:
        asyncio.run(run_server(build_state(config), config.TRANSPORT))
    except KeyboardInterrupt:
        typer.echo('Interrupted, all sessions ended', err=True)


@app.command()
def doctor() -> None:
    """Check that flutter and xcrun are available."""
    try:
        config = get_settings(McpServerSettings)
    except (pydantic.ValidationError, FileNotFoundError) as e:
        typer.secho(f'Error: Invalid configuration: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    missing = False
    for name, command in (('flutter', config.FLUTTER_COMMAND), ('xcrun', 'xcrun')):
        path = shutil.which(command)
        if path:
            typer.secho(f'✓ {name}: {path}', fg=typer.colors.GREEN)
        else:
            typer.secho(f'✗ {name}: {command} not found on PATH', fg=typer.colors.RED)
            missing = True

    if sys.platform != 'darwin':
        typer.secho('✗ iOS simulators require macOS', fg=typer.colors.YELLOW)
        missing = True

    if missing:
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == '__main__':
    main()
