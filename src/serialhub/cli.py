"""
Command-line interface for serialhub.

Starts the server in one of its modes and lists local serial ports.
"""

import asyncio
import logging
import sys
from functools import partial
from pathlib import Path

import click

from serialhub import __version__
from serialhub.core.config import MODES, Config, load_config
from serialhub.core.errors import SerialHubError
from serialhub.core.models import parse_line_spec
from serialhub.serial.device import create_serial_device, list_serial_ports
from serialhub.serial.registry import Registry
from serialhub.serial.traffic_log import TrafficLog
from serialhub.transport.base import TransportMode, get_relay, run_relay

logger = logging.getLogger(__name__)


def _setup_logging(level: str, verbose: bool) -> None:
    """Configure the root logger."""
    if verbose:
        level = "DEBUG"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_registry(config: Config) -> Registry:
    return Registry(
        device_factory=partial(create_serial_device, write_timeout=config.write_timeout),
        capacity=config.buffer_capacity,
        queue_size=config.event_queue_size,
    )


@click.group()
@click.version_option(version=__version__, prog_name="serialhub")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option(
    "-c", "--config", "config_path", type=click.Path(exists=True, path_type=Path),
    help="Path to config file"
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """serialhub - Share local serial ports over the network."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = load_config(config_path)


@main.command("ports")
@click.pass_context
def ports_cmd(ctx: click.Context) -> None:
    """List available serial ports."""
    verbose = ctx.obj.get("verbose", False)
    ports = list_serial_ports()

    if not ports:
        click.echo("No serial ports found")
        return

    click.echo(f"{'NAME':<20} {'DESCRIPTION':<30} {'MANUFACTURER':<20}")
    click.echo("-" * 70)

    for port in ports:
        description = port.get("description") or "-"
        manufacturer = port.get("manufacturer") or "-"
        click.echo(f"{port['name']:<20} {description:<30} {manufacturer:<20}")

    if verbose:
        click.echo(f"\n{len(ports)} port(s) found")


@main.command("serve")
@click.option("--port", "-p", type=click.IntRange(min=1, max=65535), help="Socket port number")
@click.option("--mode", "-m", type=click.Choice(MODES), help="Server mode")
@click.option("--host", help="Address to listen on")
@click.option("--prefix", help="URL prefix: '/' for root or '/api/v1' etc.")
@click.option("--no-list", is_flag=True, help="Disable serial port list")
@click.option("--no-read", is_flag=True, help="Disable read ops")
@click.option("--no-write", is_flag=True, help="Disable write ops")
@click.option("--no-subscribe", is_flag=True, help="Disable push subscriptions")
@click.option("--no-relay", is_flag=True, help="Disable tcp, udp and echo relays")
@click.option("--allow-ports", help="Allow only specific ports (comma-separated)")
@click.option(
    "--line", "line_spec",
    help="Serial port for tcp, udp and echo modes as NAME[,BAUD[,FRAME]], e.g. /dev/ttyUSB0,9600,8N1",
)
@click.option("--max-clients", type=int, default=10, help="Maximum TCP peers (default: 10)")
@click.pass_context
def serve_cmd(
    ctx: click.Context,
    port: int | None,
    mode: str | None,
    host: str | None,
    prefix: str | None,
    no_list: bool,
    no_read: bool,
    no_write: bool,
    no_subscribe: bool,
    no_relay: bool,
    allow_ports: str | None,
    line_spec: str | None,
    max_clients: int,
) -> None:
    """Start the server.

    \b
    Examples:
      serialhub serve
      serialhub serve --allow-ports COM1,COM2,COM3
      serialhub serve --no-read --no-write --port 80
      serialhub serve --mode tcp --line COM1,115200 --port 3000
      serialhub serve --mode udp --line /dev/ttyUSB0,9600,8N1 -p 3000
    """
    config: Config = ctx.obj["config"]

    # Command line overrides
    if port is not None:
        config.server.port = port
    if mode is not None:
        config.server.mode = mode
    if host is not None:
        config.server.host = host
    if prefix is not None:
        config.server.prefix = prefix
    if no_list:
        config.permissions.listing = False
    if no_read:
        config.permissions.read = False
    if no_write:
        config.permissions.write = False
    if no_subscribe:
        config.permissions.subscribe = False
    if no_relay:
        config.permissions.relay = False
    if allow_ports is not None:
        config.permissions.allowed_lines = [p for p in allow_ports.split(",") if p]

    if line_spec:
        try:
            config.line.name, config.line.settings = parse_line_spec(line_spec)
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(2)

    try:
        transport_mode = TransportMode(config.server.mode)
    except ValueError:
        click.echo(f"Error: Unknown server mode: {config.server.mode}", err=True)
        sys.exit(2)

    _setup_logging(config.log_level, ctx.obj.get("verbose", False))

    registry = _build_registry(config)

    if transport_mode == TransportMode.HTTP:
        _serve_http(config, registry)
    else:
        _serve_relay(config, registry, transport_mode, max_clients)


def _serve_http(config: Config, registry: Registry) -> None:
    """Run the REST and Socket.IO server until interrupted."""
    from serialhub.web.app import create_app
    from serialhub.web.websocket import init_socketio

    app = create_app(config, registry=registry)
    sio = init_socketio(app, async_mode="threading")

    click.echo(f"Starting HTTP server on {config.server.host}:{config.server.port}")
    click.echo(f"API prefix: {config.server.prefix or '/'}")

    try:
        sio.run(
            app,
            host=config.server.host,
            port=config.server.port,
            allow_unsafe_werkzeug=True,
        )
    finally:
        registry.close_all()


def _serve_relay(
    config: Config,
    registry: Registry,
    mode: TransportMode,
    max_clients: int,
) -> None:
    """Open the configured line and relay it until stopped."""
    if not config.line.name:
        click.echo(f"Error: --line is required in {mode.value} mode", err=True)
        sys.exit(2)

    try:
        session = registry.open(config.line.name, config.line.settings)
    except SerialHubError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    traffic_log = None
    if config.log_dir:
        traffic_log = TrafficLog(config.log_dir, session.name)
        traffic_log.attach(session)

    relay = get_relay(
        mode,
        session,
        config.permissions.to_policy(),
        host=config.server.host,
        port=config.server.port,
        max_clients=max_clients,
    )

    click.echo(
        f"Relaying {session.name} ({session.settings.baud_rate},{session.settings.frame}) "
        f"in {mode.value} mode"
    )

    try:
        asyncio.run(run_relay(relay))
    except SerialHubError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        registry.close_all()
        if traffic_log:
            traffic_log.stop()


if __name__ == "__main__":
    main()
