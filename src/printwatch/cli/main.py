"""printwatch CLI -- watch a fleet of Ultimaker printers from the terminal.

Subcommands:

- ``printwatch serve``    -- run the fleet monitor and its REST API
- ``printwatch discover`` -- one mDNS discovery cycle, then print results
- ``printwatch status``   -- query one printer by address
- ``printwatch config``   -- show the effective configuration

Read-only subcommands support ``--json`` for machine-parseable output.
"""

from __future__ import annotations

import logging
import sys

import click

from printwatch.cli.output import format_config, format_error, format_printers, format_status
from printwatch.client import UltimakerClient
from printwatch.config import MonitorConfig, load_config
from printwatch.errors import ConfigError, StatusClientError
from printwatch.log_config import configure_logging
from printwatch.models import PrinterStatus

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _load(config_path: str | None, json_mode: bool = False) -> MonitorConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(format_error(str(exc), code="CONFIG_ERROR", json_mode=json_mode))
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="YAML config file (defaults to PRINTWATCH_CONFIG or ~/.printwatch/config.yaml).",
)
@click.version_option(package_name="printwatch")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """printwatch -- live status for the Ultimaker printers on your network."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address for the REST API.")
@click.option("--port", default=None, type=int, help="Port for the REST API.")
@click.option("--poll-interval", default=None, type=float, help="Seconds between status polls.")
@click.option("--discovery-interval", default=None, type=float, help="Seconds between discovery cycles.")
@click.option("--simulate/--no-simulate", default=None, help="Add synthetic printers to the fleet.")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    help="Log level (defaults to PRINTWATCH_LOG_LEVEL or INFO).",
)
@click.pass_context
def serve(
    ctx: click.Context,
    host: str | None,
    port: int | None,
    poll_interval: float | None,
    discovery_interval: float | None,
    simulate: bool | None,
    log_level: str | None,
) -> None:
    """Run the fleet monitor and serve its REST API.

    Discovery, polling and (optionally) simulation run on background
    threads; the REST API blocks in the foreground until interrupted.
    """
    from printwatch.rest_api import run_rest_server
    from printwatch.service import FleetMonitor

    configure_logging(level=log_level.upper() if log_level else None)
    cfg = _load(ctx.obj.get("config_path"))

    if host is not None:
        cfg.rest.host = host
    if port is not None:
        cfg.rest.port = port
    if poll_interval is not None:
        cfg.poll_interval = poll_interval
    if discovery_interval is not None:
        cfg.discovery_interval = discovery_interval
    if simulate is not None:
        cfg.synthetic.enabled = simulate

    monitor = FleetMonitor(cfg)
    try:
        monitor.start()
    except ConfigError as exc:
        click.echo(format_error(str(exc), code="CONFIG_ERROR"))
        sys.exit(1)

    try:
        run_rest_server(monitor)
    finally:
        monitor.stop()


# ---------------------------------------------------------------------------
# discover
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--timeout", "-t", default=5.0, type=float, help="Listening window in seconds.")
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def discover(ctx: click.Context, timeout: float, json_mode: bool) -> None:
    """Run one mDNS discovery cycle and list the confirmed printers."""
    from printwatch.discovery import DiscoveryEngine
    from printwatch.registry import FleetRegistry

    if timeout <= 0:
        click.echo(format_error("--timeout must be positive", code="USAGE_ERROR", json_mode=json_mode))
        sys.exit(1)

    cfg = _load(ctx.obj.get("config_path"), json_mode)
    registry = FleetRegistry()
    client = UltimakerClient(timeout=cfg.request_timeout)
    engine = DiscoveryEngine(registry, client, window=timeout)
    try:
        engine.run_cycle()
    finally:
        engine.close()
        client.close()

    printers = registry.snapshot()
    click.echo(format_printers([p.to_dict() for p in printers], json_mode=json_mode))
    if not json_mode and not printers:
        click.echo("\nTip: mDNS may be blocked on some networks. Try 'printwatch status <ip>' directly.")


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("ip_address")
@click.option("--timeout", "-t", default=None, type=float, help="HTTP timeout in seconds.")
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def status(ctx: click.Context, ip_address: str, timeout: float | None, json_mode: bool) -> None:
    """Show the live status of the printer at IP_ADDRESS."""
    if timeout is None:
        timeout = _load(ctx.obj.get("config_path"), json_mode).request_timeout
    try:
        client = UltimakerClient(timeout=timeout)
    except ValueError as exc:
        click.echo(format_error(str(exc), code="USAGE_ERROR", json_mode=json_mode))
        sys.exit(1)

    try:
        report = client.fetch_status(ip_address)
        job = client.fetch_job(ip_address).to_job() if report.status == PrinterStatus.PRINTING else None
    except StatusClientError as exc:
        click.echo(format_error(str(exc), code="PRINTER_UNREACHABLE", json_mode=json_mode))
        sys.exit(1)
    finally:
        client.close()

    click.echo(
        format_status(
            ip_address,
            report.to_dict(),
            job.to_dict() if job is not None else None,
            json_mode=json_mode,
        )
    )


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.command("config")
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def show_config(ctx: click.Context, json_mode: bool) -> None:
    """Show the effective configuration (file + environment)."""
    cfg = _load(ctx.obj.get("config_path"), json_mode)
    try:
        cfg.validate()
    except ConfigError as exc:
        click.echo(format_error(str(exc), code="CONFIG_ERROR", json_mode=json_mode))
        sys.exit(1)
    click.echo(format_config(cfg.to_dict(), json_mode=json_mode))


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
