"""Engine service commands.

Adds commands:
- start, stop, restart, status
- stats, logs, test
- install, update, uninstall
"""

from __future__ import annotations

import asyncio
import contextlib
import shutil
from pathlib import Path

import aiohttp
import click

from xcp.cli.console import (
    create_console,
    create_table,
    print_details,
    print_info,
    print_success,
    print_table,
    print_warning,
    spinner,
)
from xcp.cli.context import AppContext, cli_errors, pass_app
from xcp.engine.installer import normalize_version
from xcp.engine.logs import follow, tail_lines
from xcp.engine.network import PUBLIC_ADDRESS_PLACEHOLDER, fetch_public_address
from xcp.engine.service import engine_version
from xcp.engine.stats import Throughput
from xcp.models import LOOPBACK_ADDRESS, ListenerProtocol, Role
from xcp.utils.exceptions import NotConfiguredError, ServiceError
from xcp.utils.formatting import format_bytes
from xcp.utils.logging_config import LoggingContext, get_logger

logger = get_logger(__name__)


def install_engine(app: AppContext, version: str | None = None, geo_data: bool = True) -> str:
    """Download the engine, write its service unit and reload the service manager.

    Returns:
        The installed release tag

    """
    with LoggingContext("engine install", logger=logger), spinner("Installing engine..."):
        installed = asyncio.run(app.installer.install(version=version, geo_data=geo_data))
        app.installer.write_unit()
        app.service.daemon_reload()
    print_success(f"Installed engine {installed}")
    return installed


def _direction(totals: Throughput) -> str:
    return f"up {format_bytes(totals.uplink)} / down {format_bytes(totals.downlink)}"


@click.command()
@pass_app
@cli_errors
def start(app: AppContext) -> None:
    """Start the engine."""
    app.load()
    app.service.start()
    print_success("Engine started")


@click.command()
@pass_app
@cli_errors
def stop(app: AppContext) -> None:
    """Stop the engine."""
    app.service.stop()
    print_success("Engine stopped")


@click.command()
@pass_app
@cli_errors
def restart(app: AppContext) -> None:
    """Restart the engine and check that it stays up."""
    app.load()
    app.restart_engine()
    print_success("Engine restarted")


@click.command()
@pass_app
@cli_errors
def status(app: AppContext) -> None:
    """Show engine and node status."""
    version = engine_version(app.settings.engine.binary, app.settings.engine.command_timeout)
    running = app.service.is_active()
    rows: list[tuple[str, object]] = [
        ("Engine", version or "not installed"),
        ("Service", "running" if running else "stopped"),
    ]
    if app.store().exists():
        document = app.load()
        rows.append(("Role", document.role.value))
        rows.append(("Accounts", len(document.accounts)))
        rows.append(("Listening on", ", ".join(str(port) for port in document.traffic_ports)))
        if document.upstream is not None:
            rows.append(("Gateway", f"{document.upstream.address}:{document.upstream.port}"))
    else:
        rows.append(("Role", "not configured"))
    print_details(rows)


@click.command()
@pass_app
@cli_errors
def stats(app: AppContext) -> None:
    """Show traffic totals per account and per direction."""
    if not app.service.is_active():
        msg = "Engine is not running; start it with 'xcp start'"
        raise ServiceError(msg)
    summary = app.stats.summary()

    table = create_table(title="Traffic")
    table.add_column("Account")
    table.add_column("Uplink", justify="right")
    table.add_column("Downlink", justify="right")
    for name, totals in summary.users.items():
        table.add_row(name, format_bytes(totals.uplink), format_bytes(totals.downlink))
    if not summary.users:
        table.add_row("[dim]no account traffic yet[/dim]", "", "")
    print_table(table)
    print_details(
        [
            ("Inbound", _direction(summary.inbound)),
            ("Outbound", _direction(summary.outbound)),
        ]
    )


@click.command()
@click.option("--follow", "-f", "follow_", is_flag=True, help="Keep printing new lines")
@click.option("--lines", "-n", type=int, default=50, show_default=True, help="Lines to show")
@click.option(
    "--error",
    "error_log",
    is_flag=True,
    help="Show the error log instead of the access log",
)
@pass_app
@cli_errors
def logs(app: AppContext, follow_: bool, lines: int, error_log: bool) -> None:
    """Show the engine's access or error log."""
    document = app.load()
    if not document.log.enabled:
        print_warning("Engine logging is disabled; enable it with 'xcp config loglevel warning'")
        return
    path = Path(document.log.error if error_log else document.log.access)
    if not path.exists():
        print_info(f"No log written yet at {path}")
        return

    for line in tail_lines(path, lines):
        click.echo(line)
    if follow_:
        with contextlib.suppress(KeyboardInterrupt):
            for line in follow(path):
                click.echo(line)


@click.command()
@pass_app
@cli_errors
def test(app: AppContext) -> None:
    """Check that traffic through this edge leaves via the gateway."""
    document = app.load()
    if document.role != Role.EDGE:
        print_info("Chain test applies to edge nodes; a gateway sends traffic out directly")
        return
    if not document.accounts:
        msg = "No accounts configured; add one with 'xcp user add'"
        raise NotConfiguredError(msg)
    http = document.traffic_listener(ListenerProtocol.HTTP)
    account = document.accounts[0]
    proxy = f"http://{LOOPBACK_ADDRESS}:{http.port}"

    with spinner("Testing the chain..."):
        exit_address = asyncio.run(
            fetch_public_address(
                app.settings.network,
                proxy=proxy,
                proxy_auth=aiohttp.BasicAuth(account.identifier, account.secret),
            )
        )
    upstream = document.upstream
    print_details(
        [
            ("Via", proxy),
            ("Gateway", upstream.address if upstream else "-"),
            ("Exit address", exit_address),
        ]
    )
    if exit_address == PUBLIC_ADDRESS_PLACEHOLDER:
        msg = "No response through the chain; check the gateway address, port and secret"
        raise ServiceError(msg)
    print_success("Traffic leaves through the chain")


@click.command()
@click.option("--version", "version", default=None, help="Release tag to install (default: latest)")
@click.option("--no-geo", is_flag=True, help="Skip geoip/geosite data files")
@pass_app
@cli_errors
def install(app: AppContext, version: str | None, no_geo: bool) -> None:
    """Install the engine and its service unit."""
    install_engine(app, version=version, geo_data=not no_geo)


@click.command()
@click.option("--check", is_flag=True, help="Only report whether an update exists")
@pass_app
@cli_errors
def update(app: AppContext, check: bool) -> None:
    """Update the engine to the latest release."""
    current = engine_version(app.settings.engine.binary, app.settings.engine.command_timeout)
    latest = asyncio.run(app.installer.latest_version())
    print_details([("Installed", current or "not installed"), ("Latest", latest)])
    if current and normalize_version(current) == normalize_version(latest):
        print_success("Engine is up to date")
        return
    if check:
        print_info("An update is available; run 'xcp update' to install it")
        return

    was_running = app.service.is_active()
    if was_running:
        app.service.stop()
    install_engine(app, version=latest, geo_data=False)
    if was_running:
        app.restart_engine()


@click.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option("--purge", is_flag=True, help="Also delete engine logs and configuration backups")
@pass_app
@cli_errors
def uninstall(app: AppContext, yes: bool, purge: bool) -> None:
    """Stop the engine and remove it with its configuration."""
    if not yes:
        click.confirm("Remove the engine, its service unit and the configuration?", abort=True)
    with LoggingContext("uninstall", logger=logger):
        app.service.stop()
        app.service.disable()
        app.store().remove()
        removed = app.installer.remove(app.settings.storage.log_dir if purge else None)
        backup_dir = Path(app.settings.storage.backup_dir)
        if purge and backup_dir.is_dir():
            shutil.rmtree(backup_dir)
            removed.append(backup_dir)
        app.service.daemon_reload()
    console = create_console()
    for path in removed:
        console.print(f"  removed {path}")
    print_success("Uninstalled")
