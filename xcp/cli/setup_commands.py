"""Node setup commands.

Adds commands:
- setup gateway
- setup edge
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import click

from xcp.cli.console import print_details, print_info, print_success, print_warning
from xcp.cli.context import AppContext, cli_errors, pass_app
from xcp.cli.service_commands import install_engine
from xcp.cli.user_commands import print_credentials
from xcp.config.document import ConfigDocument
from xcp.config.synthesizer import (
    DEFAULT_HTTP_PORT,
    DEFAULT_RELAY_PORT,
    DEFAULT_SOCKS_PORT,
    ConfigSynthesizer,
)
from xcp.core.credentials import ClientCredentials
from xcp.utils.exceptions import StorageError
from xcp.utils.logging_config import LoggingContext, get_logger

logger = get_logger(__name__)


def _port_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.option(
            "--ss-port",
            type=int,
            default=DEFAULT_RELAY_PORT,
            show_default=True,
            help="Relay (Shadowsocks) listener port",
        ),
        click.option(
            "--http-port",
            type=int,
            default=DEFAULT_HTTP_PORT,
            show_default=True,
            help="HTTP proxy listener port",
        ),
        click.option(
            "--socks-port",
            type=int,
            default=DEFAULT_SOCKS_PORT,
            show_default=True,
            help="SOCKS5 proxy listener port",
        ),
        click.option("--host", default=None, help="Address advertised to clients"),
        click.option("--force", is_flag=True, help="Replace an existing configuration"),
        click.option(
            "--install/--no-install",
            "install",
            default=None,
            help="Install the engine first (default: only when it is missing)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
def setup():
    """Create the node configuration and start the engine."""


@setup.command("gateway")
@_port_options
@pass_app
@cli_errors
def setup_gateway(
    app: AppContext,
    ss_port: int,
    http_port: int,
    socks_port: int,
    host: str | None,
    force: bool,
    install: bool | None,
) -> None:
    """Configure this node as the exit gateway."""
    synthesizer = ConfigSynthesizer(
        secret_factory=app.secret_factory,
        log_dir=app.settings.storage.log_dir,
    )
    document = synthesizer.build_gateway(ss_port, http_port, socks_port)
    _deploy(app, document, force=force, install=install)
    print_success("Gateway node configured")
    _report(app, document, host)


@setup.command("edge")
@click.option(
    "--upstream-address",
    prompt="Gateway address",
    help="Address of the gateway node",
)
@click.option(
    "--upstream-port",
    type=int,
    default=DEFAULT_RELAY_PORT,
    show_default=True,
    help="Relay port of the gateway node",
)
@click.option(
    "--upstream-secret",
    prompt="Gateway secret",
    hide_input=True,
    help="Secret of a gateway account",
)
@_port_options
@pass_app
@cli_errors
def setup_edge(
    app: AppContext,
    upstream_address: str,
    upstream_port: int,
    upstream_secret: str,
    ss_port: int,
    http_port: int,
    socks_port: int,
    host: str | None,
    force: bool,
    install: bool | None,
) -> None:
    """Configure this node as an edge forwarding to a gateway."""
    synthesizer = ConfigSynthesizer(
        secret_factory=app.secret_factory,
        log_dir=app.settings.storage.log_dir,
    )
    document = synthesizer.build_edge(
        upstream_address.strip(),
        upstream_port,
        upstream_secret,
        ss_port=ss_port,
        http_port=http_port,
        socks_port=socks_port,
    )
    _deploy(app, document, force=force, install=install)
    print_success("Edge node configured")
    print_details([("Gateway", f"{upstream_address.strip()}:{upstream_port}")])
    _report(app, document, host)


def _deploy(
    app: AppContext,
    document: ConfigDocument,
    force: bool,
    install: bool | None,
) -> None:
    with LoggingContext("setup", logger=logger, role=document.role.value):
        if install or (install is None and not app.engine_installed()):
            install_engine(app)
        _ensure_log_dir(app.settings.storage.log_dir)
        app.store().create(document, overwrite=force)
        _open_ports(app, document)
        app.service.enable()
        app.restart_engine()


def _ensure_log_dir(log_dir: str) -> None:
    try:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        msg = f"Cannot create log directory {log_dir}: {e}"
        raise StorageError(msg) from e


def _open_ports(app: AppContext, document: ConfigDocument) -> None:
    if not app.firewall.is_active():
        return
    for port in document.traffic_ports:
        if app.firewall.allow(port):
            print_info(f"Firewall: opened port {port}")
        else:
            print_warning(f"Firewall: could not open port {port}")


def _report(app: AppContext, document: ConfigDocument, host: str | None) -> None:
    address = app.public_host(host)
    for account in document.accounts:
        print_credentials(ClientCredentials.for_account(document, account, address))
