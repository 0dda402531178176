"""Relay account commands.

Adds commands:
- user ls
- user add
- user rm
"""

from __future__ import annotations

import click

from xcp.cli.console import (
    create_console,
    print_details,
    print_info,
    print_success,
    print_warning,
)
from xcp.cli.context import AppContext, cli_errors, pass_app
from xcp.core.accounts import AccountRegistry
from xcp.core.credentials import ClientCredentials


def print_credentials(credentials: ClientCredentials) -> None:
    """Print connection details for one account."""
    console = create_console()
    console.print(f"\n[bold]{credentials.identifier}[/bold]")
    print_details(
        [
            ("Server", credentials.host),
            ("Shadowsocks port", credentials.relay_port),
            ("HTTP port", credentials.http_port),
            ("SOCKS5 port", credentials.socks_port),
            ("Username", credentials.identifier),
            ("Password", credentials.secret),
            ("Method", credentials.method),
            ("Share URI", credentials.share_uri),
        ],
        console=console,
    )


@click.group()
def user():
    """Manage relay accounts."""


@user.command("ls")
@click.option("--host", default=None, help="Address advertised to clients")
@pass_app
@cli_errors
def list_users(app: AppContext, host: str | None) -> None:
    """List accounts with their connection details."""
    document = app.load()
    accounts = AccountRegistry(app.secret_factory).list(document)
    if not accounts:
        print_warning("No accounts configured")
        return
    address = app.public_host(host)
    for account in accounts:
        print_credentials(ClientCredentials.for_account(document, account, address))
    print_info(f"{len(accounts)} account(s)")


@user.command("add")
@click.argument("identifier")
@click.option("--secret", default=None, help="Account secret (generated when omitted)")
@click.option("--host", default=None, help="Address advertised to clients")
@pass_app
@cli_errors
def add_user(app: AppContext, identifier: str, secret: str | None, host: str | None) -> None:
    """Add an account to every authenticated listener."""
    registry = AccountRegistry(app.secret_factory)
    document, _ = app.apply(
        lambda doc: registry.add(doc, identifier, secret),
        f"add account {identifier}",
    )
    print_success(f"Added account {identifier}")
    account = document.account(identifier)
    print_credentials(ClientCredentials.for_account(document, account, app.public_host(host)))


@user.command("rm")
@click.argument("identifier")
@pass_app
@cli_errors
def remove_user(app: AppContext, identifier: str) -> None:
    """Remove an account from every authenticated listener."""
    registry = AccountRegistry(app.secret_factory)
    document, _ = app.apply(
        lambda doc: registry.remove(doc, identifier),
        f"remove account {identifier}",
    )
    print_success(f"Removed account {identifier}")
    if not document.accounts:
        print_warning("No accounts remain; clients cannot authenticate until one is added")
