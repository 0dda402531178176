"""Relay configuration commands.

Adds commands:
- config show
- config loglevel
- config port
- config validate
- config backup
- config backups
- config restore
"""

from __future__ import annotations

from pathlib import Path

import click

from xcp.cli.console import (
    create_table,
    print_details,
    print_info,
    print_success,
    print_table,
    print_warning,
)
from xcp.cli.context import AppContext, cli_errors, pass_app
from xcp.config.document import ConfigDocument
from xcp.core.options import set_listener_ports, set_log_level
from xcp.models import HTTP_TAG, RELAY_TAG, SOCKS_TAG
from xcp.utils.exceptions import ConfigurationError, PreconditionError
from xcp.utils.formatting import format_bytes


@click.group()
def config():
    """Inspect and edit the relay configuration."""


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Print the engine configuration JSON")
@pass_app
@cli_errors
def show_config(app: AppContext, as_json: bool) -> None:
    """Show a summary of the committed configuration."""
    document = app.load()
    if as_json:
        click.echo(document.to_json(), nl=False)
        return

    rows: list[tuple[str, object]] = [
        ("Role", document.role.value),
        ("Version", document.schema_version),
        ("Config file", app.store().path),
    ]
    for tag in (RELAY_TAG, HTTP_TAG, SOCKS_TAG):
        listener = document.listener(tag)
        if listener is not None:
            rows.append((f"{tag} port", listener.port))
    upstream = document.upstream
    if upstream is not None:
        rows.append(("Gateway", f"{upstream.address}:{upstream.port}"))
    rows.extend(
        [
            ("Accounts", len(document.accounts)),
            ("Custom rules", len(document.custom_rules)),
            ("Log level", document.log.level.value),
        ]
    )
    print_details(rows)


@config.command("loglevel")
@click.argument("level")
@pass_app
@cli_errors
def set_loglevel(app: AppContext, level: str) -> None:
    """Set the engine log level (none, warning, info, debug)."""
    log_dir = app.settings.storage.log_dir
    document, changed = app.apply(
        lambda doc: set_log_level(doc, level, log_dir),
        "set log level",
    )
    if changed:
        print_success(f"Engine log level set to {document.log.level.value}")
    else:
        print_info(f"Engine log level is already {document.log.level.value}")


@config.command("port")
@click.option("--ss-port", type=int, default=None, help="New relay listener port")
@click.option("--http-port", type=int, default=None, help="New HTTP listener port")
@click.option("--socks-port", type=int, default=None, help="New SOCKS5 listener port")
@pass_app
@cli_errors
def set_ports(
    app: AppContext,
    ss_port: int | None,
    http_port: int | None,
    socks_port: int | None,
) -> None:
    """Move one or more traffic listeners to new ports."""
    requested = {
        tag: port
        for tag, port in ((RELAY_TAG, ss_port), (HTTP_TAG, http_port), (SOCKS_TAG, socks_port))
        if port is not None
    }
    if not requested:
        msg = "Give at least one of --ss-port, --http-port or --socks-port"
        raise click.UsageError(msg)

    moved: list[int] = []

    def _move(doc: ConfigDocument) -> ConfigDocument:
        doc, opened = set_listener_ports(doc, requested)
        moved[:] = opened
        return doc

    _, changed = app.apply(_move, "change ports")
    if not changed:
        print_info("Ports unchanged")
        return
    if app.firewall.is_active():
        for port in moved:
            if not app.firewall.allow(port):
                print_warning(f"Firewall: could not open port {port}")
    print_success("Ports updated: " + ", ".join(f"{tag}={port}" for tag, port in requested.items()))


@config.command("validate")
@pass_app
@cli_errors
def validate_config(app: AppContext) -> None:
    """Check the committed configuration with the engine."""
    document = app.load()
    app.validator.validate(document)
    print_success(f"Configuration at {app.store().path} is valid")


@config.command("backup")
@click.option("--description", "-d", default=None, help="Note stored with the backup")
@click.option("--no-compress", is_flag=True, help="Write plain JSON")
@pass_app
@cli_errors
def backup_config(app: AppContext, description: str | None, no_compress: bool) -> None:
    """Save a copy of the committed configuration."""
    app.load()
    ok, path, messages = app.backups().create_backup(
        app.store().path,
        description=description,
        compress=not no_compress,
    )
    if not ok:
        raise click.ClickException("; ".join(messages))
    print_success(f"Backup written to {path}")


@config.command("backups")
@pass_app
@cli_errors
def list_backups(app: AppContext) -> None:
    """List saved configuration backups, newest first."""
    backups = app.backups().list_backups()
    if not backups:
        print_info("No backups found")
        return
    table = create_table(title="Configuration backups")
    table.add_column("Timestamp")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Description")
    table.add_column("File", overflow="fold")
    for item in backups:
        table.add_row(
            str(item["timestamp"]),
            str(item["backup_type"]),
            format_bytes(item["file_size"]),
            item["description"] or "",
            str(item["file"]),
        )
    print_table(table)


@config.command("restore")
@click.argument("backup_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--force", is_flag=True, help="Allow restoring a backup of the other role")
@pass_app
@cli_errors
def restore_config(app: AppContext, backup_file: str, force: bool) -> None:
    """Replace the committed configuration with BACKUP_FILE and restart."""
    backups = app.backups()
    ok, errors = backups.validate_backup(backup_file)
    if not ok:
        msg = "; ".join(errors)
        raise ConfigurationError(msg)
    document = backups.load_backup(backup_file)

    def _replace(current: ConfigDocument) -> ConfigDocument:
        if current.role != document.role and not force:
            msg = (
                f"Backup is a {document.role.value} configuration but this node is a "
                f"{current.role.value} (use --force to replace it)"
            )
            raise PreconditionError(msg)
        return document

    store = app.store()
    if store.exists():
        store.mutate(_replace)
    else:
        store.create(document)
    app.restart_engine()
    print_success(f"Restored configuration from {Path(backup_file).name}")
