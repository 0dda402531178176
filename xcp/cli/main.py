"""Command line interface for xcp.

Commands:
- setup gateway | setup edge
- user ls | add | rm
- rule ls | add | rm
- config show | loglevel | port | validate | backup | backups | restore
- start | stop | restart | status | stats | logs | test
- install | update | uninstall
"""

from __future__ import annotations

import click

from xcp import __version__
from xcp.cli.config_commands import config as config_group
from xcp.cli.context import AppContext
from xcp.cli.rule_commands import rule as rule_group
from xcp.cli.service_commands import (
    install,
    logs,
    restart,
    start,
    stats,
    status,
    stop,
    test,
    uninstall,
    update,
)
from xcp.cli.setup_commands import setup as setup_group
from xcp.cli.user_commands import user as user_group
from xcp.config.config import init_config
from xcp.models import LogLevel
from xcp.utils.exceptions import XCPError
from xcp.utils.logging_config import set_correlation_id, setup_logging

# -v: info, -vv: debug
VERBOSITY_LEVELS = {1: LogLevel.INFO, 2: LogLevel.DEBUG}


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False),
    help="Tool settings file (TOML)",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: info, -vv: debug)",
)
@click.version_option(__version__, prog_name="xcp")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: int) -> None:
    """Xray chain proxy manager for gateway and edge nodes."""
    set_correlation_id()
    if ctx.obj is not None:
        return
    try:
        settings = init_config(config).config
    except XCPError as e:
        raise click.ClickException(str(e)) from e
    if verbose:
        observability = settings.observability.model_copy(
            update={"log_level": VERBOSITY_LEVELS[min(verbose, 2)]}
        )
        setup_logging(observability)
    ctx.obj = AppContext.from_settings(settings)


cli.add_command(setup_group)
cli.add_command(user_group)
cli.add_command(rule_group)
cli.add_command(config_group)
for command in (start, stop, restart, status, stats, logs, test, install, update, uninstall):
    cli.add_command(command)


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
