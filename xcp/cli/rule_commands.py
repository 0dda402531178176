"""Routing rule commands.

Adds commands:
- rule ls
- rule add
- rule rm
"""

from __future__ import annotations

import click

from xcp.cli.console import create_table, print_info, print_success, print_table
from xcp.cli.context import AppContext, cli_errors, pass_app
from xcp.core.routing import RoutingRuleEngine
from xcp.models import MatchKind, RoutingRule, RuleKind


def _describe(rule: RoutingRule) -> str:
    if rule.match is not None:
        return ", ".join(rule.values)
    if rule.inbound_tags:
        return "inbound: " + ", ".join(rule.inbound_tags)
    return "*"


@click.group()
def rule():
    """Manage custom routing rules."""


@rule.command("ls")
@click.option("--all", "show_all", is_flag=True, help="Include built-in rules")
@pass_app
@cli_errors
def list_rules(app: AppContext, show_all: bool) -> None:
    """List custom routing rules, numbered for 'rule rm'."""
    document = app.load()
    custom = RoutingRuleEngine.list(document)
    if not custom and not show_all:
        print_info("No custom routing rules")
        return

    table = create_table(title="Routing rules")
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Match")
    table.add_column("Values", overflow="fold")
    table.add_column("Outbound", style="green")
    position = 0
    for item in document.rules if show_all else custom:
        if item.kind == RuleKind.CUSTOM:
            position += 1
            number = str(position)
        else:
            number = "-"
        match = item.match.value if item.match is not None else "-"
        table.add_row(number, item.kind.value, match, _describe(item), item.outbound_tag)
    print_table(table)


@rule.command("add")
@click.option(
    "--outbound",
    "-o",
    required=True,
    help="Target outbound tag (gateway: direct, blocked; edge: proxy, direct, blocked)",
)
@click.option("--domain", "domains", default=None, help="Comma-separated domain matchers")
@click.option("--ip", "ips", default=None, help="Comma-separated IP or CIDR matchers")
@pass_app
@cli_errors
def add_rule(app: AppContext, outbound: str, domains: str | None, ips: str | None) -> None:
    """Add a custom routing rule."""
    if (domains is None) == (ips is None):
        msg = "Give exactly one of --domain or --ip"
        raise click.UsageError(msg)
    match, values = (MatchKind.DOMAIN, domains) if domains is not None else (MatchKind.IP, ips)
    document, _ = app.apply(
        lambda doc: RoutingRuleEngine.add(doc, outbound, match, values),
        f"add {match.value} rule",
    )
    print_success(
        f"Added rule #{len(document.custom_rules)}: {match.value} {values} -> {outbound}",
    )


@rule.command("rm")
@click.argument("index", type=int)
@pass_app
@cli_errors
def remove_rule(app: AppContext, index: int) -> None:
    """Remove the INDEX-th custom rule (as numbered by 'rule ls')."""
    app.apply(
        lambda doc: RoutingRuleEngine.remove(doc, index),
        f"remove rule {index}",
    )
    print_success(f"Removed rule #{index}")
