"""Document editing operations: accounts, routing rules, ports and log level."""

from __future__ import annotations

from xcp.core.accounts import AccountRegistry
from xcp.core.credentials import ClientCredentials, build_share_uri
from xcp.core.options import set_listener_ports, set_log_level
from xcp.core.routing import RoutingRuleEngine

__all__ = [
    "AccountRegistry",
    "ClientCredentials",
    "RoutingRuleEngine",
    "build_share_uri",
    "set_listener_ports",
    "set_log_level",
]
