"""Command line interface for xcp.

Provides:
- Node setup for the gateway and edge roles
- Account and routing rule management
- Engine service control, statistics and logs
"""

from __future__ import annotations

from xcp.cli.context import AppContext
from xcp.cli.main import cli, main

__all__ = [
    "AppContext",
    "cli",
    "main",
]
