"""Adapters for the proxy engine, its service unit and remote endpoints."""

from __future__ import annotations

from xcp.engine.service import Firewall, SystemdService, engine_version
from xcp.engine.stats import StatCounter, StatsClient, TrafficSummary, parse_stats
from xcp.engine.validator import ConfigValidator, EngineValidator

__all__ = [
    "ConfigValidator",
    "EngineValidator",
    "Firewall",
    "StatCounter",
    "StatsClient",
    "SystemdService",
    "TrafficSummary",
    "engine_version",
    "parse_stats",
]
