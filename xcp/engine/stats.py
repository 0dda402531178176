"""Traffic statistics from the engine's local control endpoint.

Counters are named ``<scope>>>><name>>>>traffic>>><direction>`` where scope
is ``user``, ``inbound`` or ``outbound`` and direction is ``uplink`` or
``downlink``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable

from xcp.engine.process import command_output, run_command
from xcp.utils.exceptions import StatsUnavailableError
from xcp.utils.logging_config import get_logger
from xcp.utils.resilience import with_retry

logger = get_logger(__name__)

SEPARATOR = ">>>"
UPLINK = "uplink"
DOWNLINK = "downlink"


@dataclass(frozen=True)
class StatCounter:
    """A single named traffic counter."""

    scope: str
    name: str
    direction: str
    value: int

    @classmethod
    def from_key(cls, key: str, value: Any) -> StatCounter | None:
        """Parse a counter key; returns None for keys of another shape."""
        parts = key.split(SEPARATOR)
        if len(parts) != 4 or parts[2] != "traffic":
            return None
        try:
            amount = int(value or 0)
        except (TypeError, ValueError):
            amount = 0
        return cls(scope=parts[0], name=parts[1], direction=parts[3], value=amount)


@dataclass
class Throughput:
    """Uplink and downlink byte totals."""

    uplink: int = 0
    downlink: int = 0

    def add(self, counter: StatCounter) -> None:
        if counter.direction == UPLINK:
            self.uplink += counter.value
        elif counter.direction == DOWNLINK:
            self.downlink += counter.value


@dataclass
class TrafficSummary:
    """Per-user totals plus listener and outbound totals."""

    users: dict[str, Throughput] = field(default_factory=dict)
    inbound: Throughput = field(default_factory=Throughput)
    outbound: Throughput = field(default_factory=Throughput)

    @classmethod
    def from_counters(cls, counters: Iterable[StatCounter]) -> TrafficSummary:
        """Aggregate counters by scope, summing every matching entry."""
        summary = cls()
        for counter in counters:
            if counter.scope == "user":
                summary.users.setdefault(counter.name, Throughput()).add(counter)
            elif counter.scope == "inbound":
                summary.inbound.add(counter)
            elif counter.scope == "outbound":
                summary.outbound.add(counter)
        summary.users = dict(sorted(summary.users.items()))
        return summary


def parse_stats(payload: str | dict[str, Any]) -> list[StatCounter]:
    """Parse ``statsquery`` JSON output into counters.

    Raises:
        StatsUnavailableError: the payload is not a JSON object
    """
    if isinstance(payload, str):
        if not payload.strip():
            return []
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            msg = f"Unreadable statistics response: {e}"
            raise StatsUnavailableError(msg) from e

    if not isinstance(payload, dict):
        msg = f"Unexpected statistics response: {type(payload).__name__}"
        raise StatsUnavailableError(msg)

    counters = []
    for entry in payload.get("stat") or []:
        if not isinstance(entry, dict):
            continue
        counter = StatCounter.from_key(str(entry.get("name", "")), entry.get("value"))
        if counter is not None:
            counters.append(counter)
    return counters


class StatsClient:
    """Queries the engine's statistics service."""

    def __init__(
        self,
        binary: str,
        server: str = "127.0.0.1:10085",
        timeout: float = 10.0,
        retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """Initialize the client."""
        self.binary = binary
        self.server = server
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay

    def _query_once(self) -> str:
        result = run_command(
            [self.binary, "api", "statsquery", f"--server={self.server}"],
            timeout=self.timeout,
        )
        if result.returncode != 0:
            msg = f"Statistics query failed: {command_output(result)}"
            raise StatsUnavailableError(msg)
        return result.stdout

    def query(self) -> list[StatCounter]:
        """Fetch all counters.

        Raises:
            StatsUnavailableError: the endpoint did not answer after retries

        """
        fetch = with_retry(
            retries=self.retries,
            delay=self.retry_delay,
            exceptions=(StatsUnavailableError,),
        )(self._query_once)
        return parse_stats(fetch())

    def summary(self) -> TrafficSummary:
        """Fetch and aggregate all counters."""
        return TrafficSummary.from_counters(self.query())
