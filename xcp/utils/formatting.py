"""Human readable formatting helpers."""

from __future__ import annotations

from typing import Any

_UNITS = (
    (1024**3, "GB"),
    (1024**2, "MB"),
    (1024, "KB"),
)


def format_bytes(value: Any) -> str:
    """Format a byte count the way the traffic report shows it.

    Whole units only (integer division); anything that is not a
    non-negative integer is shown as ``0 B``.
    """
    try:
        count = int(value)
    except (TypeError, ValueError):
        count = 0
    if count < 0:
        count = 0
    for size, unit in _UNITS:
        if count >= size:
            return f"{count // size} {unit}"
    return f"{count} B"
