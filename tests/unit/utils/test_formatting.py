"""Tests for byte count formatting."""

from __future__ import annotations

import pytest

from xcp.utils.formatting import format_bytes

pytestmark = [pytest.mark.unit]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, "0 B"),
        (1023, "1023 B"),
        (1024, "1 KB"),
        (1536, "1 KB"),
        (5 * 1024**2 + 1, "5 MB"),
        (3 * 1024**3, "3 GB"),
        (2048 * 1024**3, "2048 GB"),
        ("4096", "4 KB"),
        (None, "0 B"),
        ("lots", "0 B"),
        (-5, "0 B"),
    ],
)
def test_format_bytes(value, expected):
    assert format_bytes(value) == expected
