"""Syntax checks for ports and host addresses.

No DNS resolution is performed; these only look at the text.
"""

from __future__ import annotations

import re
from typing import Any

# ASCII digits only; \d would also match other scripts' digits.
_IPV4_PATTERN = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})")
_HOSTNAME_PATTERN = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?")


def is_valid_port(value: Any) -> bool:
    """Return True if ``value`` is an integer port in 1-65535.

    Digit-only ASCII strings are accepted since ports usually arrive from
    the command line or a prompt.
    """
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        if not (value.isascii() and value.isdigit()):
            return False
        value = int(value)
    if not isinstance(value, int):
        return False
    return 1 <= value <= 65535


def is_valid_ipv4(value: str) -> bool:
    """Return True for a dotted-quad literal with every octet in 0-255."""
    match = _IPV4_PATTERN.fullmatch(value)
    if not match:
        return False
    return all(int(octet) <= 255 for octet in match.groups())


def is_valid_address(value: Any) -> bool:
    """Return True for an IPv4 literal or a syntactically valid host name."""
    if not isinstance(value, str) or not value:
        return False
    if _IPV4_PATTERN.fullmatch(value):
        # Four numeric groups can only be an address, never a host name.
        return is_valid_ipv4(value)
    return bool(_HOSTNAME_PATTERN.fullmatch(value))
