"""Secret generation for relay accounts."""

from __future__ import annotations

import base64
import secrets
import string
from pathlib import Path

from xcp.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_SECRET_LENGTH = 16
_ALPHANUMERIC = frozenset(string.ascii_letters + string.digits)
_URANDOM = Path("/dev/urandom")


def _primary_entropy(size: int) -> bytes:
    return secrets.token_bytes(size)


def _fallback_entropy(size: int) -> bytes:
    with _URANDOM.open("rb") as source:
        return source.read(size)


def _entropy(size: int) -> bytes:
    try:
        return _primary_entropy(size)
    except (NotImplementedError, OSError) as e:
        logger.warning("Primary entropy source unavailable (%s), using %s", e, _URANDOM)
        return _fallback_entropy(size)


def generate_secret(length: int = DEFAULT_SECRET_LENGTH) -> str:
    """Generate an alphanumeric secret of ``length`` characters.

    Random bytes are base64 encoded and filtered down to letters and digits,
    so the result is safe to paste into URIs and shell prompts.
    """
    if length < DEFAULT_SECRET_LENGTH:
        msg = f"Secrets must be at least {DEFAULT_SECRET_LENGTH} characters"
        raise ValueError(msg)

    collected: list[str] = []
    while len(collected) < length:
        encoded = base64.b64encode(_entropy(32)).decode("ascii")
        collected.extend(ch for ch in encoded if ch in _ALPHANUMERIC)
    return "".join(collected[:length])
