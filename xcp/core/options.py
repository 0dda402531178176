"""Listener port and engine log-level setters."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from xcp.config.document import ConfigDocument
from xcp.models import DEFAULT_LOG_DIR, EngineLogLevel, LogSettings
from xcp.utils.exceptions import InvalidInputError, InvalidPortError, ListenerNotFoundError
from xcp.utils.logging_config import get_logger
from xcp.utils.validators import is_valid_port

logger = get_logger(__name__)


def set_listener_ports(
    doc: ConfigDocument,
    ports: Mapping[str, Any],
) -> tuple[ConfigDocument, list[int]]:
    """Move listeners to new ports in a single edit.

    Every move is applied before uniqueness is checked, so two listeners can
    trade ports in one call.

    Args:
        doc: Current document
        ports: Requested port per listener tag

    Returns:
        Tuple of (document, ports newly in use). When every listener already
        sits on its requested port the same document object is returned with
        an empty list.

    Raises:
        InvalidPortError: out of range, or the final layout reuses a port
        ListenerNotFoundError: no listener has one of the tags

    """
    requested: dict[str, int] = {}
    for tag, port in ports.items():
        if not is_valid_port(port):
            msg = f"Invalid port: {port!r} (must be an integer in 1-65535)"
            raise InvalidPortError(msg)
        if doc.listener(tag) is None:
            msg = f"No listener tagged {tag!r}"
            raise ListenerNotFoundError(msg)
        requested[tag] = int(port)

    moved = [port for tag, port in requested.items() if doc.listener(tag).port != port]
    if not moved:
        return doc, []

    listeners = tuple(
        item.model_copy(update={"port": requested[item.tag]}) if item.tag in requested else item
        for item in doc.listeners
    )
    owners: dict[int, str] = {}
    for item in listeners:
        if item.port in owners:
            taken_by = item.tag if item.tag not in requested else owners[item.port]
            msg = f"Port {item.port} is already used by listener {taken_by!r}"
            raise InvalidPortError(msg)
        owners[item.port] = item.tag

    for item in doc.listeners:
        if item.tag in requested and item.port != requested[item.tag]:
            logger.debug("Moving listener %s from %d to %d", item.tag, item.port, requested[item.tag])
    return doc.evolve(listeners=listeners), moved


def parse_log_level(level: EngineLogLevel | str) -> EngineLogLevel:
    """Parse a log level token (case-insensitive).

    Raises:
        InvalidInputError: unrecognized token

    """
    if isinstance(level, EngineLogLevel):
        return level
    try:
        return EngineLogLevel(str(level).strip().lower())
    except ValueError as e:
        choices = ", ".join(item.value for item in EngineLogLevel)
        msg = f"Unknown log level {level!r} (choose from {choices})"
        raise InvalidInputError(msg) from e


def set_log_level(
    doc: ConfigDocument,
    level: EngineLogLevel | str,
    log_dir: str = DEFAULT_LOG_DIR,
) -> ConfigDocument:
    """Return a document logging at ``level``.

    ``none`` points both log files at the disabled sentinel; any other level
    points them at ``access.log`` and ``error.log`` under ``log_dir``.

    Raises:
        InvalidInputError: unrecognized level token

    """
    settings = LogSettings.for_level(parse_log_level(level), log_dir)
    if settings == doc.log:
        return doc
    logger.debug("Setting engine log level to %s", settings.level.value)
    return doc.evolve(log=settings)
