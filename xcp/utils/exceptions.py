"""Exception hierarchy for xcp.

Every failure raised by the document model, the mutation engine and the
engine adapters derives from :class:`XCPError`, so the CLI can report any of
them with a single handler.
"""

from __future__ import annotations

from typing import Any


class XCPError(Exception):
    """Base exception for all xcp errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize xcp error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ValidationError(XCPError):
    """User-correctable input errors."""


class InvalidInputError(ValidationError):
    """Bad identifier, level token, rule value or similar input."""


class InvalidPortError(ValidationError):
    """Port outside 1-65535 or already taken by another listener."""


class InvalidAddressError(ValidationError):
    """Malformed IPv4 literal or host name."""


class ConfigurationError(ValidationError):
    """Persisted document or tool settings are malformed or inconsistent."""


class PreconditionError(XCPError):
    """Operation does not apply to the current document state."""


class NotConfiguredError(PreconditionError):
    """Relay listener or its account list is missing."""


class DuplicateAccountError(PreconditionError):
    """Account identifier already present."""


class AccountNotFoundError(PreconditionError):
    """Account identifier not present."""


class NoCustomRulesError(PreconditionError):
    """Removal requested but there are no custom routing rules."""


class InvalidIndexError(PreconditionError):
    """Custom rule index outside ``[1, count]``."""


class InvalidOutboundError(PreconditionError):
    """Outbound tag not legal for the document role."""


class ListenerNotFoundError(PreconditionError):
    """No listener carries the requested tag."""


class ConfigRejectedError(XCPError):
    """Proxy engine self-test refused a candidate document."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        """Initialize with the engine's rejection reason."""
        super().__init__(f"Configuration rejected by engine: {reason}", details)
        self.reason = reason


class StorageError(XCPError):
    """Persisted document could not be read or written."""


class DocumentNotFoundError(StorageError):
    """No document has been committed yet."""


class ConfigLockError(StorageError):
    """Exclusive lock on the document was not acquired in time."""


class ServiceError(XCPError):
    """Engine process or service manager failure."""


class EngineNotFoundError(ServiceError):
    """Engine binary is not installed."""


class StatsUnavailableError(ServiceError):
    """Statistics endpoint did not answer."""


class TransientNetworkError(XCPError):
    """Remote fetch failed after exhausting retries."""
