"""Account management across the relay's authenticated listeners."""

from __future__ import annotations

from typing import Callable

from xcp.config.document import ConfigDocument
from xcp.models import Account
from xcp.utils.exceptions import (
    AccountNotFoundError,
    DuplicateAccountError,
    InvalidInputError,
)
from xcp.utils.logging_config import get_logger
from xcp.utils.passwords import generate_secret

logger = get_logger(__name__)


class AccountRegistry:
    """Lists, adds and removes relay accounts.

    Accounts are stored once on the document and rendered into the
    relay-cipher, HTTP and SOCKS listeners together, so an add or remove
    updates all three lists or none of them.
    """

    def __init__(self, secret_factory: Callable[[], str] = generate_secret):
        """Initialize the registry.

        Args:
            secret_factory: Produces secrets for accounts added without one

        """
        self.secret_factory = secret_factory

    def list(self, doc: ConfigDocument) -> tuple[Account, ...]:
        """Return accounts in insertion order.

        Raises:
            NotConfiguredError: the document has no relay listener

        """
        doc.relay_listener()
        return doc.accounts

    def add(
        self,
        doc: ConfigDocument,
        identifier: str,
        secret: str | None = None,
    ) -> ConfigDocument:
        """Return a document with a new account appended.

        Args:
            doc: Current document
            identifier: Account name (exact, case-sensitive)
            secret: Account secret; generated when omitted

        Raises:
            InvalidInputError: empty identifier or secret
            DuplicateAccountError: identifier already present

        """
        if not identifier or not identifier.strip():
            msg = "Account identifier must not be empty"
            raise InvalidInputError(msg)
        if secret is not None and not secret:
            msg = "Account secret must not be empty"
            raise InvalidInputError(msg)
        self.list(doc)
        if doc.account(identifier) is not None:
            msg = f"Account {identifier!r} already exists"
            raise DuplicateAccountError(msg)

        account = Account(
            identifier=identifier,
            secret=secret if secret is not None else self.secret_factory(),
            method=doc.relay_method,
        )
        logger.debug("Adding account %s", identifier)
        return doc.evolve(accounts=(*doc.accounts, account))

    def remove(self, doc: ConfigDocument, identifier: str) -> ConfigDocument:
        """Return a document without the account ``identifier``.

        Removing the last account is allowed and leaves the relay with no
        usable credentials.

        Raises:
            AccountNotFoundError: identifier not present

        """
        self.list(doc)
        if doc.account(identifier) is None:
            msg = f"Account {identifier!r} not found"
            raise AccountNotFoundError(msg)

        logger.debug("Removing account %s", identifier)
        return doc.evolve(
            accounts=tuple(a for a in doc.accounts if a.identifier != identifier),
        )
