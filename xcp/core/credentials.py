"""Client-facing connection details for relay accounts."""

from __future__ import annotations

import base64
from dataclasses import dataclass

from xcp.config.document import ConfigDocument
from xcp.models import Account, ListenerProtocol

DEFAULT_LABEL = "Proxy"


def build_share_uri(
    method: str,
    secret: str,
    host: str,
    port: int,
    label: str | None = None,
) -> str:
    """Build a SIP002 share URI for the relay-cipher listener.

    The user-info part is ``method:secret`` in URL-safe base64 without
    padding.
    """
    user_info = base64.urlsafe_b64encode(f"{method}:{secret}".encode()).decode("ascii")
    return f"ss://{user_info.rstrip('=')}@{host}:{port}#{label or DEFAULT_LABEL}"


@dataclass(frozen=True)
class ClientCredentials:
    """Everything a client needs to connect with one account."""

    host: str
    relay_port: int
    http_port: int
    socks_port: int
    identifier: str
    secret: str
    method: str
    share_uri: str

    @classmethod
    def for_account(
        cls,
        document: ConfigDocument,
        account: Account,
        host: str,
    ) -> ClientCredentials:
        """Collect connection details for ``account`` on ``host``."""
        ports = {}
        for protocol in (
            ListenerProtocol.RELAY_CIPHER,
            ListenerProtocol.HTTP,
            ListenerProtocol.SOCKS,
        ):
            listener = document.traffic_listener(protocol)
            ports[protocol] = listener.port if listener is not None else 0

        relay_port = ports[ListenerProtocol.RELAY_CIPHER]
        return cls(
            host=host,
            relay_port=relay_port,
            http_port=ports[ListenerProtocol.HTTP],
            socks_port=ports[ListenerProtocol.SOCKS],
            identifier=account.identifier,
            secret=account.secret,
            method=account.method,
            share_uri=build_share_uri(
                account.method,
                account.secret,
                host,
                relay_port,
                account.identifier,
            ),
        )
