"""Fresh document synthesis for each node role."""

from __future__ import annotations

from typing import Any, Callable

from xcp import __version__
from xcp.config.document import ConfigDocument
from xcp.models import (
    BLACKHOLE_TAG,
    CONTROL_PORT,
    CONTROL_TAG,
    DEFAULT_LOG_DIR,
    DIRECT_TAG,
    HTTP_TAG,
    LOOPBACK_ADDRESS,
    LOOPBACK_PORT,
    LOOPBACK_TAG,
    PRIVATE_IP_MATCH,
    RELAY_TAG,
    SOCKS_TAG,
    UPSTREAM_TAG,
    Account,
    EngineLogLevel,
    Listener,
    ListenerProtocol,
    LogSettings,
    MatchKind,
    Outbound,
    OutboundKind,
    Role,
    RoutingRule,
    RoutingTable,
    RuleKind,
    UpstreamRelay,
)
from xcp.utils.exceptions import InvalidAddressError, InvalidInputError, InvalidPortError
from xcp.utils.logging_config import get_logger
from xcp.utils.passwords import generate_secret
from xcp.utils.validators import is_valid_address, is_valid_port

logger = get_logger(__name__)

DEFAULT_RELAY_PORT = 443
DEFAULT_HTTP_PORT = 80
DEFAULT_SOCKS_PORT = 1080

# Seed account created on every fresh node; on a gateway its secret is the
# one edge nodes use to reach it.
SEED_ACCOUNT = "edge"


def _checked_port(name: str, value: Any) -> int:
    if not is_valid_port(value):
        msg = f"Invalid {name}: {value!r} (must be an integer in 1-65535)"
        raise InvalidPortError(msg)
    return int(value)


class ConfigSynthesizer:
    """Builds a complete, valid document for a role from scratch."""

    def __init__(
        self,
        secret_factory: Callable[[], str] = generate_secret,
        log_dir: str = DEFAULT_LOG_DIR,
        version: str = __version__,
    ):
        """Initialize the synthesizer.

        Args:
            secret_factory: Produces seed account secrets
            log_dir: Directory for the engine's access and error logs
            version: Version string stamped into the document metadata

        """
        self.secret_factory = secret_factory
        self.log_dir = log_dir
        self.version = version

    def build_gateway(
        self,
        ss_port: Any = DEFAULT_RELAY_PORT,
        http_port: Any = DEFAULT_HTTP_PORT,
        socks_port: Any = DEFAULT_SOCKS_PORT,
    ) -> ConfigDocument:
        """Synthesize a GATEWAY document.

        Raises:
            InvalidPortError: a port is out of range or collides

        """
        listeners = self._traffic_listeners(ss_port, http_port, socks_port)
        document = ConfigDocument(
            role=Role.GATEWAY,
            schema_version=self.version,
            listeners=listeners,
            accounts=(self._seed_account(),),
            outbounds=(
                Outbound(tag=DIRECT_TAG, kind=OutboundKind.DIRECT),
                Outbound(tag=BLACKHOLE_TAG, kind=OutboundKind.BLACKHOLE),
            ),
            routing=RoutingTable(
                head=(
                    _control_rule(),
                    RoutingRule(
                        kind=RuleKind.BUILTIN_PRIVATE_BLOCK,
                        outbound_tag=BLACKHOLE_TAG,
                        match=MatchKind.IP,
                        values=(PRIVATE_IP_MATCH,),
                    ),
                ),
            ),
            log=LogSettings.for_level(EngineLogLevel.WARNING, self.log_dir),
        )
        logger.debug("Synthesized gateway document with ports %s", _ports(document))
        return document

    def build_edge(
        self,
        upstream_address: str,
        upstream_port: Any,
        upstream_secret: str,
        ss_port: Any = DEFAULT_RELAY_PORT,
        http_port: Any = DEFAULT_HTTP_PORT,
        socks_port: Any = DEFAULT_SOCKS_PORT,
    ) -> ConfigDocument:
        """Synthesize an EDGE document forwarding to ``upstream_address``.

        Raises:
            InvalidPortError: a port is out of range or collides
            InvalidAddressError: the upstream address is malformed
            InvalidInputError: the upstream secret is empty

        """
        if not is_valid_address(upstream_address):
            msg = f"Invalid upstream address: {upstream_address!r}"
            raise InvalidAddressError(msg)
        upstream_port = _checked_port("upstream port", upstream_port)
        if not upstream_secret:
            msg = "Upstream secret must not be empty"
            raise InvalidInputError(msg)

        listeners = self._traffic_listeners(
            ss_port,
            http_port,
            socks_port,
            extra=Listener(
                tag=LOOPBACK_TAG,
                protocol=ListenerProtocol.SOCKS,
                port=LOOPBACK_PORT,
                listen=LOOPBACK_ADDRESS,
                authenticated=False,
            ),
        )
        traffic_tags = tuple(
            listener.tag
            for listener in listeners
            if listener.protocol != ListenerProtocol.CONTROL
        )
        document = ConfigDocument(
            role=Role.EDGE,
            schema_version=self.version,
            listeners=listeners,
            accounts=(self._seed_account(),),
            outbounds=(
                Outbound(
                    tag=UPSTREAM_TAG,
                    kind=OutboundKind.UPSTREAM_RELAY,
                    upstream=UpstreamRelay(
                        address=upstream_address,
                        port=upstream_port,
                        secret=upstream_secret,
                    ),
                ),
                Outbound(tag=DIRECT_TAG, kind=OutboundKind.DIRECT),
                Outbound(tag=BLACKHOLE_TAG, kind=OutboundKind.BLACKHOLE),
            ),
            routing=RoutingTable(
                head=(_control_rule(),),
                catch_all=RoutingRule(
                    kind=RuleKind.BUILTIN_CATCH_ALL,
                    outbound_tag=UPSTREAM_TAG,
                    inbound_tags=traffic_tags,
                ),
            ),
            log=LogSettings.for_level(EngineLogLevel.WARNING, self.log_dir),
        )
        logger.debug(
            "Synthesized edge document with ports %s forwarding to %s:%s",
            _ports(document),
            upstream_address,
            upstream_port,
        )
        return document

    def _seed_account(self) -> Account:
        return Account(identifier=SEED_ACCOUNT, secret=self.secret_factory())

    def _traffic_listeners(
        self,
        ss_port: Any,
        http_port: Any,
        socks_port: Any,
        extra: Listener | None = None,
    ) -> tuple[Listener, ...]:
        ports = {
            "relay port": _checked_port("relay port", ss_port),
            "HTTP port": _checked_port("HTTP port", http_port),
            "SOCKS port": _checked_port("SOCKS port", socks_port),
        }
        taken = {CONTROL_PORT: "control port"}
        if extra is not None:
            taken[extra.port] = f"{extra.tag} port"
        for name, port in ports.items():
            if port in taken:
                msg = f"The {name} {port} collides with the {taken[port]}"
                raise InvalidPortError(msg)
            taken[port] = name

        listeners = [
            Listener(
                tag=CONTROL_TAG,
                protocol=ListenerProtocol.CONTROL,
                port=CONTROL_PORT,
                listen=LOOPBACK_ADDRESS,
                authenticated=False,
            ),
        ]
        if extra is not None:
            listeners.append(extra)
        listeners.extend(
            [
                Listener(
                    tag=RELAY_TAG,
                    protocol=ListenerProtocol.RELAY_CIPHER,
                    port=ports["relay port"],
                ),
                Listener(tag=HTTP_TAG, protocol=ListenerProtocol.HTTP, port=ports["HTTP port"]),
                Listener(tag=SOCKS_TAG, protocol=ListenerProtocol.SOCKS, port=ports["SOCKS port"]),
            ]
        )
        return tuple(listeners)


def _control_rule() -> RoutingRule:
    return RoutingRule(
        kind=RuleKind.BUILTIN_CONTROL,
        outbound_tag=CONTROL_TAG,
        inbound_tags=(CONTROL_TAG,),
    )


def _ports(document: ConfigDocument) -> dict[str, int]:
    return {listener.tag: listener.port for listener in document.listeners}
