"""Relay configuration document.

:class:`ConfigDocument` is an immutable, validated view of the engine's JSON
configuration. Every edit produces a new document through :meth:`evolve`,
which re-runs all invariant checks, so a half-applied change can never be
observed.

The account list is held once and rendered into each authenticated traffic
listener on serialization, which keeps the identifier sets of the three
listener account lists identical by construction. Parsing checks that the
lists on disk agree before accepting them.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from xcp.models import (
    BLACKHOLE_TAG,
    CONTROL_TAG,
    DEFAULT_CIPHER_METHOD,
    DIRECT_TAG,
    LOOPBACK_ADDRESS,
    PRIVATE_IP_MATCH,
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
from xcp.utils.exceptions import ConfigurationError, NotConfiguredError

# Marker fields the engine ignores but this tool relies on.
METADATA_KEY = "xcp"
CUSTOM_RULE_KEY = "xcp_custom"

_SNIFFING = {"enabled": True, "destOverride": ["http", "tls"]}

_STATS_POLICY = {
    "levels": {
        "0": {
            "statsUserUplink": True,
            "statsUserDownlink": True,
        }
    },
    "system": {
        "statsInboundUplink": True,
        "statsInboundDownlink": True,
        "statsOutboundUplink": True,
        "statsOutboundDownlink": True,
    },
}

TRAFFIC_PROTOCOLS = (
    ListenerProtocol.RELAY_CIPHER,
    ListenerProtocol.HTTP,
    ListenerProtocol.SOCKS,
)

LEGAL_OUTBOUNDS: dict[Role, tuple[str, ...]] = {
    Role.GATEWAY: (DIRECT_TAG, BLACKHOLE_TAG),
    Role.EDGE: (UPSTREAM_TAG, DIRECT_TAG, BLACKHOLE_TAG),
}


class ConfigDocument(BaseModel):
    """In-memory representation of the relay's configuration."""

    model_config = {"frozen": True}

    role: Role = Field(..., description="Node role, fixed at creation")
    schema_version: str = Field(default="", description="Informational version string")
    listeners: tuple[Listener, ...] = Field(..., description="Listeners in order")
    accounts: tuple[Account, ...] = Field(default=(), description="Accounts in insertion order")
    outbounds: tuple[Outbound, ...] = Field(..., description="Outbound chain in order")
    routing: RoutingTable = Field(..., description="Routing rules")
    log: LogSettings = Field(default_factory=LogSettings, description="Engine logging")

    # --- Lookups ---

    def listener(self, tag: str) -> Listener | None:
        """Return the listener with ``tag`` if present."""
        for listener in self.listeners:
            if listener.tag == tag:
                return listener
        return None

    def traffic_listener(self, protocol: ListenerProtocol) -> Listener | None:
        """Return the authenticated traffic listener for ``protocol``."""
        for listener in self.listeners:
            if listener.protocol == protocol and listener.carries_accounts:
                return listener
        return None

    def relay_listener(self) -> Listener:
        """Return the relay-cipher listener.

        Raises:
            NotConfiguredError: if the document has none

        """
        listener = self.traffic_listener(ListenerProtocol.RELAY_CIPHER)
        if listener is None:
            msg = "No relay listener configured"
            raise NotConfiguredError(msg)
        return listener

    def outbound(self, tag: str) -> Outbound | None:
        """Return the outbound with ``tag`` if present."""
        for outbound in self.outbounds:
            if outbound.tag == tag:
                return outbound
        return None

    @property
    def outbound_tags(self) -> tuple[str, ...]:
        """Outbound tags in chain order."""
        return tuple(outbound.tag for outbound in self.outbounds)

    @property
    def upstream(self) -> UpstreamRelay | None:
        """Upstream coordinates of an EDGE document."""
        for outbound in self.outbounds:
            if outbound.upstream is not None:
                return outbound.upstream
        return None

    @property
    def rules(self) -> tuple[RoutingRule, ...]:
        """All routing rules in evaluation order."""
        return self.routing.rules

    @property
    def custom_rules(self) -> tuple[RoutingRule, ...]:
        """Custom routing rules in insertion order."""
        return self.routing.custom_rules

    def account(self, identifier: str) -> Account | None:
        """Return the account with exactly ``identifier`` if present."""
        for account in self.accounts:
            if account.identifier == identifier:
                return account
        return None

    @property
    def relay_method(self) -> str:
        """Cipher method used on the relay listener."""
        if self.accounts:
            return self.accounts[0].method
        return DEFAULT_CIPHER_METHOD

    @property
    def traffic_ports(self) -> tuple[int, ...]:
        """Ports of the externally reachable, account-carrying listeners."""
        return tuple(listener.port for listener in self.listeners if listener.carries_accounts)

    def account_lists(self) -> dict[str, tuple[str, ...]]:
        """Identifier list per account-carrying listener, as rendered."""
        return {
            listener.tag: tuple(account.identifier for account in self.accounts)
            for listener in self.listeners
            if listener.carries_accounts
        }

    # --- Editing ---

    def evolve(self, **changes: Any) -> ConfigDocument:
        """Return a re-validated copy with ``changes`` applied.

        Raises:
            ConfigurationError: if the result breaks a document invariant

        """
        if "role" in changes and changes["role"] != self.role:
            msg = "Document role cannot change after creation"
            raise ConfigurationError(msg)
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        try:
            return type(self).model_validate(data)
        except PydanticValidationError as e:
            msg = f"Invalid configuration document: {e}"
            raise ConfigurationError(msg) from e

    # --- Invariants ---

    @model_validator(mode="after")
    def validate_document(self) -> ConfigDocument:
        """Check the structural invariants for the document's role."""
        self._check_listeners()
        self._check_accounts()
        self._check_outbounds()
        self._check_routing()
        return self

    def _check_listeners(self) -> None:
        tags = [listener.tag for listener in self.listeners]
        if len(set(tags)) != len(tags):
            msg = f"Listener tags must be unique: {tags}"
            raise ValueError(msg)
        ports = [listener.port for listener in self.listeners]
        if len(set(ports)) != len(ports):
            msg = f"Listener ports must be unique: {ports}"
            raise ValueError(msg)

        control = [item for item in self.listeners if item.protocol == ListenerProtocol.CONTROL]
        if len(control) != 1:
            msg = "Document needs exactly one control listener"
            raise ValueError(msg)
        for protocol in TRAFFIC_PROTOCOLS:
            matching = [
                item
                for item in self.listeners
                if item.protocol == protocol and item.carries_accounts
            ]
            if len(matching) != 1:
                msg = f"Document needs exactly one {protocol.value} traffic listener"
                raise ValueError(msg)

        loopback = [
            item
            for item in self.listeners
            if not item.authenticated and item.protocol != ListenerProtocol.CONTROL
        ]
        if self.role == Role.EDGE:
            if len(loopback) != 1 or loopback[0].listen != LOOPBACK_ADDRESS:
                msg = "EDGE documents need one loopback no-auth diagnostic listener"
                raise ValueError(msg)
        elif loopback:
            msg = "GATEWAY documents have no unauthenticated listeners"
            raise ValueError(msg)

    def _check_accounts(self) -> None:
        identifiers = [account.identifier for account in self.accounts]
        if len(set(identifiers)) != len(identifiers):
            msg = f"Account identifiers must be unique: {identifiers}"
            raise ValueError(msg)

    def _check_outbounds(self) -> None:
        tags = self.outbound_tags
        if len(set(tags)) != len(tags):
            msg = f"Outbound tags must be unique: {list(tags)}"
            raise ValueError(msg)
        expected = LEGAL_OUTBOUNDS[self.role]
        if set(tags) != set(expected):
            msg = f"{self.role.value} outbounds must be {list(expected)}, got {list(tags)}"
            raise ValueError(msg)
        if self.role == Role.EDGE and tags[0] != UPSTREAM_TAG:
            msg = "EDGE documents send unmatched traffic upstream first"
            raise ValueError(msg)
        if self.role == Role.GATEWAY and self.outbounds[0].kind != OutboundKind.DIRECT:
            msg = "GATEWAY documents fall through to the direct outbound first"
            raise ValueError(msg)

    def _check_routing(self) -> None:
        head = self.routing.head
        if not head or head[0].kind != RuleKind.BUILTIN_CONTROL:
            msg = "The first routing rule must be the control rule"
            raise ValueError(msg)

        legal = set(LEGAL_OUTBOUNDS[self.role])
        for rule in self.routing.custom_rules:
            if rule.outbound_tag not in legal:
                msg = f"Custom rule targets unknown outbound {rule.outbound_tag!r}"
                raise ValueError(msg)

        builtin_tail = [rule.kind for rule in head[1:] if not rule.is_custom]
        if self.role == Role.GATEWAY:
            if builtin_tail != [RuleKind.BUILTIN_PRIVATE_BLOCK]:
                msg = "GATEWAY rules must be control, private-IP block, then custom rules"
                raise ValueError(msg)
            if not head[1:] or head[1].kind != RuleKind.BUILTIN_PRIVATE_BLOCK:
                msg = "GATEWAY private-IP block rule must be second"
                raise ValueError(msg)
            if self.routing.catch_all is not None:
                msg = "GATEWAY documents have no catch-all rule"
                raise ValueError(msg)
        else:
            if builtin_tail:
                msg = "EDGE rules between control and catch-all must all be custom"
                raise ValueError(msg)
            if self.routing.catch_all is None:
                msg = "EDGE documents must end with the catch-all rule"
                raise ValueError(msg)
            if self.routing.catch_all.outbound_tag != UPSTREAM_TAG:
                msg = "EDGE catch-all rule must target the upstream relay"
                raise ValueError(msg)

    # --- Engine JSON ---

    def to_engine_dict(self) -> dict[str, Any]:
        """Render the document in the engine's configuration format."""
        return {
            METADATA_KEY: {
                "type": self.role.value,
                "version": self.schema_version,
            },
            "log": {
                "loglevel": self.log.level.value,
                "access": self.log.access,
                "error": self.log.error,
            },
            "api": {
                "tag": CONTROL_TAG,
                "services": ["StatsService"],
            },
            "stats": {},
            "policy": copy.deepcopy(_STATS_POLICY),
            "inbounds": [self._render_listener(listener) for listener in self.listeners],
            "outbounds": [_render_outbound(outbound) for outbound in self.outbounds],
            "routing": {
                "domainStrategy": self.routing.domain_strategy,
                "rules": [_render_rule(rule) for rule in self.routing.rules],
            },
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to engine JSON text."""
        return json.dumps(self.to_engine_dict(), indent=indent) + "\n"

    def _render_listener(self, listener: Listener) -> dict[str, Any]:
        rendered: dict[str, Any] = {
            "tag": listener.tag,
            "port": listener.port,
        }
        if listener.listen is not None:
            rendered["listen"] = listener.listen
        rendered["protocol"] = listener.protocol.value

        if listener.protocol == ListenerProtocol.CONTROL:
            rendered["settings"] = {"address": LOOPBACK_ADDRESS}
            return rendered
        if not listener.authenticated:
            rendered["settings"] = {"auth": "noauth"}
            return rendered

        pairs = [{"user": a.identifier, "pass": a.secret} for a in self.accounts]
        if listener.protocol == ListenerProtocol.RELAY_CIPHER:
            rendered["settings"] = {
                "clients": [
                    {"email": a.identifier, "password": a.secret, "method": a.method}
                    for a in self.accounts
                ],
                "network": "tcp,udp",
            }
        elif listener.protocol == ListenerProtocol.HTTP:
            rendered["settings"] = {"accounts": pairs, "allowTransparent": False}
        else:
            rendered["settings"] = {"auth": "password", "accounts": pairs, "udp": True}
        rendered["sniffing"] = copy.deepcopy(_SNIFFING)
        return rendered

    @classmethod
    def from_engine_dict(cls, data: dict[str, Any]) -> ConfigDocument:
        """Parse a document from the engine's configuration format.

        Raises:
            NotConfiguredError: relay listener or its account list is absent
            ConfigurationError: the document is malformed or its listener
                account lists disagree

        """
        if not isinstance(data, dict):
            msg = "Configuration document must be a JSON object"
            raise ConfigurationError(msg)

        metadata = data.get(METADATA_KEY) or {}
        try:
            role = Role(metadata.get("type"))
        except ValueError as e:
            msg = f"Unknown server type: {metadata.get('type')!r}"
            raise ConfigurationError(msg) from e

        try:
            listeners, accounts = _parse_listeners(data.get("inbounds") or [])
            outbounds = tuple(_parse_outbound(raw) for raw in data.get("outbounds") or [])
            routing = _parse_routing(data.get("routing") or {})
            log = _parse_log(data.get("log") or {})
            return cls(
                role=role,
                schema_version=str(metadata.get("version", "")),
                listeners=listeners,
                accounts=accounts,
                outbounds=outbounds,
                routing=routing,
                log=log,
            )
        except (KeyError, TypeError, AttributeError) as e:
            msg = f"Malformed configuration document: {e!r}"
            raise ConfigurationError(msg) from e
        except PydanticValidationError as e:
            msg = f"Invalid configuration document: {e}"
            raise ConfigurationError(msg) from e

    @classmethod
    def from_json(cls, text: str) -> ConfigDocument:
        """Parse engine JSON text."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            msg = f"Configuration document is not valid JSON: {e}"
            raise ConfigurationError(msg) from e
        return cls.from_engine_dict(data)

    @classmethod
    def from_file(cls, path: Path | str) -> ConfigDocument:
        """Read and parse a document file."""
        return cls.from_json(Path(path).read_text(encoding="utf-8"))


def _render_outbound(outbound: Outbound) -> dict[str, Any]:
    rendered: dict[str, Any] = {"tag": outbound.tag, "protocol": outbound.kind.value}
    if outbound.upstream is not None:
        rendered["settings"] = {
            "servers": [
                {
                    "address": outbound.upstream.address,
                    "port": outbound.upstream.port,
                    "method": outbound.upstream.method,
                    "password": outbound.upstream.secret,
                }
            ]
        }
    return rendered


def _render_rule(rule: RoutingRule) -> dict[str, Any]:
    rendered: dict[str, Any] = {"type": "field"}
    if rule.inbound_tags:
        rendered["inboundTag"] = list(rule.inbound_tags)
    if rule.match is not None:
        rendered[rule.match.value] = list(rule.values)
    rendered["outboundTag"] = rule.outbound_tag
    if rule.is_custom:
        rendered[CUSTOM_RULE_KEY] = True
    return rendered


def _parse_listeners(
    raw_inbounds: list[dict[str, Any]],
) -> tuple[tuple[Listener, ...], tuple[Account, ...]]:
    listeners: list[Listener] = []
    relay_accounts: list[Account] | None = None
    credential_lists: dict[str, dict[str, str]] = {}

    for raw in raw_inbounds:
        try:
            protocol = ListenerProtocol(raw["protocol"])
        except ValueError as e:
            msg = f"Unsupported listener protocol: {raw.get('protocol')!r}"
            raise ConfigurationError(msg) from e
        settings = raw.get("settings") or {}
        authenticated = protocol != ListenerProtocol.CONTROL and settings.get("auth") != "noauth"
        listener = Listener(
            tag=raw["tag"],
            protocol=protocol,
            port=raw["port"],
            listen=raw.get("listen"),
            authenticated=authenticated,
        )
        listeners.append(listener)

        if not listener.carries_accounts:
            continue
        if protocol == ListenerProtocol.RELAY_CIPHER:
            if "clients" not in settings:
                msg = "No accounts configured on the relay listener"
                raise NotConfiguredError(msg)
            relay_accounts = [
                Account(
                    identifier=client["email"],
                    secret=client["password"],
                    method=client.get("method") or DEFAULT_CIPHER_METHOD,
                )
                for client in settings["clients"]
            ]
        else:
            credential_lists[listener.tag] = {
                pair["user"]: pair["pass"] for pair in settings.get("accounts") or []
            }

    if relay_accounts is None:
        msg = "No relay listener configured"
        raise NotConfiguredError(msg)
    _check_credentials_agree(relay_accounts, credential_lists)
    return tuple(listeners), tuple(relay_accounts)


def _check_credentials_agree(
    relay_accounts: list[Account],
    credential_lists: dict[str, dict[str, str]],
) -> None:
    """The relay listener is authoritative; every other list must match it."""
    expected = {account.identifier: account.secret for account in relay_accounts}
    for tag, found in credential_lists.items():
        if set(found) != set(expected):
            msg = (
                f"Listener {tag!r} accounts {sorted(found)} do not match "
                f"relay accounts {sorted(expected)}"
            )
            raise ConfigurationError(msg)
        mismatched = sorted(name for name in found if found[name] != expected[name])
        if mismatched:
            msg = f"Listener {tag!r} secrets differ for accounts {mismatched}"
            raise ConfigurationError(msg)


def _parse_outbound(raw: dict[str, Any]) -> Outbound:
    try:
        kind = OutboundKind(raw["protocol"])
    except ValueError as e:
        msg = f"Unsupported outbound protocol: {raw.get('protocol')!r}"
        raise ConfigurationError(msg) from e
    upstream = None
    if kind == OutboundKind.UPSTREAM_RELAY:
        server = raw["settings"]["servers"][0]
        upstream = UpstreamRelay(
            address=server["address"],
            port=server["port"],
            secret=server["password"],
            method=server.get("method") or DEFAULT_CIPHER_METHOD,
        )
    return Outbound(tag=raw["tag"], kind=kind, upstream=upstream)


def _classify_rule(raw: dict[str, Any]) -> RoutingRule:
    outbound_tag = raw["outboundTag"]
    inbound_tags = tuple(raw.get("inboundTag") or ())

    if raw.get(CUSTOM_RULE_KEY) is True:
        match = MatchKind.DOMAIN if raw.get("domain") else MatchKind.IP
        return RoutingRule(
            kind=RuleKind.CUSTOM,
            outbound_tag=outbound_tag,
            match=match,
            values=tuple(raw.get(match.value) or ()),
        )
    if inbound_tags == (CONTROL_TAG,) and outbound_tag == CONTROL_TAG:
        return RoutingRule(
            kind=RuleKind.BUILTIN_CONTROL,
            outbound_tag=outbound_tag,
            inbound_tags=inbound_tags,
        )
    if raw.get("ip") == [PRIVATE_IP_MATCH] and outbound_tag == BLACKHOLE_TAG:
        return RoutingRule(
            kind=RuleKind.BUILTIN_PRIVATE_BLOCK,
            outbound_tag=outbound_tag,
            match=MatchKind.IP,
            values=(PRIVATE_IP_MATCH,),
        )
    if inbound_tags and outbound_tag == UPSTREAM_TAG:
        return RoutingRule(
            kind=RuleKind.BUILTIN_CATCH_ALL,
            outbound_tag=outbound_tag,
            inbound_tags=inbound_tags,
        )
    msg = f"Unrecognized built-in routing rule: {raw!r}"
    raise ConfigurationError(msg)


def _parse_routing(raw: dict[str, Any]) -> RoutingTable:
    rules = [_classify_rule(rule) for rule in raw.get("rules") or []]
    catch_all = None
    if rules and rules[-1].kind == RuleKind.BUILTIN_CATCH_ALL:
        catch_all = rules.pop()
    return RoutingTable(
        head=tuple(rules),
        catch_all=catch_all,
        domain_strategy=raw.get("domainStrategy", "IPIfNonMatch"),
    )


def _parse_log(raw: dict[str, Any]) -> LogSettings:
    try:
        level = EngineLogLevel(raw.get("loglevel", EngineLogLevel.WARNING.value))
    except ValueError as e:
        msg = f"Unsupported engine log level: {raw.get('loglevel')!r}"
        raise ConfigurationError(msg) from e
    defaults = LogSettings.for_level(level)
    return LogSettings(
        level=level,
        access=raw.get("access", defaults.access),
        error=raw.get("error", defaults.error),
    )
