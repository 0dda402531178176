"""Pydantic models for xcp.

Provides validated data models for the relay configuration document
(listeners, accounts, outbounds, routing rules, engine log settings) and for
the tool's own settings.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from xcp.utils.validators import is_valid_address

DEFAULT_CIPHER_METHOD = "aes-256-gcm"
DEFAULT_LOG_DIR = "/var/log/xray"
LOG_DISABLED = "none"

CONTROL_TAG = "api"
RELAY_TAG = "ss-in"
HTTP_TAG = "http-in"
SOCKS_TAG = "socks-in"
LOOPBACK_TAG = "socks-local"

DIRECT_TAG = "direct"
BLACKHOLE_TAG = "blocked"
UPSTREAM_TAG = "proxy"

CONTROL_PORT = 10085
LOOPBACK_PORT = 8080
LOOPBACK_ADDRESS = "127.0.0.1"

PRIVATE_IP_MATCH = "geoip:private"


class LogLevel(str, Enum):
    """Logging levels for the tool itself."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Role(str, Enum):
    """Relay node role."""

    GATEWAY = "gateway"  # Exit node with direct internet egress
    EDGE = "edge"  # Entry node forwarding to an upstream relay


class ListenerProtocol(str, Enum):
    """Listener protocols, valued by the engine's protocol names."""

    RELAY_CIPHER = "shadowsocks"
    HTTP = "http"
    SOCKS = "socks"
    CONTROL = "dokodemo-door"


class OutboundKind(str, Enum):
    """Egress kinds, valued by the engine's protocol names."""

    DIRECT = "freedom"
    BLACKHOLE = "blackhole"
    UPSTREAM_RELAY = "shadowsocks"


class RuleKind(str, Enum):
    """Provenance of a routing rule."""

    BUILTIN_CONTROL = "builtin_control"
    BUILTIN_PRIVATE_BLOCK = "builtin_private_block"
    BUILTIN_CATCH_ALL = "builtin_catch_all"
    CUSTOM = "custom"


class MatchKind(str, Enum):
    """What a routing rule matches on."""

    DOMAIN = "domain"
    IP = "ip"


class EngineLogLevel(str, Enum):
    """Log levels accepted for the engine's own logs."""

    NONE = "none"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"


class Account(BaseModel):
    """Relay account shared by every authenticated traffic listener."""

    model_config = {"frozen": True}

    identifier: str = Field(..., min_length=1, description="Unique account name")
    secret: str = Field(..., min_length=1, description="Account password")
    method: str = Field(
        default=DEFAULT_CIPHER_METHOD,
        description="Cipher method used on the relay-cipher listener",
    )


class Listener(BaseModel):
    """A bound endpoint accepting one protocol's traffic."""

    model_config = {"frozen": True}

    tag: str = Field(..., min_length=1, description="Unique listener tag")
    protocol: ListenerProtocol = Field(..., description="Listener protocol")
    port: int = Field(..., ge=1, le=65535, description="Listen port")
    listen: str | None = Field(
        default=None,
        description="Bound address (None binds all interfaces)",
    )
    authenticated: bool = Field(
        default=True,
        description="Whether the listener requires account credentials",
    )

    @property
    def carries_accounts(self) -> bool:
        """True for the traffic listeners that hold the account lists."""
        return self.authenticated and self.protocol in {
            ListenerProtocol.RELAY_CIPHER,
            ListenerProtocol.HTTP,
            ListenerProtocol.SOCKS,
        }


class UpstreamRelay(BaseModel):
    """Coordinates of the next relay in the chain."""

    model_config = {"frozen": True}

    address: str = Field(..., description="Upstream IPv4 address or host name")
    port: int = Field(..., ge=1, le=65535, description="Upstream relay port")
    secret: str = Field(..., min_length=1, description="Upstream account secret")
    method: str = Field(default=DEFAULT_CIPHER_METHOD, description="Cipher method")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate upstream address syntax."""
        if not is_valid_address(v):
            msg = f"Invalid upstream address: {v!r}"
            raise ValueError(msg)
        return v


class Outbound(BaseModel):
    """A named egress path."""

    model_config = {"frozen": True}

    tag: str = Field(..., min_length=1, description="Outbound tag")
    kind: OutboundKind = Field(..., description="Egress kind")
    upstream: UpstreamRelay | None = Field(
        default=None,
        description="Upstream coordinates (upstream-relay outbounds only)",
    )

    @model_validator(mode="after")
    def validate_upstream(self) -> Outbound:
        """Upstream coordinates belong to upstream-relay outbounds only."""
        if self.kind == OutboundKind.UPSTREAM_RELAY and self.upstream is None:
            msg = f"Outbound {self.tag!r} forwards upstream but has no upstream relay"
            raise ValueError(msg)
        if self.kind != OutboundKind.UPSTREAM_RELAY and self.upstream is not None:
            msg = f"Outbound {self.tag!r} does not forward upstream"
            raise ValueError(msg)
        return self


class RoutingRule(BaseModel):
    """A match-predicate to outbound binding."""

    model_config = {"frozen": True}

    kind: RuleKind = Field(..., description="Built-in variant or custom")
    outbound_tag: str = Field(..., min_length=1, description="Target outbound")
    match: MatchKind | None = Field(
        default=None,
        description="Destination match kind (None for listener-scoped rules)",
    )
    values: tuple[str, ...] = Field(
        default=(),
        description="Domain patterns or IP/CIDR/geo literals",
    )
    inbound_tags: tuple[str, ...] = Field(
        default=(),
        description="Listener tags the rule is scoped to",
    )

    @property
    def is_custom(self) -> bool:
        """True for user-added rules."""
        return self.kind == RuleKind.CUSTOM

    @model_validator(mode="after")
    def validate_shape(self) -> RoutingRule:
        """A rule must match on something."""
        if self.match is None and not self.inbound_tags:
            msg = "Routing rule needs a destination match or listener scope"
            raise ValueError(msg)
        if self.match is not None and not self.values:
            msg = "Routing rule match has no values"
            raise ValueError(msg)
        if self.kind == RuleKind.CUSTOM and self.match is None:
            msg = "Custom routing rules match on domains or IPs"
            raise ValueError(msg)
        return self


class RoutingTable(BaseModel):
    """Ordered routing rules, split so the catch-all can only ever be last.

    ``head`` holds the built-in leading rules followed by custom rules in
    insertion order; ``catch_all`` (EDGE only) is rendered after all of them.
    """

    model_config = {"frozen": True}

    head: tuple[RoutingRule, ...] = Field(default=(), description="Leading rules")
    catch_all: RoutingRule | None = Field(
        default=None,
        description="Final rule sending unmatched client traffic upstream",
    )
    domain_strategy: str = Field(
        default="IPIfNonMatch",
        description="Engine domain resolution strategy",
    )

    @property
    def rules(self) -> tuple[RoutingRule, ...]:
        """All rules in evaluation order."""
        if self.catch_all is None:
            return self.head
        return (*self.head, self.catch_all)

    @property
    def custom_rules(self) -> tuple[RoutingRule, ...]:
        """Custom rules in insertion order."""
        return tuple(rule for rule in self.head if rule.is_custom)

    def with_custom_rule(self, rule: RoutingRule) -> RoutingTable:
        """Return a table with ``rule`` at the tail of the custom region."""
        return self.model_copy(update={"head": (*self.head, rule)})

    def without_custom_rule(self, position: int) -> RoutingTable:
        """Return a table without the custom rule at zero-based ``position``."""
        head: list[RoutingRule] = []
        seen = 0
        for rule in self.head:
            if rule.is_custom:
                seen += 1
                if seen - 1 == position:
                    continue
            head.append(rule)
        return self.model_copy(update={"head": tuple(head)})

    @model_validator(mode="after")
    def validate_order(self) -> RoutingTable:
        """Built-in rules lead; custom rules follow; catch-all is separate."""
        seen_custom = False
        for index, rule in enumerate(self.head):
            if rule.kind == RuleKind.BUILTIN_CATCH_ALL:
                msg = f"Catch-all rule must be last, found at position {index}"
                raise ValueError(msg)
            if rule.is_custom:
                seen_custom = True
            elif seen_custom:
                msg = f"Built-in rule at position {index} follows a custom rule"
                raise ValueError(msg)
        if self.catch_all is not None and self.catch_all.kind != RuleKind.BUILTIN_CATCH_ALL:
            msg = "Only the built-in catch-all rule may close the rule list"
            raise ValueError(msg)
        return self


class LogSettings(BaseModel):
    """Engine log level and log file paths."""

    model_config = {"frozen": True}

    level: EngineLogLevel = Field(default=EngineLogLevel.WARNING, description="Engine log level")
    access: str = Field(default=f"{DEFAULT_LOG_DIR}/access.log", description="Access log path")
    error: str = Field(default=f"{DEFAULT_LOG_DIR}/error.log", description="Error log path")

    @classmethod
    def for_level(cls, level: EngineLogLevel, log_dir: str = DEFAULT_LOG_DIR) -> LogSettings:
        """Build settings for ``level``; ``none`` disables both files."""
        if level == EngineLogLevel.NONE:
            return cls(level=level, access=LOG_DISABLED, error=LOG_DISABLED)
        log_dir = log_dir.rstrip("/") or "/"
        return cls(
            level=level,
            access=f"{log_dir}/access.log",
            error=f"{log_dir}/error.log",
        )

    @property
    def enabled(self) -> bool:
        """Whether the engine writes log files."""
        return self.level != EngineLogLevel.NONE


# --- Tool settings ---


class EngineSettings(BaseModel):
    """Where the proxy engine lives and how to reach it."""

    binary: str = Field(default="/usr/local/xray/xray", description="Engine executable")
    asset_dir: str = Field(default="/usr/local/xray", description="Engine asset directory")
    config_path: str = Field(
        default="/usr/local/xray/config.json",
        description="Persisted configuration document",
    )
    service_name: str = Field(default="xray", description="Service manager unit name")
    unit_path: str = Field(
        default="/etc/systemd/system/xray.service",
        description="Service manager unit file",
    )
    stats_server: str = Field(
        default=f"127.0.0.1:{CONTROL_PORT}",
        description="Local statistics endpoint",
    )
    command_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for engine and service manager commands (seconds)",
    )
    restart_settle: float = Field(
        default=2.0,
        ge=0,
        description="Wait after a restart before checking the unit is active (seconds)",
    )


class StorageSettings(BaseModel):
    """Document storage, backups and engine log location."""

    log_dir: str = Field(default=DEFAULT_LOG_DIR, description="Engine log directory")
    backup_dir: str = Field(
        default="/usr/local/xray/backups",
        description="Directory for document backups",
    )
    max_backups: int = Field(
        default=10,
        ge=1,
        description="Automatic backups kept before pruning",
    )
    lock_timeout: float = Field(
        default=10.0,
        ge=0,
        description="Seconds to wait for the exclusive document lock",
    )


class NetworkSettings(BaseModel):
    """Remote metadata fetches."""

    release_url: str = Field(
        default="https://api.github.com/repos/XTLS/Xray-core/releases/latest",
        description="Latest engine release metadata",
    )
    public_ip_url: str = Field(
        default="http://ip-api.com/line/?fields=query",
        description="Public address discovery endpoint",
    )
    request_timeout: float = Field(default=10.0, gt=0, description="Per-request timeout (seconds)")
    retries: int = Field(default=3, ge=1, le=10, description="Attempts per fetch")
    retry_delay: float = Field(default=5.0, ge=0, description="Fixed delay between attempts (seconds)")


class ObservabilityConfig(BaseModel):
    """Logging for the tool itself."""

    log_level: LogLevel = Field(default=LogLevel.WARNING, description="Log level")
    log_file: str | None = Field(default=None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Write JSON lines to the log file",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Tag each invocation's records with a correlation ID",
    )


class Settings(BaseModel):
    """Main tool configuration."""

    engine: EngineSettings = Field(default_factory=EngineSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
