"""Configuration management for xcp.

Settings for the tool itself (where the engine lives, where backups go,
how remote fetches behave) are loaded hierarchically: defaults, then a TOML
file, then ``XCP_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import toml

from xcp.models import Settings
from xcp.utils.exceptions import ConfigurationError
from xcp.utils.logging_config import setup_logging

# Global configuration instance
_config_manager: ConfigManager | None = None

ENV_MAPPINGS: dict[str, str] = {
    # Engine
    "XCP_ENGINE_BINARY": "engine.binary",
    "XCP_ENGINE_ASSET_DIR": "engine.asset_dir",
    "XCP_CONFIG_PATH": "engine.config_path",
    "XCP_SERVICE_NAME": "engine.service_name",
    "XCP_UNIT_PATH": "engine.unit_path",
    "XCP_STATS_SERVER": "engine.stats_server",
    "XCP_COMMAND_TIMEOUT": "engine.command_timeout",
    "XCP_RESTART_SETTLE": "engine.restart_settle",
    # Storage
    "XCP_LOG_DIR": "storage.log_dir",
    "XCP_BACKUP_DIR": "storage.backup_dir",
    "XCP_MAX_BACKUPS": "storage.max_backups",
    "XCP_LOCK_TIMEOUT": "storage.lock_timeout",
    # Network
    "XCP_RELEASE_URL": "network.release_url",
    "XCP_PUBLIC_IP_URL": "network.public_ip_url",
    "XCP_REQUEST_TIMEOUT": "network.request_timeout",
    "XCP_RETRIES": "network.retries",
    "XCP_RETRY_DELAY": "network.retry_delay",
    # Observability
    "XCP_LOG_LEVEL": "observability.log_level",
    "XCP_LOG_FILE": "observability.log_file",
    "XCP_STRUCTURED_LOGGING": "observability.structured_logging",
    "XCP_LOG_CORRELATION_ID": "observability.log_correlation_id",
}


class ConfigManager:
    """Manages loading and validation of the tool's settings."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for xcp.toml

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._setup_logging()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / "xcp.toml",
            Path.home() / ".config" / "xcp" / "xcp.toml",
            Path("/etc/xcp/xcp.toml"),
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Settings:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file and self.config_file.exists():
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e
        elif self.config_file:
            logging.warning("Config file %s not found, using defaults", self.config_file)

        env_config = self._get_env_config()
        config_data = self._merge_config(config_data, env_config)

        try:
            return Settings(**config_data)
        except Exception as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}

        def _parse_env_value(raw: str) -> bool | int | float | str:
            low = raw.lower()
            if low in {"true", "yes", "on"}:
                return True
            if low in {"false", "no", "off"}:
                return False
            try:
                if "." in raw:
                    return float(raw)
                return int(raw)
            except ValueError:
                return raw

        def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
            parts = path.split(".")
            cur = d
            for p in parts[:-1]:
                cur = cur.setdefault(p, {})
            cur[parts[-1]] = value

        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            # Paths, URLs and names stay strings even when they look numeric.
            value: Any = raw
            if cfg_path.rsplit(".", 1)[-1] in _TYPED_FIELDS:
                value = _parse_env_value(raw)
            _set_nested(env_config, cfg_path, value)

        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self) -> str:
        """Export current configuration as TOML."""
        data = self.config.model_dump(mode="json", exclude_none=True)
        return toml.dumps(data)

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)


_TYPED_FIELDS = frozenset(
    {
        "command_timeout",
        "restart_settle",
        "max_backups",
        "lock_timeout",
        "request_timeout",
        "retries",
        "retry_delay",
        "structured_logging",
        "log_correlation_id",
    }
)


def get_config() -> Settings:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file)
    return _config_manager


def reset_config() -> None:
    """Drop the global configuration manager (used by tests)."""
    global _config_manager
    _config_manager = None
