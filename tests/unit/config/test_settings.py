"""Tests for loading the tool's own settings."""

from __future__ import annotations

import os

import pytest
import toml

from xcp.config.config import ConfigManager, get_config, init_config
from xcp.models import LogLevel
from xcp.utils.exceptions import ConfigurationError

pytestmark = [pytest.mark.unit, pytest.mark.config]


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    """Keep the search path away from real files and the environment clean."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in list(os.environ):
        if name.startswith("XCP_"):
            monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = ConfigManager().config
    assert config.engine.binary == "/usr/local/xray/xray"
    assert config.engine.config_path == "/usr/local/xray/config.json"
    assert config.storage.log_dir == "/var/log/xray"
    assert config.network.retries == 3
    assert config.observability.log_level == LogLevel.WARNING


def test_toml_file(tmp_path):
    path = tmp_path / "custom.toml"
    path.write_text(
        toml.dumps({"engine": {"service_name": "xray-test"}, "storage": {"max_backups": 4}}),
        encoding="utf-8",
    )
    manager = ConfigManager(path)
    assert manager.config_file == path
    assert manager.config.engine.service_name == "xray-test"
    assert manager.config.storage.max_backups == 4
    assert manager.config.engine.binary == "/usr/local/xray/xray"


def test_found_in_working_directory(tmp_path):
    (tmp_path / "xcp.toml").write_text('[network]\nretries = 5\n', encoding="utf-8")
    assert ConfigManager().config.network.retries == 5


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "xcp.toml"
    path.write_text('[network]\nretries = 5\n', encoding="utf-8")
    monkeypatch.setenv("XCP_RETRIES", "2")
    monkeypatch.setenv("XCP_STRUCTURED_LOGGING", "yes")
    monkeypatch.setenv("XCP_CONFIG_PATH", "/srv/1234")
    config = ConfigManager(path).config
    assert config.network.retries == 2
    assert config.observability.structured_logging is True
    assert config.engine.config_path == "/srv/1234"


def test_malformed_toml(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[engine\nbinary = ", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Failed to load"):
        ConfigManager(path)


def test_invalid_values(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[network]\nretries = 0\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        ConfigManager(path)


def test_export_roundtrip(tmp_path):
    manager = ConfigManager()
    exported = toml.loads(manager.export())
    assert exported["engine"]["service_name"] == "xray"
    assert "log_file" not in exported["observability"]


def test_global_instance(tmp_path):
    path = tmp_path / "xcp.toml"
    path.write_text('[engine]\nservice_name = "relay"\n', encoding="utf-8")
    manager = init_config(path)
    assert get_config() is manager.config
    assert get_config().engine.service_name == "relay"
