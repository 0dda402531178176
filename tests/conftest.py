"""Pytest configuration and shared fixtures for xcp tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from xcp.cli.context import AppContext
from xcp.config.config import reset_config
from xcp.config.config_backup import ConfigBackup
from xcp.config.store import DocumentStore
from xcp.config.synthesizer import ConfigSynthesizer
from xcp.models import Settings
from tests.fakes import FakeFirewall, FakeService, FakeValidator, counting_secrets


def pytest_configure(config):
    """Register project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("cli", "marks tests as CLI tests"),
        ("config", "marks tests as configuration tests"),
        ("core", "marks tests as core functionality tests"),
        ("engine", "marks tests as engine adapter tests"),
        ("network", "marks tests that talk to a local HTTP server"),
        ("property", "marks tests as property-based tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _reset_global_config():
    """Each test starts without a global settings instance."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Drop handlers added by setup_logging so later tests start clean."""
    yield
    for name in ("xcp", *[n for n in logging.Logger.manager.loggerDict if n.startswith("xcp.")]):
        logger = logging.getLogger(name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


@pytest.fixture
def synthesizer(tmp_path: Path) -> ConfigSynthesizer:
    return ConfigSynthesizer(secret_factory=counting_secrets(), log_dir=str(tmp_path / "log"))


@pytest.fixture
def gateway_doc(synthesizer):
    return synthesizer.build_gateway(443, 80, 1080)


@pytest.fixture
def edge_doc(synthesizer):
    return synthesizer.build_edge("1.2.3.4", 443, "secretX", 443, 80, 1080)


@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator()


@pytest.fixture
def backup(tmp_path: Path) -> ConfigBackup:
    return ConfigBackup(tmp_path / "backups")


@pytest.fixture
def store(tmp_path: Path, validator, backup) -> DocumentStore:
    return DocumentStore(
        tmp_path / "xray" / "config.json",
        validator=validator,
        backup=backup,
        lock_timeout=0.5,
        max_backups=3,
        poll_interval=0.01,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    data = {
        "engine": {
            "binary": str(tmp_path / "xray" / "xray"),
            "asset_dir": str(tmp_path / "xray"),
            "config_path": str(tmp_path / "xray" / "config.json"),
            "unit_path": str(tmp_path / "systemd" / "xray.service"),
            "restart_settle": 0,
        },
        "storage": {
            "log_dir": str(tmp_path / "log"),
            "backup_dir": str(tmp_path / "backups"),
            "lock_timeout": 0.5,
        },
        "network": {"retries": 1, "retry_delay": 0, "request_timeout": 2},
    }
    return Settings(**data)


@pytest.fixture
def app(settings, validator) -> AppContext:
    return AppContext(
        settings=settings,
        validator=validator,
        service=FakeService(),
        firewall=FakeFirewall(),
        secret_factory=counting_secrets(),
        address_lookup=lambda: "203.0.113.7",
    )
