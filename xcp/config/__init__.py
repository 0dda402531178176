"""Configuration management.

This package holds the relay configuration document, its synthesis,
persistence and backups, plus the settings of the tool itself.
"""

from __future__ import annotations

from xcp.config.config import ConfigManager, get_config, init_config, reset_config
from xcp.config.config_backup import ConfigBackup
from xcp.config.document import ConfigDocument
from xcp.config.store import DocumentStore
from xcp.config.synthesizer import ConfigSynthesizer

__all__ = [
    "ConfigBackup",
    "ConfigDocument",
    "ConfigManager",
    "ConfigSynthesizer",
    "DocumentStore",
    "get_config",
    "init_config",
    "reset_config",
]
