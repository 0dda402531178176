"""Document backup system for xcp.

A backup of the committed document is taken before every commit, so a change
that the engine accepts but the service then fails to run with can be rolled
back with ``xcp config restore``.
"""

from __future__ import annotations

import gzip
import json
import logging
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from xcp import __version__
from xcp.config.document import ConfigDocument
from xcp.utils.exceptions import XCPError

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "xcp_config_"
AUTOMATIC = "automatic"
MANUAL = "manual"


class ConfigBackup:
    """Document backup system."""

    def __init__(self, backup_dir: Path | str):
        """Initialize backup system.

        Args:
            backup_dir: Directory holding backups; created on first backup

        """
        self.backup_dir = Path(backup_dir)

    def create_backup(
        self,
        document_path: Path | str,
        description: str | None = None,
        compress: bool = True,
        backup_type: str = MANUAL,
    ) -> tuple[bool, Path | None, list[str]]:
        """Create a document backup.

        Args:
            document_path: Path to the committed document
            description: Optional description for the backup
            compress: Whether to gzip the backup
            backup_type: ``manual`` or ``automatic``

        Returns:
            Tuple of (success, backup_path, log_messages)

        """
        source = Path(document_path)

        if not source.exists():
            return False, None, [f"Configuration file not found: {source}"]

        try:
            with open(source, encoding="utf-8") as f:
                config_data = json.load(f)

            now = datetime.now(timezone.utc)
            backup_metadata = {
                "timestamp": now.isoformat(),
                "hostname": self._get_hostname(),
                "version": __version__,
                "config_file": str(source),
                "description": description,
                "file_size": source.stat().st_size,
                "backup_type": backup_type,
            }

            backup_filename = f"{BACKUP_PREFIX}{now.strftime('%Y%m%d_%H%M%S_%f')}.json"
            if compress:
                backup_filename += ".gz"

            self.backup_dir.mkdir(parents=True, exist_ok=True)
            backup_path = self.backup_dir / backup_filename
            self._save_backup_file(
                backup_path,
                {"metadata": backup_metadata, "config": config_data},
            )

            log_messages = [
                f"Backup created: {backup_path}",
                f"Description: {description or 'No description'}",
                f"Original file: {source}",
                f"Size: {backup_path.stat().st_size} bytes",
                f"Compressed: {compress}",
            ]
            return True, backup_path, log_messages

        except (OSError, ValueError) as e:
            error_msg = f"Backup creation failed: {e}"
            logger.exception(error_msg)
            return False, None, [error_msg]

    def auto_backup(
        self,
        document_path: Path | str,
        max_backups: int = 10,
    ) -> tuple[bool, Path | None, list[str]]:
        """Create an automatic backup before a document change.

        Args:
            document_path: Path to the committed document
            max_backups: Maximum number of automatic backups to keep

        Returns:
            Tuple of (success, backup_path, log_messages)

        """
        success, backup_path, log_messages = self.create_backup(
            document_path,
            description="Automatic backup before configuration change",
            compress=True,
            backup_type=AUTOMATIC,
        )
        if success:
            self._cleanup_auto_backups(max_backups)
        return success, backup_path, log_messages

    def list_backups(self) -> list[dict[str, Any]]:
        """List all available backups, newest first."""
        backups: list[dict[str, Any]] = []
        if not self.backup_dir.is_dir():
            return backups

        for backup_file in self.backup_dir.glob(f"{BACKUP_PREFIX}*.json*"):
            try:
                metadata = self._load_backup_file(backup_file).get("metadata", {})
            except (OSError, ValueError) as e:
                logger.warning("Failed to read backup %s: %s", backup_file, e)
                continue

            backups.append(
                {
                    "file": backup_file,
                    "timestamp": metadata.get("timestamp", "unknown"),
                    "hostname": metadata.get("hostname", "unknown"),
                    "version": metadata.get("version", "unknown"),
                    "config_file": metadata.get("config_file", "unknown"),
                    "description": metadata.get("description"),
                    "backup_type": metadata.get("backup_type", MANUAL),
                    "file_size": backup_file.stat().st_size,
                    "compressed": backup_file.suffix == ".gz",
                }
            )

        backups.sort(key=lambda x: x["timestamp"], reverse=True)
        return backups

    def latest_backup(self) -> Path | None:
        """Return the most recent backup file, if any."""
        backups = self.list_backups()
        return backups[0]["file"] if backups else None

    def load_backup(self, backup_file: Path | str) -> ConfigDocument:
        """Load the document stored in a backup.

        Raises:
            XCPError: the backup is unreadable or holds an invalid document

        """
        backup_path = Path(backup_file)
        if not backup_path.exists():
            msg = f"Backup file not found: {backup_path}"
            raise XCPError(msg)
        try:
            backup_data = self._load_backup_file(backup_path)
        except (OSError, ValueError) as e:
            msg = f"Failed to read backup {backup_path}: {e}"
            raise XCPError(msg) from e
        if "config" not in backup_data:
            msg = f"Backup {backup_path} has no config section"
            raise XCPError(msg)
        return ConfigDocument.from_engine_dict(backup_data["config"])

    def validate_backup(self, backup_file: Path | str) -> tuple[bool, list[str]]:
        """Validate a backup file.

        Returns:
            Tuple of (is_valid, list_of_errors)

        """
        backup_path = Path(backup_file)

        if not backup_path.exists():
            return False, [f"Backup file not found: {backup_path}"]

        try:
            backup_data = self._load_backup_file(backup_path)
        except (OSError, ValueError) as e:
            return False, [f"Backup validation failed: {e}"]

        if "metadata" not in backup_data:
            return False, ["Backup missing metadata section"]
        if "config" not in backup_data:
            return False, ["Backup missing config section"]

        for field in ("timestamp", "version", "config_file"):
            if field not in backup_data["metadata"]:
                return False, [f"Backup metadata missing required field: {field}"]

        try:
            ConfigDocument.from_engine_dict(backup_data["config"])
        except XCPError as e:
            return False, [f"Backup configuration validation failed: {e}"]

        return True, []

    def _cleanup_auto_backups(self, max_backups: int) -> None:
        """Remove the oldest automatic backups beyond ``max_backups``."""
        auto_backups = [b for b in self.list_backups() if b["backup_type"] == AUTOMATIC]
        if len(auto_backups) <= max_backups:
            return

        auto_backups.sort(key=lambda x: x["timestamp"])
        for backup in auto_backups[:-max_backups]:
            try:
                backup["file"].unlink()
                logger.info("Removed old auto backup: %s", backup["file"])
            except OSError as e:
                logger.warning("Failed to remove old backup %s: %s", backup["file"], e)

    def _load_backup_file(self, backup_path: Path) -> dict[str, Any]:
        if backup_path.suffix == ".gz":
            with gzip.open(backup_path, "rt", encoding="utf-8") as f:
                return json.load(f)
        with open(backup_path, encoding="utf-8") as f:
            return json.load(f)

    def _save_backup_file(self, backup_path: Path, backup_data: dict[str, Any]) -> None:
        if backup_path.suffix == ".gz":
            with gzip.open(backup_path, "wt", encoding="utf-8") as f:
                json.dump(backup_data, f, indent=2)
        else:
            with open(backup_path, "w", encoding="utf-8") as f:
                json.dump(backup_data, f, indent=2)

    def _get_hostname(self) -> str:
        try:
            return socket.gethostname()
        except OSError:
            return "unknown"
