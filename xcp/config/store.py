"""Persistence for the single committed configuration document.

Every change goes through the same protocol: take the exclusive document
lock, read the committed document, derive a candidate, have the engine
validate it, back up the previous document, then atomically replace the
file. A rejected candidate leaves the file untouched.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterator

from xcp.config.document import ConfigDocument
from xcp.utils.exceptions import (
    ConfigLockError,
    DocumentNotFoundError,
    PreconditionError,
    StorageError,
)
from xcp.utils.logging_config import get_logger

if TYPE_CHECKING:
    from xcp.config.config_backup import ConfigBackup
    from xcp.engine.validator import ConfigValidator

logger = get_logger(__name__)

DOCUMENT_MODE = 0o600


class DocumentStore:
    """Reads and atomically commits the configuration document."""

    def __init__(
        self,
        path: Path | str,
        validator: ConfigValidator,
        backup: ConfigBackup | None = None,
        lock_timeout: float = 10.0,
        max_backups: int = 10,
        poll_interval: float = 0.1,
    ):
        """Initialize the store.

        Args:
            path: Location of the committed document
            validator: Engine self-test run against every candidate
            backup: Backup system used before each commit (None disables backups)
            lock_timeout: Seconds to wait for the exclusive lock
            max_backups: Automatic backups kept before pruning
            poll_interval: Seconds between lock attempts

        """
        self.path = Path(path)
        self.validator = validator
        self.backup = backup
        self.lock_timeout = lock_timeout
        self.max_backups = max_backups
        self.poll_interval = poll_interval

    @property
    def lock_path(self) -> Path:
        """Lock file guarding the document."""
        return self.path.with_name(self.path.name + ".lock")

    def exists(self) -> bool:
        """Whether a document has been committed."""
        return self.path.exists()

    def load(self) -> ConfigDocument:
        """Read the last committed document.

        Raises:
            DocumentNotFoundError: nothing has been committed yet
            StorageError: the file could not be read
            ConfigurationError: the file does not hold a valid document

        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            msg = f"Configuration file not found: {self.path}"
            raise DocumentNotFoundError(msg) from e
        except OSError as e:
            msg = f"Failed to read {self.path}: {e}"
            raise StorageError(msg) from e
        return ConfigDocument.from_json(text)

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the exclusive document lock for the duration of the block.

        Raises:
            ConfigLockError: the lock was not acquired within ``lock_timeout``

        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a+")  # noqa: SIM115
        try:
            deadline = time.monotonic() + self.lock_timeout
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        msg = (
                            f"Another xcp command holds {self.lock_path}; "
                            f"gave up after {self.lock_timeout:g}s"
                        )
                        raise ConfigLockError(msg) from None
                    time.sleep(self.poll_interval)
            logger.debug("Acquired document lock: %s", self.lock_path)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                logger.debug("Released document lock: %s", self.lock_path)
        finally:
            handle.close()

    def commit(self, candidate: ConfigDocument) -> ConfigDocument:
        """Validate and atomically persist ``candidate`` under the lock."""
        with self.locked():
            self._commit(candidate)
        return candidate

    def mutate(
        self,
        operation: Callable[[ConfigDocument], ConfigDocument],
    ) -> ConfigDocument:
        """Apply ``operation`` to the committed document and commit the result.

        The lock is held from the read to the commit. When ``operation``
        returns the document it was given, nothing is written.

        Returns:
            The committed (or unchanged) document

        """
        with self.locked():
            current = self.load()
            candidate = operation(current)
            if candidate is current:
                logger.debug("Operation left the document unchanged; skipping commit")
                return current
            self._commit(candidate)
            return candidate

    def create(self, document: ConfigDocument, overwrite: bool = False) -> ConfigDocument:
        """Commit a freshly synthesized document.

        Raises:
            PreconditionError: a document exists and ``overwrite`` is False

        """
        with self.locked():
            if self.exists() and not overwrite:
                msg = f"Relay is already configured at {self.path} (use --force to replace it)"
                raise PreconditionError(msg)
            self._commit(document)
        return document

    def remove(self) -> bool:
        """Delete the committed document and its lock file.

        Returns:
            True if a document was removed

        """
        with self.locked():
            removed = False
            if self.path.exists():
                self.path.unlink()
                removed = True
                logger.info("Removed configuration document %s", self.path)
        with contextlib.suppress(OSError):
            self.lock_path.unlink()
        return removed

    def _commit(self, candidate: ConfigDocument) -> None:
        # Raises ConfigRejectedError before anything on disk changes.
        self.validator.validate(candidate)

        if self.backup is not None and self.path.exists():
            success, backup_path, messages = self.backup.auto_backup(
                self.path,
                max_backups=self.max_backups,
            )
            if success:
                logger.debug("Backed up previous document to %s", backup_path)
            else:
                logger.warning("Could not back up previous document: %s", "; ".join(messages))

        self._write_atomic(candidate.to_json())
        logger.info("Committed configuration document %s", self.path)

    def _write_atomic(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_name, DOCUMENT_MODE)
            os.replace(temp_name, self.path)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.unlink(temp_name)
            msg = f"Failed to write {self.path}: {e}"
            raise StorageError(msg) from e
