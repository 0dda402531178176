"""Shared state for CLI commands.

Every command receives an :class:`AppContext` through click's object
passing. The real adapters are built from settings by
:meth:`AppContext.from_settings`; tests construct the context directly with
fakes.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import click

from xcp.config.config_backup import ConfigBackup
from xcp.config.document import ConfigDocument
from xcp.config.store import DocumentStore
from xcp.engine.installer import EngineInstaller
from xcp.engine.network import fetch_public_address
from xcp.engine.service import Firewall, SystemdService
from xcp.engine.stats import StatsClient
from xcp.engine.validator import ConfigValidator, EngineValidator
from xcp.models import Settings
from xcp.utils.exceptions import DocumentNotFoundError, ServiceError, XCPError
from xcp.utils.logging_config import LoggingContext, get_logger
from xcp.utils.passwords import generate_secret

logger = get_logger(__name__)

NOT_SET_UP_MSG = "No configuration found at {path}. Run 'xcp setup gateway' or 'xcp setup edge' first."


@dataclass
class AppContext:
    """Settings and engine adapters for one CLI invocation."""

    settings: Settings
    validator: ConfigValidator
    service: Any
    firewall: Any
    stats: Any = None
    installer: Any = None
    secret_factory: Callable[[], str] = generate_secret
    address_lookup: Callable[[], str] | None = None
    _store: DocumentStore | None = field(default=None, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> AppContext:
        """Build a context wired to the real engine, service manager and firewall."""
        engine = settings.engine
        return cls(
            settings=settings,
            validator=EngineValidator(
                binary=engine.binary,
                asset_dir=engine.asset_dir,
                timeout=engine.command_timeout,
            ),
            service=SystemdService(engine.service_name, timeout=engine.command_timeout),
            firewall=Firewall(),
            stats=StatsClient(
                binary=engine.binary,
                server=engine.stats_server,
                timeout=engine.command_timeout,
            ),
            installer=EngineInstaller(engine, settings.network),
        )

    def backups(self) -> ConfigBackup:
        """Backup manager for the document's backup directory."""
        return ConfigBackup(self.settings.storage.backup_dir)

    def store(self) -> DocumentStore:
        """Document store for the configured document path."""
        if self._store is None:
            storage = self.settings.storage
            self._store = DocumentStore(
                self.settings.engine.config_path,
                validator=self.validator,
                backup=self.backups(),
                lock_timeout=storage.lock_timeout,
                max_backups=storage.max_backups,
            )
        return self._store

    def load(self) -> ConfigDocument:
        """Load the committed document.

        Raises:
            DocumentNotFoundError: the node has not been set up

        """
        store = self.store()
        try:
            return store.load()
        except DocumentNotFoundError as e:
            msg = NOT_SET_UP_MSG.format(path=store.path)
            raise DocumentNotFoundError(msg) from e

    def apply(
        self,
        operation: Callable[[ConfigDocument], ConfigDocument],
        description: str,
    ) -> tuple[ConfigDocument, bool]:
        """Run ``operation`` as a locked transaction and restart the engine.

        The engine is only restarted when the operation produced a new
        document.

        Returns:
            Tuple of (committed document, whether anything changed)

        """
        changed = False

        def _tracked(doc: ConfigDocument) -> ConfigDocument:
            nonlocal changed
            result = operation(doc)
            changed = result is not doc
            return result

        with LoggingContext(description, logger=logger):
            try:
                document = self.store().mutate(_tracked)
            except DocumentNotFoundError as e:
                msg = NOT_SET_UP_MSG.format(path=self.store().path)
                raise DocumentNotFoundError(msg) from e
            if changed:
                self.restart_engine()
        return document, changed

    def restart_engine(self) -> None:
        """Restart the engine, naming the newest backup if it fails to come up.

        Raises:
            ServiceError: the engine is not active after the restart

        """
        try:
            self.service.restart_and_verify(self.settings.engine.restart_settle)
        except ServiceError as e:
            latest = self.backups().latest_backup()
            hint = (
                f" The previous configuration is saved at {latest};"
                f" run 'xcp config restore {latest}' to roll back."
                if latest
                else ""
            )
            msg = f"{e.message}.{hint}"
            raise ServiceError(msg, e.details) from e

    def public_host(self, override: str | None = None) -> str:
        """Address advertised to clients: ``override`` or the discovered one."""
        if override:
            return override
        if self.address_lookup is not None:
            return self.address_lookup()
        return asyncio.run(fetch_public_address(self.settings.network))

    def engine_installed(self) -> bool:
        """Whether the engine binary is present."""
        return Path(self.settings.engine.binary).exists()


pass_app = click.make_pass_decorator(AppContext)


def cli_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Convert tool errors raised by a command into click errors."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except XCPError as e:
            logger.debug("Command failed", exc_info=True)
            raise click.ClickException(str(e)) from e

    return wrapper
