"""Candidate document validation by the proxy engine's self-test."""

from __future__ import annotations

import contextlib
import os
import tempfile
from typing import TYPE_CHECKING, Protocol

from xcp.engine.process import command_output, run_command
from xcp.utils.exceptions import ConfigRejectedError
from xcp.utils.logging_config import get_logger

if TYPE_CHECKING:
    from xcp.config.document import ConfigDocument

logger = get_logger(__name__)

ASSET_ENV = "XRAY_LOCATION_ASSET"


class ConfigValidator(Protocol):
    """Accepts or rejects a candidate document before it is committed."""

    def validate(self, document: ConfigDocument) -> None:
        """Raise ConfigRejectedError if ``document`` must not be committed."""
        ...


class EngineValidator:
    """Runs ``<binary> run -test -config <file>`` on each candidate."""

    def __init__(self, binary: str, asset_dir: str, timeout: float = 30.0):
        """Initialize the validator.

        Args:
            binary: Engine executable
            asset_dir: Directory with the engine's geo data files
            timeout: Seconds to wait for the self-test

        """
        self.binary = binary
        self.asset_dir = asset_dir
        self.timeout = timeout

    def validate(self, document: ConfigDocument) -> None:
        """Self-test ``document`` in a scratch file.

        Raises:
            ConfigRejectedError: the engine reported the document invalid
            EngineNotFoundError: the engine binary is missing

        """
        fd, scratch = tempfile.mkstemp(prefix="xcp-candidate-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(document.to_json())
            result = run_command(
                [self.binary, "run", "-test", "-config", scratch],
                timeout=self.timeout,
                env={ASSET_ENV: self.asset_dir},
            )
        finally:
            with contextlib.suppress(OSError):
                os.unlink(scratch)

        if result.returncode != 0:
            reason = command_output(result)
            logger.warning("Engine rejected candidate configuration: %s", reason)
            raise ConfigRejectedError(reason, {"exit_status": result.returncode})
        logger.debug("Engine accepted candidate configuration")
