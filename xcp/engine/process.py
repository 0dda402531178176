"""Blocking subprocess invocation for engine and service manager commands."""

from __future__ import annotations

import os
import subprocess
from typing import Sequence

from xcp.utils.exceptions import EngineNotFoundError, ServiceError
from xcp.utils.logging_config import get_logger

logger = get_logger(__name__)


def run_command(
    args: Sequence[str],
    timeout: float = 30.0,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``args`` and capture its output.

    A non-zero exit status is returned to the caller, not raised.

    Args:
        args: Command and arguments
        timeout: Seconds before the command is killed
        env: Extra environment variables layered over the current environment

    Raises:
        EngineNotFoundError: the executable does not exist
        ServiceError: the command timed out or could not be started

    """
    full_env = None
    if env:
        full_env = {**os.environ, **env}
    logger.debug("Running %s", " ".join(args))
    try:
        return subprocess.run(  # noqa: S603
            list(args),
            check=False,
            capture_output=True,
            text=True,
            shell=False,
            timeout=timeout,
            env=full_env,
        )
    except FileNotFoundError as e:
        msg = f"Command not found: {args[0]}"
        raise EngineNotFoundError(msg) from e
    except subprocess.TimeoutExpired as e:
        msg = f"Command timed out after {timeout:g}s: {' '.join(args)}"
        raise ServiceError(msg) from e
    except OSError as e:
        msg = f"Failed to run {args[0]}: {e}"
        raise ServiceError(msg) from e


def command_output(result: subprocess.CompletedProcess[str]) -> str:
    """Best human-readable explanation from a finished command."""
    return (result.stderr or result.stdout or "").strip() or f"exit status {result.returncode}"
