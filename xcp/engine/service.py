"""Service manager and firewall adapters."""

from __future__ import annotations

import shutil
import time

from xcp.engine.process import command_output, run_command
from xcp.utils.exceptions import EngineNotFoundError, ServiceError
from xcp.utils.logging_config import get_logger

logger = get_logger(__name__)


class SystemdService:
    """Controls the engine's systemd unit."""

    def __init__(self, name: str = "xray", timeout: float = 30.0):
        """Initialize the adapter.

        Args:
            name: Unit name
            timeout: Seconds to wait for each systemctl call

        """
        self.name = name
        self.timeout = timeout

    def _systemctl(self, *args: str, check: bool = True) -> bool:
        result = run_command(["systemctl", *args], timeout=self.timeout)
        if check and result.returncode != 0:
            msg = f"systemctl {' '.join(args)} failed: {command_output(result)}"
            raise ServiceError(msg)
        return result.returncode == 0

    def start(self) -> None:
        """Start the unit."""
        self._systemctl("start", self.name)
        logger.info("Started %s", self.name)

    def stop(self) -> None:
        """Stop the unit; stopping an inactive unit is not an error."""
        self._systemctl("stop", self.name, check=False)
        logger.info("Stopped %s", self.name)

    def restart(self) -> None:
        """Restart the unit."""
        self._systemctl("restart", self.name)
        logger.info("Restarted %s", self.name)

    def enable(self) -> None:
        """Enable the unit at boot."""
        self._systemctl("enable", "--quiet", self.name)

    def disable(self) -> None:
        """Disable the unit at boot."""
        self._systemctl("disable", "--quiet", self.name, check=False)

    def daemon_reload(self) -> None:
        """Reload unit files."""
        self._systemctl("daemon-reload")

    def is_active(self) -> bool:
        """Whether the unit is currently running."""
        return self._systemctl("is-active", "--quiet", self.name, check=False)

    def restart_and_verify(self, settle: float = 2.0) -> None:
        """Restart the unit and check it is still running after ``settle`` seconds.

        Raises:
            ServiceError: the restart failed or the unit is not active afterwards

        """
        self.restart()
        if settle > 0:
            time.sleep(settle)
        if not self.is_active():
            msg = f"{self.name} failed to start after restart"
            raise ServiceError(msg)


def engine_version(binary: str, timeout: float = 10.0) -> str | None:
    """Return the installed engine's version, or None if it is not installed."""
    try:
        result = run_command([binary, "version"], timeout=timeout)
    except EngineNotFoundError:
        return None
    if result.returncode != 0 or not result.stdout:
        return None
    # First line reads like "Xray 1.8.24 (Xray, Penetrates Everything.) ..."
    parts = result.stdout.splitlines()[0].split()
    return parts[1] if len(parts) > 1 else None


class Firewall:
    """Opens listener ports in ufw when it is installed and active."""

    def __init__(self, timeout: float = 10.0):
        """Initialize the adapter."""
        self.timeout = timeout

    def is_active(self) -> bool:
        """Whether ufw is installed and enforcing rules."""
        if shutil.which("ufw") is None:
            return False
        result = run_command(["ufw", "status"], timeout=self.timeout)
        first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
        return result.returncode == 0 and "inactive" not in first_line and "active" in first_line

    def allow(self, port: int) -> bool:
        """Allow TCP and UDP traffic on ``port``.

        Returns:
            True if rules were added, False if ufw is not active

        """
        if not self.is_active():
            return False
        for proto in ("tcp", "udp"):
            result = run_command(["ufw", "allow", f"{port}/{proto}"], timeout=self.timeout)
            if result.returncode != 0:
                logger.warning("ufw allow %s/%s failed: %s", port, proto, command_output(result))
        logger.info("Firewall: port %s opened", port)
        return True
