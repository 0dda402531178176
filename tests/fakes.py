"""In-memory stand-ins for the engine adapters used across tests."""

from __future__ import annotations

import itertools

from xcp.utils.exceptions import ConfigRejectedError, ServiceError


class FakeValidator:
    """Records validated documents; rejects them when ``reject`` is set."""

    def __init__(self, reject: str | None = None):
        self.reject = reject
        self.validated = []

    def validate(self, document) -> None:
        self.validated.append(document)
        if self.reject:
            raise ConfigRejectedError(self.reject, {"exit_status": 23})


class FakeService:
    """In-memory stand-in for the service manager."""

    def __init__(self, active: bool = True, fail_restart: bool = False):
        self.active = active
        self.fail_restart = fail_restart
        self.calls: list[str] = []

    def start(self) -> None:
        self.calls.append("start")
        self.active = True

    def stop(self) -> None:
        self.calls.append("stop")
        self.active = False

    def restart(self) -> None:
        self.calls.append("restart")

    def enable(self) -> None:
        self.calls.append("enable")

    def disable(self) -> None:
        self.calls.append("disable")

    def daemon_reload(self) -> None:
        self.calls.append("daemon-reload")

    def is_active(self) -> bool:
        return self.active

    def restart_and_verify(self, settle: float = 2.0) -> None:
        self.calls.append("restart")
        if self.fail_restart:
            self.active = False
            msg = "xray failed to start after restart"
            raise ServiceError(msg)
        self.active = True


class FakeFirewall:
    """Firewall that records opened ports."""

    def __init__(self, active: bool = True):
        self.active = active
        self.opened: list[int] = []

    def is_active(self) -> bool:
        return self.active

    def allow(self, port: int) -> bool:
        if not self.active:
            return False
        self.opened.append(port)
        return True


def counting_secrets(prefix: str = "secret"):
    """Deterministic secret factory: secret0001, secret0002, ..."""
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter):04d}"


class FakeStats:
    """Stats client returning a fixed summary."""

    def __init__(self, summary):
        self._summary = summary

    def summary(self):
        return self._summary


class FakeInstaller:
    """Installer that records calls instead of downloading."""

    def __init__(self, latest: str = "v1.8.24"):
        self.latest = latest
        self.installed: list[tuple[str | None, bool]] = []
        self.units_written = 0
        self.removed_with: list[str | None] = []

    async def latest_version(self) -> str:
        return self.latest

    async def install(self, version: str | None = None, geo_data: bool = True) -> str:
        self.installed.append((version, geo_data))
        return version or self.latest

    def write_unit(self):
        self.units_written += 1

    def remove(self, log_dir: str | None = None):
        self.removed_with.append(log_dir)
        return []
