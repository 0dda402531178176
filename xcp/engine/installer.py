"""Engine installation: release download, extraction and service unit."""

from __future__ import annotations

import contextlib
import os
import platform
import shutil
import zipfile
from pathlib import Path

from xcp.engine.network import download, fetch_latest_release
from xcp.models import EngineSettings, NetworkSettings
from xcp.utils.exceptions import ServiceError, TransientNetworkError
from xcp.utils.logging_config import get_logger

logger = get_logger(__name__)

FALLBACK_VERSION = "v24.12.18"
RELEASE_ASSET_URL = (
    "https://github.com/XTLS/Xray-core/releases/download/{version}/Xray-linux-{arch}.zip"
)
GEO_DATA = {
    "geoip.dat": "https://github.com/v2fly/geoip/releases/latest/download/geoip.dat",
    "geosite.dat": "https://github.com/v2fly/domain-list-community/releases/latest/download/dlc.dat",
}

_ARCHES = {
    "x86_64": "64",
    "amd64": "64",
    "aarch64": "arm64-v8a",
    "arm64": "arm64-v8a",
    "armv7l": "arm32-v7a",
    "armv7": "arm32-v7a",
    "i686": "32",
    "i386": "32",
}

UNIT_TEMPLATE = """\
[Unit]
Description=Xray Service
Documentation=https://github.com/xtls/xray-core
After=network.target nss-lookup.target
Wants=network-online.target

[Service]
Type=simple
User=root
CapabilityBoundingSet=CAP_NET_ADMIN CAP_NET_BIND_SERVICE
AmbientCapabilities=CAP_NET_ADMIN CAP_NET_BIND_SERVICE
NoNewPrivileges=true
Environment=XRAY_LOCATION_ASSET={asset_dir}
ExecStart={binary} run -config {config_path}
Restart=on-failure
RestartSec=3
LimitNOFILE=65535

[Install]
WantedBy=multi-user.target
"""


def detect_arch(machine: str | None = None) -> str:
    """Map the host machine type to the release asset suffix.

    Raises:
        ServiceError: unsupported architecture

    """
    machine = (machine or platform.machine()).lower()
    try:
        return _ARCHES[machine]
    except KeyError:
        msg = f"Unsupported architecture: {machine}"
        raise ServiceError(msg) from None


def normalize_version(version: str) -> str:
    """Release tags carry a ``v`` prefix; ``xray version`` output does not."""
    return version if version.startswith("v") else f"v{version}"


class EngineInstaller:
    """Installs the engine release and its service unit."""

    def __init__(
        self,
        engine: EngineSettings,
        network: NetworkSettings,
        cache_dir: Path | str = "/tmp/xray-cache",  # noqa: S108
    ):
        """Initialize the installer."""
        self.engine = engine
        self.network = network
        self.cache_dir = Path(cache_dir)

    def render_unit(self) -> str:
        """Service unit text for the configured paths."""
        return UNIT_TEMPLATE.format(
            asset_dir=self.engine.asset_dir,
            binary=self.engine.binary,
            config_path=self.engine.config_path,
        )

    def write_unit(self) -> Path:
        """Write the service unit file."""
        unit_path = Path(self.engine.unit_path)
        unit_path.parent.mkdir(parents=True, exist_ok=True)
        unit_path.write_text(self.render_unit(), encoding="utf-8")
        logger.info("Wrote service unit %s", unit_path)
        return unit_path

    async def latest_version(self) -> str:
        """Tag of the latest published release.

        Raises:
            TransientNetworkError: the release metadata could not be fetched

        """
        return await fetch_latest_release(self.network)

    async def resolve_version(self, version: str | None = None) -> str:
        """Return ``version`` or the latest release, falling back to a known release."""
        if version:
            return normalize_version(version)
        try:
            return await self.latest_version()
        except TransientNetworkError as e:
            logger.warning("Latest release lookup failed (%s); using %s", e, FALLBACK_VERSION)
            return FALLBACK_VERSION

    async def install(self, version: str | None = None, geo_data: bool = True) -> str:
        """Download and unpack an engine release into the asset directory.

        Returns:
            The installed release tag

        Raises:
            TransientNetworkError: the release archive could not be downloaded
            ServiceError: the archive is corrupt or the architecture unsupported

        """
        version = await self.resolve_version(version)
        arch = detect_arch()
        archive = self.cache_dir / f"Xray-linux-{arch}-{version}.zip"
        url = RELEASE_ASSET_URL.format(version=version, arch=arch)
        await download(url, archive, self.network)

        asset_dir = Path(self.engine.asset_dir)
        asset_dir.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(asset_dir)
        except zipfile.BadZipFile as e:
            with contextlib.suppress(OSError):
                archive.unlink()
            msg = f"Downloaded archive {archive} is corrupt: {e}"
            raise ServiceError(msg) from e
        os.chmod(self.engine.binary, 0o755)  # noqa: S103

        if geo_data:
            await self.install_geo_data()
        logger.info("Installed engine %s into %s", version, asset_dir)
        return version

    async def install_geo_data(self) -> list[str]:
        """Download geo data files; failures are logged, not raised.

        Returns:
            Names of the files that were downloaded

        """
        fetched = []
        for name, url in GEO_DATA.items():
            try:
                await download(url, Path(self.engine.asset_dir) / name, self.network)
                fetched.append(name)
            except TransientNetworkError as e:
                logger.warning("Could not download %s: %s", name, e)
        return fetched

    def remove(self, log_dir: str | None = None) -> list[Path]:
        """Delete the asset directory, the unit file and optionally the log directory.

        Returns:
            Paths that were removed

        """
        removed = []
        targets = [Path(self.engine.asset_dir), Path(self.engine.unit_path)]
        if log_dir:
            targets.append(Path(log_dir))
        for target in targets:
            if target.is_dir():
                shutil.rmtree(target)
                removed.append(target)
            elif target.exists():
                target.unlink()
                removed.append(target)
        return removed
