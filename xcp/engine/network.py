"""Remote metadata and artifact fetches.

All requests have a bounded timeout and a small fixed number of attempts
with a fixed delay between them. Once attempts are exhausted a
:class:`TransientNetworkError` is raised; the committed document is never
touched by anything in this module.
"""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import Any

import aiohttp

from xcp.models import NetworkSettings
from xcp.utils.exceptions import TransientNetworkError
from xcp.utils.logging_config import get_logger
from xcp.utils.resilience import with_retry
from xcp.utils.validators import is_valid_address

logger = get_logger(__name__)

PUBLIC_ADDRESS_PLACEHOLDER = "YOUR_SERVER_IP"
_CHUNK_SIZE = 64 * 1024
_HEADERS = {"User-Agent": "xcp"}


async def _get(
    url: str,
    timeout: float,
    as_json: bool = False,
    proxy: str | None = None,
    proxy_auth: aiohttp.BasicAuth | None = None,
) -> Any:
    try:
        async with aiohttp.ClientSession(headers=_HEADERS) as session, session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=timeout),
            proxy=proxy,
            proxy_auth=proxy_auth,
        ) as response:
            if response.status != 200:
                msg = f"GET {url} returned HTTP {response.status}"
                raise TransientNetworkError(msg)
            if as_json:
                return await response.json(content_type=None)
            return await response.text()
    except asyncio.TimeoutError as e:
        msg = f"Timed out fetching {url}"
        raise TransientNetworkError(msg) from e
    except aiohttp.ClientError as e:
        msg = f"Network error fetching {url}: {e}"
        raise TransientNetworkError(msg) from e


async def fetch_latest_release(settings: NetworkSettings) -> str:
    """Return the tag name of the latest engine release (e.g. ``v1.8.24``).

    Raises:
        TransientNetworkError: retries exhausted or the response has no tag

    """

    @with_retry(
        retries=settings.retries,
        delay=settings.retry_delay,
        exceptions=(TransientNetworkError,),
    )
    async def _fetch() -> str:
        data = await _get(settings.release_url, settings.request_timeout, as_json=True)
        tag = data.get("tag_name") if isinstance(data, dict) else None
        if not tag:
            msg = "Release metadata has no tag_name"
            raise TransientNetworkError(msg)
        return str(tag)

    return await _fetch()


async def fetch_public_address(
    settings: NetworkSettings,
    proxy: str | None = None,
    proxy_auth: aiohttp.BasicAuth | None = None,
) -> str:
    """Return this host's public IPv4 address.

    Falls back to a placeholder when the lookup fails or returns something
    that is not an address. Through ``proxy`` this reports the chain's exit
    address instead.
    """
    try:
        text = await _get(
            settings.public_ip_url,
            settings.request_timeout,
            proxy=proxy,
            proxy_auth=proxy_auth,
        )
    except TransientNetworkError as e:
        logger.warning("Public address lookup failed: %s", e)
        return PUBLIC_ADDRESS_PLACEHOLDER
    address = text.strip()
    if not is_valid_address(address):
        logger.warning("Public address lookup returned %r", address)
        return PUBLIC_ADDRESS_PLACEHOLDER
    return address


async def download(url: str, destination: Path | str, settings: NetworkSettings) -> int:
    """Download ``url`` to ``destination``.

    A partial file is removed after each failed attempt.

    Returns:
        Number of bytes written

    Raises:
        TransientNetworkError: retries exhausted

    """
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)

    @with_retry(
        retries=settings.retries,
        delay=settings.retry_delay,
        exceptions=(TransientNetworkError,),
    )
    async def _download() -> int:
        written = 0
        try:
            async with aiohttp.ClientSession(headers=_HEADERS) as session, session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=None, sock_read=settings.request_timeout),
            ) as response:
                if response.status != 200:
                    msg = f"GET {url} returned HTTP {response.status}"
                    raise TransientNetworkError(msg)
                with open(target, "wb") as f:
                    async for chunk in response.content.iter_chunked(_CHUNK_SIZE):
                        f.write(chunk)
                        written += len(chunk)
        except (asyncio.TimeoutError, aiohttp.ClientError, TransientNetworkError) as e:
            with contextlib.suppress(OSError):
                target.unlink()
            if isinstance(e, TransientNetworkError):
                raise
            msg = f"Download of {url} failed: {e}"
            raise TransientNetworkError(msg) from e
        return written

    size = await _download()
    logger.info("Downloaded %s (%d bytes)", url, size)
    return size
