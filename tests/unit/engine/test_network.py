"""Tests for remote fetches against a local aiohttp server."""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from xcp.engine.network import (
    PUBLIC_ADDRESS_PLACEHOLDER,
    download,
    fetch_latest_release,
    fetch_public_address,
)
from xcp.models import NetworkSettings
from xcp.utils.exceptions import TransientNetworkError

pytestmark = [pytest.mark.unit, pytest.mark.engine, pytest.mark.network]


class Upstream:
    """Local stand-in for the release API, address echo and download hosts."""

    def __init__(self):
        self.hits: dict[str, int] = {}
        self.release: dict = {"tag_name": "v1.8.24"}
        self.address = "198.51.100.20\n"
        self.fail_first = 0

    def _count(self, request: web.Request) -> int:
        self.hits[request.path] = self.hits.get(request.path, 0) + 1
        return self.hits[request.path]

    async def release_handler(self, request: web.Request) -> web.Response:
        if self._count(request) <= self.fail_first:
            return web.Response(status=503)
        return web.json_response(self.release)

    async def address_handler(self, request: web.Request) -> web.Response:
        self._count(request)
        return web.Response(text=self.address)

    async def file_handler(self, request: web.Request) -> web.Response:
        self._count(request)
        return web.Response(body=b"\x00" * 200_000)

    async def missing_handler(self, request: web.Request) -> web.Response:
        self._count(request)
        return web.Response(status=404)

    def app(self) -> web.Application:
        application = web.Application()
        application.router.add_get("/release", self.release_handler)
        application.router.add_get("/ip", self.address_handler)
        application.router.add_get("/file.zip", self.file_handler)
        application.router.add_get("/missing.zip", self.missing_handler)
        return application


@pytest.fixture
async def upstream():
    state = Upstream()
    async with TestServer(state.app()) as server:
        state.server = server
        yield state


def _settings(upstream: Upstream, retries: int = 1) -> NetworkSettings:
    return NetworkSettings(
        release_url=str(upstream.server.make_url("/release")),
        public_ip_url=str(upstream.server.make_url("/ip")),
        request_timeout=5,
        retries=retries,
        retry_delay=0,
    )


async def test_latest_release(upstream):
    assert await fetch_latest_release(_settings(upstream)) == "v1.8.24"


async def test_latest_release_retries(upstream):
    upstream.fail_first = 2
    assert await fetch_latest_release(_settings(upstream, retries=3)) == "v1.8.24"
    assert upstream.hits["/release"] == 3


async def test_latest_release_exhausts_retries(upstream):
    upstream.fail_first = 5
    with pytest.raises(TransientNetworkError, match="HTTP 503"):
        await fetch_latest_release(_settings(upstream, retries=2))
    assert upstream.hits["/release"] == 2


async def test_latest_release_without_tag(upstream):
    upstream.release = {"name": "untagged"}
    with pytest.raises(TransientNetworkError, match="tag_name"):
        await fetch_latest_release(_settings(upstream))


async def test_public_address(upstream):
    assert await fetch_public_address(_settings(upstream)) == "198.51.100.20"


async def test_public_address_garbage_falls_back(upstream):
    upstream.address = "<html>rate limited</html>"
    assert await fetch_public_address(_settings(upstream)) == PUBLIC_ADDRESS_PLACEHOLDER


async def test_public_address_unreachable_falls_back():
    settings = NetworkSettings(public_ip_url="http://127.0.0.1:9/ip", request_timeout=1, retries=1)
    assert await fetch_public_address(settings) == PUBLIC_ADDRESS_PLACEHOLDER


async def test_download(upstream, tmp_path):
    target = tmp_path / "cache" / "file.zip"
    size = await download(str(upstream.server.make_url("/file.zip")), target, _settings(upstream))
    assert size == 200_000
    assert target.stat().st_size == 200_000


async def test_download_failure_leaves_no_file(upstream, tmp_path):
    target = tmp_path / "missing.zip"
    with pytest.raises(TransientNetworkError, match="HTTP 404"):
        await download(str(upstream.server.make_url("/missing.zip")), target, _settings(upstream, retries=2))
    assert not target.exists()
    assert upstream.hits["/missing.zip"] == 2
