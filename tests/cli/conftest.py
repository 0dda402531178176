"""Fixtures for driving the xcp command line against in-memory adapters."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from xcp.cli.main import cli


@pytest.fixture
def runner() -> CliRunner:
    # Wide enough that Rich does not wrap or truncate table cells.
    return CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def invoke(runner, app):
    def _invoke(*args: str, input: str | None = None):
        return runner.invoke(cli, list(args), obj=app, input=input)

    return _invoke


@pytest.fixture
def gateway_app(app, invoke):
    result = invoke("setup", "gateway", "--no-install", "--host", "198.51.100.1")
    assert result.exit_code == 0, result.output
    return app


@pytest.fixture
def edge_app(app, invoke):
    result = invoke(
        "setup",
        "edge",
        "--upstream-address",
        "192.0.2.10",
        "--upstream-secret",
        "gatewaysecret",
        "--no-install",
        "--host",
        "198.51.100.2",
    )
    assert result.exit_code == 0, result.output
    return app
