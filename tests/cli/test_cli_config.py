"""Tests for the config commands."""

from __future__ import annotations

import contextlib
import json

import pytest

from xcp.config.config_backup import ConfigBackup
from xcp.config.store import DocumentStore
from xcp.models import EngineLogLevel, Role

pytestmark = [pytest.mark.unit, pytest.mark.cli]


def test_show(gateway_app, invoke):
    result = invoke("config", "show")
    assert result.exit_code == 0, result.output
    assert "Role:" in result.output
    assert "gateway" in result.output
    assert "ss-in port:" in result.output
    assert "Custom rules:" in result.output


def test_show_edge_names_gateway(edge_app, invoke):
    result = invoke("config", "show")
    assert "192.0.2.10:443" in result.output


def test_show_json(gateway_app, invoke):
    result = invoke("config", "show", "--json")
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data == json.loads(gateway_app.load().to_json())


def test_show_needs_setup(invoke):
    result = invoke("config", "show")
    assert result.exit_code == 1
    assert "No configuration found" in result.output


class TestLogLevel:
    def test_change(self, gateway_app, invoke):
        result = invoke("config", "loglevel", "debug")
        assert result.exit_code == 0, result.output
        assert "Engine log level set to debug" in result.output
        assert gateway_app.load().log.level == EngineLogLevel.DEBUG

    def test_unchanged_does_not_restart(self, gateway_app, invoke):
        result = invoke("config", "loglevel", "warning")
        assert result.exit_code == 0, result.output
        assert "already warning" in result.output
        assert gateway_app.service.calls.count("restart") == 1

    def test_invalid(self, gateway_app, invoke):
        result = invoke("config", "loglevel", "chatty")
        assert result.exit_code == 1
        assert "Unknown log level" in result.output


class TestPorts:
    def test_move(self, gateway_app, invoke):
        gateway_app.firewall.opened.clear()
        result = invoke("config", "port", "--ss-port", "8443", "--socks-port", "1081")
        assert result.exit_code == 0, result.output
        assert "Ports updated: ss-in=8443, socks-in=1081" in result.output
        assert gateway_app.load().traffic_ports == (8443, 80, 1081)
        assert gateway_app.firewall.opened == [8443, 1081]

    def test_needs_an_option(self, gateway_app, invoke):
        result = invoke("config", "port")
        assert result.exit_code == 2

    def test_collision(self, gateway_app, invoke):
        result = invoke("config", "port", "--ss-port", "80")
        assert result.exit_code == 1
        assert "http-in" in result.output
        assert gateway_app.load().traffic_ports == (443, 80, 1080)

    def test_unchanged(self, gateway_app, invoke):
        result = invoke("config", "port", "--http-port", "80")
        assert result.exit_code == 0, result.output
        assert "Ports unchanged" in result.output

    def test_swap_in_one_command(self, gateway_app, invoke):
        gateway_app.firewall.opened.clear()
        restarts = gateway_app.service.calls.count("restart")
        result = invoke("config", "port", "--ss-port", "80", "--http-port", "443")
        assert result.exit_code == 0, result.output
        assert gateway_app.load().traffic_ports == (80, 443, 1080)
        assert sorted(gateway_app.firewall.opened) == [80, 443]
        assert gateway_app.service.calls.count("restart") == restarts + 1

    def test_two_listeners_on_one_port(self, gateway_app, invoke):
        result = invoke("config", "port", "--ss-port", "9000", "--http-port", "9000")
        assert result.exit_code == 1
        assert "9000" in result.output
        assert gateway_app.load().traffic_ports == (443, 80, 1080)


def test_validate(gateway_app, invoke):
    result = invoke("config", "validate")
    assert result.exit_code == 0, result.output
    assert "is valid" in result.output

    gateway_app.validator.reject = "bad inbound"
    result = invoke("config", "validate")
    assert result.exit_code == 1
    assert "bad inbound" in result.output


class TestBackups:
    def test_list_empty(self, gateway_app, invoke):
        result = invoke("config", "backups")
        assert result.exit_code == 0, result.output
        assert "No backups found" in result.output

    def test_manual_backup(self, gateway_app, invoke):
        result = invoke("config", "backup", "-d", "before upgrade")
        assert result.exit_code == 0, result.output
        assert "Backup written to" in result.output
        backups = gateway_app.backups().list_backups()
        assert len(backups) == 1
        assert backups[0]["description"] == "before upgrade"
        assert backups[0]["compressed"]

        listed = invoke("config", "backups")
        assert "before upgrade" in listed.output
        assert "manual" in listed.output

    def test_uncompressed_backup(self, gateway_app, invoke):
        result = invoke("config", "backup", "--no-compress")
        assert result.exit_code == 0, result.output
        assert gateway_app.backups().list_backups()[0]["file"].suffix == ".json"

    def test_restore_previous_document(self, gateway_app, invoke):
        invoke("user", "add", "alice")
        latest = gateway_app.backups().latest_backup()
        result = invoke("config", "restore", str(latest))
        assert result.exit_code == 0, result.output
        assert "Restored configuration from" in result.output
        assert gateway_app.load().account("alice") is None
        assert gateway_app.service.calls[-1] == "restart"

    def test_restore_refuses_other_role(self, gateway_app, invoke, edge_doc, tmp_path):
        source = tmp_path / "edge.json"
        source.write_text(edge_doc.to_json(), encoding="utf-8")
        ok, backup_file, _ = ConfigBackup(tmp_path / "elsewhere").create_backup(source)
        assert ok

        result = invoke("config", "restore", str(backup_file))
        assert result.exit_code == 1
        assert "--force" in result.output
        assert gateway_app.load().role == Role.GATEWAY

        result = invoke("config", "restore", str(backup_file), "--force")
        assert result.exit_code == 0, result.output
        assert gateway_app.load().role == Role.EDGE

    def test_restore_invalid_file(self, gateway_app, invoke, tmp_path):
        bogus = tmp_path / "bogus.json"
        bogus.write_text("{}", encoding="utf-8")
        result = invoke("config", "restore", str(bogus))
        assert result.exit_code == 1
        assert gateway_app.load().role == Role.GATEWAY


class TestRestoreLocking:
    def test_role_check_reads_document_under_lock(self, gateway_app, invoke, monkeypatch):
        invoke("user", "add", "alice")
        latest = gateway_app.backups().latest_backup()

        held: list[bool] = []
        reads: list[bool] = []
        original_locked = DocumentStore.locked
        original_load = DocumentStore.load

        @contextlib.contextmanager
        def tracking_locked(self):
            with original_locked(self):
                held.append(True)
                try:
                    yield
                finally:
                    held.pop()

        def tracking_load(self):
            reads.append(bool(held))
            return original_load(self)

        monkeypatch.setattr(DocumentStore, "locked", tracking_locked)
        monkeypatch.setattr(DocumentStore, "load", tracking_load)

        result = invoke("config", "restore", str(latest))
        assert result.exit_code == 0, result.output
        assert reads
        assert all(reads)

    def test_restore_waits_for_lock(self, gateway_app, invoke):
        invoke("user", "add", "alice")
        latest = gateway_app.backups().latest_backup()
        with gateway_app.store().locked():
            result = invoke("config", "restore", str(latest))
        assert result.exit_code == 1
        assert "Another xcp command" in result.output
        assert gateway_app.load().account("alice") is not None

    def test_restore_without_committed_document(self, app, invoke, gateway_doc, tmp_path):
        source = tmp_path / "gateway.json"
        source.write_text(gateway_doc.to_json(), encoding="utf-8")
        ok, backup_file, _ = ConfigBackup(tmp_path / "saved").create_backup(source)
        assert ok

        result = invoke("config", "restore", str(backup_file))
        assert result.exit_code == 0, result.output
        assert app.load() == gateway_doc
