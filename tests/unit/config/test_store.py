"""Tests for locked, validated and atomic document persistence."""

from __future__ import annotations

import fcntl
import json
import stat

import pytest

from xcp.config.store import DocumentStore
from xcp.core.accounts import AccountRegistry
from xcp.utils.exceptions import (
    ConfigLockError,
    ConfigRejectedError,
    DocumentNotFoundError,
    PreconditionError,
)

from tests.fakes import FakeValidator

pytestmark = [pytest.mark.unit, pytest.mark.config]


class TestLoadAndCreate:
    """Creating and reading the committed document."""

    def test_load_missing(self, store):
        assert not store.exists()
        with pytest.raises(DocumentNotFoundError):
            store.load()

    def test_create_then_load(self, store, gateway_doc, validator):
        store.create(gateway_doc)
        assert store.exists()
        assert store.load() == gateway_doc
        assert validator.validated == [gateway_doc]

    def test_create_writes_private_file(self, store, gateway_doc):
        store.create(gateway_doc)
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600
        assert json.loads(store.path.read_text())["xcp"]["type"] == "gateway"

    def test_create_refuses_to_overwrite(self, store, gateway_doc, edge_doc):
        store.create(gateway_doc)
        with pytest.raises(PreconditionError, match="--force"):
            store.create(edge_doc)
        assert store.load() == gateway_doc

    def test_create_overwrite_backs_up_previous(self, store, gateway_doc, edge_doc, backup):
        store.create(gateway_doc)
        store.create(edge_doc, overwrite=True)
        assert store.load() == edge_doc
        backups = backup.list_backups()
        assert len(backups) == 1
        assert backup.load_backup(backups[0]["file"]) == gateway_doc

    def test_remove(self, store, gateway_doc):
        store.create(gateway_doc)
        assert store.remove() is True
        assert not store.exists()
        assert not store.lock_path.exists()
        assert store.remove() is False


class TestMutate:
    """Read-modify-write transactions."""

    def test_mutation_committed(self, store, gateway_doc):
        store.create(gateway_doc)
        registry = AccountRegistry(lambda: "generated-secret-1")
        result = store.mutate(lambda doc: registry.add(doc, "alice"))
        assert store.load() == result
        assert result.account("alice").secret == "generated-secret-1"

    def test_unchanged_document_not_rewritten(self, store, gateway_doc, validator, backup):
        store.create(gateway_doc)
        mtime = store.path.stat().st_mtime_ns
        result = store.mutate(lambda doc: doc)
        assert result == gateway_doc
        assert store.path.stat().st_mtime_ns == mtime
        assert len(validator.validated) == 1
        assert backup.list_backups() == []

    def test_rejected_candidate_leaves_file_untouched(self, tmp_path, gateway_doc):
        validator = FakeValidator()
        store = DocumentStore(tmp_path / "config.json", validator=validator)
        store.create(gateway_doc)
        before = store.path.read_bytes()

        validator.reject = "invalid port"
        registry = AccountRegistry()
        with pytest.raises(ConfigRejectedError) as excinfo:
            store.mutate(lambda doc: registry.add(doc, "bob"))
        assert excinfo.value.reason == "invalid port"
        assert store.path.read_bytes() == before
        assert list(tmp_path.glob("*.tmp")) == []

    def test_operation_error_propagates(self, store, gateway_doc):
        store.create(gateway_doc)
        before = store.path.read_bytes()
        registry = AccountRegistry()
        with pytest.raises(PreconditionError):
            store.mutate(lambda doc: registry.add(doc, "edge"))
        assert store.path.read_bytes() == before

    def test_missing_document(self, store):
        with pytest.raises(DocumentNotFoundError):
            store.mutate(lambda doc: doc)

    def test_automatic_backups_pruned(self, store, gateway_doc, backup):
        store.create(gateway_doc)
        registry = AccountRegistry(lambda: "pw-for-new-account")
        for name in ("a", "b", "c", "d", "e"):
            store.mutate(lambda doc, name=name: registry.add(doc, name))
        assert len(backup.list_backups()) == store.max_backups


class TestLocking:
    """Exclusive access across processes."""

    def test_lock_timeout(self, store, gateway_doc):
        store.create(gateway_doc)
        with open(store.lock_path, "a+") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            try:
                with pytest.raises(ConfigLockError):
                    store.mutate(lambda doc: doc)
            finally:
                fcntl.flock(other.fileno(), fcntl.LOCK_UN)

    def test_lock_released_after_error(self, store, gateway_doc):
        store.create(gateway_doc)
        registry = AccountRegistry()
        with pytest.raises(PreconditionError):
            store.mutate(lambda doc: registry.add(doc, "edge"))
        with store.locked():
            pass
