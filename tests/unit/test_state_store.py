"""
Unit tests for the durable local state stores.
"""

import sqlite3

import pytest

from cardsync.core.exceptions import StateStoreError
from cardsync.core.models import Card, Project, RecoveryHint, Revision, Snapshot
from cardsync.state import MemoryStateStore, SqliteStateStore, create_state_store


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        store = MemoryStateStore()
    else:
        store = SqliteStateStore(tmp_path / "state.db")
    yield store
    store.close()


def _snapshot() -> Snapshot:
    return Snapshot(
        projects=[Project(id="p1", name="Work")],
        cards=[Card(id="c1", title="T", project_ids=["p1"], linked_card_ids=[])],
        custom_colors=["#abcdef"],
    )


class TestStateStoreContract:
    """Behaviour shared by every backend."""

    def test_empty_store(self, store):
        assert store.load_snapshot() is None
        assert store.load_recovery_hint() is None

    def test_snapshot_round_trip(self, store):
        store.save_snapshot(_snapshot())
        assert store.load_snapshot() == _snapshot()

    def test_snapshot_overwrite(self, store):
        store.save_snapshot(_snapshot())
        store.save_snapshot(Snapshot())
        assert store.load_snapshot().is_empty()

    def test_recovery_hint_round_trip(self, store):
        store.save_recovery_hint(RecoveryHint(content_hash='{"a":1}', revision=Revision("r1")))
        hint = store.load_recovery_hint()

        assert hint.content_hash == '{"a":1}'
        assert hint.revision == Revision("r1")

    def test_recovery_hint_without_revision(self, store):
        store.save_recovery_hint(RecoveryHint(content_hash="h"))
        assert store.load_recovery_hint().revision is None

    def test_clear_recovery_hint(self, store):
        store.save_recovery_hint(RecoveryHint(content_hash="h", revision=Revision("r")))
        store.clear_recovery_hint()
        assert store.load_recovery_hint() is None


class TestSqliteStateStore:

    def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "nested" / "state.db"
        first = SqliteStateStore(path)
        first.save_snapshot(_snapshot())
        first.save_recovery_hint(RecoveryHint(content_hash="h", revision=Revision("r9")))
        first.close()

        second = SqliteStateStore(path)
        try:
            assert second.load_snapshot() == _snapshot()
            assert second.load_recovery_hint().revision == Revision("r9")
        finally:
            second.close()

    def test_in_memory_database(self):
        store = SqliteStateStore(":memory:")
        store.save_snapshot(_snapshot())
        assert store.load_snapshot() == _snapshot()
        store.close()

    def test_corrupt_body(self, tmp_path):
        path = tmp_path / "state.db"
        store = SqliteStateStore(path)
        store.conn.execute(
            "INSERT INTO snapshot (snapshot_id, body, updated_at) VALUES (1, 'not json', 'now')"
        )
        store.conn.commit()

        with pytest.raises(StateStoreError):
            store.load_snapshot()
        store.close()

    def test_single_snapshot_row(self, tmp_path):
        path = tmp_path / "state.db"
        store = SqliteStateStore(path)
        store.save_snapshot(_snapshot())
        store.save_snapshot(_snapshot())
        store.close()

        conn = sqlite3.connect(str(path))
        try:
            assert conn.execute("SELECT COUNT(*) FROM snapshot").fetchone()[0] == 1
        finally:
            conn.close()


class TestCreateStateStore:

    def test_memory(self):
        assert isinstance(create_state_store("memory"), MemoryStateStore)

    def test_sqlite(self, tmp_path):
        store = create_state_store("SQLite", tmp_path / "s.db")
        assert isinstance(store, SqliteStateStore)
        store.close()

    def test_sqlite_requires_path(self):
        with pytest.raises(ValueError):
            create_state_store("sqlite")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_state_store("redis")
