"""
SQLite-based state store for the local snapshot and crash-recovery slot.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from ..core.exceptions import SnapshotFormatError, StateStoreError
from ..core.models import RecoveryHint, Revision, Snapshot
from .state_store import StateStore


logger = logging.getLogger(__name__)

_RECOVERY_HASH_KEY = "recovery.hash"
_RECOVERY_REVISION_KEY = "recovery.revision"


class SqliteStateStore(StateStore):
    """
    SQLite-based implementation of the state store.

    Tables:
    - snapshot: a single row holding the local snapshot as JSON
    - sync_meta: key/value pairs (crash-recovery hash and revision)

    The connection is shared between the caller's thread and the sync
    scheduler thread, so every statement runs under a lock.
    """

    def __init__(self, db_path: Union[str, Path], auto_init: bool = True):
        """
        Initialize the SQLite state store.

        Args:
            db_path: Path to the SQLite database file (":memory:" allowed)
            auto_init: Whether to create tables automatically
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        except sqlite3.Error as e:
            raise StateStoreError(f"Cannot open state database {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite state store: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._lock:
            cursor = self.conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS snapshot (
                    snapshot_id INTEGER PRIMARY KEY CHECK (snapshot_id = 1),
                    body TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT NOT NULL
                )
            """)

            self.conn.commit()
        logger.debug("Initialized state store schema")

    def load_snapshot(self) -> Optional[Snapshot]:
        """
        Load the persisted local snapshot.

        Returns:
            The snapshot, or None if nothing was persisted yet

        Raises:
            StateStoreError: If the stored body cannot be read back
        """
        with self._lock:
            row = self.conn.execute(
                "SELECT body FROM snapshot WHERE snapshot_id = 1"
            ).fetchone()

        if row is None:
            return None

        try:
            return Snapshot.from_dict(json.loads(row["body"]))
        except (json.JSONDecodeError, SnapshotFormatError) as e:
            raise StateStoreError(f"Stored snapshot is corrupt: {e}") from e

    def save_snapshot(self, snapshot: Snapshot) -> None:
        body = json.dumps(snapshot.to_dict(), ensure_ascii=False)
        try:
            with self._lock:
                self.conn.execute("""
                    INSERT INTO snapshot (snapshot_id, body, updated_at)
                    VALUES (1, ?, ?)
                    ON CONFLICT(snapshot_id) DO UPDATE SET
                        body = excluded.body,
                        updated_at = excluded.updated_at
                """, (body, _now()))
                self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to save local snapshot: {e}")
            raise StateStoreError(f"Failed to save local snapshot: {e}") from e

    def load_recovery_hint(self) -> Optional[RecoveryHint]:
        content_hash = self._get_meta(_RECOVERY_HASH_KEY)
        if content_hash is None:
            return None
        return RecoveryHint(
            content_hash=content_hash,
            revision=Revision.parse(self._get_meta(_RECOVERY_REVISION_KEY)),
        )

    def save_recovery_hint(self, hint: RecoveryHint) -> None:
        revision = str(hint.revision) if hint.revision else None
        try:
            with self._lock:
                for key, value in (
                    (_RECOVERY_HASH_KEY, hint.content_hash),
                    (_RECOVERY_REVISION_KEY, revision),
                ):
                    self.conn.execute("""
                        INSERT INTO sync_meta (key, value, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                    """, (key, value, _now()))
                self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to save recovery hint: {e}")
            raise StateStoreError(f"Failed to save recovery hint: {e}") from e

    def clear_recovery_hint(self) -> None:
        with self._lock:
            self.conn.execute(
                "DELETE FROM sync_meta WHERE key IN (?, ?)",
                (_RECOVERY_HASH_KEY, _RECOVERY_REVISION_KEY),
            )
            self.conn.commit()

    def _get_meta(self, key: str) -> Optional[str]:
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM sync_meta WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed SQLite state store")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
