"""
In-memory state store for tests and ephemeral sessions.
"""

import threading
from typing import Optional

from ..core.models import RecoveryHint, Snapshot
from .state_store import StateStore


class MemoryStateStore(StateStore):
    """State store that keeps everything in process memory."""

    def __init__(
        self,
        snapshot: Optional[Snapshot] = None,
        recovery_hint: Optional[RecoveryHint] = None,
    ):
        self._lock = threading.Lock()
        self._snapshot = snapshot.copy() if snapshot else None
        self._hint = recovery_hint
        self.snapshot_writes = 0

    def load_snapshot(self) -> Optional[Snapshot]:
        with self._lock:
            return self._snapshot.copy() if self._snapshot else None

    def save_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshot = snapshot.copy()
            self.snapshot_writes += 1

    def load_recovery_hint(self) -> Optional[RecoveryHint]:
        with self._lock:
            return self._hint

    def save_recovery_hint(self, hint: RecoveryHint) -> None:
        with self._lock:
            self._hint = hint

    def clear_recovery_hint(self) -> None:
        with self._lock:
            self._hint = None
