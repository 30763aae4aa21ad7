"""
In-process remote store with compare-and-swap semantics.

Used for tests and local experiments. Several engines can share one
instance to simulate tabs or devices editing the same document. Failures
can be queued per operation to exercise the engine's error handling.
"""

import json
import logging
import threading
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from ..core.exceptions import RemoteStoreError, RevisionConflict, ServerUnavailable
from ..core.models import RemoteDocument, Revision, Snapshot
from .base import RemoteStore


logger = logging.getLogger(__name__)

OPERATIONS = ("get_latest_revision", "download", "upload")


class InMemoryRemoteStore(RemoteStore):
    """
    Thread-safe in-memory document store.

    Every write stores the serialized document under a fresh revision;
    old revisions stay downloadable, as with a real file history.
    """

    def __init__(self, name: str = "memory"):
        self.name = name
        self._lock = threading.Lock()
        self._bodies: Dict[str, str] = {}
        self._current: Optional[Revision] = None
        self._counter = 0
        self._failures: Dict[str, Deque[RemoteStoreError]] = defaultdict(deque)
        self._ghost_saves = 0
        self.calls: Dict[str, int] = defaultdict(int)

    # --- Failure injection ---

    def fail_next(self, operation: str, error: RemoteStoreError, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        with self._lock:
            for _ in range(times):
                self._failures[operation].append(error)

    def ghost_save_next(self) -> None:
        """
        Apply the next upload but answer it with ServerUnavailable.
        """
        with self._lock:
            self._ghost_saves += 1

    def _check_failure(self, operation: str) -> None:
        queue = self._failures.get(operation)
        if queue:
            raise queue.popleft()

    # --- RemoteStore ---

    def get_latest_revision(self) -> Optional[Revision]:
        with self._lock:
            self.calls["get_latest_revision"] += 1
            self._check_failure("get_latest_revision")
            return self._current

    def download(self, revision: Optional[Revision] = None) -> Optional[RemoteDocument]:
        with self._lock:
            self.calls["download"] += 1
            self._check_failure("download")

            target = revision or self._current
            if target is None or target.token not in self._bodies:
                return None
            body = self._bodies[target.token]

        return RemoteDocument(snapshot=Snapshot.from_dict(json.loads(body)), revision=target)

    def upload(self, snapshot: Snapshot, parent_revision: Optional[Revision] = None) -> Revision:
        body = json.dumps(snapshot.to_dict(), ensure_ascii=False)

        with self._lock:
            self.calls["upload"] += 1
            self._check_failure("upload")

            if parent_revision is not None and parent_revision != self._current:
                logger.debug(
                    f"Rejecting upload: parent {parent_revision} != current {self._current}"
                )
                raise RevisionConflict(
                    "Document was modified by another writer",
                    status_code=409,
                    summary="path/conflict/file/",
                )

            self._counter += 1
            revision = Revision(f"{self._counter:012x}")
            self._bodies[revision.token] = body
            self._current = revision

            if self._ghost_saves:
                self._ghost_saves -= 1
                raise ServerUnavailable(
                    "Service unavailable after write", status_code=503
                )

        return revision

    def get_name(self) -> str:
        return self.name

    # --- Inspection helpers ---

    def current_snapshot(self) -> Optional[Snapshot]:
        """Latest stored snapshot, without counting as a download."""
        with self._lock:
            if self._current is None:
                return None
            body = self._bodies[self._current.token]
        return Snapshot.from_dict(json.loads(body))

    def revisions(self) -> List[Revision]:
        with self._lock:
            return [Revision(token) for token in self._bodies]
