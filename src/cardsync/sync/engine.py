"""
Sync engine for one locally edited snapshot and one remote document.

Provides initial load with crash recovery, conditional autosave, drift
polling and explicit conflict resolution on top of a RemoteStore that only
offers whole-document writes guarded by revision tokens.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from ..core.exceptions import (
    CardSyncError, NetworkError, RevisionConflict, ServerUnavailable,
    StateStoreError, Unauthenticated,
)
from ..core.models import (
    ConflictStrategy, PollTrigger, RecoveryHint, RemoteDocument, Revision,
    Snapshot, SyncOutcome, SyncState, SyncStatus, UnverifiedWrite,
)
from ..remote.base import RemoteStore
from ..snapshot.canonical import content_hash, short_hash
from ..snapshot.diff import diff, summarize_diff
from ..snapshot.holder import SnapshotHolder
from ..state.state_store import StateStore


logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """
    Configuration for the sync engine.

    Attributes:
        typing_guard_seconds: Drift polls are skipped for this long after a
            local edit, so an active typing session is never overwritten
        fetch_conflict_diff: Download the remote snapshot on conflict to
            build a diagnostic diff
        allow_empty_upload: Allow autosave of a snapshot with no projects
        app_version: Stamped into uploaded documents as 'version'
    """
    typing_guard_seconds: float = 15.0
    fetch_conflict_diff: bool = True
    allow_empty_upload: bool = False
    app_version: Optional[str] = None


class SyncEngine:
    """
    Keeps a SnapshotHolder and a RemoteStore consistent.

    Supports:
    - Initial load that never overwrites unsaved edits from a crashed session
    - Autosave via compare-and-swap against the last observed revision
    - Drift polling that pulls only when local state is clean
    - accept_cloud / keep_local conflict resolution

    Operations never block on each other: one that finds another already
    in flight returns SyncOutcome.BUSY.
    """

    def __init__(
        self,
        holder: SnapshotHolder,
        remote: RemoteStore,
        state_store: Optional[StateStore] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        instance_id: Optional[str] = None,
        on_session_invalidated: Optional[Callable[[str], None]] = None,
    ):
        """
        Initialize the sync engine.

        Args:
            holder: Local snapshot holder (owns the snapshot)
            remote: Remote document store
            state_store: Durable store for the crash-recovery slot
            config: Engine configuration (uses defaults if not provided)
            clock: Monotonic clock used for the typing guard
            instance_id: Identifier used in log lines
            on_session_invalidated: Called with a message when the store
                rejects our credentials
        """
        self.holder = holder
        self.remote = remote
        self.state_store = state_store
        self.config = config or EngineConfig()
        self.clock = clock
        self.instance_id = instance_id or uuid.uuid4().hex[:8]
        self.on_session_invalidated = on_session_invalidated

        self.state = SyncState()
        self._in_flight = threading.Lock()
        self._unsubscribe = holder.subscribe(self.record_local_change)

    # --- Derived state ---

    @property
    def current_hash(self) -> str:
        return content_hash(self.holder.get_snapshot())

    @property
    def is_dirty(self) -> bool:
        """Local content differs from what is known to be stored remotely."""
        return self.current_hash != self.state.last_saved_hash

    @property
    def needs_save(self) -> bool:
        state = self.state
        return (
            state.authenticated
            and state.is_cloud_loaded
            and not state.has_conflict
            and self.is_dirty
        )

    @property
    def status(self) -> SyncStatus:
        state = self.state
        if not state.authenticated:
            return SyncStatus.UNAUTHENTICATED
        if state.loading or not state.is_cloud_loaded:
            return SyncStatus.LOADING
        if state.saving:
            return SyncStatus.SAVING
        if state.has_conflict:
            return SyncStatus.CONFLICT
        return SyncStatus.DIRTY if self.is_dirty else SyncStatus.CLEAN

    def record_local_change(self) -> None:
        """Note a local edit (starts the typing guard window)."""
        self.state.last_local_change = self.clock()

    # --- Session ---

    def start_session(self) -> SyncOutcome:
        """Mark the session authenticated and run the initial load."""
        if not self.state.authenticated:
            last_change = self.state.last_local_change
            self.state = SyncState(authenticated=True, last_local_change=last_change)
            self._log(logging.INFO, "Session started")
        return self.initial_load()

    def end_session(self, discard_recovery: bool = False) -> None:
        """
        Sign out.

        The recovery slot is kept by default so unsaved edits survive into
        the next session; discard it when switching to another account.
        """
        self.state.authenticated = False
        self.state.is_cloud_loaded = False
        if discard_recovery and self.state_store is not None:
            self.state_store.clear_recovery_hint()
        self._log(logging.INFO, "Session ended")

    def close(self) -> None:
        self._unsubscribe()

    # --- Initial load ---

    def initial_load(self) -> SyncOutcome:
        """
        Load the remote document once per session.

        If the recovery slot shows that the previous session ended with
        unsaved edits, local state is kept and only the remote revision is
        adopted. Otherwise the download replaces local state.
        """
        if not self.state.authenticated:
            return SyncOutcome.UNAUTHENTICATED
        if self.state.is_cloud_loaded:
            return SyncOutcome.ALREADY_LOADED
        if not self._begin():
            return SyncOutcome.BUSY

        self.state.loading = True
        try:
            document = self.remote.download()

            if document is None:
                self.state.is_cloud_loaded = True
                self._log(logging.INFO, "No remote document yet; autosave will create it")
                return SyncOutcome.NOT_FOUND

            local_hash = self.current_hash
            hint = self._load_recovery_hint()
            if hint is not None and hint.content_hash != local_hash:
                self.state.last_server_revision = document.revision
                self.state.last_saved_hash = hint.content_hash
                self.state.is_cloud_loaded = True
                self._log(
                    logging.WARNING,
                    "Previous session ended with unsaved edits; keeping local state",
                    revision=str(document.revision),
                )
                return SyncOutcome.RECOVERED

            self._apply_remote(document)
            self.state.is_cloud_loaded = True
            self._log(logging.INFO, "Loaded remote document", revision=str(document.revision))
            return SyncOutcome.LOADED

        except CardSyncError as e:
            return self._handle_error(e, "initial load")
        finally:
            self.state.loading = False
            self._end()

    # --- Autosave ---

    def autosave(self) -> SyncOutcome:
        """
        Write local edits with a conditional upload.

        Called by the scheduler once the debounce period after the last
        edit has passed.
        """
        guard = self._check_ready()
        if guard is not None:
            return guard
        if not self._begin():
            return SyncOutcome.BUSY

        try:
            if self.state.has_conflict:
                self._log(logging.DEBUG, "Autosave skipped: unresolved conflict")
                return SyncOutcome.CONFLICT

            snapshot = self.holder.get_snapshot()
            current = content_hash(snapshot)
            if current == self.state.last_saved_hash:
                return SyncOutcome.NO_CHANGES

            if snapshot.is_empty() and not self.config.allow_empty_upload:
                self._log(logging.WARNING, "Autosave skipped: local snapshot has no projects")
                return SyncOutcome.SKIPPED_EMPTY

            # Pre-flight: fail fast before the conditional upload
            latest = self.remote.get_latest_revision()
            if self.state.unverified_write is not None:
                self._settle_unverified_write(latest)

            if latest != self.state.last_server_revision:
                return self._flag_conflict("pre-flight revision check", latest)
            if current == self.state.last_saved_hash:
                return SyncOutcome.NO_CHANGES

            return self._upload(snapshot, current, self.state.last_server_revision)

        except CardSyncError as e:
            return self._handle_error(e, "autosave")
        finally:
            self._end()

    # --- Drift poll ---

    def poll(self, trigger: Union[PollTrigger, str] = PollTrigger.TIMER) -> SyncOutcome:
        """
        Check whether the remote document moved and pull it if that is safe.

        Skipped inside the typing guard window regardless of trigger.
        """
        trigger = PollTrigger(trigger)
        guard = self._check_ready()
        if guard is not None:
            return guard

        since_edit = self.clock() - self.state.last_local_change
        if since_edit < self.config.typing_guard_seconds:
            self._log(logging.DEBUG, f"Poll skipped: local edit {since_edit:.1f}s ago",
                      trigger=trigger.value)
            return SyncOutcome.GUARDED

        if not self._begin():
            return SyncOutcome.BUSY

        try:
            latest = self.remote.get_latest_revision()

            pending = self.state.unverified_write
            if pending is not None:
                if self._settle_unverified_write(latest):
                    return SyncOutcome.RESOLVED if pending.resolves_conflict else SyncOutcome.SAVED
                if latest == pending.parent_revision:
                    return self._retry_unapplied_write(pending)

            if latest is None or latest == self.state.last_server_revision:
                return SyncOutcome.UP_TO_DATE

            snapshot = self.holder.get_snapshot()
            if content_hash(snapshot) == self.state.last_saved_hash:
                document = self.remote.download(latest)
                if document is None:
                    return SyncOutcome.UP_TO_DATE
                if self._apply_remote(document, expected_hash=self.state.last_saved_hash):
                    self._log(logging.INFO, "Pulled remote update (local was clean)",
                              revision=str(document.revision), trigger=trigger.value)
                    return SyncOutcome.PULLED
                # Edited while the download was in flight
                if self.config.fetch_conflict_diff:
                    local = self.holder.get_snapshot()
                    self.state.conflict_diff = diff(local.content_dict(), document.snapshot.content_dict())
                return self._flag_conflict("local edit landed during pull", latest)

            if self.config.fetch_conflict_diff:
                self._capture_conflict_diff(snapshot, latest)
            return self._flag_conflict("drift poll found remote update over local edits", latest)

        except CardSyncError as e:
            return self._handle_error(e, "poll")
        finally:
            self._end()

    # --- Conflict resolution ---

    def resolve_conflict(self, strategy: Union[ConflictStrategy, str]) -> SyncOutcome:
        """
        Resolve a conflict by user decision.

        accept_cloud: replace local state with the latest remote document.
        keep_local: conditionally overwrite the latest remote revision with
        local state. The revision is re-fetched just before the write, so a
        third writer landing between that fetch and the upload is
        overwritten; the window is one round trip.
        """
        strategy = ConflictStrategy(strategy)
        guard = self._check_ready()
        if guard is not None:
            return guard
        if not self._begin():
            return SyncOutcome.BUSY

        try:
            latest = self.remote.get_latest_revision()

            if strategy == ConflictStrategy.ACCEPT_CLOUD:
                document = self.remote.download(latest) if latest is not None else None
                if document is None:
                    self._log(logging.WARNING, "accept_cloud: no remote document to accept")
                    return SyncOutcome.NOT_FOUND
                self._apply_remote(document)
                self._log(logging.INFO, "Conflict resolved: accepted remote document",
                          revision=str(document.revision))
                return SyncOutcome.RESOLVED

            snapshot = self.holder.get_snapshot()
            outcome = self._upload(snapshot, content_hash(snapshot), latest, resolves_conflict=True)
            if outcome != SyncOutcome.SAVED:
                return outcome
            self._clear_conflict()
            self._log(logging.INFO, "Conflict resolved: kept local document",
                      revision=str(self.state.last_server_revision))
            return SyncOutcome.RESOLVED

        except CardSyncError as e:
            return self._handle_error(e, f"resolve ({strategy.value})")
        finally:
            self._end()

    def compare_with_remote(self) -> Optional[Dict[str, Any]]:
        """
        Diff local content against the latest remote document.

        Read-only diagnostics; returns None when there is no remote document.
        """
        document = self.remote.download()
        if document is None:
            return None
        return diff(self.holder.get_snapshot().content_dict(), document.snapshot.content_dict())

    def describe_conflict(self) -> str:
        if not self.state.has_conflict:
            return "No conflict"
        if self.state.conflict_diff is None:
            return "Conflict detected (no diff captured)"
        return summarize_diff(self.state.conflict_diff)

    # --- Internals ---

    def _check_ready(self) -> Optional[SyncOutcome]:
        if not self.state.authenticated:
            return SyncOutcome.UNAUTHENTICATED
        if not self.state.is_cloud_loaded:
            return SyncOutcome.NOT_LOADED
        return None

    def _begin(self) -> bool:
        return self._in_flight.acquire(blocking=False)

    def _end(self) -> None:
        self._in_flight.release()

    def _upload(
        self,
        snapshot: Snapshot,
        current: str,
        parent: Optional[Revision],
        resolves_conflict: bool = False,
    ) -> SyncOutcome:
        """Conditional upload of ``snapshot`` on top of ``parent``."""
        self.state.saving = True
        try:
            revision = self.remote.upload(self._stamp(snapshot), parent)
        except RevisionConflict:
            return self._flag_conflict("upload rejected by revision check", None)
        except ServerUnavailable as e:
            # The store may have applied the write; the next revision check decides
            self.state.unverified_write = UnverifiedWrite(
                content_hash=current, parent_revision=parent, resolves_conflict=resolves_conflict,
            )
            self.state.last_error = str(e)
            self._log(logging.WARNING, f"Upload outcome unknown ({e}); will verify on next check")
            return SyncOutcome.SERVER_UNAVAILABLE
        finally:
            self.state.saving = False

        self.state.unverified_write = None
        self.state.last_error = None
        self._adopt(current, revision)
        self._log(logging.INFO, f"Saved local changes ({short_hash(current)})", revision=str(revision))
        return SyncOutcome.SAVED

    def _settle_unverified_write(self, latest: Optional[Revision]) -> bool:
        """
        Decide whether an upload answered with ServerUnavailable applied.

        Returns:
            True if the write is now known to have applied (state adopted)
        """
        pending = self.state.unverified_write
        self.state.unverified_write = None

        if latest is None or latest == pending.parent_revision:
            self._log(logging.INFO, "Unverified upload did not apply")
            return False

        document = self.remote.download(latest)
        if document is not None and content_hash(document.snapshot) == pending.content_hash:
            self._adopt(pending.content_hash, document.revision)
            if pending.resolves_conflict:
                self._clear_conflict()
            self._log(logging.INFO, "Unverified upload did apply", revision=str(latest))
            return True

        self._log(logging.INFO, "Remote moved after unverified upload; another writer saved",
                  revision=str(latest))
        return False

    def _retry_unapplied_write(self, pending: UnverifiedWrite) -> SyncOutcome:
        """Upload again on the parent the unapplied write was based on."""
        if self.state.has_conflict and not pending.resolves_conflict:
            return SyncOutcome.CONFLICT
        snapshot = self.holder.get_snapshot()
        current = content_hash(snapshot)
        if current == self.state.last_saved_hash:
            return SyncOutcome.UP_TO_DATE
        self._log(logging.INFO, "Retrying upload that did not apply")
        outcome = self._upload(snapshot, current, pending.parent_revision,
                               resolves_conflict=pending.resolves_conflict)
        if outcome == SyncOutcome.SAVED and pending.resolves_conflict:
            self._clear_conflict()
            return SyncOutcome.RESOLVED
        return outcome

    def _apply_remote(self, document: RemoteDocument, expected_hash: Optional[str] = None) -> bool:
        """
        Replace local state with a remote document and adopt it.

        With ``expected_hash`` the replacement only happens while local
        content still hashes to it.

        Returns:
            False if local content changed and nothing was applied
        """
        try:
            if expected_hash is None:
                self.holder.replace_snapshot(document.snapshot)
            elif not self.holder.replace_snapshot_if(expected_hash, document.snapshot):
                return False
        except StateStoreError as e:
            # In-memory state is replaced; the durable copy catches up on the next edit
            self._log(logging.ERROR, f"Could not persist pulled snapshot: {e}")
        self._adopt(content_hash(document.snapshot), document.revision)
        self._clear_conflict()
        return True

    def _adopt(self, saved_hash: str, revision: Optional[Revision]) -> None:
        self.state.last_saved_hash = saved_hash
        self.state.last_server_revision = revision
        if self.state_store is None:
            return
        try:
            self.state_store.save_recovery_hint(RecoveryHint(content_hash=saved_hash, revision=revision))
        except StateStoreError as e:
            self._log(logging.ERROR, f"Could not mirror recovery hint: {e}")

    def _load_recovery_hint(self) -> Optional[RecoveryHint]:
        if self.state_store is None:
            return None
        return self.state_store.load_recovery_hint()

    def _clear_conflict(self) -> None:
        self.state.has_conflict = False
        self.state.conflict_diff = None
        self.state.unverified_write = None

    def _flag_conflict(self, reason: str, latest: Optional[Revision]) -> SyncOutcome:
        self.state.has_conflict = True
        self._log(
            logging.WARNING,
            f"Conflict: {reason} (expected {self.state.last_server_revision})",
            revision=str(latest) if latest else None,
            outcome=SyncOutcome.CONFLICT.value,
        )
        return SyncOutcome.CONFLICT

    def _capture_conflict_diff(self, snapshot: Snapshot, latest: Revision) -> None:
        try:
            document = self.remote.download(latest)
        except (NetworkError, ServerUnavailable) as e:
            self._log(logging.WARNING, f"Could not fetch remote snapshot for conflict diff: {e}")
            return
        if document is not None:
            self.state.conflict_diff = diff(snapshot.content_dict(), document.snapshot.content_dict())

    def _stamp(self, snapshot: Snapshot) -> Snapshot:
        document = snapshot.copy()
        document.last_saved = datetime.now(timezone.utc).isoformat()
        if self.config.app_version:
            document.version = self.config.app_version
        return document

    def _handle_error(self, error: CardSyncError, operation: str) -> SyncOutcome:
        self.state.last_error = str(error)

        if isinstance(error, Unauthenticated):
            self.state.authenticated = False
            self.state.is_cloud_loaded = False
            self._log(logging.ERROR, f"{operation}: session invalidated ({error})")
            if self.on_session_invalidated is not None:
                self.on_session_invalidated(str(error))
            return SyncOutcome.UNAUTHENTICATED

        if isinstance(error, NetworkError):
            self._log(logging.WARNING, f"{operation}: network error, retrying next cycle ({error})")
            return SyncOutcome.NETWORK_ERROR

        if isinstance(error, ServerUnavailable):
            self._log(logging.WARNING, f"{operation}: server unavailable ({error})")
            return SyncOutcome.SERVER_UNAVAILABLE

        if isinstance(error, RevisionConflict):
            return self._flag_conflict(f"{operation} rejected by revision check", None)

        self._log(logging.ERROR, f"{operation} failed: {error}")
        return SyncOutcome.FAILED

    def _log(self, level: int, message: str, **context: Any) -> None:
        extra = {"instance_id": self.instance_id}
        extra.update({k: v for k, v in context.items() if v is not None})
        logger.log(level, message, extra=extra)
