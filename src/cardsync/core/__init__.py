"""
Core types, exceptions and logging utilities for cardsync.
"""

from .models import (
    Project, Card, Attachment, Snapshot, Revision, RemoteDocument,
    RecoveryHint, UnverifiedWrite, SyncState, SyncStatus, SyncOutcome,
    ConflictStrategy, PollTrigger,
)
from .exceptions import (
    CardSyncError, RemoteStoreError, RevisionConflict, Unauthenticated,
    ServerUnavailable, NetworkError, ConfigError, StateStoreError,
    SnapshotFormatError,
)

__all__ = [
    "Project",
    "Card",
    "Attachment",
    "Snapshot",
    "Revision",
    "RemoteDocument",
    "RecoveryHint",
    "UnverifiedWrite",
    "SyncState",
    "SyncStatus",
    "SyncOutcome",
    "ConflictStrategy",
    "PollTrigger",
    "CardSyncError",
    "RemoteStoreError",
    "RevisionConflict",
    "Unauthenticated",
    "ServerUnavailable",
    "NetworkError",
    "ConfigError",
    "StateStoreError",
    "SnapshotFormatError",
]
