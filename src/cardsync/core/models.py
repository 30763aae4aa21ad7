"""
Core data models for the card sync framework.

Defines the Snapshot document (projects, cards, custom colors) that is the
unit of synchronization, the opaque Revision token issued by remote stores,
and the per-session SyncState owned by the sync engine.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import SnapshotFormatError


class SyncStatus(str, Enum):
    """Externally visible state of a sync engine."""
    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    CLEAN = "clean"
    DIRTY = "dirty"
    SAVING = "saving"
    CONFLICT = "conflict"


class SyncOutcome(str, Enum):
    """Result of a single sync engine operation."""
    LOADED = "loaded"
    RECOVERED = "recovered"
    NOT_FOUND = "not_found"
    ALREADY_LOADED = "already_loaded"
    SAVED = "saved"
    NO_CHANGES = "no_changes"
    SKIPPED_EMPTY = "skipped_empty"
    PULLED = "pulled"
    UP_TO_DATE = "up_to_date"
    GUARDED = "guarded"
    CONFLICT = "conflict"
    RESOLVED = "resolved"
    BUSY = "busy"
    NOT_LOADED = "not_loaded"
    NETWORK_ERROR = "network_error"
    SERVER_UNAVAILABLE = "server_unavailable"
    UNAUTHENTICATED = "unauthenticated"
    FAILED = "failed"


class ConflictStrategy(str, Enum):
    """User-selected strategy for resolving a sync conflict."""
    ACCEPT_CLOUD = "accept_cloud"
    KEEP_LOCAL = "keep_local"


class PollTrigger(str, Enum):
    """What caused a drift poll."""
    TIMER = "timer"
    VISIBILITY = "visibility"
    FOCUS = "focus"
    ONLINE = "online"
    MANUAL = "manual"


@dataclass(frozen=True)
class Revision:
    """
    Opaque version token issued by a remote store.

    Only equality is meaningful. Tokens are never parsed or ordered.
    """
    token: str

    def __post_init__(self):
        if not isinstance(self.token, str) or not self.token:
            raise ValueError("Revision token must be a non-empty string")

    def __str__(self) -> str:
        return self.token

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Revision"]:
        """Wrap a stored token, mapping empty values to None."""
        if not value:
            return None
        return cls(value)


@dataclass
class Project:
    """A project that cards can be filed under."""
    id: str
    name: str
    color: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({"id": self.id, "name": self.name, "color": self.color})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        if not isinstance(data, dict) or "id" not in data:
            raise SnapshotFormatError(f"Invalid project entry: {data!r}")
        extra = {k: v for k, v in data.items() if k not in ("id", "name", "color")}
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            color=data.get("color") or "",
            extra=extra,
        )


@dataclass
class Attachment:
    """
    A file stored next to the snapshot in the remote store.

    Attributes:
        id: Provider file id
        name: Original file name
        path: Provider path of the uploaded file
        type: MIME type
        size: Size in bytes
    """
    id: str
    name: str
    path: str
    type: str = ""
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "type": self.type,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        if not isinstance(data, dict) or "id" not in data:
            raise SnapshotFormatError(f"Invalid attachment entry: {data!r}")
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            path=data.get("path") or "",
            type=data.get("type") or "",
            size=int(data.get("size") or 0),
        )


_CARD_KEYS = {
    "id", "title", "content", "projectIds", "dueDate", "attachments",
    "linkedCardIds", "googleEventId", "googleCalendarId",
}


@dataclass
class Card:
    """
    A note card.

    Optional collections use None for "absent" so that an explicitly empty
    list survives a round-trip as a distinct state.

    Attributes:
        id: Card identifier
        title: Card title
        content: Rich-text (HTML) body
        project_ids: Projects the card is filed under
        due_date: Optional ISO date
        attachments: Optional attached files
        linked_card_ids: Optional ids of linked cards (kept symmetric)
        google_event_id: Calendar event created for this card, if any
        google_calendar_id: Calendar holding that event
        extra: Unknown keys from newer producers, preserved verbatim
    """
    id: str
    title: str = ""
    content: str = ""
    project_ids: List[str] = field(default_factory=list)
    due_date: Optional[str] = None
    attachments: Optional[List[Attachment]] = None
    linked_card_ids: Optional[List[str]] = None
    google_event_id: Optional[str] = None
    google_calendar_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire dictionary, omitting absent optional fields."""
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "projectIds": list(self.project_ids),
        })
        if self.due_date is not None:
            data["dueDate"] = self.due_date
        if self.attachments is not None:
            data["attachments"] = [a.to_dict() for a in self.attachments]
        if self.linked_card_ids is not None:
            data["linkedCardIds"] = list(self.linked_card_ids)
        if self.google_event_id is not None:
            data["googleEventId"] = self.google_event_id
        if self.google_calendar_id is not None:
            data["googleCalendarId"] = self.google_calendar_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        if not isinstance(data, dict) or "id" not in data:
            raise SnapshotFormatError(f"Invalid card entry: {data!r}")

        attachments = data.get("attachments")
        linked = data.get("linkedCardIds")
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            content=data.get("content") or "",
            project_ids=list(data.get("projectIds") or []),
            due_date=data.get("dueDate"),
            attachments=(
                [Attachment.from_dict(a) for a in attachments]
                if attachments is not None else None
            ),
            linked_card_ids=list(linked) if linked is not None else None,
            google_event_id=data.get("googleEventId"),
            google_calendar_id=data.get("googleCalendarId"),
            extra={k: v for k, v in data.items() if k not in _CARD_KEYS},
        )


@dataclass
class Snapshot:
    """
    The full synchronizable application state.

    Attributes:
        projects: Ordered projects
        cards: Ordered cards
        custom_colors: User-defined color strings
        last_saved: ISO timestamp stamped on upload (metadata)
        version: Application version stamped on upload (metadata)
    """
    projects: List[Project] = field(default_factory=list)
    cards: List[Card] = field(default_factory=list)
    custom_colors: List[str] = field(default_factory=list)
    last_saved: Optional[str] = None
    version: Optional[str] = None

    def content_dict(self) -> Dict[str, Any]:
        """The synchronized content, without metadata."""
        return {
            "projects": [p.to_dict() for p in self.projects],
            "cards": [c.to_dict() for c in self.cards],
            "customColors": list(self.custom_colors),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored document format."""
        data = self.content_dict()
        if self.last_saved is not None:
            data["lastSaved"] = self.last_saved
        if self.version is not None:
            data["version"] = self.version
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        """Create from a stored document."""
        if not isinstance(data, dict):
            raise SnapshotFormatError("Snapshot document must be a JSON object")

        projects = data.get("projects") or []
        cards = data.get("cards") or []
        colors = data.get("customColors") or []
        if not isinstance(projects, list) or not isinstance(cards, list):
            raise SnapshotFormatError("'projects' and 'cards' must be lists")
        if not isinstance(colors, list):
            raise SnapshotFormatError("'customColors' must be a list")

        return cls(
            projects=[Project.from_dict(p) for p in projects],
            cards=[Card.from_dict(c) for c in cards],
            custom_colors=[str(c) for c in colors],
            last_saved=data.get("lastSaved"),
            version=data.get("version"),
        )

    def copy(self) -> "Snapshot":
        """Deep copy, so callers can never mutate the holder's state."""
        return copy.deepcopy(self)

    def get_project(self, project_id: str) -> Optional[Project]:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def get_card(self, card_id: str) -> Optional[Card]:
        for card in self.cards:
            if card.id == card_id:
                return card
        return None

    def is_empty(self) -> bool:
        return not self.projects


@dataclass
class RemoteDocument:
    """A downloaded snapshot together with the revision it was read at."""
    snapshot: Snapshot
    revision: Revision


@dataclass
class RecoveryHint:
    """
    Crash-recovery slot mirrored to durable local storage.

    Records the content hash and revision last known to be stored remotely.
    """
    content_hash: str
    revision: Optional[Revision] = None


@dataclass
class UnverifiedWrite:
    """An upload answered with ServerUnavailable; it may or may not have applied."""
    content_hash: str
    parent_revision: Optional[Revision]
    resolves_conflict: bool = False


@dataclass
class SyncState:
    """
    Per-session synchronization state, owned by one SyncEngine.

    Attributes:
        last_saved_hash: Content hash last known to be stored remotely
        last_server_revision: Revision observed at that save or load
        has_conflict: Local and remote diverged and await a user decision
        is_cloud_loaded: Initial load finished for this session
        last_local_change: Clock reading of the last local edit
        authenticated: Session is valid
        loading: Initial load in progress
        saving: Upload in progress
        unverified_write: Pending ambiguous upload, if any
        conflict_diff: Diagnostic diff captured when a conflict was detected
        last_error: Message of the last remote failure
    """
    last_saved_hash: str = ""
    last_server_revision: Optional[Revision] = None
    has_conflict: bool = False
    is_cloud_loaded: bool = False
    last_local_change: float = 0.0
    authenticated: bool = False
    loading: bool = False
    saving: bool = False
    unverified_write: Optional[UnverifiedWrite] = None
    conflict_diff: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (for status output)."""
        return {
            "last_saved_hash_len": len(self.last_saved_hash),
            "last_server_revision": str(self.last_server_revision) if self.last_server_revision else None,
            "has_conflict": self.has_conflict,
            "is_cloud_loaded": self.is_cloud_loaded,
            "authenticated": self.authenticated,
            "unverified_write": self.unverified_write is not None,
            "last_error": self.last_error,
        }
