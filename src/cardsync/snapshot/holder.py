"""
Local snapshot holder.

Owns the in-memory snapshot, applies user edits, persists every change
through an optional state store and notifies subscribers (the sync
scheduler) after each edit.
"""

import copy
import logging
import threading
from typing import Callable, Iterable, List, Optional

from ..core.exceptions import StateStoreError
from ..core.models import Attachment, Card, Project, Snapshot
from ..state.state_store import StateStore
from .canonical import content_hash


logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


def default_snapshot() -> Snapshot:
    """Sample data for a brand-new installation."""
    return Snapshot(
        projects=[
            Project(id="1", name="Work", color="#3b82f6"),
            Project(id="2", name="Personal", color="#10b981"),
            Project(id="3", name="Learning", color="#8b5cf6"),
        ],
        cards=[
            Card(id="1", title="Setup Project", content="Initialize Vite and Tailwind",
                 project_ids=["1"], due_date="2023-11-01"),
            Card(id="2", title="Buy Groceries", content="Milk, Eggs, Bread",
                 project_ids=["2"]),
            Card(id="3", title="Learn React Hooks", content="Read documentation on useEffect",
                 project_ids=["3"]),
        ],
        custom_colors=[],
    )


class SnapshotHolder:
    """
    Mutable local snapshot with change notification.

    Edits always succeed locally. ``replace_snapshot`` is reserved for the
    sync engine (pulled or downloaded state) and does not notify
    subscribers, because it is not a user edit.
    """

    def __init__(
        self,
        state_store: Optional[StateStore] = None,
        initial: Optional[Snapshot] = None,
        seed_defaults: bool = True,
    ):
        """
        Initialize the holder.

        Args:
            state_store: Durable store to load from and persist to
            initial: Snapshot to start with when the store has none
            seed_defaults: Use sample data when neither store nor initial has data
        """
        self.state_store = state_store
        self._lock = threading.RLock()
        self._listeners: List[ChangeListener] = []
        # Last failure to persist an edit; cleared by the next successful write
        self.persist_error: Optional[StateStoreError] = None

        loaded = state_store.load_snapshot() if state_store else None
        if loaded is not None:
            self._snapshot = loaded
            logger.debug("Loaded local snapshot from state store")
        elif initial is not None:
            self._snapshot = initial.copy()
        elif seed_defaults:
            self._snapshot = default_snapshot()
        else:
            self._snapshot = Snapshot()

    # --- Engine boundary ---

    def get_snapshot(self) -> Snapshot:
        """Return a copy of the current snapshot."""
        with self._lock:
            return self._snapshot.copy()

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the whole snapshot with synchronized state."""
        with self._lock:
            self._snapshot = snapshot.copy()
            self._persist()

    def replace_snapshot_if(self, expected_hash: str, snapshot: Snapshot) -> bool:
        """
        Replace the snapshot only if the current content hash is ``expected_hash``.

        The check and the replacement happen under the holder lock, so an
        edit made concurrently is never overwritten.

        Returns:
            False if local content changed and nothing was replaced
        """
        with self._lock:
            if content_hash(self._snapshot) != expected_hash:
                return False
            self._snapshot = snapshot.copy()
            self._persist()
            return True

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """
        Register a callback invoked after every local edit.

        Returns:
            A function that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # --- Cards ---

    def add_card(self, card: Card) -> None:
        card = copy.deepcopy(card)

        def apply(snapshot: Snapshot) -> None:
            snapshot.cards.append(card)
        self._mutate(apply)

    def update_card(self, updated: Card) -> bool:
        """
        Replace a card and keep ``linkedCardIds`` symmetric.

        Cards newly linked from ``updated`` get a back-link; cards that were
        unlinked lose theirs.

        Returns:
            False if no card with that id exists (nothing changes)
        """
        updated = copy.deepcopy(updated)
        with self._lock:
            old = self._snapshot.get_card(updated.id)
            if old is None:
                logger.warning(f"update_card: unknown card id {updated.id}")
                return False

        def apply(snapshot: Snapshot) -> None:
            old_links = snapshot.get_card(updated.id).linked_card_ids or []
            new_links = updated.linked_card_ids or []
            added = [cid for cid in new_links if cid not in old_links]
            removed = [cid for cid in old_links if cid not in new_links]

            cards = []
            for card in snapshot.cards:
                if card.id == updated.id:
                    cards.append(updated)
                    continue
                links = card.linked_card_ids or []
                if card.id in added and updated.id not in links:
                    card.linked_card_ids = links + [updated.id]
                elif card.id in removed:
                    card.linked_card_ids = [cid for cid in links if cid != updated.id]
                cards.append(card)
            snapshot.cards = cards

        self._mutate(apply)
        return True

    def delete_card(self, card_id: str) -> None:
        """Delete a card and remove it from every other card's links."""
        def apply(snapshot: Snapshot) -> None:
            remaining = [c for c in snapshot.cards if c.id != card_id]
            for card in remaining:
                card.linked_card_ids = [
                    cid for cid in (card.linked_card_ids or []) if cid != card_id
                ]
            snapshot.cards = remaining
        self._mutate(apply)

    def add_attachment(self, card_id: str, attachment: Attachment) -> bool:
        attachment = copy.deepcopy(attachment)

        def apply(snapshot: Snapshot) -> None:
            card = snapshot.get_card(card_id)
            card.attachments = (card.attachments or []) + [attachment]
        return self._mutate_card(card_id, apply)

    def remove_attachment(self, card_id: str, attachment_id: str) -> bool:
        def apply(snapshot: Snapshot) -> None:
            card = snapshot.get_card(card_id)
            card.attachments = [
                a for a in (card.attachments or []) if a.id != attachment_id
            ]
        return self._mutate_card(card_id, apply)

    # --- Projects ---

    def add_project(self, project: Project) -> None:
        project = copy.deepcopy(project)

        def apply(snapshot: Snapshot) -> None:
            snapshot.projects.append(project)
        self._mutate(apply)

    def update_project(self, updated: Project) -> None:
        updated = copy.deepcopy(updated)

        def apply(snapshot: Snapshot) -> None:
            snapshot.projects = [
                updated if p.id == updated.id else p for p in snapshot.projects
            ]
        self._mutate(apply)

    def reorder_projects(self, project_ids: Iterable[str]) -> None:
        """
        Reorder projects to match ``project_ids``.

        Raises:
            ValueError: If the ids are not a permutation of the current projects
        """
        order = list(project_ids)
        with self._lock:
            current = [p.id for p in self._snapshot.projects]
        if sorted(order) != sorted(current):
            raise ValueError("reorder_projects expects every project id exactly once")

        def apply(snapshot: Snapshot) -> None:
            by_id = {p.id: p for p in snapshot.projects}
            snapshot.projects = [by_id[pid] for pid in order]
        self._mutate(apply)

    def delete_project(self, project_id: str) -> None:
        """Delete a project and strip it from every card's projectIds."""
        def apply(snapshot: Snapshot) -> None:
            snapshot.projects = [p for p in snapshot.projects if p.id != project_id]
            for card in snapshot.cards:
                card.project_ids = [pid for pid in card.project_ids if pid != project_id]
        self._mutate(apply)

    # --- Misc ---

    def set_custom_colors(self, colors: Iterable[str]) -> None:
        new_colors = list(colors)

        def apply(snapshot: Snapshot) -> None:
            snapshot.custom_colors = new_colors
        self._mutate(apply)

    def import_snapshot(self, snapshot: Snapshot) -> None:
        """Load a snapshot chosen by the user (file import). Counts as an edit."""
        imported = snapshot.copy()

        def apply(current: Snapshot) -> None:
            current.projects = imported.projects
            current.cards = imported.cards
            current.custom_colors = imported.custom_colors
        self._mutate(apply)

    # --- Internals ---

    def _mutate_card(self, card_id: str, apply: Callable[[Snapshot], None]) -> bool:
        with self._lock:
            if self._snapshot.get_card(card_id) is None:
                logger.warning(f"Unknown card id {card_id}")
                return False
        self._mutate(apply)
        return True

    def _mutate(self, apply: Callable[[Snapshot], None]) -> None:
        with self._lock:
            apply(self._snapshot)
            listeners = list(self._listeners)
            try:
                self._persist()
                self.persist_error = None
            except StateStoreError as e:
                logger.error(f"Local edit applied but not persisted: {e}")
                self.persist_error = e

        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Snapshot change listener failed")

    def _persist(self) -> None:
        if self.state_store is not None:
            self.state_store.save_snapshot(self._snapshot)
