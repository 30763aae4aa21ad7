"""
Unit tests for the local snapshot holder.
"""

from unittest.mock import Mock

import pytest

from cardsync.core.exceptions import StateStoreError
from cardsync.core.models import Attachment, Card, Project, Snapshot
from cardsync.snapshot.canonical import content_hash
from cardsync.snapshot.holder import SnapshotHolder, default_snapshot
from cardsync.state.memory_store import MemoryStateStore


@pytest.fixture
def holder():
    return SnapshotHolder(
        state_store=MemoryStateStore(),
        initial=Snapshot(
            projects=[Project(id="p1", name="Work"), Project(id="p2", name="Home")],
            cards=[
                Card(id="a", title="A", project_ids=["p1"]),
                Card(id="b", title="B", project_ids=["p1", "p2"]),
                Card(id="c", title="C", project_ids=["p2"]),
            ],
        ),
    )


class TestInitialState:

    def test_seeds_defaults(self):
        holder = SnapshotHolder()
        snapshot = holder.get_snapshot()

        assert [p.name for p in snapshot.projects] == ["Work", "Personal", "Learning"]
        assert len(snapshot.cards) == 3
        assert content_hash(snapshot) == content_hash(default_snapshot())

    def test_empty_without_seed(self):
        assert SnapshotHolder(seed_defaults=False).get_snapshot().is_empty()

    def test_state_store_wins_over_initial(self):
        stored = Snapshot(projects=[Project(id="s", name="Stored")])
        holder = SnapshotHolder(
            state_store=MemoryStateStore(snapshot=stored),
            initial=Snapshot(projects=[Project(id="i", name="Initial")]),
        )
        assert holder.get_snapshot().projects[0].id == "s"


class TestEngineBoundary:

    def test_get_snapshot_returns_copy(self, holder):
        snapshot = holder.get_snapshot()
        snapshot.cards.clear()
        assert len(holder.get_snapshot().cards) == 3

    def test_replace_does_not_notify(self, holder):
        listener = Mock()
        holder.subscribe(listener)

        holder.replace_snapshot(Snapshot())

        listener.assert_not_called()
        assert holder.get_snapshot().is_empty()
        assert holder.state_store.load_snapshot().is_empty()

    def test_conditional_replace(self, holder):
        expected = content_hash(holder.get_snapshot())

        assert holder.replace_snapshot_if(expected, Snapshot()) is True
        assert holder.get_snapshot().is_empty()

    def test_conditional_replace_keeps_newer_edit(self, holder):
        expected = content_hash(holder.get_snapshot())
        holder.add_card(Card(id="d", title="typed"))

        assert holder.replace_snapshot_if(expected, Snapshot()) is False
        assert holder.get_snapshot().get_card("d") is not None

    def test_edits_notify_and_persist(self, holder):
        listener = Mock()
        holder.subscribe(listener)

        holder.add_card(Card(id="d", title="D"))

        listener.assert_called_once_with()
        assert holder.state_store.load_snapshot().get_card("d") is not None

    def test_unsubscribe(self, holder):
        listener = Mock()
        unsubscribe = holder.subscribe(listener)
        unsubscribe()

        holder.add_card(Card(id="d"))
        listener.assert_not_called()

    def test_failing_listener_does_not_block_others(self, holder):
        second = Mock()
        holder.subscribe(Mock(side_effect=RuntimeError("boom")))
        holder.subscribe(second)

        holder.add_card(Card(id="d"))
        second.assert_called_once_with()

    def test_persist_failure_still_applies_and_notifies(self, holder):
        listener = Mock()
        holder.subscribe(listener)
        holder.state_store.save_snapshot = Mock(side_effect=StateStoreError("disk full"))

        holder.add_card(Card(id="d"))

        assert holder.get_snapshot().get_card("d") is not None
        listener.assert_called_once_with()
        assert isinstance(holder.persist_error, StateStoreError)

    def test_persist_error_cleared_by_next_write(self, holder):
        save = holder.state_store.save_snapshot
        holder.state_store.save_snapshot = Mock(side_effect=StateStoreError("disk full"))
        holder.add_card(Card(id="d"))

        holder.state_store.save_snapshot = save
        holder.add_card(Card(id="e"))

        assert holder.persist_error is None
        assert holder.state_store.load_snapshot().get_card("d") is not None

    def test_caller_objects_are_copied(self, holder):
        card = Card(id="d", title="before")
        holder.add_card(card)
        card.title = "after"

        assert holder.get_snapshot().get_card("d").title == "before"


class TestCards:

    def test_update_unknown_card(self, holder):
        assert holder.update_card(Card(id="zzz")) is False

    def test_linking_is_symmetric(self, holder):
        card = holder.get_snapshot().get_card("a")
        card.linked_card_ids = ["b", "c"]
        holder.update_card(card)

        snapshot = holder.get_snapshot()
        assert snapshot.get_card("b").linked_card_ids == ["a"]
        assert snapshot.get_card("c").linked_card_ids == ["a"]

    def test_unlinking_is_symmetric(self, holder):
        card = holder.get_snapshot().get_card("a")
        card.linked_card_ids = ["b", "c"]
        holder.update_card(card)

        card = holder.get_snapshot().get_card("a")
        card.linked_card_ids = ["c"]
        holder.update_card(card)

        snapshot = holder.get_snapshot()
        assert snapshot.get_card("b").linked_card_ids == []
        assert snapshot.get_card("c").linked_card_ids == ["a"]

    def test_delete_strips_links(self, holder):
        card = holder.get_snapshot().get_card("a")
        card.linked_card_ids = ["b"]
        holder.update_card(card)

        holder.delete_card("a")

        snapshot = holder.get_snapshot()
        assert snapshot.get_card("a") is None
        assert snapshot.get_card("b").linked_card_ids == []

    def test_attachments(self, holder):
        attachment = Attachment(id="f1", name="f.txt", path="/attachments/1_f.txt")

        assert holder.add_attachment("a", attachment) is True
        assert holder.get_snapshot().get_card("a").attachments == [attachment]

        assert holder.remove_attachment("a", "f1") is True
        assert holder.get_snapshot().get_card("a").attachments == []

    def test_attachment_on_unknown_card(self, holder):
        listener = Mock()
        holder.subscribe(listener)

        assert holder.add_attachment("zzz", Attachment(id="f", name="f", path="/f")) is False
        listener.assert_not_called()


class TestProjects:

    def test_add_project_appends(self, holder):
        holder.add_project(Project(id="p3", name="Errands", color="#0f0"))

        projects = holder.get_snapshot().projects
        assert [p.id for p in projects] == ["p1", "p2", "p3"]
        assert projects[-1].color == "#0f0"

    def test_update_project(self, holder):
        holder.update_project(Project(id="p1", name="Job", color="#000"))
        assert holder.get_snapshot().get_project("p1").name == "Job"

    def test_delete_project_strips_card_references(self, holder):
        holder.delete_project("p1")

        snapshot = holder.get_snapshot()
        assert snapshot.get_project("p1") is None
        assert snapshot.get_card("a").project_ids == []
        assert snapshot.get_card("b").project_ids == ["p2"]

    def test_reorder(self, holder):
        holder.reorder_projects(["p2", "p1"])
        assert [p.id for p in holder.get_snapshot().projects] == ["p2", "p1"]

    def test_reorder_requires_permutation(self, holder):
        with pytest.raises(ValueError):
            holder.reorder_projects(["p1"])

    def test_custom_colors(self, holder):
        holder.set_custom_colors(["#123456"])
        assert holder.get_snapshot().custom_colors == ["#123456"]

    def test_import_snapshot_counts_as_edit(self, holder):
        listener = Mock()
        holder.subscribe(listener)

        holder.import_snapshot(Snapshot(projects=[Project(id="x", name="X")]))

        listener.assert_called_once_with()
        assert [p.id for p in holder.get_snapshot().projects] == ["x"]
