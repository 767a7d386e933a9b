"""Unit tests for the blocking resolver."""

from datetime import timedelta

from stratatm.graph.blocking import (
    is_blocked, blocked_map, blocker_count, next_unblock_at, expired_date_gates,
)
from stratatm.graph.store import Snapshot

from conftest import NOW, make_item, make_edge, make_gate


def _blocked(snapshot, item_id, now=NOW):
    return is_blocked(snapshot.require(item_id), snapshot, now)


class TestTaskGate:
    """Blocking edges between items."""

    def test_incomplete_blocker_blocks(self):
        snapshot = Snapshot([make_item("a"), make_item("b", position=1)], [make_edge("a", "b")])
        assert _blocked(snapshot, "b")
        assert not _blocked(snapshot, "a")

    def test_completed_blocker_releases(self):
        snapshot = Snapshot([make_item("a", completed=True, completed_at=NOW), make_item("b", position=1)],
                            [make_edge("a", "b")])
        assert not _blocked(snapshot, "b")

    def test_dangling_edge_is_ignored(self):
        snapshot = Snapshot([make_item("b")], [make_edge("gone", "b")])
        assert not _blocked(snapshot, "b")

    def test_completed_item_is_never_blocked(self):
        snapshot = Snapshot([make_item("a"), make_item("b", position=1, completed=True, completed_at=NOW)],
                            [make_edge("a", "b")], [make_gate("b", NOW + timedelta(days=1))])
        assert not _blocked(snapshot, "b")


class TestDateGate:
    """Time based gates."""

    def test_future_gate_blocks(self):
        snapshot = Snapshot([make_item("a")], date_deps=[make_gate("a", NOW + timedelta(minutes=1))])
        assert _blocked(snapshot, "a")

    def test_gate_opens_at_unblock_time(self):
        snapshot = Snapshot([make_item("a")], date_deps=[make_gate("a", NOW)])
        assert not _blocked(snapshot, "a")

    def test_same_snapshot_changes_with_now(self):
        snapshot = Snapshot([make_item("a")], date_deps=[make_gate("a", NOW + timedelta(days=1))])
        assert _blocked(snapshot, "a", NOW)
        assert not _blocked(snapshot, "a", NOW + timedelta(days=2))

    def test_naive_now_is_read_as_utc(self):
        snapshot = Snapshot([make_item("a")], date_deps=[make_gate("a", NOW + timedelta(hours=1))])
        assert _blocked(snapshot, "a", NOW.replace(tzinfo=None))


class TestChildGate:
    """Parents blocked through their children."""

    def test_all_children_blocked_blocks_parent(self):
        # A has children B and C; B is blocked by D, C waits until tomorrow
        snapshot = Snapshot(
            [make_item("A"), make_item("B", "A", 0), make_item("C", "A", 1), make_item("D", position=1)],
            [make_edge("D", "B")],
            [make_gate("C", NOW + timedelta(days=1))],
        )
        assert _blocked(snapshot, "B")
        assert _blocked(snapshot, "C")
        assert _blocked(snapshot, "A")

    def test_one_actionable_child_keeps_parent_actionable(self):
        snapshot = Snapshot(
            [make_item("A"), make_item("B", "A", 0), make_item("C", "A", 1), make_item("D", position=1)],
            [make_edge("D", "B")],
        )
        assert not _blocked(snapshot, "A")

    def test_completed_children_count_as_unblocked(self):
        snapshot = Snapshot([make_item("A"), make_item("B", "A", 0, completed=True, completed_at=NOW)])
        assert not _blocked(snapshot, "A")

    def test_child_gate_propagates_upward(self):
        snapshot = Snapshot(
            [make_item("root"), make_item("mid", "root"), make_item("leaf", "mid"), make_item("x", position=1)],
            [make_edge("x", "leaf")],
        )
        assert _blocked(snapshot, "mid")
        assert _blocked(snapshot, "root")

    def test_leaf_without_gates_is_actionable(self):
        snapshot = Snapshot([make_item("a")])
        assert not _blocked(snapshot, "a")


class TestBulkQueries:
    """Whole-snapshot helpers."""

    def test_blocked_map_agrees_with_is_blocked(self):
        snapshot = Snapshot(
            [make_item("A"), make_item("B", "A", 0), make_item("C", "A", 1), make_item("D", position=1)],
            [make_edge("D", "B")],
            [make_gate("C", NOW + timedelta(days=1))],
        )
        statuses = blocked_map(snapshot, NOW)
        assert set(statuses) == set(snapshot.items)
        for item_id, blocked in statuses.items():
            assert blocked == _blocked(snapshot, item_id)

    def test_blocker_count(self):
        snapshot = Snapshot(
            [make_item("a"), make_item("b", position=1), make_item("c", position=2, completed=True, completed_at=NOW),
             make_item("t", position=3)],
            [make_edge("a", "t"), make_edge("b", "t"), make_edge("c", "t")],
            [make_gate("t", NOW + timedelta(hours=1))],
        )
        target = snapshot.require("t")
        assert blocker_count(target, snapshot, NOW) == 3
        assert blocker_count(target, snapshot, NOW + timedelta(hours=2)) == 2

    def test_next_unblock_at(self):
        soon, later = NOW + timedelta(hours=1), NOW + timedelta(days=1)
        snapshot = Snapshot(
            [make_item("a"), make_item("b", position=1), make_item("c", position=2)],
            date_deps=[make_gate("a", later), make_gate("b", soon), make_gate("c", NOW - timedelta(hours=1))],
        )
        assert next_unblock_at(snapshot, NOW) == soon
        assert next_unblock_at(snapshot, later) is None

    def test_expired_date_gates(self):
        snapshot = Snapshot(
            [make_item("a"), make_item("b", position=1)],
            date_deps=[make_gate("a", NOW + timedelta(hours=2)), make_gate("b", NOW + timedelta(hours=1))],
        )
        opened = expired_date_gates(snapshot, NOW, NOW + timedelta(hours=3))
        assert [dep.task_id for dep in opened] == ["b", "a"]
        assert expired_date_gates(snapshot, NOW + timedelta(hours=1), NOW + timedelta(hours=1)) == []

    def test_superseded_gate_ignored(self):
        newer, older = NOW + timedelta(days=2), NOW + timedelta(hours=1)
        snapshot = Snapshot(
            [make_item("a")],
            date_deps=[make_gate("a", older, dep_id="old", created_at=NOW - timedelta(days=1)),
                       make_gate("a", newer, dep_id="new")],
        )
        assert next_unblock_at(snapshot, NOW) == newer
        assert expired_date_gates(snapshot, NOW, NOW + timedelta(hours=3)) == []
        assert [dep.id for dep in expired_date_gates(snapshot, NOW, NOW + timedelta(days=3))] == ["new"]

    def test_parent_loop_does_not_raise(self):
        snapshot = Snapshot([make_item("a", "b"), make_item("b", "a")])
        assert blocked_map(snapshot, NOW) == {"a": False, "b": False}
