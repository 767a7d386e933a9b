"""
Hierarchy mutator - plans structural changes to the task forest.

Each planner validates against the current snapshot, then returns a Plan: the
minimal set of storage writes plus the snapshot those writes produce. Nothing
here talks to storage; the engine applies a plan as one batch and adopts
plan.snapshot only once every write has succeeded.
"""
from enum import Enum
from typing import Dict, List, Optional, Tuple

from stratatm.logs import get_logger
from stratatm.models import Item, TaskDependency, DateDependency
from stratatm.recovery import InvalidStructure, ValidationFailure
from .store import Snapshot

log = get_logger("graph.hierarchy")


class Placement(Enum):
    BEFORE = "before"
    AFTER = "after"
    CHILD = "child"


class Plan:
    """Storage writes for one logical mutation, and the snapshot they lead to."""

    def __init__(self, snapshot: Snapshot):
        self.snapshot = snapshot
        self.item_updates: Dict[str, Dict[str, object]] = {}
        self.deleted_item_ids: List[str] = []
        self.deleted_task_deps: List[TaskDependency] = []
        self.deleted_date_deps: List[DateDependency] = []

    @property
    def is_empty(self) -> bool:
        return not (self.item_updates or self.deleted_item_ids
                    or self.deleted_task_deps or self.deleted_date_deps)

    def __repr__(self):
        return (f"Plan(updates={len(self.item_updates)}, deletes={len(self.deleted_item_ids)}, "
                f"task_deps={len(self.deleted_task_deps)}, date_deps={len(self.deleted_date_deps)})")


class _Draft:
    """Working copy of a snapshot's items while a plan is built."""

    def __init__(self, snapshot: Snapshot):
        self.base = snapshot
        self.items: Dict[str, Item] = dict(snapshot.items)
        self.updates: Dict[str, Dict[str, object]] = {}

    def set(self, item_id: str, **fields):
        current = self.items[item_id]
        changed = {k: v for k, v in fields.items() if getattr(current, k) != v}
        if not changed:
            return
        self.items[item_id] = current.model_copy(update=changed)
        # Compare against the base so a field that ends up unchanged is not written
        original = self.base.get(item_id)
        merged = {**self.updates.get(item_id, {}), **changed}
        self.updates[item_id] = {k: v for k, v in merged.items() if getattr(original, k) != v}
        if not self.updates[item_id]:
            del self.updates[item_id]

    def lay_out(self, parent_id: Optional[str], ordered_ids: List[str]):
        """Give a sibling group the positions 0..n-1 in the given order."""
        for position, item_id in enumerate(ordered_ids):
            self.set(item_id, parent_id=parent_id, position=position)

    def plan(self, drop_ids=(), task_deps=None, date_deps=None) -> Plan:
        dropped = set(drop_ids)
        items = [item for item_id, item in self.items.items() if item_id not in dropped]
        plan = Plan(self.base.replace(items=items, task_deps=task_deps, date_deps=date_deps))
        plan.item_updates = {k: v for k, v in self.updates.items() if k not in dropped}
        plan.deleted_item_ids = list(drop_ids)
        return plan


def _group_ids(snapshot: Snapshot, parent_id: Optional[str], excluding: Optional[str] = None) -> List[str]:
    return [item.id for item in snapshot.children_of(parent_id) if item.id != excluding]

def check_reparent(snapshot: Snapshot, item_id: str, parent_id: Optional[str]) -> Item:
    """Validate a reparent target and return the moving item. Raises before anything is written."""
    item = snapshot.require(item_id)
    if parent_id is None:
        return item
    snapshot.require(parent_id)
    if parent_id == item_id:
        raise InvalidStructure(f"Item {item_id} cannot be its own parent", ids=[item_id])
    if snapshot.is_in_subtree(parent_id, item_id):
        raise InvalidStructure(
            f"Item {item_id} cannot move under its own descendant {parent_id}", ids=[item_id, parent_id])
    return item

def plan_move(snapshot: Snapshot, item_id: str, parent_id: Optional[str], position: int) -> Plan:
    """Move an item to `position` under `parent_id`, keeping both sibling groups contiguous.

    Positions past the end of the target group append. Moving within the same
    parent is a pure reorder: siblings between the old and new slot shift by
    one toward the gap.
    """
    item = check_reparent(snapshot, item_id, parent_id)
    if position < 0:
        raise ValidationFailure(f"Position must be non-negative, got {position}", ids=[item_id])

    draft = _Draft(snapshot)
    target = _group_ids(snapshot, parent_id, excluding=item_id)
    position = min(position, len(target))
    target.insert(position, item_id)

    if item.parent_id != parent_id:
        draft.lay_out(item.parent_id, _group_ids(snapshot, item.parent_id, excluding=item_id))
    draft.lay_out(parent_id, target)

    plan = draft.plan()
    log.debug(f"Move {item_id} -> parent={parent_id} position={position}: {plan}")
    return plan

def insert_position(snapshot: Snapshot, parent_id: Optional[str], position: Optional[int] = None) -> Tuple[int, Plan]:
    """Slot for a new item under parent_id and the sibling shifts it needs.

    Without an explicit position new items go after the last sibling.
    """
    if parent_id is not None:
        snapshot.require(parent_id)
    group = _group_ids(snapshot, parent_id)
    if position is None:
        return len(group), Plan(snapshot)
    if position < 0:
        raise ValidationFailure(f"Position must be non-negative, got {position}")

    position = min(position, len(group))
    draft = _Draft(snapshot)
    for offset, item_id in enumerate(group[position:], start=position + 1):
        draft.set(item_id, position=offset)
    return position, draft.plan()

def _without_endpoints(snapshot: Snapshot, removed) -> Tuple[List[TaskDependency], List[TaskDependency],
                                                                List[DateDependency], List[DateDependency]]:
    keep_task, drop_task = [], []
    for dep in snapshot.task_deps:
        if dep.blocking_task_id in removed or dep.blocked_task_id in removed:
            drop_task.append(dep)
        else:
            keep_task.append(dep)
    keep_date, drop_date = [], []
    for dep in snapshot.date_deps:
        (drop_date if dep.task_id in removed else keep_date).append(dep)
    return keep_task, drop_task, keep_date, drop_date

def plan_cascade_delete(snapshot: Snapshot, item_id: str) -> Plan:
    """Remove an item with its whole subtree and every dependency touching it."""
    item = snapshot.require(item_id)
    removed = [item_id] + [d.id for d in snapshot.descendants_of(item_id)]
    removed_set = set(removed)

    draft = _Draft(snapshot)
    draft.lay_out(item.parent_id, _group_ids(snapshot, item.parent_id, excluding=item_id))

    keep_task, drop_task, keep_date, drop_date = _without_endpoints(snapshot, removed_set)
    plan = draft.plan(drop_ids=removed, task_deps=keep_task, date_deps=keep_date)
    plan.deleted_task_deps = drop_task
    plan.deleted_date_deps = drop_date
    log.debug(f"Cascade delete {item_id}: {plan}")
    return plan

def plan_promotion_delete(snapshot: Snapshot, item_id: str) -> Plan:
    """Remove one item; its children move up to its parent, after the existing siblings."""
    item = snapshot.require(item_id)
    group = _group_ids(snapshot, item.parent_id, excluding=item_id)
    group.extend(child.id for child in snapshot.children_of(item_id))

    draft = _Draft(snapshot)
    draft.lay_out(item.parent_id, group)

    keep_task, drop_task, keep_date, drop_date = _without_endpoints(snapshot, {item_id})
    plan = draft.plan(drop_ids=[item_id], task_deps=keep_task, date_deps=keep_date)
    plan.deleted_task_deps = drop_task
    plan.deleted_date_deps = drop_date
    log.debug(f"Promotion delete {item_id}: {plan}")
    return plan

def resolve_placement(snapshot: Snapshot, item_id: str, target_id: str,
                      placement: Placement) -> Tuple[Optional[str], int]:
    """Turn a drop onto another item into a (parent_id, position) pair."""
    item = snapshot.require(item_id)
    target = snapshot.require(target_id)
    if target_id == item_id:
        return item.parent_id, item.position
    if snapshot.is_in_subtree(target_id, item_id):
        raise InvalidStructure(
            f"Cannot drop {item_id} onto its own descendant {target_id}", ids=[item_id, target_id])

    if placement == Placement.CHILD:
        return target_id, len(_group_ids(snapshot, target_id, excluding=item_id))

    group = _group_ids(snapshot, target.parent_id, excluding=item_id)
    index = group.index(target_id)
    return target.parent_id, index if placement == Placement.BEFORE else index + 1

def positions_are_contiguous(snapshot: Snapshot) -> bool:
    """Every sibling group holds exactly the positions 0..n-1."""
    groups: Dict[Optional[str], List[int]] = {}
    for item in snapshot.items.values():
        groups.setdefault(item.parent_id, []).append(item.position)
    return all(sorted(positions) == list(range(len(positions))) for positions in groups.values())

def parent_cycles(snapshot: Snapshot) -> List[str]:
    """Ids of items whose parent chain loops back on itself, sorted."""
    on_cycle = set()
    settled = set()
    for start in snapshot.items:
        path: List[str] = []
        index: Dict[str, int] = {}
        current = start
        while current is not None and current in snapshot and current not in settled:
            if current in index:
                on_cycle.update(path[index[current]:])
                break
            index[current] = len(path)
            path.append(current)
            current = snapshot.items[current].parent_id
        settled.update(path)
    return sorted(on_cycle)
