"""
Blocking resolver - decides whether an item is actionable or blocked.

An incomplete item is blocked when any of three gates holds:
  1. date gate: its date dependency has not opened yet;
  2. task gate: some existing blocker is still incomplete;
  3. child gate: it has children and every one of them is blocked.
Completed items are never blocked. All functions are pure reads of a snapshot.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from stratatm.models import Item, DateDependency, as_utc, utc_now
from .store import Snapshot


def _now(now: Optional[datetime]) -> datetime:
    return utc_now() if now is None else as_utc(now)

def date_gate(item: Item, snapshot: Snapshot, now: Optional[datetime] = None) -> bool:
    gate = snapshot.date_dependency_for(item.id)
    return gate is not None and gate.is_live(_now(now))

def incomplete_blockers(item: Item, snapshot: Snapshot) -> List[Item]:
    """Existing, incomplete items with an edge blocking this one. Dangling edges are ignored."""
    blockers = []
    for dep in snapshot.blockers_of(item.id):
        blocker = snapshot.get(dep.blocking_task_id)
        if blocker is not None and not blocker.completed:
            blockers.append(blocker)
    return blockers

def task_gate(item: Item, snapshot: Snapshot) -> bool:
    return bool(incomplete_blockers(item, snapshot))

def _resolve(snapshot: Snapshot, roots: Iterable[Item], now: datetime) -> Dict[str, bool]:
    # Children are settled before their parents by walking each subtree in reverse BFS order
    status: Dict[str, bool] = {}
    for root in roots:
        if root.id in status:
            continue
        for item in reversed([root] + snapshot.descendants_of(root.id)):
            if item.id in status:
                continue
            if item.completed:
                status[item.id] = False
                continue
            if date_gate(item, snapshot, now) or task_gate(item, snapshot):
                status[item.id] = True
                continue
            children = snapshot.children_of(item.id)
            # A child left unsettled sits on a parent cycle; it does not block
            status[item.id] = bool(children) and all(status.get(child.id, False) for child in children)
    return status

def is_blocked(item: Item, snapshot: Snapshot, now: Optional[datetime] = None) -> bool:
    """Whether the item is blocked right now (or at `now`)."""
    return _resolve(snapshot, [item], _now(now))[item.id]

def blocked_map(snapshot: Snapshot, now: Optional[datetime] = None) -> Dict[str, bool]:
    """Blocked status of every item in the snapshot, computed in one pass."""
    return _resolve(snapshot, snapshot.children_of(None) + list(snapshot.items.values()), _now(now))

def blocker_count(item: Item, snapshot: Snapshot, now: Optional[datetime] = None) -> int:
    """Live direct gates: incomplete blockers plus one for an unopened date gate."""
    return len(incomplete_blockers(item, snapshot)) + (1 if date_gate(item, snapshot, now) else 0)

def current_date_gates(snapshot: Snapshot) -> List[DateDependency]:
    """One gate per task: the one date_dependency_for picks. Superseded rows are left out."""
    task_ids = dict.fromkeys(dep.task_id for dep in snapshot.date_deps)
    return [snapshot.date_dependency_for(task_id) for task_id in task_ids]

def next_unblock_at(snapshot: Snapshot, now: Optional[datetime] = None) -> Optional[datetime]:
    """When the next date gate opens, so a caller can schedule its re-check. None if no gate is pending."""
    now = _now(now)
    pending = [dep.unblock_at for dep in current_date_gates(snapshot) if dep.is_live(now)]
    return min(pending) if pending else None

def expired_date_gates(snapshot: Snapshot, since: datetime, now: Optional[datetime] = None) -> List[DateDependency]:
    """Date gates that opened in (since, now]."""
    since, now = as_utc(since), _now(now)
    return sorted((dep for dep in current_date_gates(snapshot) if since < dep.unblock_at <= now),
                  key=lambda dep: dep.unblock_at)
