"""
Dependency reconciler - replaces an item's dependency list with a desired one.

Dependencies are a set keyed by (type, data.id). The diff sorts the desired
list against the current one; applying it issues only the storage calls the
difference needs, so reconciling the same desired set twice is a no-op.
"""
from typing import Dict, List, Optional, Tuple

from stratatm.logs import get_logger
from stratatm.models import Dependency, DependencyKind, DependencyKey, TaskDependency, DateDependency

log = get_logger("graph.reconcile")


class DependencyDiff:
    """Result of comparing current and desired dependency sets."""

    def __init__(self):
        self.unchanged: List[Dependency] = []
        self.to_update: List[Tuple[Dependency, Dependency]] = []  # (current, desired)
        self.to_create: List[Dependency] = []
        self.to_delete: List[Dependency] = []

    @property
    def is_empty(self) -> bool:
        return not (self.to_update or self.to_create or self.to_delete)

    def __repr__(self):
        return (f"DependencyDiff(unchanged={len(self.unchanged)}, update={len(self.to_update)}, "
                f"create={len(self.to_create)}, delete={len(self.to_delete)})")


def diff_dependencies(current: List[Dependency], desired: List[Dependency]) -> DependencyDiff:
    """Classify every dependency as unchanged, updated, new or stale."""
    diff = DependencyDiff()
    by_key: Dict[DependencyKey, Dependency] = {dep.key: dep for dep in current if dep.data.id is not None}
    matched = set()

    for wanted in desired:
        existing = by_key.get(wanted.key) if wanted.data.id is not None else None
        if existing is None:
            diff.to_create.append(wanted)
            continue
        if wanted.key in matched:
            # Listed twice in the desired set: a set keeps one
            continue
        matched.add(wanted.key)
        if existing.data.mutable_fields() == wanted.data.mutable_fields():
            diff.unchanged.append(existing)
        else:
            diff.to_update.append((existing, wanted))

    diff.to_delete = [dep for dep in current if dep.key not in matched]
    return diff

def _fields(dep: Dependency) -> Dict[str, object]:
    if dep.type == DependencyKind.TASK:
        return {'blocking_task_id': dep.data.blocking_task_id, 'blocked_task_id': dep.data.blocked_task_id}
    return {'task_id': dep.data.task_id, 'unblock_at': dep.data.unblock_at}

def apply_diff(diff: DependencyDiff, storage, owner_id: Optional[str] = None) -> List[Dependency]:
    """Issue the diff's storage calls and return the merged dependency set."""
    result = list(diff.unchanged)

    for existing, wanted in diff.to_update:
        changed = {k: v for k, v in _fields(wanted).items() if getattr(existing.data, k) != v}
        if existing.type == DependencyKind.TASK:
            data = storage.update_task_dependency(existing.data.id, changed)
        else:
            data = storage.update_date_dependency(existing.data.id, changed)
        result.append(Dependency(type=existing.type, data=data))

    for wanted in diff.to_create:
        partial = _fields(wanted)
        if owner_id is not None:
            partial['owner_id'] = owner_id
        if wanted.type == DependencyKind.TASK:
            data = storage.insert_task_dependency(partial)
        else:
            data = storage.insert_date_dependency(partial)
        result.append(Dependency(type=wanted.type, data=data))

    for stale in diff.to_delete:
        if stale.type == DependencyKind.TASK:
            storage.delete_task_dependency(stale.data.id)
        else:
            storage.delete_date_dependency(stale.data.id)

    return result

def reconcile(current: List[Dependency], desired: List[Dependency], storage,
              owner_id: Optional[str] = None) -> List[Dependency]:
    """Make storage hold `desired` where it now holds `current`; return the resulting set."""
    diff = diff_dependencies(current, desired)
    log.debug(f"Reconcile: {diff}")
    if diff.is_empty:
        return list(diff.unchanged)
    return apply_diff(diff, storage, owner_id)


def split_dependencies(deps: List[Dependency]) -> Tuple[List[TaskDependency], List[DateDependency]]:
    task = [dep.data for dep in deps if dep.type == DependencyKind.TASK]
    date = [dep.data for dep in deps if dep.type == DependencyKind.DATE]
    return task, date
