"""
Entity store - the immutable snapshot every engine computation reads from.

A Snapshot holds items keyed by id, the task and date dependency collections,
and a parent-to-children index built once per snapshot. Mutations never touch
a snapshot; they build a new one with replace().
"""
from collections import deque
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from stratatm.models import Item, TaskDependency, DateDependency, Dependency, DependencyKind, ITEM_FIELDS
from stratatm.recovery import NotFound, ValidationFailure

Predicate = Union[Callable[[Item], bool], Mapping[str, object]]


def _field_value(item: Item, field: str):
    value = getattr(item, field)
    # Allow callers to filter on enum values as well as members
    return value.value if hasattr(value, 'value') else value

def as_predicate(predicate: Predicate) -> Callable[[Item], bool]:
    """Normalize a callable or a field->value mapping into a callable."""
    if callable(predicate):
        return predicate

    fields = dict(predicate)
    unknown = set(fields) - ITEM_FIELDS
    if unknown:
        raise ValidationFailure(f"Unknown item fields in filter: {', '.join(sorted(unknown))}")

    def matches(item: Item) -> bool:
        for field, expected in fields.items():
            actual = getattr(item, field)
            if actual != expected and _field_value(item, field) != expected:
                return False
        return True
    return matches

def _sort_key(item: Item) -> Tuple[int, str]:
    return (item.position, item.id)


class Snapshot:
    """Immutable view of one owner's items and dependencies."""

    __slots__ = ('_items', '_task_deps', '_date_deps', '_children')

    def __init__(self, items: Iterable[Item] = (), task_deps: Iterable[TaskDependency] = (),
                 date_deps: Iterable[DateDependency] = ()):
        self._items: Mapping[str, Item] = MappingProxyType({i.id: i for i in items})
        self._task_deps: Tuple[TaskDependency, ...] = tuple(task_deps)
        self._date_deps: Tuple[DateDependency, ...] = tuple(date_deps)

        children: Dict[Optional[str], List[Item]] = {}
        for item in self._items.values():
            children.setdefault(item.parent_id, []).append(item)
        self._children = MappingProxyType({
            parent: tuple(sorted(group, key=_sort_key)) for parent, group in children.items()
        })

    @property
    def items(self) -> Mapping[str, Item]:
        return self._items

    @property
    def task_deps(self) -> Tuple[TaskDependency, ...]:
        return self._task_deps

    @property
    def date_deps(self) -> Tuple[DateDependency, ...]:
        return self._date_deps

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id) -> bool:
        return item_id in self._items

    def replace(self, items: Optional[Iterable[Item]] = None,
                task_deps: Optional[Iterable[TaskDependency]] = None,
                date_deps: Optional[Iterable[DateDependency]] = None) -> 'Snapshot':
        """Return a new snapshot with the given collections swapped in."""
        return Snapshot(
            self._items.values() if items is None else items,
            self._task_deps if task_deps is None else task_deps,
            self._date_deps if date_deps is None else date_deps,
        )

    # --- lookups ---

    def get(self, item_id: Optional[str]) -> Optional[Item]:
        if item_id is None:
            return None
        return self._items.get(item_id)

    def require(self, item_id: Optional[str]) -> Item:
        item = self.get(item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found", ids=[item_id] if item_id else [])
        return item

    def entries(self, predicate: Predicate) -> List[Item]:
        """All items matching the predicate, in no particular order."""
        matches = as_predicate(predicate)
        return [item for item in self._items.values() if matches(item)]

    def entry(self, predicate: Predicate) -> Optional[Item]:
        """First item matching the predicate, or None."""
        matches = as_predicate(predicate)
        return next((item for item in self._items.values() if matches(item)), None)

    # --- tree ---

    def children_of(self, item_id: Optional[str]) -> List[Item]:
        """Direct children sorted by position. None gives the roots."""
        return list(self._children.get(item_id, ()))

    siblings_of = children_of

    def has_children(self, item_id: str) -> bool:
        return bool(self._children.get(item_id))

    def ancestors_of(self, item_id: str) -> List[Item]:
        """Ancestors from the root down to the direct parent.

        Stops quietly at the first missing link. A parent cycle, which the
        mutator never produces, is cut at the first repeat.
        """
        ancestors: List[Item] = []
        seen = {item_id}
        current = self.get(item_id)
        while current is not None and current.parent_id is not None and current.parent_id not in seen:
            parent = self.get(current.parent_id)
            if parent is None:
                break
            ancestors.append(parent)
            seen.add(parent.id)
            current = parent
        ancestors.reverse()
        return ancestors

    def descendants_of(self, item_id: str) -> List[Item]:
        """All transitive descendants in BFS order, excluding the item itself."""
        descendants: List[Item] = []
        seen = {item_id}
        queue = deque([item_id])
        while queue:
            for child in self._children.get(queue.popleft(), ()):
                if child.id in seen:
                    continue
                seen.add(child.id)
                descendants.append(child)
                queue.append(child.id)
        return descendants

    def is_in_subtree(self, candidate_id: Optional[str], root_id: str) -> bool:
        """True when candidate_id is root_id or one of its descendants."""
        if candidate_id is None:
            return False
        if candidate_id == root_id:
            return True
        return any(a.id == root_id for a in self.ancestors_of(candidate_id))

    # --- dependencies ---

    def blockers_of(self, item_id: str) -> List[TaskDependency]:
        """Edges where the item is the blocked end."""
        return [dep for dep in self._task_deps if dep.blocked_task_id == item_id]

    def blocking_of(self, item_id: str) -> List[TaskDependency]:
        """Edges where the item is the blocking end."""
        return [dep for dep in self._task_deps if dep.blocking_task_id == item_id]

    def date_dependency_for(self, item_id: str) -> Optional[DateDependency]:
        """The live date gate of an item; the most recently created wins if storage holds several."""
        gates = [dep for dep in self._date_deps if dep.task_id == item_id]
        if not gates:
            return None
        return max(gates, key=lambda d: (d.created_at is not None, d.created_at))

    def dependencies_of(self, item_id: str) -> List[Dependency]:
        deps = [Dependency(type=DependencyKind.TASK, data=d) for d in self.blockers_of(item_id)]
        deps.extend(Dependency(type=DependencyKind.DATE, data=d)
                    for d in self._date_deps if d.task_id == item_id)
        return deps
