"""
TaskEngine - the caller-facing task graph engine.

The engine owns the current Snapshot of one owner's task forest. Every intent
is validated and planned against that snapshot, written to storage inside a
single batch, and only then adopted as the new snapshot. A failed storage call
leaves the previous snapshot in place, so the caller can retry the whole
mutation. Reads never touch storage.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from stratatm.dates import parse_unblock_at
from stratatm.filters import FilterState, filter_items, search_matches
from stratatm.graph import blocking, hierarchy
from stratatm.graph.hierarchy import Placement, Plan
from stratatm.graph.reconcile import reconcile, split_dependencies
from stratatm.graph.store import Predicate, Snapshot
from stratatm.graph.types import effective_type
from stratatm.logs import get_logger
from stratatm.models import (
    Item, ItemType, ItemView, Dependency, DependencyKind, DateDependency,
    ITEM_MUTABLE_FIELDS, utc_now,
)
from stratatm.recovery import (
    StrataError, StorageFailure, ValidationFailure, InvalidStructure, NotFound, CorruptionError,
)

log = get_logger("engine")

ItemRef = Union[Item, ItemView, str]


def what_changed(current: Item, partial: Dict[str, object]) -> Dict[str, object]:
    """The subset of a partial update that differs from the current item."""
    return {key: value for key, value in partial.items() if getattr(current, key) != value}


class TaskEngine:
    """Task graph engine over a pluggable storage backend."""

    def __init__(self, storage, owner_id: str = "", clock: Callable[[], datetime] = utc_now):
        self.storage = storage
        self.owner_id = owner_id
        self.clock = clock
        self.snapshot = Snapshot()

    # --- plumbing ---

    def _id(self, item: ItemRef) -> str:
        if isinstance(item, ItemView):
            return item.item.id
        if isinstance(item, Item):
            return item.id
        return item

    def _require(self, item: ItemRef) -> Item:
        return self.snapshot.require(self._id(item))

    @contextmanager
    def _storage_call(self, action: str):
        """Turn any failure inside storage into StorageFailure and log it."""
        try:
            yield
        except StorageFailure as e:
            log.error(f"{action} failed in storage: {e}")
            raise
        except StrataError:
            raise
        except Exception as e:
            log.error(f"{action} failed in storage: {e}")
            raise StorageFailure(f"{action} failed: {e}") from e

    def _write_plan(self, plan: Plan) -> Dict[str, Item]:
        """Issue a plan's writes; returns the storage-confirmed items. Call inside a batch."""
        confirmed = {}
        for item_id, fields in plan.item_updates.items():
            confirmed[item_id] = self.storage.update_item(item_id, fields)
        for dep in plan.deleted_task_deps:
            self.storage.delete_task_dependency(dep.id)
        for dep in plan.deleted_date_deps:
            self.storage.delete_date_dependency(dep.id)
        if plan.deleted_item_ids:
            self.storage.delete_items(plan.deleted_item_ids)
        return confirmed

    @staticmethod
    def _adopt(snapshot: Snapshot, confirmed: Dict[str, Item], added: Iterable[Item] = ()) -> Snapshot:
        items = {**snapshot.items, **confirmed}
        for item in added:
            items[item.id] = item
        return snapshot.replace(items=items.values())

    def _commit(self, plan: Plan, action: str) -> Snapshot:
        if plan.is_empty:
            self.snapshot = plan.snapshot
            return self.snapshot
        with self._storage_call(action):
            with self.storage.batch():
                confirmed = self._write_plan(plan)
        self.snapshot = self._adopt(plan.snapshot, confirmed)
        log.info(f"{action}: {plan}")
        return self.snapshot

    # --- loading ---

    def populate(self, owner_id: Optional[str] = None) -> Snapshot:
        """Load the owner's items and dependencies from storage into a fresh snapshot."""
        if owner_id is not None:
            self.owner_id = owner_id
        with self._storage_call("populate"):
            snapshot = Snapshot(
                self.storage.list_items(self.owner_id),
                self.storage.list_task_dependencies(self.owner_id),
                self.storage.list_date_dependencies(self.owner_id),
            )
        looped = hierarchy.parent_cycles(snapshot)
        if looped:
            log.error(f"Owner {self.owner_id} has a parent cycle through {', '.join(looped)}")
            raise CorruptionError(f"Parent references form a cycle through {', '.join(looped)}", ids=looped)
        if not hierarchy.positions_are_contiguous(snapshot):
            log.warning(f"Owner {self.owner_id} has gaps or duplicates in sibling positions")
        self.snapshot = snapshot
        log.info(f"Populated {len(snapshot)} items for owner {self.owner_id}")
        return snapshot

    # --- item mutations ---

    @staticmethod
    def _check_fields(partial: Dict[str, object]):
        unknown = set(partial) - ITEM_MUTABLE_FIELDS
        if unknown:
            raise ValidationFailure(f"Unknown or read-only item fields: {', '.join(sorted(unknown))}")
        if 'completed_at' in partial:
            raise ValidationFailure("completed_at follows completed and cannot be set directly")

    @staticmethod
    def _normalize_type(partial: Dict[str, object]):
        if 'type' not in partial:
            return
        value = partial['type']
        if value is not None and not isinstance(value, ItemType):
            try:
                value = ItemType(value)
            except ValueError:
                raise ValidationFailure(f"Unknown item type {value!r}") from None
        partial['type'] = value
        # Setting a type pins it; clearing it goes back to the derived type
        partial.setdefault('manual_type', value is not None)

    def create(self, partial: Optional[Dict[str, object]] = None, **fields) -> Item:
        """Create an item, by default at the end of its sibling group."""
        partial = {**(partial or {}), **fields}
        self._check_fields(partial)
        self._normalize_type(partial)

        parent_id = partial.pop('parent_id', None)
        if parent_id is not None:
            parent_id = self._id(parent_id)
        position, plan = hierarchy.insert_position(self.snapshot, parent_id, partial.pop('position', None))

        record = {
            'owner_id': self.owner_id,
            'parent_id': parent_id,
            'position': position,
            'title': (partial.pop('title', '') or '').strip(),
            **partial,
        }
        if record.get('completed'):
            record['completed_at'] = self.clock()

        with self._storage_call("create"):
            with self.storage.batch():
                confirmed = self._write_plan(plan)
                item = self.storage.insert_item(record)
        self.snapshot = self._adopt(plan.snapshot, confirmed, [item])
        log.info(f"Created item {item.id} under {parent_id} at {position}")
        return item

    def update(self, item: ItemRef, partial: Optional[Dict[str, object]] = None, **fields) -> Item:
        """
        Apply a partial update.

        Only fields that differ are written. A parent or position change is
        carried out as a move; completing an item is refused while it is
        blocked; completed_at follows completed.
        """
        current = self._require(item)
        partial = {**(partial or {}), **fields}
        self._check_fields(partial)
        self._normalize_type(partial)

        if 'title' in partial:
            title = (partial['title'] or '').strip()
            if not title:
                raise ValidationFailure("Title must not be empty", ids=[current.id])
            partial['title'] = title

        # Placement is decided from the request, not the diff: an unchanged
        # position still matters when the parent changes
        parent_id = partial.pop('parent_id', current.parent_id)
        if parent_id is not None:
            parent_id = self._id(parent_id)
        position = partial.pop('position', None)
        moving = parent_id != current.parent_id or (position is not None and position != current.position)

        changes = what_changed(current, partial)
        if not changes and not moving:
            return current

        if changes.get('completed') is True:
            if blocking.is_blocked(current, self.snapshot, self.clock()):
                log.warning(f"Refused to complete blocked item {current.id}")
                raise ValidationFailure(f"Item {current.id} is blocked and cannot be completed", ids=[current.id])
            changes['completed_at'] = self.clock()
        elif changes.get('completed') is False:
            changes['completed_at'] = None

        if moving:
            if position is None:
                position = len(self.snapshot.children_of(parent_id))
            plan = hierarchy.plan_move(self.snapshot, current.id, parent_id, position)
        else:
            plan = Plan(self.snapshot)

        if changes:
            moved = plan.snapshot.require(current.id)
            plan.snapshot = plan.snapshot.replace(
                items=[i if i.id != current.id else moved.model_copy(update=changes)
                       for i in plan.snapshot.items.values()])
            plan.item_updates[current.id] = {**plan.item_updates.get(current.id, {}), **changes}

        self._commit(plan, f"Update {current.id}")
        return self.snapshot.require(current.id)

    def toggle_complete(self, item: ItemRef) -> Item:
        current = self._require(item)
        return self.update(current, completed=not current.completed)

    def delete(self, item: ItemRef, cascade: bool = False) -> List[str]:
        """
        Delete an item.

        With cascade the whole subtree goes; otherwise the children move up to
        the item's parent. Dependencies touching a removed item go with it.
        Returns the removed ids.
        """
        item_id = self._require(item).id
        if cascade:
            plan = hierarchy.plan_cascade_delete(self.snapshot, item_id)
        else:
            plan = hierarchy.plan_promotion_delete(self.snapshot, item_id)
        self._commit(plan, f"{'Cascade' if cascade else 'Promotion'} delete {item_id}")
        return list(plan.deleted_item_ids)

    def move(self, item_id: ItemRef, parent_id: Optional[ItemRef], position: int) -> Item:
        """Move an item to `position` among the children of `parent_id` (None for the roots)."""
        item_id = self._id(item_id)
        parent_id = None if parent_id is None else self._id(parent_id)
        plan = hierarchy.plan_move(self.snapshot, item_id, parent_id, position)
        self._commit(plan, f"Move {item_id}")
        return self.snapshot.require(item_id)

    def move_relative(self, item_id: ItemRef, target_id: ItemRef, placement: Union[Placement, str]) -> Item:
        """Drop an item before, after, or as the last child of another item."""
        try:
            placement = Placement(placement)
        except ValueError:
            raise ValidationFailure(f"Unknown placement {placement!r}") from None
        parent_id, position = hierarchy.resolve_placement(
            self.snapshot, self._id(item_id), self._id(target_id), placement)
        return self.move(item_id, parent_id, position)

    # --- dependencies ---

    def _check_dependencies(self, item: Item, desired: List[Dependency]):
        dates = set()
        for dep in desired:
            if dep.item_id != item.id:
                raise ValidationFailure(
                    f"Dependency gates {dep.item_id}, not {item.id}", ids=[item.id, dep.item_id])
            if dep.type == DependencyKind.TASK:
                blocker = dep.data.blocking_task_id
                if blocker == item.id:
                    raise InvalidStructure(f"Item {item.id} cannot block itself", ids=[item.id])
                if blocker not in self.snapshot:
                    raise NotFound(f"Blocking item {blocker} not found", ids=[blocker])
            else:
                dates.add(dep.key if dep.data.id is not None else id(dep))
        if len(dates) > 1:
            raise ValidationFailure(f"Item {item.id} can have only one date dependency", ids=[item.id])

    def set_dependencies(self, item: ItemRef, desired: List[Dependency]) -> List[Dependency]:
        """Replace everything that gates `item` with `desired`; returns the stored set."""
        current_item = self._require(item)
        desired = list(desired)
        self._check_dependencies(current_item, desired)

        current = self.snapshot.dependencies_of(current_item.id)
        with self._storage_call(f"Set dependencies of {current_item.id}"):
            with self.storage.batch():
                result = reconcile(current, desired, self.storage, self.owner_id)

        task_deps, date_deps = split_dependencies(result)
        self.snapshot = self.snapshot.replace(
            task_deps=[d for d in self.snapshot.task_deps if d.blocked_task_id != current_item.id] + task_deps,
            date_deps=[d for d in self.snapshot.date_deps if d.task_id != current_item.id] + date_deps,
        )
        return result

    def dependencies_of(self, item: ItemRef) -> List[Dependency]:
        return self.snapshot.dependencies_of(self._require(item).id)

    def add_blocker(self, item: ItemRef, blocker: ItemRef) -> Dependency:
        """Make `blocker` block `item`. Adding an existing edge returns it unchanged."""
        current_item = self._require(item)
        blocker_id = self._id(blocker)
        current = self.dependencies_of(current_item)
        for dep in current:
            if dep.type == DependencyKind.TASK and dep.data.blocking_task_id == blocker_id:
                return dep

        result = self.set_dependencies(current_item, current + [Dependency.task(blocker_id, current_item.id)])
        return next(dep for dep in result
                    if dep.type == DependencyKind.TASK and dep.data.blocking_task_id == blocker_id)

    def remove_blocker(self, item: ItemRef, blocker: ItemRef) -> bool:
        current_item = self._require(item)
        blocker_id = self._id(blocker)
        current = self.dependencies_of(current_item)
        desired = [dep for dep in current
                   if not (dep.type == DependencyKind.TASK and dep.data.blocking_task_id == blocker_id)]
        if len(desired) == len(current):
            return False
        self.set_dependencies(current_item, desired)
        return True

    def set_unblock_date(self, item: ItemRef, when: Union[datetime, str]) -> DateDependency:
        """Gate `item` until `when`, superseding any earlier date gate. Accepts natural-language dates."""
        current_item = self._require(item)
        if isinstance(when, str):
            parsed = parse_unblock_at(when, self.clock().astimezone())
            if parsed is None:
                raise ValidationFailure(f"Could not understand date {when!r}", ids=[current_item.id])
            when = parsed

        current = self.dependencies_of(current_item)
        existing = self.snapshot.date_dependency_for(current_item.id)
        desired = [dep for dep in current if dep.type == DependencyKind.TASK]
        desired.append(Dependency.date(current_item.id, when, id=existing.id if existing else None))

        result = self.set_dependencies(current_item, desired)
        return next(dep.data for dep in result if dep.type == DependencyKind.DATE)

    def clear_unblock_date(self, item: ItemRef) -> bool:
        current_item = self._require(item)
        current = self.dependencies_of(current_item)
        desired = [dep for dep in current if dep.type == DependencyKind.TASK]
        if len(desired) == len(current):
            return False
        self.set_dependencies(current_item, desired)
        return True

    # --- queries ---

    def entries(self, predicate: Predicate) -> List[Item]:
        return self.snapshot.entries(predicate)

    def entry(self, predicate: Predicate) -> Optional[Item]:
        return self.snapshot.entry(predicate)

    def get(self, item: ItemRef) -> Item:
        return self._require(item)

    def children_of(self, item: Optional[ItemRef]) -> List[Item]:
        return self.snapshot.children_of(None if item is None else self._id(item))

    def ancestors_of(self, item: ItemRef) -> List[Item]:
        return self.snapshot.ancestors_of(self._id(item))

    def is_blocked(self, item: ItemRef, now: Optional[datetime] = None) -> bool:
        return blocking.is_blocked(self._require(item), self.snapshot, now or self.clock())

    def effective_type(self, item: ItemRef) -> ItemType:
        return effective_type(self._require(item), self.snapshot)

    def blocker_count(self, item: ItemRef, now: Optional[datetime] = None) -> int:
        return blocking.blocker_count(self._require(item), self.snapshot, now or self.clock())

    def view(self, item: ItemRef, now: Optional[datetime] = None) -> ItemView:
        """Everything the UI shows for one item, derived from the current snapshot."""
        current = self._require(item)
        now = now or self.clock()
        return ItemView(
            item=current,
            effective_type=effective_type(current, self.snapshot),
            is_blocked=blocking.is_blocked(current, self.snapshot, now),
            blocker_count=blocking.blocker_count(current, self.snapshot, now),
            dependencies=self.snapshot.dependencies_of(current.id),
            blocking=self.snapshot.blocking_of(current.id),
            sub_items=self.snapshot.children_of(current.id),
            ancestors=self.snapshot.ancestors_of(current.id),
        )

    def filter(self, state: FilterState, parent: Optional[ItemRef] = None,
               now: Optional[datetime] = None) -> List[Item]:
        """Children of `parent` (roots by default) that pass the filter themselves or through a descendant."""
        parent_id = None if parent is None else self._require(parent).id
        return filter_items(self.snapshot, state, parent_id, now or self.clock())

    def search(self, query: str) -> Set[str]:
        return search_matches(self.snapshot, query)

    def next_unblock_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        return blocking.next_unblock_at(self.snapshot, now or self.clock())

    def expired_date_gates(self, since: datetime, now: Optional[datetime] = None) -> List[DateDependency]:
        return blocking.expired_date_gates(self.snapshot, since, now or self.clock())
