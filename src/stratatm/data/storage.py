import abc
import uuid
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Any

from stratatm.logs import get_logger
from stratatm.models import Item, TaskDependency, DateDependency, utc_now, ITEM_MUTABLE_FIELDS
from stratatm.recovery import StorageFailure

log = get_logger("data.storage")

Partial = Dict[str, Any]


class StorageBackend(abc.ABC):
    """
    Contract between the engine and whatever persists its rows.

    Every call is scoped to a single owner. Inserts assign id and created_at.
    Implementations raise StorageFailure (or a subclass) when a call fails.
    """

    @abc.abstractmethod
    def list_items(self, owner_id: str) -> List[Item]:
        pass

    @abc.abstractmethod
    def list_task_dependencies(self, owner_id: str) -> List[TaskDependency]:
        pass

    @abc.abstractmethod
    def list_date_dependencies(self, owner_id: str) -> List[DateDependency]:
        pass

    @abc.abstractmethod
    def insert_item(self, partial: Partial) -> Item:
        pass

    @abc.abstractmethod
    def update_item(self, item_id: str, partial: Partial) -> Item:
        pass

    @abc.abstractmethod
    def delete_items(self, item_ids: Iterable[str]) -> None:
        pass

    @abc.abstractmethod
    def insert_task_dependency(self, partial: Partial) -> TaskDependency:
        pass

    @abc.abstractmethod
    def update_task_dependency(self, dep_id: str, partial: Partial) -> TaskDependency:
        pass

    @abc.abstractmethod
    def delete_task_dependency(self, dep_id: str) -> None:
        pass

    @abc.abstractmethod
    def insert_date_dependency(self, partial: Partial) -> DateDependency:
        pass

    @abc.abstractmethod
    def update_date_dependency(self, dep_id: str, partial: Partial) -> DateDependency:
        pass

    @abc.abstractmethod
    def delete_date_dependency(self, dep_id: str) -> None:
        pass

    @contextmanager
    def batch(self) -> Iterator['StorageBackend']:
        """
        Group the calls of one logical mutation.

        Backends that can roll back restore their pre-batch state when the
        block raises. The default groups nothing.
        """
        yield self


class MemoryStorage(StorageBackend):
    """Dict-backed storage for tests and embedding. Batches roll back on error."""

    def __init__(self):
        self.items: Dict[str, Item] = {}
        self.task_dependencies: Dict[str, TaskDependency] = {}
        self.date_dependencies: Dict[str, DateDependency] = {}
        self.calls: List[str] = []
        self._depth = 0

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def _record(self, name: str):
        self.calls.append(name)

    @staticmethod
    def _get(table: Dict[str, Any], key: str, kind: str):
        try:
            return table[key]
        except KeyError:
            raise StorageFailure(f"No {kind} with id {key}", ids=[key]) from None

    def list_items(self, owner_id: str) -> List[Item]:
        return [i for i in self.items.values() if i.owner_id == owner_id]

    def list_task_dependencies(self, owner_id: str) -> List[TaskDependency]:
        return [d for d in self.task_dependencies.values() if d.owner_id == owner_id]

    def list_date_dependencies(self, owner_id: str) -> List[DateDependency]:
        return [d for d in self.date_dependencies.values() if d.owner_id == owner_id]

    def insert_item(self, partial: Partial) -> Item:
        self._record('insert_item')
        item = Item(**{**partial, 'id': self.new_id(), 'created_at': utc_now()})
        self.items[item.id] = item
        self._changed()
        return item

    def update_item(self, item_id: str, partial: Partial) -> Item:
        self._record('update_item')
        current = self._get(self.items, item_id, "item")
        unknown = set(partial) - ITEM_MUTABLE_FIELDS
        if unknown:
            raise StorageFailure(f"Cannot update item fields {sorted(unknown)}", ids=[item_id])
        item = Item(**{**current.model_dump(), **partial})
        self.items[item_id] = item
        self._changed()
        return item

    def delete_items(self, item_ids: Iterable[str]) -> None:
        self._record('delete_items')
        for item_id in item_ids:
            self.items.pop(item_id, None)
        self._changed()

    def insert_task_dependency(self, partial: Partial) -> TaskDependency:
        self._record('insert_task_dependency')
        dep = TaskDependency(**{**partial, 'id': self.new_id(), 'created_at': utc_now()})
        self.task_dependencies[dep.id] = dep
        self._changed()
        return dep

    def update_task_dependency(self, dep_id: str, partial: Partial) -> TaskDependency:
        self._record('update_task_dependency')
        current = self._get(self.task_dependencies, dep_id, "task dependency")
        dep = TaskDependency(**{**current.model_dump(), **partial})
        self.task_dependencies[dep_id] = dep
        self._changed()
        return dep

    def delete_task_dependency(self, dep_id: str) -> None:
        self._record('delete_task_dependency')
        self.task_dependencies.pop(dep_id, None)
        self._changed()

    def insert_date_dependency(self, partial: Partial) -> DateDependency:
        self._record('insert_date_dependency')
        dep = DateDependency(**{**partial, 'id': self.new_id(), 'created_at': utc_now()})
        self.date_dependencies[dep.id] = dep
        self._changed()
        return dep

    def update_date_dependency(self, dep_id: str, partial: Partial) -> DateDependency:
        self._record('update_date_dependency')
        current = self._get(self.date_dependencies, dep_id, "date dependency")
        dep = DateDependency(**{**current.model_dump(), **partial})
        self.date_dependencies[dep_id] = dep
        self._changed()
        return dep

    def delete_date_dependency(self, dep_id: str) -> None:
        self._record('delete_date_dependency')
        self.date_dependencies.pop(dep_id, None)
        self._changed()

    def _changed(self):
        """Called after every write. Outside a batch the write is final."""
        if self._depth == 0:
            self._committed()

    def _committed(self):
        """Hook for backends that persist the tables once a write or batch is final."""
        pass

    @contextmanager
    def batch(self) -> Iterator['MemoryStorage']:
        # Rows are frozen models, so shallow copies are enough to roll back
        saved = (dict(self.items), dict(self.task_dependencies), dict(self.date_dependencies))
        self._depth += 1
        try:
            yield self
        except Exception:
            self._depth -= 1
            if self._depth == 0:
                self.items, self.task_dependencies, self.date_dependencies = saved
                log.warning("Storage batch failed, rolled back")
            raise
        self._depth -= 1
        if self._depth == 0:
            self._committed()
