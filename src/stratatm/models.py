from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Tuple, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Read naive timestamps as UTC so every comparison is between aware values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ItemType(Enum):
    TASK = "Task"
    MISSION = "Mission"
    OBJECTIVE = "Objective"
    AMBITION = "Ambition"

class DependencyKind(Enum):
    TASK = "Task"
    DATE = "Date"

DependencyKey = Tuple[DependencyKind, Optional[str]]


class Item(BaseModel):
    """A node in the task forest."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Storage-assigned unique identifier")
    owner_id: str = Field(default="", description="Owner every read and write is scoped to")
    parent_id: Optional[str] = Field(default=None, description="Parent item, None for roots")
    position: int = Field(default=0, ge=0, description="Zero-based order among siblings")
    title: str = Field(default="", description="First line of the item")
    description: Optional[str] = Field(default=None, description="Free text below the title")
    completed: bool = Field(default=False, description="Whether the item is done")
    completed_at: Optional[datetime] = Field(default=None, description="When the item was last completed")
    type: Optional[ItemType] = Field(default=None, description="Pinned type, only read when manual_type is set")
    manual_type: bool = Field(default=False, description="Whether type is a manual override")
    created_at: datetime = Field(default_factory=utc_now, description="When storage created the item")

    @field_validator('completed_at', 'created_at')
    @classmethod
    def validate_timezone(cls, v):
        return as_utc(v)

    @model_validator(mode='after')
    def validate_completion(self):
        if self.completed_at is not None and not self.completed:
            raise ValueError("completed_at requires completed")
        return self

# Fields a partial update may carry. id, owner_id and created_at are storage-owned.
ITEM_MUTABLE_FIELDS = frozenset({
    'parent_id', 'position', 'title', 'description', 'completed',
    'completed_at', 'type', 'manual_type',
})
ITEM_FIELDS = frozenset(Item.model_fields)


class TaskDependency(BaseModel):
    """blocking_task_id must complete before blocked_task_id is actionable."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(default=None, description="Storage-assigned id, None until created")
    owner_id: str = Field(default="", description="Owner of both endpoints")
    blocking_task_id: str = Field(description="The item that must complete first")
    blocked_task_id: str = Field(description="The item waiting on it")
    created_at: Optional[datetime] = Field(default=None, description="When storage created the edge")

    @field_validator('created_at')
    @classmethod
    def validate_timezone(cls, v):
        return as_utc(v)

    def mutable_fields(self) -> Tuple[str, str]:
        return (self.blocking_task_id, self.blocked_task_id)

class DateDependency(BaseModel):
    """Time gate: task_id stays blocked until unblock_at passes."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(default=None, description="Storage-assigned id, None until created")
    owner_id: str = Field(default="", description="Owner of the gated item")
    task_id: str = Field(description="The gated item")
    unblock_at: datetime = Field(description="When the gate opens")
    created_at: Optional[datetime] = Field(default=None, description="When storage created the gate")

    @field_validator('unblock_at', 'created_at')
    @classmethod
    def validate_timezone(cls, v):
        return as_utc(v)

    def is_live(self, now: datetime) -> bool:
        return self.unblock_at > as_utc(now)

    def mutable_fields(self) -> Tuple[str, datetime]:
        return (self.task_id, self.unblock_at)


class Dependency(BaseModel):
    """A blocker of one item, tagged with its kind. Identity is (type, data.id)."""

    model_config = ConfigDict(frozen=True)

    type: DependencyKind = Field(description="Which collection the data belongs to")
    data: Union[TaskDependency, DateDependency] = Field(description="The dependency record")

    @model_validator(mode='after')
    def validate_kind(self):
        expected = TaskDependency if self.type == DependencyKind.TASK else DateDependency
        if not isinstance(self.data, expected):
            raise ValueError(f"{self.type.value} dependency cannot carry {type(self.data).__name__}")
        return self

    @classmethod
    def task(cls, blocking_task_id: str, blocked_task_id: str, id: Optional[str] = None) -> 'Dependency':
        return cls(type=DependencyKind.TASK,
                   data=TaskDependency(id=id, blocking_task_id=blocking_task_id, blocked_task_id=blocked_task_id))

    @classmethod
    def date(cls, task_id: str, unblock_at: datetime, id: Optional[str] = None) -> 'Dependency':
        return cls(type=DependencyKind.DATE,
                   data=DateDependency(id=id, task_id=task_id, unblock_at=unblock_at))

    @property
    def key(self) -> DependencyKey:
        return (self.type, self.data.id)

    @property
    def item_id(self) -> str:
        """The item this dependency gates."""
        if isinstance(self.data, TaskDependency):
            return self.data.blocked_task_id
        return self.data.task_id


class ItemView(BaseModel):
    """Read model handed to the UI layer: an item plus everything derived from the snapshot."""

    model_config = ConfigDict(frozen=True)

    item: Item
    effective_type: ItemType
    is_blocked: bool
    blocker_count: int = Field(description="Incomplete blockers plus one for a live date gate")
    dependencies: List[Dependency] = Field(default_factory=list, description="What gates this item")
    blocking: List[TaskDependency] = Field(default_factory=list, description="Edges where this item is the blocker")
    sub_items: List[Item] = Field(default_factory=list, description="Children in position order")
    ancestors: List[Item] = Field(default_factory=list, description="Breadcrumb, root first")


class StoreDocument(BaseModel):
    """On-disk layout of the YAML store: every owner's rows in one file."""

    _schema_scope: str = "user"
    _schema_filename: str = "store"

    schema_version: str = Field(description="Schema version the document was written with")
    items: List[Item] = Field(default_factory=list, description="All items")
    task_dependencies: List[TaskDependency] = Field(default_factory=list, description="All blocking edges")
    date_dependencies: List[DateDependency] = Field(default_factory=list, description="All date gates")
