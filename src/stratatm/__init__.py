"""
Strata Task Manager - a hierarchical task manager built around a task graph engine.

Items form a forest that reads as Ambition → Objective → Mission → Task,
linked across branches by blocking edges and date gates.
"""

from .version import VERSION, APP_SCHEMA_VERSION
from .models import (
    ItemType,
    DependencyKind,
    Item,
    TaskDependency,
    DateDependency,
    Dependency,
    ItemView,
)
from .engine import TaskEngine

__version__ = VERSION

__all__ = [
    "VERSION",
    "APP_SCHEMA_VERSION",
    "ItemType",
    "DependencyKind",
    "Item",
    "TaskDependency",
    "DateDependency",
    "Dependency",
    "ItemView",
    "TaskEngine",
]
