"""
Task graph core: the snapshot store and the pure computations over it.
"""

from .store import Snapshot, Predicate
from .types import effective_type
from .blocking import is_blocked, blocked_map, blocker_count
from .hierarchy import Plan, Placement
from .reconcile import reconcile, diff_dependencies, DependencyDiff

__all__ = [
    'Snapshot',
    'Predicate',
    'effective_type',
    'is_blocked',
    'blocked_map',
    'blocker_count',
    'Plan',
    'Placement',
    'reconcile',
    'diff_dependencies',
    'DependencyDiff',
]
