"""Shared fixtures for the engine tests."""

import os
import tempfile
from datetime import datetime, timezone

# Keep test runs from writing into the user's log directory
os.environ.setdefault('STRATATM_LOG_DIR', tempfile.mkdtemp(prefix='stratatm-logs-'))

import pytest

from stratatm.data import MemoryStorage
from stratatm.engine import TaskEngine
from stratatm.graph.store import Snapshot
from stratatm.models import Item, TaskDependency, DateDependency

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
OWNER = "alice"


def make_item(item_id, parent_id=None, position=0, **fields):
    """Build an Item with a readable id; title defaults to the id."""
    fields.setdefault('title', item_id)
    return Item(id=item_id, owner_id=OWNER, parent_id=parent_id, position=position, **fields)

def make_edge(blocking, blocked, dep_id=None):
    return TaskDependency(id=dep_id or f"{blocking}->{blocked}", owner_id=OWNER,
                          blocking_task_id=blocking, blocked_task_id=blocked, created_at=NOW)

def make_gate(task_id, unblock_at, dep_id=None, created_at=NOW):
    return DateDependency(id=dep_id or f"date:{task_id}", owner_id=OWNER, task_id=task_id,
                          unblock_at=unblock_at, created_at=created_at)


@pytest.fixture
def storage():
    return MemoryStorage()

@pytest.fixture
def engine(storage):
    engine = TaskEngine(storage, OWNER, clock=lambda: NOW)
    engine.populate()
    return engine

@pytest.fixture
def launch_tree():
    """Launch (root) > Beta, GA; Beta > Signup, Invite."""
    return Snapshot([
        make_item("launch"),
        make_item("beta", "launch", 0),
        make_item("ga", "launch", 1),
        make_item("signup", "beta", 0),
        make_item("invite", "beta", 1),
    ])
