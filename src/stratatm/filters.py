from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field

from stratatm.graph.blocking import blocked_map
from stratatm.graph.store import Snapshot
from stratatm.models import Item


class CompletionFilter(Enum):
    ALL = "all"
    TODO = "todo"
    DONE = "done"

class BlockingFilter(Enum):
    ANY = "any"
    ACTIONABLE = "actionable"
    BLOCKED = "blocked"
    BLOCKING = "blocking"

class FilterState(BaseModel):
    """What a list or tree view is currently narrowed to."""

    completion: CompletionFilter = Field(default=CompletionFilter.ALL, description="Completion state to show")
    blocking: BlockingFilter = Field(default=BlockingFilter.ANY, description="Blocked state to show")
    search: str = Field(default="", description="Case-insensitive title substring")

    @property
    def is_default(self) -> bool:
        return (self.completion == CompletionFilter.ALL and self.blocking == BlockingFilter.ANY
                and not self.search.strip())


def item_matches(item: Item, snapshot: Snapshot, state: FilterState, statuses: Dict[str, bool]) -> bool:
    """Whether the item itself passes every part of the filter."""
    if state.completion == CompletionFilter.TODO and item.completed:
        return False
    if state.completion == CompletionFilter.DONE and not item.completed:
        return False

    blocked = statuses.get(item.id, False)
    if state.blocking == BlockingFilter.BLOCKED and not blocked:
        return False
    if state.blocking == BlockingFilter.ACTIONABLE and blocked:
        return False
    if state.blocking == BlockingFilter.BLOCKING and not snapshot.blocking_of(item.id):
        return False

    query = state.search.strip().lower()
    if query and query not in item.title.lower():
        return False
    return True

def item_or_descendants_match(item: Item, snapshot: Snapshot, state: FilterState,
                              statuses: Dict[str, bool]) -> bool:
    """An item stays visible when it or anything below it passes the filter."""
    if item_matches(item, snapshot, state, statuses):
        return True
    return any(item_matches(d, snapshot, state, statuses) for d in snapshot.descendants_of(item.id))

def filter_items(snapshot: Snapshot, state: FilterState, parent_id: Optional[str] = None,
                 now: Optional[datetime] = None) -> List[Item]:
    """Children of parent_id, in position order, that should stay visible under `state`."""
    children = snapshot.children_of(parent_id)
    if state.is_default:
        return children
    statuses = blocked_map(snapshot, now)
    return [child for child in children if item_or_descendants_match(child, snapshot, state, statuses)]

def search_matches(snapshot: Snapshot, query: str) -> Set[str]:
    """
    Ids to show for a search: direct hits on title or description, their
    ancestors (so the hit can be reached) and their descendants.
    """
    needle = query.strip().lower()
    if not needle:
        return set()

    hits = [item for item in snapshot.items.values()
            if needle in item.title.lower() or needle in (item.description or '').lower()]
    visible = set()
    for item in hits:
        visible.add(item.id)
        visible.update(a.id for a in snapshot.ancestors_of(item.id))
        visible.update(d.id for d in snapshot.descendants_of(item.id))
    return visible
