from stratatm.models import Item, ItemType
from .store import Snapshot


def effective_type(item: Item, snapshot: Snapshot) -> ItemType:
    """Type an item displays as: the manual pin if set, otherwise read off the tree shape.

    Roots are Ambitions, leaves are Tasks, items whose children are all leaves
    are Missions, anything deeper is an Objective. Sibling order never matters.
    """
    if item.manual_type and item.type is not None:
        return item.type
    if item.parent_id is None:
        return ItemType.AMBITION

    children = snapshot.children_of(item.id)
    if not children:
        return ItemType.TASK
    if all(not snapshot.has_children(child.id) for child in children):
        return ItemType.MISSION
    return ItemType.OBJECTIVE
