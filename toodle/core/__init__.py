"""
Toodle Core

Shared enums, constants and data models.
"""

from .enums import (
    ListType,
    ShareRole,
    LinkRejectionReason,
    RelationKind,
    ChangeType,
    EntityType,
    EventCause,
)
from .models import (
    LinkedItems,
    TodoList,
    Share,
    Item,
    utcnow,
    new_id,
    parse_timestamp,
)

__all__ = [
    # Enums
    "ListType",
    "ShareRole",
    "LinkRejectionReason",
    "RelationKind",
    "ChangeType",
    "EntityType",
    "EventCause",
    # Models
    "LinkedItems",
    "TodoList",
    "Share",
    "Item",
    "utcnow",
    "new_id",
    "parse_timestamp",
]
