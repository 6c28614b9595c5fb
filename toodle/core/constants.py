"""
Toodle Constants

Default bounds and user-facing messages.
"""

from typing import Dict, Tuple

from .enums import LinkRejectionReason


# Bounded fan-out: new child edges one parent may gain in a single batch
MAX_LINKS_PER_BATCH = 20

# Total relation entries (children + parents + bidirectional) per item
MAX_TOTAL_LINKS = 50

# Default depth for hierarchy views
DEFAULT_HIERARCHY_DEPTH = 5

# Client-side window for classifying a status change as propagated
PROPAGATION_RECENCY_WINDOW_MS = 1000

# Fields a caller may change through update_item_with_propagation
UPDATABLE_ITEM_FIELDS = frozenset({
    "content",
    "is_completed",
    "position",
    "target_date",
})

# Value types accepted per updatable field; None clears target_date
ITEM_FIELD_TYPES: Dict[str, Tuple[type, ...]] = {
    "content": (str,),
    "is_completed": (bool,),
    "position": (int,),
    "target_date": (str, type(None)),
}

REJECTION_MESSAGES: Dict[LinkRejectionReason, str] = {
    LinkRejectionReason.SELF_LINK: "Cannot link item to itself",
    LinkRejectionReason.NOT_FOUND: "Child item not found",
    LinkRejectionReason.CROSS_USER: "Cannot link items from lists you cannot access",
    LinkRejectionReason.CIRCULAR_DEPENDENCY: "Cannot create circular dependency",
    LinkRejectionReason.MAX_LIMIT: "Maximum link limit exceeded",
}


def rejection_message(reason: LinkRejectionReason, child_id: str) -> str:
    """Human-readable warning for a rejected child."""
    return f"{REJECTION_MESSAGES[reason]}: {child_id}"
