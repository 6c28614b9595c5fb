"""
Toodle Core Enumerations

All enumeration types shared by the link engine and the reconciler.
"""

from enum import Enum


class ListType(str, Enum):
    """Kinds of list a user can create."""
    SIMPLE = "simple"
    GROCERY = "grocery"
    COUNTDOWN = "countdown"


class ShareRole(str, Enum):
    """Access granted by a list share."""
    READ = "read"
    EDIT = "edit"


class LinkRejectionReason(str, Enum):
    """
    Why a proposed parent -> child edge was not accepted.

    Rejections are returned as data, never raised.
    """
    SELF_LINK = "self_link"
    NOT_FOUND = "not_found"
    CROSS_USER = "cross_user"
    CIRCULAR_DEPENDENCY = "circular_dependency"
    MAX_LIMIT = "max_limit"


class RelationKind(str, Enum):
    """The three relation sets carried by every item."""
    CHILDREN = "children"
    PARENTS = "parents"
    BIDIRECTIONAL = "bidirectional"


class ChangeType(str, Enum):
    """Change-feed event types."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(str, Enum):
    """Entities carried on the change feed."""
    ITEM = "item"
    LIST = "list"


class EventCause(str, Enum):
    """Who caused a write: the acting user, or status propagation."""
    USER = "user"
    PROPAGATED = "propagated"
