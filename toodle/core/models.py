"""
Toodle Core Models

Lists, shares and items, including the per-item link sets that form
the cross-list parent/child graph.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
import copy
import uuid

from .enums import ListType, RelationKind, ShareRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass a datetime through), always tz-aware."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# LINK SETS
# =============================================================================

@dataclass
class LinkedItems:
    """
    Relation sets of one item.

    children: items this item controls (completing it completes them)
    parents: items controlling this item
    bidirectional: informational peer links, never propagated
    """
    children: Set[str] = field(default_factory=set)
    parents: Set[str] = field(default_factory=set)
    bidirectional: Set[str] = field(default_factory=set)

    def relation(self, kind: RelationKind) -> Set[str]:
        return getattr(self, kind.value)

    def all_ids(self) -> Set[str]:
        return self.children | self.parents | self.bidirectional

    def total(self) -> int:
        return len(self.children) + len(self.parents) + len(self.bidirectional)

    def is_empty(self) -> bool:
        return self.total() == 0

    def contains(self, item_id: str) -> bool:
        return item_id in self.all_ids()

    def discard(self, item_id: str) -> bool:
        """Remove an id from every relation set. Returns True if anything changed."""
        found = self.contains(item_id)
        self.children.discard(item_id)
        self.parents.discard(item_id)
        self.bidirectional.discard(item_id)
        return found

    def copy(self) -> "LinkedItems":
        return LinkedItems(
            children=set(self.children),
            parents=set(self.parents),
            bidirectional=set(self.bidirectional),
        )

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "children": sorted(self.children),
            "parents": sorted(self.parents),
            "bidirectional": sorted(self.bidirectional),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LinkedItems":
        data = data or {}
        return cls(
            children=set(data.get("children") or []),
            parents=set(data.get("parents") or []),
            bidirectional=set(data.get("bidirectional") or []),
        )


# =============================================================================
# LISTS AND SHARES
# =============================================================================

@dataclass
class TodoList:
    """A typed list owned by one user."""
    id: str = field(default_factory=new_id)
    user_id: str = ""
    title: str = ""
    type: ListType = ListType.SIMPLE
    is_private: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def copy(self) -> "TodoList":
        return copy.copy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "type": self.type.value,
            "is_private": self.is_private,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TodoList":
        return cls(
            id=data["id"],
            user_id=data.get("user_id", ""),
            title=data.get("title", ""),
            type=ListType(data.get("type", "simple")),
            is_private=data.get("is_private", True),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            updated_at=parse_timestamp(data.get("updated_at")) or utcnow(),
            version=data.get("version", 0),
        )


@dataclass
class Share:
    """Grants a user access to a list they do not own."""
    list_id: str
    user_id: str
    role: ShareRole = ShareRole.READ
    expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "list_id": self.list_id,
            "user_id": self.user_id,
            "role": self.role.value,
            "expires_at": _iso(self.expires_at),
            "created_at": _iso(self.created_at),
        }


# =============================================================================
# ITEMS
# =============================================================================

@dataclass
class Item:
    """
    A list item.

    version is monotonic per item and bumped once per committed
    transaction that touches the item.
    """
    id: str = field(default_factory=new_id)
    list_id: str = ""
    content: str = ""
    is_completed: bool = False
    position: int = 0
    target_date: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0
    linked_items: LinkedItems = field(default_factory=LinkedItems)

    def copy(self) -> "Item":
        clone = copy.copy(self)
        clone.linked_items = self.linked_items.copy()
        return clone

    def set_completed(self, value: bool, when: Optional[datetime] = None) -> bool:
        """Set completion status, stamping or clearing completed_at. Returns True if changed."""
        if self.is_completed == value:
            return False
        self.is_completed = value
        self.completed_at = (when or utcnow()) if value else None
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "list_id": self.list_id,
            "content": self.content,
            "is_completed": self.is_completed,
            "position": self.position,
            "target_date": self.target_date,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
            "linked_items": self.linked_items.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        return cls(
            id=data["id"],
            list_id=data.get("list_id", ""),
            content=data.get("content", ""),
            is_completed=bool(data.get("is_completed", False)),
            position=data.get("position", 0),
            target_date=data.get("target_date"),
            completed_at=parse_timestamp(data.get("completed_at")),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            updated_at=parse_timestamp(data.get("updated_at")) or utcnow(),
            version=data.get("version", 0),
            linked_items=LinkedItems.from_dict(data.get("linked_items")),
        )
