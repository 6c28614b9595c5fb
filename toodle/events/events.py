"""
events/events.py - Change-feed event type

One ChangeEvent is produced per entity touched by a committed
transaction. Consumers must tolerate redelivery and missing
intermediate states; only the latest `after` is guaranteed meaningful.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from toodle.core.enums import ChangeType, EntityType, EventCause
from toodle.core.models import parse_timestamp, utcnow


@dataclass(frozen=True)
class ChangeEvent:
    """
    A committed change to one item or list.

    cause is attached at write time; events from older producers may
    lack it, in which case consumers fall back to inference.
    """
    event_type: ChangeType
    entity: EntityType
    entity_id: str
    list_id: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    cause: Optional[EventCause] = None
    version: Optional[int] = None
    transaction_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def record(self) -> Optional[Dict[str, Any]]:
        """Latest known state of the entity (after, else before)."""
        return self.after if self.after is not None else self.before

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "entity": self.entity.value,
            "entity_id": self.entity_id,
            "list_id": self.list_id,
            "before": self.before,
            "after": self.after,
            "cause": self.cause.value if self.cause else None,
            "version": self.version,
            "transaction_id": self.transaction_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        """
        Load from a wire payload.

        Accepts both `event_type` and the camelCase `eventType` key.
        Raises KeyError/ValueError/TypeError on malformed payloads.
        """
        event_type = ChangeType(data.get("event_type") or data["eventType"])
        entity = EntityType(data.get("entity", "item"))
        before = data.get("before")
        after = data.get("after")
        if before is not None and not isinstance(before, dict):
            raise TypeError("before must be a mapping")
        if after is not None and not isinstance(after, dict):
            raise TypeError("after must be a mapping")

        record = after if after is not None else before
        entity_id = data.get("entity_id") or (record or {}).get("id")
        if not entity_id:
            raise ValueError("event has no entity id")

        list_id = data.get("list_id")
        if list_id is None and record is not None and entity == EntityType.ITEM:
            list_id = record.get("list_id")
        if list_id is None and entity == EntityType.LIST:
            list_id = entity_id

        cause = data.get("cause")
        version = data.get("version")
        if version is None and record is not None:
            version = record.get("version")

        return cls(
            event_type=event_type,
            entity=entity,
            entity_id=entity_id,
            list_id=list_id,
            before=before,
            after=after,
            cause=EventCause(cause) if cause else None,
            version=version,
            transaction_id=data.get("transaction_id"),
            event_id=data.get("event_id") or str(uuid.uuid4())[:8],
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
        )
