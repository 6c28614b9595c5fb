"""
transactions/schemas.py - Transaction data structures
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from toodle.core.models import utcnow


class TransactionStatus(Enum):
    """Transaction status."""
    PENDING = "pending"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass
class Transaction:
    """One atomic write against the link store."""

    transaction_id: str = ""
    status: TransactionStatus = TransactionStatus.PENDING

    source: str = ""
    description: str = ""

    # Set when this transaction joined an enclosing one on the same thread
    parent_transaction_id: Optional[str] = None

    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    lock_attempts: int = 0
    event_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_nested(self) -> bool:
        return self.parent_transaction_id is not None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "status": self.status.value,
            "source": self.source,
            "description": self.description,
            "parent_transaction_id": self.parent_transaction_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "lock_attempts": self.lock_attempts,
            "event_count": len(self.event_ids),
            "error": self.error,
        }
