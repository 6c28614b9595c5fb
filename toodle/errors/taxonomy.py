"""
errors/taxonomy.py - Error classification system

Three families of failure are kept apart:
- rejections: expected outcomes of a link request, returned as data
- transactional faults: storage or lock failures, fatal to one operation
- consistency faults: invariant violations found in stored data
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""
    # Request errors (1xxx)
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"

    # Rejections (2xxx)
    REJECTION = "rejection"

    # Transactional faults (5xxx)
    TRANSACTION = "transaction"

    # Consistency faults (6xxx)
    INTEGRITY = "integrity"


class ErrorCode(Enum):
    """Specific error codes."""

    # Request (1xxx)
    VAL_FAILED = 1001
    VAL_INVALID_FIELD = 1002
    VAL_NOT_FOUND = 1003
    VAL_ACCESS_DENIED = 1004

    # Rejection (2xxx)
    REJ_SELF_LINK = 2001
    REJ_NOT_FOUND = 2002
    REJ_CROSS_USER = 2003
    REJ_CIRCULAR = 2004
    REJ_MAX_LIMIT = 2005

    # Transaction (5xxx)
    TXN_FAILED = 5001
    TXN_CONFLICT = 5002
    TXN_STORAGE = 5003
    TXN_STATE = 5004

    # Integrity (6xxx)
    INT_DANGLING_EDGE = 6001
    INT_CYCLE = 6002
    INT_ASYMMETRIC = 6003


@dataclass
class ToodleError:
    """Structured error representation."""

    error_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    code: ErrorCode = ErrorCode.VAL_FAILED
    category: ErrorCategory = ErrorCategory.VALIDATION
    severity: ErrorSeverity = ErrorSeverity.ERROR

    message: str = ""
    detail: str = ""

    # Context
    source: str = ""
    item_ids: List[str] = field(default_factory=list)

    # Recovery
    recoverable: bool = True
    recovery_options: List[str] = field(default_factory=list)

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    transaction_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_id": self.error_id,
            "code": self.code.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "source": self.source,
            "item_ids": list(self.item_ids),
            "recoverable": self.recoverable,
            "transaction_id": self.transaction_id,
        }
