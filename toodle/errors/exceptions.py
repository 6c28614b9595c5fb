"""
errors/exceptions.py - Raised faults

Rejections never appear here; they are returned as data by the validator.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from .taxonomy import (
    ErrorCategory,
    ErrorCode,
    ErrorSeverity,
    ToodleError,
)


class ToodleException(Exception):
    """
    Base class for raised faults.

    Carries an error code and category so callers at the RPC boundary
    can report failures without inspecting the exception type.
    """

    code: ErrorCode = ErrorCode.VAL_FAILED
    category: ErrorCategory = ErrorCategory.VALIDATION
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str = "",
        *,
        item_ids: Optional[List[str]] = None,
        transaction_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.__class__.__doc__ or "Toodle error"
        self.item_ids = list(item_ids or [])
        self.transaction_id = transaction_id
        self.details = details or {}
        super().__init__(self.message)

    def to_error(self, source: str = "") -> ToodleError:
        return ToodleError(
            code=self.code,
            category=self.category,
            severity=self.severity,
            message=self.message,
            source=source,
            item_ids=self.item_ids,
            recoverable=self.category != ErrorCategory.INTEGRITY,
            transaction_id=self.transaction_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
            "item_ids": self.item_ids,
            "details": self.details,
        }


# =============================================================================
# REQUEST ERRORS
# =============================================================================

class ItemNotFoundError(ToodleException):
    """Item does not exist or is not visible."""

    code = ErrorCode.VAL_NOT_FOUND
    category = ErrorCategory.NOT_FOUND

    def __init__(self, item_id: str, **kwargs):
        super().__init__(f"Item not found: {item_id}", item_ids=[item_id], **kwargs)
        self.item_id = item_id


class ListNotFoundError(ToodleException):
    """List does not exist or is not visible."""

    code = ErrorCode.VAL_NOT_FOUND
    category = ErrorCategory.NOT_FOUND

    def __init__(self, list_id: str, **kwargs):
        super().__init__(f"List not found: {list_id}", **kwargs)
        self.list_id = list_id


class InvalidUpdateError(ToodleException):
    """Field changes name a field that cannot be updated or carry a value of the wrong type."""

    code = ErrorCode.VAL_INVALID_FIELD
    category = ErrorCategory.VALIDATION


class AccessDeniedError(ToodleException):
    """Actor can see the target but may not change it."""

    code = ErrorCode.VAL_ACCESS_DENIED
    category = ErrorCategory.PERMISSION

    def __init__(self, actor_id: str, target_id: str, action: str, **kwargs):
        super().__init__(f"User {actor_id} may not {action} {target_id}", **kwargs)
        self.actor_id = actor_id
        self.target_id = target_id


# =============================================================================
# TRANSACTIONAL FAULTS
# =============================================================================

class TransactionError(ToodleException):
    """Write transaction failed; nothing was applied."""

    code = ErrorCode.TXN_FAILED
    category = ErrorCategory.TRANSACTION


class WriteConflictError(TransactionError):
    """Write lock could not be acquired after retrying."""

    code = ErrorCode.TXN_CONFLICT

    def __init__(self, message: str = "", attempts: int = 0, **kwargs):
        super().__init__(
            message or f"Write conflict: lock not acquired after {attempts} attempt(s)",
            **kwargs,
        )
        self.attempts = attempts


class StorageError(TransactionError):
    """Storage rejected or could not perform a write."""

    code = ErrorCode.TXN_STORAGE


class TransactionStateError(TransactionError):
    """A write was attempted outside the owning transaction."""

    code = ErrorCode.TXN_STATE


# =============================================================================
# CONSISTENCY FAULTS
# =============================================================================

class LinkIntegrityError(ToodleException):
    """Stored link graph violates an invariant."""

    code = ErrorCode.INT_DANGLING_EDGE
    category = ErrorCategory.INTEGRITY
    severity = ErrorSeverity.CRITICAL


class DanglingEdgeError(LinkIntegrityError):
    """A relation set references an item that does not exist."""

    code = ErrorCode.INT_DANGLING_EDGE

    def __init__(self, source_id: str, missing_id: str, **kwargs):
        super().__init__(
            f"Item {source_id} references missing item {missing_id}",
            item_ids=[source_id, missing_id],
            **kwargs,
        )
        self.source_id = source_id
        self.missing_id = missing_id


class UnexpectedCycleError(LinkIntegrityError):
    """The parent/child graph contains a cycle."""

    code = ErrorCode.INT_CYCLE

    def __init__(self, cycle: List[str], **kwargs):
        super().__init__(
            f"Cycle found in link graph: {' -> '.join(cycle)}",
            item_ids=list(cycle),
            **kwargs,
        )
        self.cycle = cycle
