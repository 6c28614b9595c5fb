"""
Toodle Errors

Error taxonomy and raised fault types.
"""

from .taxonomy import (
    ErrorSeverity,
    ErrorCategory,
    ErrorCode,
    ToodleError,
)
from .exceptions import (
    ToodleException,
    ItemNotFoundError,
    ListNotFoundError,
    InvalidUpdateError,
    AccessDeniedError,
    TransactionError,
    WriteConflictError,
    StorageError,
    TransactionStateError,
    LinkIntegrityError,
    DanglingEdgeError,
    UnexpectedCycleError,
)

__all__ = [
    # Taxonomy
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorCode",
    "ToodleError",
    # Exceptions
    "ToodleException",
    "ItemNotFoundError",
    "ListNotFoundError",
    "InvalidUpdateError",
    "AccessDeniedError",
    "TransactionError",
    "WriteConflictError",
    "StorageError",
    "TransactionStateError",
    "LinkIntegrityError",
    "DanglingEdgeError",
    "UnexpectedCycleError",
]
