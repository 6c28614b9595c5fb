"""
Toodle Transactions

Atomic write transactions over the link store.
"""

from .schemas import (
    Transaction,
    TransactionStatus,
)
from .manager import TransactionManager

__all__ = [
    "Transaction",
    "TransactionStatus",
    "TransactionManager",
]
