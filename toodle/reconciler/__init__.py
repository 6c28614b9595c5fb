"""
Toodle Change-Event Reconciliation

Keeps a client-side query cache consistent with the change feed.
"""

from .cache import QueryCache, CacheEntry, CacheKey, entity_key
from .reconciler import (
    CacheReconciler,
    ReconcileOutcome,
    Notification,
    NotificationKind,
)

__all__ = [
    # Cache
    "QueryCache",
    "CacheEntry",
    "CacheKey",
    "entity_key",
    # Reconciler
    "CacheReconciler",
    "ReconcileOutcome",
    "Notification",
    "NotificationKind",
]
