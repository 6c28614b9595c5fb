"""
reconciler/cache.py - Client-side query cache

Cached views are keyed by tuples, e.g.

    ("lists",)                      list overview of the user
    ("list", list_id)               one list with its counts
    ("items", list_id)              items of one list, ordered by position
    ("item", item_id, "children")   link views of one item

Invalidation either targets a key prefix or follows explicit dependency
edges from an entity (("entity", "item", item_id)) to the views derived
from it. Invalidated views keep their value and are flagged stale.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Tuple
import logging

from toodle.core.models import utcnow

logger = logging.getLogger("reconciler.cache")


CacheKey = Tuple[str, ...]


def entity_key(entity: str, entity_id: str) -> CacheKey:
    return ("entity", entity, entity_id)


@dataclass
class CacheEntry:
    """A cached view."""
    key: CacheKey
    value: Any
    stale: bool = False
    depends_on: Set[CacheKey] = field(default_factory=set)
    updated_at: datetime = field(default_factory=utcnow)


class QueryCache:
    """Keyed view cache with prefix and dependency-edge invalidation."""

    def __init__(self, max_log: int = 500):
        self._entries: Dict[CacheKey, CacheEntry] = {}

        # entity key -> view keys derived from it
        self._dependents: Dict[CacheKey, Set[CacheKey]] = {}

        # Recent invalidation requests, newest last
        self.invalidation_log: Deque[CacheKey] = deque(maxlen=max_log)

    # =========================================================================
    # Read / write
    # =========================================================================

    def set(self, key: CacheKey, value: Any, depends_on: Optional[Iterable[CacheKey]] = None) -> None:
        """Store a fresh view, replacing any previous entry and its edges."""
        self._unlink(key)
        deps = set(depends_on or [])
        self._entries[key] = CacheEntry(key=key, value=value, depends_on=deps)
        for dep in deps:
            self._dependents.setdefault(dep, set()).add(key)

    def update(self, key: CacheKey, value: Any) -> bool:
        """Replace a view's value, keeping its dependencies and stale flag."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.value = value
        entry.updated_at = utcnow()
        return True

    def get(self, key: CacheKey, default: Any = None) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry else default

    def has(self, key: CacheKey) -> bool:
        return key in self._entries

    def is_stale(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry.stale if entry else False

    def keys(self, prefix: CacheKey = ()) -> List[CacheKey]:
        return [k for k in self._entries if k[:len(prefix)] == prefix]

    def remove(self, key: CacheKey) -> bool:
        if key not in self._entries:
            return False
        self._unlink(key)
        del self._entries[key]
        logger.debug(f"Removed {key}")
        return True

    def remove_prefix(self, prefix: CacheKey) -> int:
        keys = self.keys(prefix)
        for key in keys:
            self.remove(key)
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
        self._dependents.clear()

    def add_dependency(self, key: CacheKey, entity: CacheKey) -> bool:
        """Declare that a cached view derives from an entity."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.depends_on.add(entity)
        self._dependents.setdefault(entity, set()).add(key)
        return True

    def remove_dependency(self, key: CacheKey, entity: CacheKey) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.depends_on.discard(entity)
        views = self._dependents.get(entity)
        if views:
            views.discard(key)
            if not views:
                del self._dependents[entity]

    def _unlink(self, key: CacheKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        for dep in entry.depends_on:
            views = self._dependents.get(dep)
            if views:
                views.discard(key)
                if not views:
                    del self._dependents[dep]

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(self, prefix: CacheKey) -> List[CacheKey]:
        """Mark every view under a key prefix stale."""
        self.invalidation_log.append(prefix)
        keys = self.keys(prefix)
        for key in keys:
            self._entries[key].stale = True
        if keys:
            logger.debug(f"Invalidated {len(keys)} view(s) under {prefix}")
        return keys

    def invalidate_dependents(self, entity: CacheKey, exclude: Iterable[CacheKey] = ()) -> List[CacheKey]:
        """
        Mark every view derived from an entity stale.

        Views in exclude were already brought up to date by the caller
        and keep their flag.
        """
        self.invalidation_log.append(entity)
        keys = sorted(self._dependents.get(entity, set()) - set(exclude))
        for key in keys:
            if key in self._entries:
                self._entries[key].stale = True
        if keys:
            logger.debug(f"Invalidated {len(keys)} view(s) depending on {entity}")
        return keys

    def dependents_of(self, entity: CacheKey) -> Set[CacheKey]:
        return set(self._dependents.get(entity, set()))

    def was_invalidated(self, key: CacheKey) -> bool:
        """True if an invalidation since the last reset covered key."""
        return any(key[:len(prefix)] == prefix for prefix in self.invalidation_log)

    def reset_log(self) -> None:
        self.invalidation_log.clear()
