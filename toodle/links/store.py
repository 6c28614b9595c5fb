"""
links/store.py - Durable record of lists, shares and item link sets

The store owns no business rules. It keeps committed state and, while a
write transaction is open, a tentative overlay visible only to the
writing thread.

Isolation:
- one writer at a time, serialized by a re-entrant write lock
- readers on other threads see the last committed state and never block
- commit swaps in new state maps in one assignment, so a reader never
  observes half of a transaction
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, List, NamedTuple, Optional, Set, Tuple
import logging
import threading

from toodle.core.enums import ChangeType, EntityType, EventCause, ShareRole
from toodle.core.models import Item, Share, TodoList, utcnow
from toodle.errors import TransactionStateError
from toodle.events.events import ChangeEvent

logger = logging.getLogger("links.store")


class Committed(NamedTuple):
    """Committed maps. Replaced as a whole and read in one assignment."""
    items: Dict[str, Item]
    lists: Dict[str, TodoList]
    shares: Dict[str, Dict[str, Share]]


@dataclass
class _PendingChange:
    """First-seen committed state and cause of an entity touched in a transaction."""
    before: Optional[object]
    cause: EventCause


# =============================================================================
# READ VIEW
# =============================================================================

class StoreView:
    """
    Read access to one consistent state.

    Committed maps are never mutated after publication, so a view keeps
    seeing the snapshot it was created from. Inside a transaction the
    writer's view also consults the tentative overlay (None = deleted).
    """

    def __init__(
        self,
        items: Dict[str, Item],
        lists: Dict[str, TodoList],
        shares: Dict[str, Dict[str, Share]],
        overlay_items: Optional[Dict[str, Optional[Item]]] = None,
        overlay_lists: Optional[Dict[str, Optional[TodoList]]] = None,
    ):
        self._items = items
        self._lists = lists
        self._shares = shares
        # Overlays are shared with the store so the writer's view stays live
        self._is_tentative = overlay_items is not None
        self._overlay_items = overlay_items if overlay_items is not None else {}
        self._overlay_lists = overlay_lists if overlay_lists is not None else {}

    @property
    def is_tentative(self) -> bool:
        return self._is_tentative

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def _raw_item(self, item_id: str) -> Optional[Item]:
        if item_id in self._overlay_items:
            return self._overlay_items[item_id]
        return self._items.get(item_id)

    def has_item(self, item_id: str) -> bool:
        return self._raw_item(item_id) is not None

    def get_item(self, item_id: str) -> Optional[Item]:
        """Get a private copy of an item."""
        item = self._raw_item(item_id)
        return item.copy() if item else None

    def children_of(self, item_id: str) -> Optional[Set[str]]:
        """Child ids of an item, or None if the item does not exist."""
        item = self._raw_item(item_id)
        return set(item.linked_items.children) if item else None

    def parents_of(self, item_id: str) -> Optional[Set[str]]:
        item = self._raw_item(item_id)
        return set(item.linked_items.parents) if item else None

    def item_ids(self) -> Set[str]:
        ids = set(self._items.keys())
        for item_id, item in self._overlay_items.items():
            if item is None:
                ids.discard(item_id)
            else:
                ids.add(item_id)
        return ids

    def iter_items(self) -> Iterator[Item]:
        """Iterate copies of every item."""
        for item_id in sorted(self.item_ids()):
            item = self.get_item(item_id)
            if item:
                yield item

    def items_in_list(self, list_id: str) -> List[Item]:
        """Items of a list ordered by position."""
        items = [i for i in self.iter_items() if i.list_id == list_id]
        return sorted(items, key=lambda i: (i.position, i.created_at))

    def referencing(self, item_id: str) -> List[Item]:
        """Items whose relation sets mention item_id."""
        return [
            i for i in self.iter_items()
            if i.id != item_id and i.linked_items.contains(item_id)
        ]

    def item_count(self) -> int:
        return len(self.item_ids())

    # -------------------------------------------------------------------------
    # Lists and visibility
    # -------------------------------------------------------------------------

    def get_list(self, list_id: str) -> Optional[TodoList]:
        if list_id in self._overlay_lists:
            todo_list = self._overlay_lists[list_id]
        else:
            todo_list = self._lists.get(list_id)
        return todo_list.copy() if todo_list else None

    def list_ids(self) -> Set[str]:
        ids = set(self._lists.keys())
        for list_id, todo_list in self._overlay_lists.items():
            if todo_list is None:
                ids.discard(list_id)
            else:
                ids.add(list_id)
        return ids

    def is_visible(self, list_id: str, user_id: Optional[str]) -> bool:
        """
        True when the user owns the list or holds an active share.

        A None user is the system context and sees everything.
        """
        todo_list = self.get_list(list_id)
        if todo_list is None:
            return False
        if user_id is None or todo_list.user_id == user_id:
            return True
        share = self._shares.get(list_id, {}).get(user_id)
        return share is not None and share.is_active()

    def can_edit(self, list_id: str, user_id: Optional[str]) -> bool:
        """True for the owner, an active edit share, or the system context."""
        todo_list = self.get_list(list_id)
        if todo_list is None:
            return False
        if user_id is None or todo_list.user_id == user_id:
            return True
        share = self._shares.get(list_id, {}).get(user_id)
        return share is not None and share.is_active() and share.role == ShareRole.EDIT

    def list_audience(self, list_id: str) -> Set[str]:
        """Users who can see a list: the owner plus active sharees."""
        todo_list = self.get_list(list_id)
        if todo_list is None:
            return set()
        audience = {todo_list.user_id}
        for share in self._shares.get(list_id, {}).values():
            if share.is_active():
                audience.add(share.user_id)
        return audience

    def lists_for_user(self, user_id: str) -> List[TodoList]:
        """Owned and shared lists, ordered by title."""
        lists = [
            self.get_list(list_id) for list_id in self.list_ids()
            if self.is_visible(list_id, user_id)
        ]
        return sorted((l for l in lists if l), key=lambda l: l.title)


# =============================================================================
# STORE
# =============================================================================

class LinkStore:
    """
    In-memory durable record keyed by id.

    Writes are only accepted from the thread that opened the current
    tentative transaction; use TransactionManager rather than calling
    begin/commit/rollback_tentative directly.
    """

    def __init__(self):
        self._committed = Committed(items={}, lists={}, shares={})

        self._lock = threading.RLock()

        # Tentative state of the open transaction
        self._writer: Optional[int] = None
        self._transaction_id: Optional[str] = None
        self._started_at: Optional[datetime] = None
        self._overlay_items: Dict[str, Optional[Item]] = {}
        self._overlay_lists: Dict[str, Optional[TodoList]] = {}
        self._changes: Dict[Tuple[EntityType, str], _PendingChange] = {}

    # =========================================================================
    # Locking and tentative mode
    # =========================================================================

    def acquire_write(self, timeout: float = -1) -> bool:
        """Acquire the write lock. Returns False on timeout."""
        return self._lock.acquire(timeout=timeout)

    def release_write(self) -> None:
        self._lock.release()

    @property
    def in_transaction(self) -> bool:
        return self._writer is not None

    @property
    def transaction_id(self) -> Optional[str]:
        return self._transaction_id

    def owns_transaction(self) -> bool:
        """True when the calling thread holds the open transaction."""
        return self._writer is not None and self._writer == threading.get_ident()

    def begin_tentative(self, transaction_id: str) -> None:
        """Enter tentative mode. Caller must hold the write lock."""
        if self._writer is not None:
            raise TransactionStateError(
                f"Transaction {self._transaction_id} already open",
                transaction_id=transaction_id,
            )
        self._writer = threading.get_ident()
        self._transaction_id = transaction_id
        self._started_at = utcnow()
        logger.debug(f"Tentative mode entered for {transaction_id}")

    def commit_tentative(self) -> List[ChangeEvent]:
        """
        Publish tentative writes as committed state.

        Returns one coalesced event per touched entity, in first-touch order.
        """
        self._require_writer("commit")

        committed = self._committed
        items = dict(committed.items)
        lists = dict(committed.lists)
        events: List[ChangeEvent] = []

        for (entity, entity_id), pending in self._changes.items():
            if entity == EntityType.ITEM:
                after = self._overlay_items.get(entity_id)
                if after is None:
                    items.pop(entity_id, None)
                else:
                    items[entity_id] = after
            else:
                after = self._overlay_lists.get(entity_id)
                if after is None:
                    lists.pop(entity_id, None)
                else:
                    lists[entity_id] = after

            event = self._build_event(entity, entity_id, pending, after)
            if event is not None:
                events.append(event)

        self._committed = Committed(items=items, lists=lists, shares=committed.shares)

        logger.debug(
            f"Committed {self._transaction_id}: {len(events)} change(s)"
        )
        self._clear_tentative()
        return events

    def rollback_tentative(self) -> None:
        """Discard tentative writes."""
        self._require_writer("rollback")
        logger.debug(
            f"Rolled back {self._transaction_id}: "
            f"{len(self._changes)} pending change(s) discarded"
        )
        self._clear_tentative()

    def _clear_tentative(self) -> None:
        self._writer = None
        self._transaction_id = None
        self._started_at = None
        self._overlay_items = {}
        self._overlay_lists = {}
        self._changes = {}

    def _require_writer(self, operation: str) -> None:
        if not self.owns_transaction():
            raise TransactionStateError(
                f"Cannot {operation}: no transaction open on this thread"
            )

    def _build_event(
        self,
        entity: EntityType,
        entity_id: str,
        pending: _PendingChange,
        after,
    ) -> Optional[ChangeEvent]:
        before = pending.before
        if before is None and after is None:
            return None

        if before is None:
            event_type = ChangeType.INSERT
        elif after is None:
            event_type = ChangeType.DELETE
        else:
            event_type = ChangeType.UPDATE

        record = after if after is not None else before
        if entity == EntityType.ITEM:
            list_id = record.list_id
        else:
            list_id = record.id

        version = after.version if after is not None else before.version + 1

        return ChangeEvent(
            event_type=event_type,
            entity=entity,
            entity_id=entity_id,
            list_id=list_id,
            before=before.to_dict() if before is not None else None,
            after=after.to_dict() if after is not None else None,
            cause=pending.cause,
            version=version,
            transaction_id=self._transaction_id,
            timestamp=self._started_at or utcnow(),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def view(self) -> StoreView:
        """
        View for the caller.

        The writing thread sees its tentative state; everyone else sees
        the last committed state.
        """
        committed = self._committed
        if self.owns_transaction():
            return StoreView(
                committed.items, committed.lists, committed.shares,
                self._overlay_items, self._overlay_lists,
            )
        return StoreView(committed.items, committed.lists, committed.shares)

    def snapshot(self) -> Committed:
        """The committed maps as one value."""
        return self._committed

    def get_item(self, item_id: str) -> Optional[Item]:
        return self.view().get_item(item_id)

    def get_list(self, list_id: str) -> Optional[TodoList]:
        return self.view().get_list(list_id)

    def items_in_list(self, list_id: str) -> List[Item]:
        return self.view().items_in_list(list_id)

    def is_visible(self, list_id: str, user_id: Optional[str]) -> bool:
        return self.view().is_visible(list_id, user_id)

    def list_audience(self, list_id: str) -> Set[str]:
        return self.view().list_audience(list_id)

    # =========================================================================
    # Writes (tentative)
    # =========================================================================

    def _record_change(self, entity: EntityType, entity_id: str, before, cause: EventCause) -> _PendingChange:
        key = (entity, entity_id)
        pending = self._changes.get(key)
        if pending is None:
            pending = _PendingChange(before=before, cause=cause)
            self._changes[key] = pending
        elif cause == EventCause.USER:
            pending.cause = EventCause.USER
        return pending

    def put_item(self, item: Item, cause: EventCause = EventCause.USER) -> Item:
        """Write an item. Version and updated_at are assigned here."""
        self._require_writer("write item")

        pending = self._record_change(
            EntityType.ITEM, item.id, self._committed.items.get(item.id), cause
        )
        stored = item.copy()
        stored.version = (pending.before.version if pending.before else 0) + 1
        stored.updated_at = self._started_at
        self._overlay_items[item.id] = stored
        return stored.copy()

    def delete_item_record(self, item_id: str, cause: EventCause = EventCause.USER) -> None:
        """Delete an item record. References to it are the caller's concern."""
        self._require_writer("delete item")
        self._record_change(EntityType.ITEM, item_id, self._committed.items.get(item_id), cause)
        self._overlay_items[item_id] = None

    def put_list(self, todo_list: TodoList, cause: EventCause = EventCause.USER) -> TodoList:
        self._require_writer("write list")

        pending = self._record_change(
            EntityType.LIST, todo_list.id, self._committed.lists.get(todo_list.id), cause
        )
        stored = todo_list.copy()
        stored.version = (pending.before.version if pending.before else 0) + 1
        stored.updated_at = self._started_at
        self._overlay_lists[todo_list.id] = stored
        return stored.copy()

    def delete_list_record(self, list_id: str, cause: EventCause = EventCause.USER) -> None:
        self._require_writer("delete list")
        self._record_change(EntityType.LIST, list_id, self._committed.lists.get(list_id), cause)
        self._overlay_lists[list_id] = None

    # =========================================================================
    # Shares
    # =========================================================================

    def add_share(self, share: Share) -> None:
        """Grant access to a list. Shares change visibility only and emit no item events."""
        with self._lock:
            committed = self._committed
            shares = {k: dict(v) for k, v in committed.shares.items()}
            shares.setdefault(share.list_id, {})[share.user_id] = share
            self._committed = committed._replace(shares=shares)
        logger.info(f"List {share.list_id} shared with {share.user_id} ({share.role.value})")

    def remove_share(self, list_id: str, user_id: str) -> bool:
        with self._lock:
            committed = self._committed
            if user_id not in committed.shares.get(list_id, {}):
                return False
            shares = {k: dict(v) for k, v in committed.shares.items()}
            del shares[list_id][user_id]
            self._committed = committed._replace(shares=shares)
        logger.info(f"Share of list {list_id} with {user_id} removed")
        return True
