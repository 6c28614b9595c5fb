"""
reconciler/reconciler.py - Applies change events to a client cache

The reconciler subscribes to the user's channels (and the channel of
any list being viewed) and keeps a QueryCache consistent with server
state:

- inserts are placed by position, updates replace and re-sort,
  deletes remove and leave a tombstone
- redelivered and out-of-date events are ignored by event id and
  per-entity version (updated_at when no version is present)
- optimistic local edits win per field until a newer server write lands
- status changes are classified as user-initiated or propagated, from
  the event's cause when present, else by a recency heuristic
- derived views are invalidated precisely; a malformed event is logged
  and skipped, never raised
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set, TYPE_CHECKING
import logging
import threading

from toodle.bootstrap.config import ReconcilerConfig
from toodle.core.enums import ChangeType, EntityType, EventCause
from toodle.core.models import parse_timestamp, utcnow
from toodle.events.bus import items_channel, lists_channel, user_channel
from toodle.events.events import ChangeEvent
from .cache import CacheKey, QueryCache, entity_key

if TYPE_CHECKING:
    from toodle.events.bus import ChangeEventBus, Subscription

logger = logging.getLogger("reconciler")


class ReconcileOutcome(str, Enum):
    """What happened to one delivered event."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    MALFORMED = "malformed"


class NotificationKind(str, Enum):
    """User-facing notifications raised while reconciling."""
    ITEM_ADDED = "item-added"
    ITEM_COMPLETED = "item-completed"
    STATUS_PROPAGATED = "status-propagated"
    LINKS_UPDATED = "links-updated"
    ITEM_DELETED = "item-deleted"
    LIST_UPDATED = "list-updated"
    LIST_DELETED = "list-deleted"


@dataclass
class Notification:
    kind: NotificationKind
    entity_id: str
    list_id: Optional[str] = None
    message: str = ""
    event_id: Optional[str] = None


LINK_VIEWS = ("children", "parents", "link-summary")


def _links(record: Optional[Dict[str, Any]]) -> Dict[str, Set[str]]:
    linked = (record or {}).get("linked_items") or {}
    return {
        kind: set(linked.get(kind) or [])
        for kind in ("children", "parents", "bidirectional")
    }


def _position(record: Dict[str, Any]):
    return record.get("position") or 0


class CacheReconciler:
    """
    Client-side consumer of the change feed for one user.

    Usage:
        reconciler = CacheReconciler(user_id)
        reconciler.seed_items(list_id, items)
        reconciler.attach(bus, list_id=list_id)
        reconciler.on_notification(toast)
    """

    def __init__(
        self,
        user_id: str,
        cache: Optional[QueryCache] = None,
        config: Optional[ReconcilerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.user_id = user_id
        self.cache = cache or QueryCache()
        self.config = config or ReconcilerConfig()
        self._clock = clock or utcnow

        self._seen: Deque[str] = deque()
        self._seen_ids: Set[str] = set()

        # Bounded to max_tracked_entities each, least recently written first out
        self._versions: Dict[str, int] = {}
        self._stamps: Dict[str, datetime] = {}
        self._tombstones: Dict[str, int] = {}

        # item id -> field -> local edit time; item id -> record before edits
        self._optimistic: Dict[str, Dict[str, datetime]] = {}
        self._snapshots: Dict[str, Dict[str, Any]] = {}

        self._bus: Optional["ChangeEventBus"] = None
        self._subscriptions: Dict[str, "Subscription"] = {}
        self._callbacks: List[Callable[[Notification], None]] = []
        self._lock = threading.RLock()

        self.stats: Dict[str, int] = {outcome.value: 0 for outcome in ReconcileOutcome}

    # =========================================================================
    # Subscription lifecycle
    # =========================================================================

    def attach(self, bus: "ChangeEventBus", list_id: Optional[str] = None) -> None:
        """Subscribe to the user's channels and optionally one list channel."""
        self._bus = bus
        for channel in (user_channel(self.user_id), lists_channel(self.user_id)):
            self._subscribe(channel)
        if list_id:
            self.watch_list(list_id)

    def watch_list(self, list_id: str) -> None:
        if self._bus is None:
            raise RuntimeError("Reconciler is not attached to a bus")
        self._subscribe(items_channel(list_id))

    def unwatch_list(self, list_id: str) -> bool:
        sub = self._subscriptions.pop(items_channel(list_id), None)
        return sub.close() if sub else False

    def detach(self) -> None:
        for sub in self._subscriptions.values():
            sub.close()
        self._subscriptions.clear()
        self._bus = None

    def _subscribe(self, channel: str) -> None:
        if channel not in self._subscriptions:
            self._subscriptions[channel] = self._bus.subscribe(channel, self.apply)

    @property
    def channels(self) -> List[str]:
        return sorted(self._subscriptions)

    def on_notification(self, callback: Callable[[Notification], None]) -> None:
        self._callbacks.append(callback)

    # =========================================================================
    # Seeding and reads
    # =========================================================================

    def seed_lists(self, lists: List[Dict[str, Any]]) -> None:
        with self._lock:
            self.cache.set(("lists",), sorted(lists, key=lambda l: l.get("title", "")))
            for record in lists:
                self._remember(record["id"], record)

    def seed_list(self, todo_list: Dict[str, Any]) -> None:
        with self._lock:
            self.cache.set(("list", todo_list["id"]), dict(todo_list))
            self._remember(todo_list["id"], todo_list)

    def seed_items(self, list_id: str, items: List[Dict[str, Any]]) -> None:
        with self._lock:
            ordered = sorted((dict(i) for i in items), key=_position)
            self.cache.set(
                ("items", list_id), ordered,
                depends_on=[entity_key("item", i["id"]) for i in ordered],
            )
            for record in ordered:
                self._remember(record["id"], record)

    def seed_links(self, item_id: str, view: str, linked: List[Dict[str, Any]]) -> None:
        """Cache one link view of an item (children, parents or link-summary)."""
        with self._lock:
            deps = [entity_key("item", item_id)]
            deps.extend(entity_key("item", row["id"]) for row in linked if "id" in row)
            self.cache.set(("item", item_id, view), list(linked), depends_on=deps)

    def get_items(self, list_id: str) -> Optional[List[Dict[str, Any]]]:
        return self.cache.get(("items", list_id))

    def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._find_local(item_id)

    # =========================================================================
    # Optimistic updates
    # =========================================================================

    def apply_optimistic(self, item_id: str, changes: Dict[str, Any]) -> bool:
        """Apply a local edit ahead of the server. Returns False if the item is not cached."""
        with self._lock:
            local = self._find_local(item_id)
            if local is None:
                return False
            self._snapshots.setdefault(item_id, dict(local))
            stamps = self._optimistic.setdefault(item_id, {})
            now = self._clock()
            record = dict(local)
            for name, value in changes.items():
                record[name] = value
                stamps[name] = now
            self._replace_local(record, local.get("list_id"))
            logger.debug(f"Optimistic update of {item_id}: {sorted(changes)}")
            return True

    def rollback_optimistic(self, item_id: str) -> bool:
        """Restore the record as it was before local edits."""
        with self._lock:
            snapshot = self._snapshots.pop(item_id, None)
            self._optimistic.pop(item_id, None)
            if snapshot is None:
                return False
            current = self._find_local(item_id)
            self._replace_local(snapshot, current.get("list_id") if current else None)
            logger.debug(f"Rolled back optimistic update of {item_id}")
            return True

    # =========================================================================
    # Event application
    # =========================================================================

    def apply(self, event: Any) -> ReconcileOutcome:
        """Apply one delivered event. Never raises."""
        try:
            with self._lock:
                outcome = self._apply(event)
        except Exception as e:
            logger.error(f"Reconciler skipped event after error: {e}")
            outcome = ReconcileOutcome.MALFORMED
        self.stats[outcome.value] += 1
        return outcome

    def _apply(self, event: Any) -> ReconcileOutcome:
        if isinstance(event, dict):
            try:
                event = ChangeEvent.from_dict(event)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Malformed change event skipped: {e}")
                return ReconcileOutcome.MALFORMED
        if not isinstance(event, ChangeEvent):
            logger.warning(f"Unexpected event type skipped: {type(event).__name__}")
            return ReconcileOutcome.MALFORMED

        if event.event_type != ChangeType.DELETE and not self._valid_after(event):
            logger.warning(f"Event {event.event_id} has no usable after-state, skipped")
            return ReconcileOutcome.MALFORMED

        if event.event_id in self._seen_ids:
            logger.debug(f"Duplicate event {event.event_id} ignored")
            return ReconcileOutcome.DUPLICATE
        self._mark_seen(event.event_id)

        ordering = self._check_order(event)
        if ordering is not None:
            logger.debug(
                f"{ordering.value} {event.entity.value} event for {event.entity_id} "
                f"(v{event.version}) ignored"
            )
            return ordering

        if event.entity == EntityType.LIST:
            self._apply_list_event(event)
        else:
            self._apply_item_event(event)
        return ReconcileOutcome.APPLIED

    def _valid_after(self, event: ChangeEvent) -> bool:
        after = event.after
        if not after or "id" not in after:
            return False
        if event.entity == EntityType.ITEM and not after.get("list_id"):
            return False
        return True

    def _mark_seen(self, event_id: str) -> None:
        self._seen.append(event_id)
        self._seen_ids.add(event_id)
        while len(self._seen) > self.config.max_seen_events:
            self._seen_ids.discard(self._seen.popleft())

    def _check_order(self, event: ChangeEvent) -> Optional[ReconcileOutcome]:
        """STALE/DUPLICATE if a newer state of the entity is already known."""
        entity_id = event.entity_id
        tombstone = self._tombstones.get(entity_id)
        if tombstone is not None:
            if event.event_type == ChangeType.DELETE:
                return ReconcileOutcome.DUPLICATE
            if event.version is None or event.version <= tombstone:
                return ReconcileOutcome.STALE

        known = self._versions.get(entity_id)
        if event.version is not None and known is not None:
            if event.version == known:
                return ReconcileOutcome.DUPLICATE
            if event.version < known:
                return ReconcileOutcome.STALE
            return None

        stamp = parse_timestamp((event.record or {}).get("updated_at"))
        known_stamp = self._stamps.get(entity_id)
        if stamp is not None and known_stamp is not None and stamp < known_stamp:
            return ReconcileOutcome.STALE
        return None

    def _remember(self, entity_id: str, record: Dict[str, Any], version: Optional[int] = None) -> None:
        version = version if version is not None else record.get("version")
        if version is not None:
            self._track(self._versions, entity_id, version)
        stamp = parse_timestamp(record.get("updated_at"))
        if stamp is not None:
            self._track(self._stamps, entity_id, stamp)

    def _bury(self, entity_id: str, version: Optional[int]) -> None:
        """Replace what is known of a deleted entity with a tombstone."""
        known = self._versions.pop(entity_id, 0)
        self._stamps.pop(entity_id, None)
        self._track(self._tombstones, entity_id, version or known + 1)

    def _track(self, mapping: Dict[str, Any], entity_id: str, value: Any) -> None:
        mapping.pop(entity_id, None)
        mapping[entity_id] = value
        while len(mapping) > self.config.max_tracked_entities:
            mapping.pop(next(iter(mapping)))

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def _apply_item_event(self, event: ChangeEvent) -> None:
        item_id = event.entity_id
        local = self._find_local(item_id)
        prior = local if local is not None else event.before

        if event.event_type == ChangeType.DELETE:
            record = prior or {"id": item_id, "list_id": event.list_id}
            list_id = record.get("list_id") or event.list_id
            self._remove_local(item_id)
            self._bury(item_id, event.version)
            self._optimistic.pop(item_id, None)
            self._snapshots.pop(item_id, None)

            links = _links(record)
            if any(links.values()):
                self.cache.invalidate(("items",))
                self._invalidate_link_views(item_id, links["children"] | links["parents"] | links["bidirectional"])
            self._notify(NotificationKind.ITEM_DELETED, item_id, list_id, "Item deleted", event)
        else:
            after = self._merge_optimistic(item_id, dict(event.after))
            list_id = after["list_id"]
            if event.event_type == ChangeType.INSERT and local is None:
                self._insert_local(after)
            else:
                self._replace_local(after, prior.get("list_id") if prior else None)
            self._remember(item_id, after, event.version)

            self._classify_and_invalidate(event, prior, after)

        # Item collections were rewritten above and are current
        self.cache.invalidate(("list", list_id))
        self.cache.invalidate_dependents(
            entity_key("item", item_id), exclude=self._collection_keys()
        )

    def _classify_and_invalidate(
        self,
        event: ChangeEvent,
        prior: Optional[Dict[str, Any]],
        after: Dict[str, Any],
    ) -> None:
        item_id = event.entity_id
        list_id = after["list_id"]

        if event.event_type == ChangeType.INSERT:
            self._notify(NotificationKind.ITEM_ADDED, item_id, list_id, after.get("content", ""), event)

        before_links = _links(prior)
        after_links = _links(after)
        if prior is not None and before_links != after_links:
            touched = set()
            for kind in after_links:
                touched |= before_links[kind] ^ after_links[kind]
            self._invalidate_link_views(item_id, touched)
            self._notify(NotificationKind.LINKS_UPDATED, item_id, list_id, "Links updated", event)

        status_changed = (
            prior is not None
            and bool(prior.get("is_completed")) != bool(after.get("is_completed"))
        )
        if not status_changed:
            return

        cause = self.classify(event, prior)
        if cause == EventCause.PROPAGATED:
            # Propagation from here may have reached lists outside this view
            if after_links["children"]:
                self.cache.invalidate(("items",))
            state = "completed" if after.get("is_completed") else "reopened"
            self._notify(
                NotificationKind.STATUS_PROPAGATED, item_id, list_id,
                f"{after.get('content', '')} {state} by a linked item", event,
            )
        elif after.get("is_completed"):
            self._notify(NotificationKind.ITEM_COMPLETED, item_id, list_id, after.get("content", ""), event)

    def classify(self, event: ChangeEvent, prior: Optional[Dict[str, Any]] = None) -> EventCause:
        """
        User-initiated or propagated.

        The event's own cause is used when present. Otherwise a status
        change on an item that has a parent and was written within the
        recency window of now is taken as propagated.
        """
        if self.config.trust_event_cause and event.cause is not None:
            return event.cause

        after = event.after or {}
        if prior is None:
            prior = event.before
        if prior is None or bool(prior.get("is_completed")) == bool(after.get("is_completed")):
            return EventCause.USER
        if not _links(after)["parents"]:
            return EventCause.USER

        updated_at = parse_timestamp(after.get("updated_at"))
        if updated_at is None:
            return EventCause.USER
        window = timedelta(milliseconds=self.config.recency_window_ms)
        if abs(self._clock() - updated_at) <= window:
            return EventCause.PROPAGATED
        return EventCause.USER

    def _invalidate_link_views(self, item_id: str, neighbour_ids: Set[str]) -> None:
        for target in [item_id] + sorted(neighbour_ids):
            for view in LINK_VIEWS:
                self.cache.invalidate(("item", target, view))

    def _merge_optimistic(self, item_id: str, after: Dict[str, Any]) -> Dict[str, Any]:
        """Keep optimistic field values newer than the server write."""
        stamps = self._optimistic.get(item_id)
        if not stamps:
            return after

        server_stamp = parse_timestamp(after.get("updated_at"))
        local = self._find_local(item_id) or {}
        for name, stamp in list(stamps.items()):
            if server_stamp is not None and server_stamp >= stamp:
                del stamps[name]
            elif name in local:
                after[name] = local[name]

        if not stamps:
            self._optimistic.pop(item_id, None)
            self._snapshots.pop(item_id, None)
        return after

    # -------------------------------------------------------------------------
    # Lists
    # -------------------------------------------------------------------------

    def _apply_list_event(self, event: ChangeEvent) -> None:
        list_id = event.entity_id
        overview = self.cache.get(("lists",))

        if event.event_type == ChangeType.DELETE:
            self._bury(list_id, event.version)
            self.cache.remove(("list", list_id))
            self.cache.remove(("items", list_id))
            if overview is not None:
                self.cache.update(("lists",), [l for l in overview if l.get("id") != list_id])
            self._notify(NotificationKind.LIST_DELETED, list_id, list_id, "List deleted", event)
            return

        after = dict(event.after)
        self._remember(list_id, after, event.version)

        if overview is not None:
            rows = [l for l in overview if l.get("id") != list_id] + [after]
            self.cache.update(("lists",), sorted(rows, key=lambda l: l.get("title", "")))

        summary = self.cache.get(("list", list_id))
        if summary is not None:
            self.cache.update(("list", list_id), {**summary, **after})

        if event.event_type == ChangeType.UPDATE:
            self._notify(NotificationKind.LIST_UPDATED, list_id, list_id, after.get("title", ""), event)

    # -------------------------------------------------------------------------
    # Local collections
    # -------------------------------------------------------------------------

    def _collection_keys(self) -> List[CacheKey]:
        return [key for key in self.cache.keys(("items",)) if len(key) == 2]

    def _find_local(self, item_id: str) -> Optional[Dict[str, Any]]:
        for key in self._collection_keys():
            for record in self.cache.get(key) or []:
                if record.get("id") == item_id:
                    return dict(record)
        return None

    def _insert_local(self, record: Dict[str, Any]) -> None:
        key = ("items", record["list_id"])
        collection = self.cache.get(key)
        if collection is None:
            return
        rows = [r for r in collection if r.get("id") != record["id"]]
        index = len(rows)
        for i, row in enumerate(rows):
            if _position(row) > _position(record):
                index = i
                break
        rows.insert(index, record)
        self.cache.update(key, rows)
        self.cache.add_dependency(key, entity_key("item", record["id"]))

    def _replace_local(self, record: Dict[str, Any], prior_list_id: Optional[str]) -> None:
        list_id = record["list_id"]
        if prior_list_id and prior_list_id != list_id:
            self._remove_from(prior_list_id, record["id"])

        key = ("items", list_id)
        collection = self.cache.get(key)
        if collection is None:
            return
        rows = [r for r in collection if r.get("id") != record["id"]]
        rows.append(record)
        self.cache.update(key, sorted(rows, key=_position))
        self.cache.add_dependency(key, entity_key("item", record["id"]))

    def _remove_local(self, item_id: str) -> None:
        for key in self._collection_keys():
            self._remove_from(key[1], item_id)

    def _remove_from(self, list_id: str, item_id: str) -> None:
        key = ("items", list_id)
        collection = self.cache.get(key)
        if collection is None:
            return
        rows = [r for r in collection if r.get("id") != item_id]
        if len(rows) != len(collection):
            self.cache.update(key, rows)
        self.cache.remove_dependency(key, entity_key("item", item_id))

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def _notify(
        self,
        kind: NotificationKind,
        entity_id: str,
        list_id: Optional[str],
        message: str,
        event: ChangeEvent,
    ) -> None:
        notification = Notification(
            kind=kind,
            entity_id=entity_id,
            list_id=list_id,
            message=message,
            event_id=event.event_id,
        )
        for callback in self._callbacks:
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification callback failed for {kind.value}: {e}")
