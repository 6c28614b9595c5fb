"""
events/bus.py - Change-feed delivery

Typed per-scope channels instead of a process-wide broadcast:

    items:{list_id}   item events of one list
    user:{user_id}    item events of every list the user can see
    lists:{user_id}   list events of every list the user can see

Each subscription is bound to one channel and delivered in publish
order. Handler errors are logged and never reach the publisher.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set
import logging
import threading

from toodle.core.enums import EntityType
from .events import ChangeEvent

logger = logging.getLogger("events.bus")


# Type alias for event handlers
EventHandler = Callable[[ChangeEvent], None]

# Resolves the users who can see a list
AudienceResolver = Callable[[str], Set[str]]


def items_channel(list_id: str) -> str:
    return f"items:{list_id}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def lists_channel(user_id: str) -> str:
    return f"lists:{user_id}"


@dataclass
class Subscription:
    """
    A handler bound to one channel.

    Closing a subscription stops delivery immediately; events already
    being delivered to other subscribers are unaffected.
    """
    channel: str
    handler: EventHandler
    subscription_id: str = ""
    active: bool = True
    _bus: Optional["ChangeEventBus"] = field(default=None, repr=False)

    def close(self) -> bool:
        if self._bus is None:
            return False
        return self._bus.unsubscribe(self)


class ChangeEventBus:
    """
    Instance-scoped change feed.

    Usage:
        bus = ChangeEventBus(audience_resolver=store.list_audience)
        sub = bus.subscribe(items_channel(list_id), handler)
        bus.publish(event)
        sub.close()
    """

    def __init__(
        self,
        audience_resolver: Optional[AudienceResolver] = None,
        max_history: int = 100,
    ):
        self._audience_resolver = audience_resolver
        self._max_history = max_history

        # channel -> subscriptions
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._history: List[ChangeEvent] = []
        self._subscription_counter = 0
        self._paused = False
        self._lock = threading.RLock()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, channel: str, handler: EventHandler) -> Subscription:
        """Subscribe a handler to one channel."""
        with self._lock:
            self._subscription_counter += 1
            sub = Subscription(
                channel=channel,
                handler=handler,
                subscription_id=f"sub_{self._subscription_counter}",
                _bus=self,
            )
            self._subscriptions.setdefault(channel, []).append(sub)
        logger.debug(f"Subscribed {sub.subscription_id} to {channel}")
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            subs = self._subscriptions.get(subscription.channel, [])
            if subscription not in subs:
                return False
            subs.remove(subscription)
            if not subs:
                del self._subscriptions[subscription.channel]
            subscription.active = False
        logger.debug(f"Unsubscribed {subscription.subscription_id} from {subscription.channel}")
        return True

    def subscriber_count(self, channel: Optional[str] = None) -> int:
        with self._lock:
            if channel is not None:
                return len(self._subscriptions.get(channel, []))
            return sum(len(subs) for subs in self._subscriptions.values())

    # =========================================================================
    # Publishing
    # =========================================================================

    def channels_for(self, event: ChangeEvent) -> List[str]:
        """Channels an event is routed to."""
        audience: Set[str] = set()
        if event.list_id and self._audience_resolver is not None:
            audience = set(self._audience_resolver(event.list_id))

        # Deleted lists no longer resolve; fall back to the recorded owner
        record = event.record or {}
        if event.entity == EntityType.LIST and record.get("user_id"):
            audience.add(record["user_id"])

        if event.entity == EntityType.ITEM:
            channels = [items_channel(event.list_id)] if event.list_id else []
            channels.extend(user_channel(uid) for uid in sorted(audience))
        else:
            channels = [lists_channel(uid) for uid in sorted(audience)]
        return channels

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every subscription on its channels.

        Returns the number of successful deliveries.
        """
        if self._paused:
            logger.debug(f"Bus paused, dropping {event.event_type.value} {event.entity_id}")
            return 0

        channels = self.channels_for(event)
        with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]
            targets = [
                sub for channel in channels
                for sub in list(self._subscriptions.get(channel, []))
            ]

        logger.debug(
            f"Publishing {event.entity.value} {event.event_type.value} "
            f"{event.entity_id} (v{event.version}) to {len(targets)} subscriber(s)"
        )

        delivered = 0
        for sub in targets:
            if not sub.active:
                continue
            try:
                sub.handler(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Handler {sub.subscription_id} failed on {sub.channel}: {e}")
        return delivered

    def publish_many(self, events: List[ChangeEvent]) -> int:
        """Publish events in order."""
        return sum(self.publish(event) for event in events)

    def pause(self) -> None:
        """Pause delivery (events are dropped)."""
        self._paused = True
        logger.debug("ChangeEventBus paused")

    def resume(self) -> None:
        self._paused = False
        logger.debug("ChangeEventBus resumed")

    @property
    def is_paused(self) -> bool:
        return self._paused

    def get_history(self, limit: int = 20) -> List[ChangeEvent]:
        with self._lock:
            return self._history[-limit:]

    def clear_history(self) -> None:
        with self._lock:
            self._history = []
