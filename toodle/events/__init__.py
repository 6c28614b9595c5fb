"""
Toodle Change Feed

Change events produced by committed transactions and their delivery
over per-scope channels.
"""

from .events import ChangeEvent
from .bus import (
    ChangeEventBus,
    Subscription,
    EventHandler,
    items_channel,
    user_channel,
    lists_channel,
)

__all__ = [
    "ChangeEvent",
    "ChangeEventBus",
    "Subscription",
    "EventHandler",
    "items_channel",
    "user_channel",
    "lists_channel",
]
