"""
Unit tests for ChangeEvent and ChangeEventBus.

Tests channel routing, subscription lifetime, pause/resume and history.
"""

import pytest
from unittest.mock import Mock

from toodle.core.enums import ChangeType, EntityType, EventCause
from toodle.events import (
    ChangeEvent,
    ChangeEventBus,
    items_channel,
    lists_channel,
    user_channel,
)


def item_event(list_id="l1", item_id="i1", **kwargs):
    return ChangeEvent(
        event_type=kwargs.pop("event_type", ChangeType.UPDATE),
        entity=EntityType.ITEM,
        entity_id=item_id,
        list_id=list_id,
        after={"id": item_id, "list_id": list_id},
        **kwargs,
    )


def audience(list_id):
    return {"l1": {"alice", "bob"}, "l2": {"carol"}}.get(list_id, set())


class TestChangeEvent:
    """Tests for the event record."""

    def test_record_prefers_after(self):
        event = ChangeEvent(
            event_type=ChangeType.UPDATE,
            entity=EntityType.ITEM,
            entity_id="i1",
            before={"id": "i1", "content": "old"},
            after={"id": "i1", "content": "new"},
        )
        assert event.record["content"] == "new"

    def test_from_dict_camel_case(self):
        """Wire payloads may use eventType."""
        event = ChangeEvent.from_dict({
            "eventType": "insert",
            "after": {"id": "i1", "list_id": "l1", "version": 3},
        })
        assert event.event_type == ChangeType.INSERT
        assert event.entity_id == "i1"
        assert event.list_id == "l1"
        assert event.version == 3
        assert event.cause is None
        assert event.event_id

    def test_from_dict_list_event(self):
        event = ChangeEvent.from_dict({
            "event_type": "delete",
            "entity": "list",
            "before": {"id": "l1", "user_id": "alice"},
            "cause": "user",
        })
        assert event.entity == EntityType.LIST
        assert event.list_id == "l1"
        assert event.cause == EventCause.USER

    @pytest.mark.parametrize("payload", [
        {},
        {"event_type": "explode", "after": {"id": "i1"}},
        {"event_type": "update", "after": "not a dict"},
        {"event_type": "update"},
    ])
    def test_from_dict_malformed(self, payload):
        with pytest.raises((KeyError, ValueError, TypeError)):
            ChangeEvent.from_dict(payload)

    def test_to_dict(self):
        data = item_event(cause=EventCause.PROPAGATED, version=2).to_dict()
        assert data["event_type"] == "update"
        assert data["cause"] == "propagated"
        assert data["version"] == 2


class TestRouting:
    """Tests for channel selection."""

    def test_item_event_channels(self):
        bus = ChangeEventBus(audience_resolver=audience)
        assert bus.channels_for(item_event()) == [
            items_channel("l1"),
            user_channel("alice"),
            user_channel("bob"),
        ]

    def test_item_event_without_resolver(self):
        bus = ChangeEventBus()
        assert bus.channels_for(item_event()) == [items_channel("l1")]

    def test_list_event_channels(self):
        bus = ChangeEventBus(audience_resolver=audience)
        event = ChangeEvent(
            event_type=ChangeType.UPDATE,
            entity=EntityType.LIST,
            entity_id="l2",
            list_id="l2",
            after={"id": "l2", "user_id": "carol"},
        )
        assert bus.channels_for(event) == [lists_channel("carol")]

    def test_deleted_list_reaches_owner(self):
        """Deleted lists no longer resolve; the recorded owner still hears."""
        bus = ChangeEventBus(audience_resolver=audience)
        event = ChangeEvent(
            event_type=ChangeType.DELETE,
            entity=EntityType.LIST,
            entity_id="gone",
            list_id="gone",
            before={"id": "gone", "user_id": "dave"},
        )
        assert bus.channels_for(event) == [lists_channel("dave")]


class TestDelivery:
    """Tests for publish and subscriptions."""

    def test_subscriber_receives_on_its_channel(self):
        bus = ChangeEventBus(audience_resolver=audience)
        handler = Mock()
        other = Mock()
        bus.subscribe(items_channel("l1"), handler)
        bus.subscribe(items_channel("l2"), other)

        event = item_event()
        assert bus.publish(event) == 1
        handler.assert_called_once_with(event)
        other.assert_not_called()

    def test_user_channel_receives_items_of_visible_lists(self):
        bus = ChangeEventBus(audience_resolver=audience)
        bob = Mock()
        carol = Mock()
        bus.subscribe(user_channel("bob"), bob)
        bus.subscribe(user_channel("carol"), carol)

        bus.publish(item_event("l1"))
        bob.assert_called_once()
        carol.assert_not_called()

    def test_close_stops_delivery(self):
        bus = ChangeEventBus()
        handler = Mock()
        sub = bus.subscribe(items_channel("l1"), handler)
        assert sub.subscription_id == "sub_1"

        assert sub.close() is True
        assert sub.active is False
        assert sub.close() is False
        bus.publish(item_event())
        handler.assert_not_called()
        assert bus.subscriber_count() == 0

    def test_handler_error_isolated(self):
        """A failing handler does not stop other deliveries."""
        bus = ChangeEventBus()
        bad = Mock(side_effect=RuntimeError("boom"))
        good = Mock()
        bus.subscribe(items_channel("l1"), bad)
        bus.subscribe(items_channel("l1"), good)

        assert bus.publish(item_event()) == 1
        good.assert_called_once()

    def test_publish_order_preserved(self):
        bus = ChangeEventBus()
        received = []
        bus.subscribe(items_channel("l1"), lambda e: received.append(e.entity_id))
        bus.publish_many([item_event(item_id="a"), item_event(item_id="b"), item_event(item_id="c")])
        assert received == ["a", "b", "c"]

    def test_pause_drops_events(self):
        bus = ChangeEventBus()
        handler = Mock()
        bus.subscribe(items_channel("l1"), handler)

        bus.pause()
        assert bus.is_paused
        assert bus.publish(item_event()) == 0
        bus.resume()
        bus.publish(item_event())
        handler.assert_called_once()

    def test_history_bounded(self):
        bus = ChangeEventBus(max_history=2)
        for n in range(3):
            bus.publish(item_event(item_id=f"i{n}"))
        assert [e.entity_id for e in bus.get_history()] == ["i1", "i2"]
        bus.clear_history()
        assert bus.get_history() == []

    def test_subscriber_count(self):
        bus = ChangeEventBus()
        bus.subscribe(items_channel("l1"), Mock())
        bus.subscribe(items_channel("l1"), Mock())
        bus.subscribe(user_channel("alice"), Mock())
        assert bus.subscriber_count(items_channel("l1")) == 2
        assert bus.subscriber_count() == 3
