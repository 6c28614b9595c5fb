"""
Integration tests for the change feed.

Writes go through the linking service; committed events flow over the
bus into per-user CacheReconcilers.
"""

import pytest
from unittest.mock import Mock

from toodle.core.enums import EventCause
from toodle.reconciler import NotificationKind, ReconcileOutcome


def seed(reconciler, store, todo_list):
    reconciler.seed_items(
        todo_list.id,
        [item.to_dict() for item in store.view().items_in_list(todo_list.id)],
    )


def kinds_by_id(callback):
    found = {}
    for call in callback.call_args_list:
        notification = call.args[0]
        found.setdefault(notification.kind, []).append(notification.entity_id)
    return found


class TestDelivery:
    """Tests for what each user receives."""

    def test_insert_reaches_viewer_once(self, app, store, service, groceries):
        alice = app.context.create_reconciler("alice", list_id=groceries.id)
        seed(alice, store, groceries)

        item = service.create_item(groceries.id, "Milk")

        assert [r["id"] for r in alice.get_items(groceries.id)] == [item.id]
        # Delivered on both items and user channels; the second is a duplicate
        assert alice.stats[ReconcileOutcome.APPLIED.value] == 1
        assert alice.stats[ReconcileOutcome.DUPLICATE.value] == 1

    def test_private_list_hidden_from_other_users(self, app, service, groceries):
        bob = app.context.create_reconciler("bob")
        service.create_item(groceries.id, "Milk")
        assert sum(bob.stats.values()) == 0

    def test_share_opens_user_channel(self, app, service, groceries):
        bob = app.context.create_reconciler("bob")
        service.share_list(groceries.id, "bob")
        service.create_item(groceries.id, "Milk")
        assert bob.stats[ReconcileOutcome.APPLIED.value] == 1

    def test_events_carry_cause(self, app, bus, service, chain):
        a, b, c = chain
        bus.clear_history()
        service.update_item_with_propagation(a.id, {"is_completed": True})

        causes = {e.entity_id: e.cause for e in bus.get_history()}
        assert causes == {
            a.id: EventCause.USER,
            b.id: EventCause.PROPAGATED,
            c.id: EventCause.PROPAGATED,
        }

    def test_one_event_per_entity_per_transaction(self, bus, service, chain):
        a, _, _ = chain
        bus.clear_history()
        service.update_item_with_propagation(a.id, {"is_completed": True, "content": "A2"})
        ids = [e.entity_id for e in bus.get_history()]
        assert len(ids) == len(set(ids))

    def test_failed_transaction_publishes_nothing(self, app, bus, store, service, chain, raw_write):
        a, _, c = chain
        corrupt = store.get_item(c.id)
        corrupt.linked_items.children.add(a.id)
        raw_write(corrupt)
        bus.clear_history()

        data = service.update_item_with_propagation(a.id, {"is_completed": True})
        assert data["success"] is False
        assert bus.get_history() == []
        assert store.get_item(a.id).is_completed is False


class TestPropagationFeed:
    """Tests for propagated status changes seen by a client."""

    def test_notifications_and_invalidation(self, app, store, service, chain, groceries):
        a, b, c = chain
        alice = app.context.create_reconciler("alice", list_id=groceries.id)
        seed(alice, store, groceries)
        alice.cache.set(("items", "other-view"), [])
        callback = Mock()
        alice.on_notification(callback)

        service.update_item_with_propagation(a.id, {"is_completed": True})

        found = kinds_by_id(callback)
        assert found[NotificationKind.ITEM_COMPLETED] == [a.id]
        assert set(found[NotificationKind.STATUS_PROPAGATED]) == {b.id, c.id}

        cached = {r["id"]: r for r in alice.get_items(groceries.id)}
        assert cached[a.id]["is_completed"] is True
        assert cached[b.id]["is_completed"] is True
        # b has children in another list
        assert alice.cache.is_stale(("items", "other-view"))

    def test_link_change_invalidates_link_views(self, app, store, service, groceries, make_item):
        a = make_item(groceries, "A")
        b = make_item(groceries, "B")
        alice = app.context.create_reconciler("alice", list_id=groceries.id)
        seed(alice, store, groceries)
        alice.seed_links(a.id, "children", service.get_child_items(a.id, actor_id="alice"))
        alice.seed_links(b.id, "parents", service.get_parent_items(b.id, actor_id="alice"))

        service.create_parent_child_link(a.id, [b.id], actor_id="alice")

        assert alice.cache.is_stale(("item", a.id, "children"))
        assert alice.cache.is_stale(("item", b.id, "parents"))
        cached = {r["id"]: r for r in alice.get_items(groceries.id)}
        assert cached[a.id]["linked_items"]["children"] == [b.id]

    def test_list_summary_invalidated(self, app, store, service, groceries):
        alice = app.context.create_reconciler("alice", list_id=groceries.id)
        alice.seed_list(groceries.to_dict())
        service.create_item(groceries.id, "Milk")
        assert alice.cache.is_stale(("list", groceries.id))


class TestClientState:
    """Tests for optimistic edits and deletes end to end."""

    def test_newer_server_write_replaces_optimistic(self, app, store, service, groceries, make_item):
        item = make_item(groceries, "Milk")
        alice = app.context.create_reconciler("alice", list_id=groceries.id)
        seed(alice, store, groceries)

        alice.apply_optimistic(item.id, {"content": "Oat milk"})
        assert alice.get_item(item.id)["content"] == "Oat milk"

        service.update_item_with_propagation(item.id, {"content": "Whole milk"})
        assert alice.get_item(item.id)["content"] == "Whole milk"

    def test_deleted_item_removed_and_redelivery_ignored(self, app, bus, store, service, groceries, make_item):
        item = make_item(groceries, "Milk")
        alice = app.context.create_reconciler("alice", list_id=groceries.id)
        seed(alice, store, groceries)

        service.delete_item(item.id)
        assert alice.get_items(groceries.id) == []

        delete_event = bus.get_history(limit=1)[0]
        assert alice.apply(delete_event) == ReconcileOutcome.DUPLICATE

    def test_list_lifecycle(self, app, store, service):
        alice = app.context.create_reconciler("alice")
        alice.seed_lists([])
        callback = Mock()
        alice.on_notification(callback)

        trip = service.create_list("alice", "Trip")
        assert [l["id"] for l in alice.cache.get(("lists",))] == [trip.id]

        service.delete_list(trip.id)
        assert alice.cache.get(("lists",)) == []
        assert callback.call_args[0][0].kind == NotificationKind.LIST_DELETED
