"""
Unit tests for core models and constants.
"""

import pytest
from datetime import datetime, timedelta, timezone

from toodle.core import (
    Item,
    LinkedItems,
    LinkRejectionReason,
    ListType,
    RelationKind,
    Share,
    ShareRole,
    TodoList,
    parse_timestamp,
)
from toodle.core.constants import REJECTION_MESSAGES, rejection_message


class TestLinkedItems:
    """Tests for the per-item relation sets."""

    def test_empty_by_default(self):
        """New link sets are empty."""
        links = LinkedItems()
        assert links.is_empty()
        assert links.total() == 0

    def test_total_counts_all_relations(self):
        """total() sums children, parents and bidirectional."""
        links = LinkedItems(children={"a", "b"}, parents={"c"}, bidirectional={"d"})
        assert links.total() == 4
        assert links.all_ids() == {"a", "b", "c", "d"}

    def test_relation_by_kind(self):
        """relation() returns the named set."""
        links = LinkedItems(children={"a"})
        assert links.relation(RelationKind.CHILDREN) == {"a"}
        assert links.relation(RelationKind.PARENTS) == set()

    def test_discard_removes_everywhere(self):
        """discard() removes an id from every set."""
        links = LinkedItems(children={"x"}, parents={"x"}, bidirectional={"x", "y"})
        assert links.discard("x") is True
        assert links.all_ids() == {"y"}
        assert links.discard("x") is False

    def test_copy_is_independent(self):
        """Mutating a copy leaves the original untouched."""
        links = LinkedItems(children={"a"})
        clone = links.copy()
        clone.children.add("b")
        assert links.children == {"a"}

    def test_dict_roundtrip_sorted(self):
        """to_dict emits sorted lists; from_dict tolerates missing keys."""
        links = LinkedItems(children={"b", "a"})
        data = links.to_dict()
        assert data["children"] == ["a", "b"]
        assert LinkedItems.from_dict({"children": ["a"]}).children == {"a"}
        assert LinkedItems.from_dict(None).is_empty()


class TestItem:
    """Tests for Item."""

    def test_set_completed_stamps_completed_at(self):
        """Completing stamps completed_at; reopening clears it."""
        item = Item(list_id="l1", content="Milk")
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)

        assert item.set_completed(True, when=when) is True
        assert item.completed_at == when

        assert item.set_completed(False) is True
        assert item.completed_at is None

    def test_set_completed_same_value_is_noop(self):
        """Setting the current status reports no change."""
        item = Item(list_id="l1")
        assert item.set_completed(False) is False
        assert item.completed_at is None

    def test_copy_copies_links(self):
        """Item copies do not share link sets."""
        item = Item(list_id="l1")
        item.linked_items.children.add("c")
        clone = item.copy()
        clone.linked_items.children.add("d")
        assert item.linked_items.children == {"c"}

    def test_from_dict(self):
        """Items load from wire dicts."""
        item = Item.from_dict({
            "id": "i1",
            "list_id": "l1",
            "content": "Eggs",
            "is_completed": True,
            "position": 3,
            "updated_at": "2024-01-01T00:00:00Z",
            "linked_items": {"parents": ["p1"]},
        })
        assert item.id == "i1"
        assert item.position == 3
        assert item.linked_items.parents == {"p1"}
        assert item.updated_at.tzinfo is not None

    def test_to_dict_fields(self):
        """to_dict carries the wire fields."""
        data = Item(id="i1", list_id="l1", content="Bread").to_dict()
        for key in ("id", "list_id", "content", "is_completed", "position",
                    "completed_at", "updated_at", "version", "linked_items"):
            assert key in data


class TestTodoListAndShare:
    """Tests for lists and shares."""

    def test_list_roundtrip(self):
        """Lists survive to_dict/from_dict."""
        todo_list = TodoList(user_id="alice", title="Groceries", type=ListType.GROCERY)
        loaded = TodoList.from_dict(todo_list.to_dict())
        assert loaded.id == todo_list.id
        assert loaded.type == ListType.GROCERY
        assert loaded.is_private is True

    def test_share_without_expiry_is_active(self):
        """Shares without expiry never lapse."""
        assert Share(list_id="l1", user_id="bob").is_active()

    def test_expired_share_inactive(self):
        """Shares past expiry are inactive."""
        share = Share(
            list_id="l1",
            user_id="bob",
            role=ShareRole.EDIT,
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        assert not share.is_active()


class TestHelpers:
    """Tests for helper functions and constants."""

    def test_parse_timestamp_zulu(self):
        """Trailing Z parses as UTC."""
        ts = parse_timestamp("2024-05-01T12:00:00Z")
        assert ts == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def test_parse_timestamp_naive_becomes_utc(self):
        """Naive timestamps are treated as UTC."""
        ts = parse_timestamp("2024-05-01T12:00:00")
        assert ts.tzinfo == timezone.utc

    def test_parse_timestamp_empty(self):
        """Empty values parse to None."""
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_every_reason_has_message(self):
        """Every rejection reason has a message."""
        for reason in LinkRejectionReason:
            assert reason in REJECTION_MESSAGES

    def test_rejection_message_names_child(self):
        """Messages end with the child id."""
        msg = rejection_message(LinkRejectionReason.CIRCULAR_DEPENDENCY, "c1")
        assert msg == "Cannot create circular dependency: c1"
