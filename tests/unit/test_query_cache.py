"""
Unit tests for QueryCache.
"""

import pytest

from toodle.reconciler import QueryCache, entity_key


class TestReadWrite:
    """Tests for set/get/update/remove."""

    def test_set_and_get(self):
        cache = QueryCache()
        cache.set(("items", "l1"), [1, 2])
        assert cache.get(("items", "l1")) == [1, 2]
        assert cache.has(("items", "l1"))
        assert cache.get(("items", "l2"), "missing") == "missing"

    def test_update_requires_entry(self):
        cache = QueryCache()
        assert cache.update(("items", "l1"), []) is False
        cache.set(("items", "l1"), [])
        assert cache.update(("items", "l1"), [1]) is True
        assert cache.get(("items", "l1")) == [1]

    def test_update_keeps_stale_flag(self):
        cache = QueryCache()
        cache.set(("list", "l1"), {})
        cache.invalidate(("list", "l1"))
        cache.update(("list", "l1"), {"title": "x"})
        assert cache.is_stale(("list", "l1"))

    def test_set_clears_stale_flag(self):
        cache = QueryCache()
        cache.set(("list", "l1"), {})
        cache.invalidate(("list",))
        cache.set(("list", "l1"), {"fresh": True})
        assert not cache.is_stale(("list", "l1"))

    def test_keys_by_prefix(self):
        cache = QueryCache()
        cache.set(("items", "l1"), [])
        cache.set(("items", "l2"), [])
        cache.set(("lists",), [])
        assert sorted(cache.keys(("items",))) == [("items", "l1"), ("items", "l2")]

    def test_remove_prefix(self):
        cache = QueryCache()
        cache.set(("item", "i1", "children"), [])
        cache.set(("item", "i1", "parents"), [])
        cache.set(("item", "i2", "children"), [])
        assert cache.remove_prefix(("item", "i1")) == 2
        assert cache.keys() == [("item", "i2", "children")]


class TestInvalidation:
    """Tests for prefix and dependency invalidation."""

    def test_prefix_invalidation(self):
        cache = QueryCache()
        cache.set(("items", "l1"), [])
        cache.set(("items", "l2"), [])
        cache.set(("lists",), [])

        assert len(cache.invalidate(("items",))) == 2
        assert cache.is_stale(("items", "l1"))
        assert not cache.is_stale(("lists",))

    def test_dependency_invalidation(self):
        cache = QueryCache()
        cache.set(("item", "p", "children"), [], depends_on=[entity_key("item", "c")])
        cache.set(("item", "x", "children"), [], depends_on=[entity_key("item", "y")])

        stale = cache.invalidate_dependents(entity_key("item", "c"))
        assert stale == [("item", "p", "children")]
        assert not cache.is_stale(("item", "x", "children"))

    def test_set_replaces_dependencies(self):
        cache = QueryCache()
        key = ("item", "p", "children")
        cache.set(key, [], depends_on=[entity_key("item", "old")])
        cache.set(key, [], depends_on=[entity_key("item", "new")])
        assert cache.dependents_of(entity_key("item", "old")) == set()
        assert cache.dependents_of(entity_key("item", "new")) == {key}

    def test_remove_drops_dependencies(self):
        cache = QueryCache()
        key = ("item", "p", "children")
        cache.set(key, [], depends_on=[entity_key("item", "c")])
        cache.remove(key)
        assert cache.invalidate_dependents(entity_key("item", "c")) == []

    def test_add_and_remove_dependency(self):
        cache = QueryCache()
        key = ("items", "l1")
        assert cache.add_dependency(key, entity_key("item", "a")) is False
        cache.set(key, [])
        assert cache.add_dependency(key, entity_key("item", "a")) is True
        assert cache.dependents_of(entity_key("item", "a")) == {key}

        cache.remove_dependency(key, entity_key("item", "a"))
        assert cache.dependents_of(entity_key("item", "a")) == set()

    def test_excluded_dependents_keep_flag(self):
        cache = QueryCache()
        cache.set(("items", "l1"), [], depends_on=[entity_key("item", "a")])
        cache.set(("item", "p", "children"), [], depends_on=[entity_key("item", "a")])

        stale = cache.invalidate_dependents(entity_key("item", "a"), exclude=[("items", "l1")])
        assert stale == [("item", "p", "children")]
        assert not cache.is_stale(("items", "l1"))

    def test_invalidation_log(self):
        """was_invalidated covers keys under any logged prefix."""
        cache = QueryCache()
        cache.invalidate(("items",))
        assert cache.was_invalidated(("items", "l1"))
        assert not cache.was_invalidated(("lists",))
        cache.reset_log()
        assert not cache.was_invalidated(("items", "l1"))

    def test_invalidating_absent_keys_is_logged(self):
        """Invalidation requests are logged even when nothing is cached."""
        cache = QueryCache()
        assert cache.invalidate(("item", "i1", "children")) == []
        assert cache.was_invalidated(("item", "i1", "children"))
