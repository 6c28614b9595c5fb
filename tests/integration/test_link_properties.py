"""
Integration tests for link graph properties.

Runs the linking service end to end over a built application and checks
the graph stays acyclic and symmetric under arbitrary operation
sequences.
"""

import pytest
import random
import threading

from toodle.core.enums import LinkRejectionReason


def descendants(store, item_id):
    view = store.view()
    seen = set()
    frontier = [item_id]
    while frontier:
        node = frontier.pop()
        for child in view.children_of(node) or set():
            if child not in seen:
                seen.add(child)
                frontier.append(child)
    return seen


def assert_graph_sound(service, store):
    """Acyclic, symmetric, no dangling or self references."""
    assert service.maintenance.find_cycles() == []
    assert service.find_inconsistent_links() == []
    view = store.view()
    for item in view.iter_items():
        links = item.linked_items
        for child in links.children:
            assert item.id in view.parents_of(child)
        for parent in links.parents:
            assert item.id in view.children_of(parent)
        assert not links.children & links.parents


class TestValidationProperties:
    """Tests for the validator contract."""

    def test_self_link_always_rejected(self, service, groceries, make_item):
        a = make_item(groceries, "A")
        data = service.validate_link_creation(a.id, [a.id])
        assert data["invalid_links"] == [{"child_id": a.id, "reason": LinkRejectionReason.SELF_LINK.value}]

    def test_cycle_rejected_forward_accepted(self, service, chain):
        a, b, c = chain
        backward = service.validate_link_creation(c.id, [a.id])
        assert backward["invalid_links"][0]["reason"] == "circular_dependency"

        forward = service.validate_link_creation(a.id, [c.id])
        assert forward["valid_links"] == [c.id]

    def test_batch_validated_against_prior_graph(self, service, groceries, make_item):
        """Children in one batch do not see each other's proposed edges."""
        a = make_item(groceries, "A")
        b = make_item(groceries, "B")
        c = make_item(groceries, "C")
        service.create_parent_child_link(b.id, [c.id])

        data = service.validate_link_creation(a.id, [b.id, c.id])
        assert data["valid_links"] == [b.id, c.id]

    def test_unlink_unblocks_reverse(self, service, chain):
        a, b, _ = chain
        assert service.validate_link_creation(b.id, [a.id])["valid_links"] == []
        service.remove_parent_child_link(a.id, b.id)
        assert service.validate_link_creation(b.id, [a.id])["valid_links"] == [a.id]


class TestMutationProperties:
    """Tests for link creation semantics."""

    def test_create_twice_is_idempotent(self, service, store, groceries, make_item):
        a = make_item(groceries, "A")
        b = make_item(groceries, "B")
        first = service.create_parent_child_link(a.id, [b.id])
        second = service.create_parent_child_link(a.id, [b.id])

        assert first["links_created"] == 1
        assert second["success"] is True
        assert second["links_created"] == 0
        assert store.get_item(a.id).linked_items.children == {b.id}
        assert store.get_item(b.id).linked_items.parents == {a.id}

    def test_mixed_batch(self, service, store, groceries, errands, make_item):
        a = make_item(groceries, "A")
        b = make_item(groceries, "B")
        c = make_item(errands, "C")
        d = make_item(errands, "D")
        service.create_parent_child_link(a.id, [b.id])

        data = service.create_parent_child_link(b.id, [c.id, d.id, a.id])

        assert data["success"] is True
        assert data["links_created"] == 2
        assert any("circular dependency" in w for w in data["warnings"])
        assert store.get_item(b.id).linked_items.children == {c.id, d.id}
        assert_graph_sound(service, store)

    def test_remove_missing_edge_succeeds(self, service, groceries, make_item):
        a = make_item(groceries, "A")
        b = make_item(groceries, "B")
        assert service.remove_parent_child_link(a.id, b.id) == {"success": True}


class TestPropagationProperties:
    """Tests for transitive propagation."""

    def test_transitive(self, service, chain, errands):
        a, b, c = chain
        data = service.update_item_with_propagation(a.id, {"is_completed": True})
        updates = {u["item_id"]: u for u in data["propagated_updates"]}
        assert set(updates) == {b.id, c.id}
        assert all(u["new_status"] is True for u in updates.values())
        assert errands.id in data["affected_list_ids"]

    def test_never_upward(self, service, store, chain):
        a, b, c = chain
        data = service.update_item_with_propagation(c.id, {"is_completed": True})
        assert data["propagated_updates"] == []
        assert store.get_item(a.id).is_completed is False
        assert store.get_item(b.id).is_completed is False

    def test_diamond_visits_once(self, service, groceries, make_item):
        top = make_item(groceries, "Top")
        left = make_item(groceries, "Left")
        right = make_item(groceries, "Right")
        bottom = make_item(groceries, "Bottom")
        service.create_parent_child_link(top.id, [left.id, right.id])
        service.create_parent_child_link(left.id, [bottom.id])
        service.create_parent_child_link(right.id, [bottom.id])

        data = service.update_item_with_propagation(top.id, {"is_completed": True})
        ids = [u["item_id"] for u in data["propagated_updates"]]
        assert sorted(ids) == sorted([left.id, right.id, bottom.id])

    @pytest.mark.parametrize("status", [True, False])
    def test_preview_apply_parity(self, service, chain, status):
        a, _, _ = chain
        if not status:
            service.update_item_with_propagation(a.id, {"is_completed": True})

        preview = service.preview_status_propagation(a.id, status)
        applied = service.update_item_with_propagation(a.id, {"is_completed": status})

        assert sorted(p["item_id"] for p in preview["affected_items"]) == \
            sorted(u["item_id"] for u in applied["propagated_updates"])
        assert preview["affected_count"] == len(applied["propagated_updates"])


class TestRandomOperations:
    """The graph stays sound under arbitrary operation sequences."""

    @pytest.mark.parametrize("seed", [1, 7, 42])
    def test_graph_sound(self, service, store, groceries, errands, make_item, seed):
        rng = random.Random(seed)
        lists = [groceries, errands]
        ids = [make_item(rng.choice(lists), f"Item {n}").id for n in range(10)]

        for step in range(150):
            op = rng.random()
            if op < 0.5:
                parent = rng.choice(ids)
                children = rng.sample(ids, rng.randint(1, 3))
                result = service.create_parent_child_link(parent, children)
                assert result["success"] is True
            elif op < 0.7:
                parent = rng.choice(ids)
                kids = sorted(store.get_item(parent).linked_items.children)
                if kids:
                    service.remove_parent_child_link(parent, rng.choice(kids))
            elif op < 0.9:
                target = rng.choice(ids)
                status = rng.random() < 0.5
                result = service.update_item_with_propagation(target, {"is_completed": status})
                assert result["success"] is True
                for item_id in descendants(store, target):
                    assert store.get_item(item_id).is_completed is status
            else:
                victim = rng.choice(ids)
                service.delete_item(victim)
                ids.remove(victim)
                ids.append(make_item(rng.choice(lists), f"Replacement {step}").id)

            assert_graph_sound(service, store)


class TestConcurrentWriters:
    """Write-time re-validation under concurrent batches."""

    def test_opposite_edges_never_form_cycle(self, service, store, groceries, make_item):
        """Two writers racing A -> B and B -> A leave exactly one edge."""
        for _ in range(20):
            a = make_item(groceries, "A")
            b = make_item(groceries, "B")
            barrier = threading.Barrier(2)

            def link(parent, child):
                barrier.wait(5)
                service.create_parent_child_link(parent, [child])

            threads = [
                threading.Thread(target=link, args=(a.id, b.id)),
                threading.Thread(target=link, args=(b.id, a.id)),
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join(10)

            edges = len(store.get_item(a.id).linked_items.children) + \
                len(store.get_item(b.id).linked_items.children)
            assert edges == 1
        assert_graph_sound(service, store)

    def test_chain_closure_race(self, service, store, groceries, make_item):
        """Concurrent batches closing a three-item loop leave it open."""
        a = make_item(groceries, "A")
        b = make_item(groceries, "B")
        c = make_item(groceries, "C")
        service.create_parent_child_link(a.id, [b.id])

        barrier = threading.Barrier(2)

        def link(parent, child):
            barrier.wait(5)
            service.create_parent_child_link(parent, [child])

        threads = [
            threading.Thread(target=link, args=(b.id, c.id)),
            threading.Thread(target=link, args=(c.id, a.id)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert_graph_sound(service, store)
