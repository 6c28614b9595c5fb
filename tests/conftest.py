"""
Toodle Test Configuration and Fixtures

Provides a built application with two users' lists, item factories and
a raw writer for planting corrupted link data.
"""

import pytest
from typing import Callable

from toodle.bootstrap.app import ToodleApp
from toodle.bootstrap.config import ToodleConfig
from toodle.core.enums import ListType


@pytest.fixture
def config():
    """Default configuration, independent of environment and config files."""
    return ToodleConfig()


@pytest.fixture
def app(config):
    """Built application."""
    return ToodleApp(config=config).build()


@pytest.fixture
def store(app):
    return app.context.store


@pytest.fixture
def bus(app):
    return app.context.event_bus


@pytest.fixture
def transactions(app):
    return app.context.transactions


@pytest.fixture
def service(app):
    return app.context.service


@pytest.fixture
def groceries(service):
    """Alice's grocery list."""
    return service.create_list("alice", "Groceries", ListType.GROCERY)


@pytest.fixture
def errands(service):
    """Alice's second list."""
    return service.create_list("alice", "Errands")


@pytest.fixture
def bob_list(service):
    """Bob's private list, invisible to Alice."""
    return service.create_list("bob", "Bob Chores")


@pytest.fixture
def make_item(service) -> Callable:
    """Factory: make_item(todo_list, content, **kwargs) -> Item."""
    def _make(todo_list, content, **kwargs):
        return service.create_item(todo_list.id, content, **kwargs)
    return _make


@pytest.fixture
def chain(service, groceries, errands, make_item):
    """
    Items A -> B -> C, with C in a different list.

    Returns (a, b, c) as created (before linking).
    """
    a = make_item(groceries, "A")
    b = make_item(groceries, "B")
    c = make_item(errands, "C")
    assert service.create_parent_child_link(a.id, [b.id])["success"]
    assert service.create_parent_child_link(b.id, [c.id])["success"]
    return a, b, c


@pytest.fixture
def raw_write(store, transactions) -> Callable:
    """
    Write items exactly as given, bypassing link validation.

    Used to plant dangling edges and cycles.
    """
    def _write(*items):
        with transactions.transaction(source="test", description="raw write"):
            for item in items:
                store.put_item(item)
    return _write
