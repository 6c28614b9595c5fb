"""
links/mutator.py - Atomic link and deletion writes

Applies accepted edges to the store. Both sides of every edge in a
batch land in one transaction or none do. Acceptance is re-checked
inside the transaction, under the write lock, so concurrent batches
cannot jointly close a cycle.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING
import logging

from toodle.core.enums import EventCause
from toodle.errors import AccessDeniedError, ItemNotFoundError, ListNotFoundError
from .validator import LinkRejection, LinkValidator

if TYPE_CHECKING:
    from toodle.transactions.manager import TransactionManager
    from .store import LinkStore, StoreView

logger = logging.getLogger("links.mutator")


@dataclass
class LinkBatchResult:
    """Outcome of create_links."""
    parent_id: str
    success: bool = True
    created: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    rejected: List[LinkRejection] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    transaction_id: Optional[str] = None

    @property
    def links_created(self) -> int:
        return len(self.created)

    def to_dict(self) -> Dict[str, Any]:
        """Shape of create_parent_child_link."""
        result = {
            "success": self.success,
            "links_created": self.links_created,
            "warnings": list(self.warnings),
        }
        if self.error:
            result["error"] = self.error
        return result


class LinkMutator:
    """
    Writes link changes and deletion cascades.

    Usage:
        mutator = LinkMutator(store, transactions, validator)
        result = mutator.create_links(parent_id, [child_a, child_b], actor_id=user_id)
    """

    def __init__(
        self,
        store: "LinkStore",
        transactions: "TransactionManager",
        validator: LinkValidator,
    ):
        self._store = store
        self._transactions = transactions
        self._validator = validator

    # =========================================================================
    # Link creation / removal
    # =========================================================================

    def create_links(
        self,
        parent_id: str,
        child_ids: List[str],
        actor_id: Optional[str] = None,
    ) -> LinkBatchResult:
        """
        Create parent -> child edges for every acceptable child.

        Rejected children become warnings. Raises TransactionError only
        on storage faults, in which case no edge was written.
        """
        precheck = self._validator.validate(parent_id, child_ids, actor_id)
        result = LinkBatchResult(parent_id=parent_id)
        result.warnings.extend(precheck.warnings)
        result.rejected.extend(precheck.rejected)

        if precheck.error:
            result.success = False
            result.error = precheck.error
            result.warnings.extend(precheck.rejection_warnings())
            return result

        if precheck.acceptable:
            with self._transactions.transaction(
                source="link_mutator",
                description=f"link {parent_id} -> {len(precheck.acceptable)} child(ren)",
            ) as tx:
                result.transaction_id = tx.transaction_id
                view = self._store.view()

                # Re-check against the graph as it is now, under the write lock
                recheck = self._validator.validate(
                    parent_id, precheck.acceptable, actor_id, view=view
                )
                if recheck.error:
                    result.success = False
                    result.error = recheck.error
                result.rejected.extend(recheck.rejected)
                result.existing.extend(recheck.existing)

                if recheck.rejected:
                    logger.warning(
                        f"{len(recheck.rejected)} link(s) from {parent_id} rejected at write time"
                    )

                new_links = recheck.new_links
                if new_links:
                    self._write_edges(view, parent_id, new_links)
                    result.created.extend(new_links)

        result.warnings.extend(r.message for r in result.rejected)

        logger.info(
            f"Linked {parent_id}: {result.links_created} created, "
            f"{len(result.existing)} existing, {len(result.rejected)} rejected"
        )
        return result

    def _write_edges(self, view: "StoreView", parent_id: str, child_ids: List[str]) -> None:
        parent = view.get_item(parent_id)
        parent.linked_items.children.update(child_ids)
        parent.linked_items.bidirectional.difference_update(child_ids)
        self._store.put_item(parent, cause=EventCause.USER)

        for child_id in child_ids:
            child = view.get_item(child_id)
            child.linked_items.parents.add(parent_id)
            child.linked_items.bidirectional.discard(parent_id)
            self._store.put_item(child, cause=EventCause.USER)

    def remove_link(self, parent_id: str, child_id: str) -> bool:
        """
        Remove edge parent -> child, both sides at once.

        Idempotent: returns False when there was nothing to remove.
        """
        with self._transactions.transaction(
            source="link_mutator", description=f"unlink {parent_id} -> {child_id}"
        ):
            view = self._store.view()
            changed = False

            parent = view.get_item(parent_id)
            if parent is not None and child_id in parent.linked_items.children:
                parent.linked_items.children.discard(child_id)
                self._store.put_item(parent, cause=EventCause.USER)
                changed = True

            child = view.get_item(child_id)
            if child is not None and parent_id in child.linked_items.parents:
                child.linked_items.parents.discard(parent_id)
                self._store.put_item(child, cause=EventCause.USER)
                changed = True

        if changed:
            logger.info(f"Unlinked {parent_id} -> {child_id}")
        else:
            logger.debug(f"Unlink {parent_id} -> {child_id}: no such edge")
        return changed

    def remove_all_links(self, item_id: str, actor_id: Optional[str] = None) -> int:
        """Strip every relation of an item, on both sides. Returns relations removed."""
        with self._transactions.transaction(
            source="link_mutator", description=f"unlink all of {item_id}"
        ):
            view = self._store.view()
            item = view.get_item(item_id)
            if item is None or not view.is_visible(item.list_id, actor_id):
                raise ItemNotFoundError(item_id)
            if not view.can_edit(item.list_id, actor_id):
                raise AccessDeniedError(actor_id, item_id, "unlink")

            removed = item.linked_items.total()
            self._strip_references(view, item_id, item.linked_items.all_ids())
            item.linked_items.children.clear()
            item.linked_items.parents.clear()
            item.linked_items.bidirectional.clear()
            self._store.put_item(item, cause=EventCause.USER)

        logger.info(f"Removed {removed} relation(s) of {item_id}")
        return removed

    # =========================================================================
    # Deletion cascade
    # =========================================================================

    def delete_item(self, item_id: str, actor_id: Optional[str] = None) -> bool:
        """
        Delete an item and every reference to it, in one transaction.

        Returns False if the item does not exist or the actor cannot see it.
        """
        with self._transactions.transaction(
            source="link_mutator", description=f"delete item {item_id}"
        ):
            view = self._store.view()
            item = view.get_item(item_id)
            if item is None or not view.is_visible(item.list_id, actor_id):
                return False
            if not view.can_edit(item.list_id, actor_id):
                raise AccessDeniedError(actor_id, item_id, "delete")
            self._delete_within(view, item_id)

        logger.info(f"Deleted item {item_id}")
        return True

    def delete_list(self, list_id: str, actor_id: Optional[str] = None) -> int:
        """
        Delete a list with all its items. Returns the number of items deleted.

        Only the owner (or the system context) may delete a list.
        """
        with self._transactions.transaction(
            source="link_mutator", description=f"delete list {list_id}"
        ):
            view = self._store.view()
            todo_list = view.get_list(list_id)
            if todo_list is None or not view.is_visible(list_id, actor_id):
                raise ListNotFoundError(list_id)
            if actor_id is not None and todo_list.user_id != actor_id:
                raise AccessDeniedError(actor_id, list_id, "delete list")

            items = view.items_in_list(list_id)
            for item in items:
                self._delete_within(view, item.id)
            self._store.delete_list_record(list_id)

        logger.info(f"Deleted list {list_id} with {len(items)} item(s)")
        return len(items)

    def _delete_within(self, view: "StoreView", item_id: str) -> None:
        # Every referencing item, not only the listed neighbours, so a
        # one-sided reference cannot survive the delete
        self._strip_references(view, item_id, {i.id for i in view.referencing(item_id)})
        self._store.delete_item_record(item_id)

    def _strip_references(self, view: "StoreView", item_id: str, neighbour_ids) -> None:
        for neighbour_id in sorted(neighbour_ids):
            neighbour = view.get_item(neighbour_id)
            if neighbour is None:
                continue
            if neighbour.linked_items.discard(item_id):
                self._store.put_item(neighbour, cause=EventCause.USER)
