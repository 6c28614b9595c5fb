"""
links/service.py - Linking service facade

Composes validator, mutator, propagation engine and maintenance, and
exposes the RPC surface as plain dictionaries. Raised faults are turned
into `{success: False, error, error_code}` here; rejections are data all
the way through.

The list/item helpers at the bottom are the boundary used to populate
and tear down data; they are not a full CRUD layer.
"""

from __future__ import annotations
from collections import deque
from typing import Any, Deque, Dict, List, Optional, TYPE_CHECKING
import logging

from toodle.bootstrap.config import LinkConfig
from toodle.core.enums import EventCause, ListType, ShareRole
from toodle.core.models import Item, Share, TodoList
from toodle.errors import (
    AccessDeniedError,
    ErrorCategory,
    ItemNotFoundError,
    ListNotFoundError,
    ToodleError,
    ToodleException,
)
from .maintenance import LinkMaintenance
from .mutator import LinkMutator
from .propagation import PropagationEngine
from .validator import LinkValidator

if TYPE_CHECKING:
    from toodle.transactions.manager import TransactionManager
    from .store import LinkStore

logger = logging.getLogger("links.service")


def failure(exc: ToodleException) -> Dict[str, Any]:
    """RPC failure payload for a raised fault."""
    return {
        "success": False,
        "error": exc.message,
        "error_code": exc.code.value,
        "error_category": exc.category.value,
    }


class LinkingService:
    """
    RPC surface of the link graph engine.

    Every method takes an optional actor_id; None runs in the system
    context, which sees every list.
    """

    def __init__(
        self,
        store: "LinkStore",
        transactions: "TransactionManager",
        config: Optional[LinkConfig] = None,
    ):
        self.store = store
        self.transactions = transactions
        self.config = config or LinkConfig()

        self.validator = LinkValidator(store, self.config)
        self.mutator = LinkMutator(store, transactions, self.validator)
        self.propagation = PropagationEngine(store, transactions)
        self.maintenance = LinkMaintenance(store, transactions, self.config)

        # Raised faults, newest last
        self._faults: Deque[ToodleError] = deque(maxlen=100)

    def _fail(self, operation: str, exc: ToodleException) -> Dict[str, Any]:
        if exc.category in (ErrorCategory.INTEGRITY, ErrorCategory.TRANSACTION):
            logger.error(f"{operation} failed: [{exc.code.name}] {exc.message}")
            self._faults.append(exc.to_error(source=operation))
        else:
            logger.warning(f"{operation} failed: {exc.message}")
        return failure(exc)

    def get_recent_faults(self, limit: int = 20) -> List[ToodleError]:
        """Transactional and consistency faults seen by RPC calls."""
        return list(self._faults)[-limit:]

    # =========================================================================
    # Links
    # =========================================================================

    def validate_link_creation(
        self,
        parent_item_id: str,
        child_item_ids: List[str],
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.validator.validate(parent_item_id, child_item_ids, actor_id).to_dict()

    def create_parent_child_link(
        self,
        parent_item_id: str,
        child_item_ids: List[str],
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            result = self.mutator.create_links(parent_item_id, child_item_ids, actor_id)
        except ToodleException as e:
            return self._fail("create_parent_child_link", e)
        return result.to_dict()

    def remove_parent_child_link(
        self,
        parent_item_id: str,
        child_item_id: str,
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        view = self.store.view()
        parent = view.get_item(parent_item_id)
        if parent is not None and not view.is_visible(parent.list_id, actor_id):
            return self._fail("remove_parent_child_link", ItemNotFoundError(parent_item_id))
        if parent is not None and not view.can_edit(parent.list_id, actor_id):
            return self._fail(
                "remove_parent_child_link", AccessDeniedError(actor_id, parent_item_id, "unlink")
            )
        try:
            self.mutator.remove_link(parent_item_id, child_item_id)
        except ToodleException as e:
            return self._fail("remove_parent_child_link", e)
        return {"success": True}

    def get_child_items(self, parent_item_id: str, actor_id: Optional[str] = None) -> List[Dict[str, Any]]:
        view = self.store.view()
        return self._linked_summaries(view, view.children_of(parent_item_id), actor_id)

    def get_parent_items(self, child_item_id: str, actor_id: Optional[str] = None) -> List[Dict[str, Any]]:
        view = self.store.view()
        return self._linked_summaries(view, view.parents_of(child_item_id), actor_id)

    def _linked_summaries(self, view, item_ids, actor_id: Optional[str]) -> List[Dict[str, Any]]:
        rows = []
        for item_id in item_ids or set():
            item = view.get_item(item_id)
            if item is None or not view.is_visible(item.list_id, actor_id):
                continue
            todo_list = view.get_list(item.list_id)
            rows.append((todo_list.title if todo_list else "", item.position, item, todo_list))

        rows.sort(key=lambda row: (row[0], row[1]))
        return [
            {
                "id": item.id,
                "content": item.content,
                "is_completed": item.is_completed,
                "list_id": item.list_id,
                "list_title": todo_list.title if todo_list else None,
                "list_type": todo_list.type.value if todo_list else None,
            }
            for _, _, item, todo_list in rows
        ]

    # =========================================================================
    # Propagation
    # =========================================================================

    def update_item_with_propagation(
        self,
        item_id: str,
        field_changes: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            result = self.propagation.update_with_propagation(item_id, field_changes, actor_id)
        except ToodleException as e:
            return self._fail("update_item_with_propagation", e)
        return result.to_dict()

    def batch_update_with_propagation(
        self,
        updates: List[Dict[str, Any]],
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply several propagated updates, each in its own transaction.

        A failed update does not roll back the others. Each entry is
        `{item_id, field_changes}`; results keep the request order.
        """
        successful = 0
        failed = 0
        total_propagations = 0
        results = []

        for update in updates:
            item_id = update.get("item_id")
            outcome = self.update_item_with_propagation(item_id, update.get("field_changes") or {}, actor_id)
            if outcome.get("success"):
                successful += 1
                propagated_count = len(outcome["propagated_updates"])
                total_propagations += propagated_count
                results.append({"item_id": item_id, "success": True, "propagated_count": propagated_count})
            else:
                failed += 1
                results.append({
                    "item_id": item_id,
                    "success": False,
                    "error": outcome["error"],
                    "error_code": outcome["error_code"],
                })

        logger.info(
            f"Batch update: {successful} succeeded, {failed} failed, "
            f"{total_propagations} propagated"
        )
        return {
            "success": True,
            "successful": successful,
            "failed": failed,
            "total_propagations": total_propagations,
            "results": results,
        }

    def preview_status_propagation(
        self,
        item_id: str,
        new_status: bool,
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            preview = self.propagation.preview_propagation(item_id, new_status, actor_id)
        except ToodleException as e:
            return self._fail("preview_status_propagation", e)
        return preview.to_dict()

    # =========================================================================
    # Maintenance
    # =========================================================================

    def get_item_link_stats(self, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            return self.maintenance.get_item_link_stats(item_id, actor_id)
        except ToodleException as e:
            return self._fail("get_item_link_stats", e)

    def get_link_summary(self, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            return self.maintenance.get_link_summary(item_id, actor_id)
        except ToodleException as e:
            return self._fail("get_link_summary", e)

    def has_relationships(self, item_id: str, actor_id: Optional[str] = None) -> bool:
        """False for items that are missing or not visible."""
        try:
            return self.maintenance.has_relationships(item_id, actor_id)
        except ItemNotFoundError:
            return False

    def check_deletion_impact(self, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            return self.maintenance.check_deletion_impact(item_id, actor_id)
        except ToodleException as e:
            return self._fail("check_deletion_impact", e)

    def check_link_exists(
        self,
        parent_item_id: str,
        child_item_id: str,
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            return self.maintenance.check_link_exists(parent_item_id, child_item_id, actor_id)
        except ToodleException as e:
            return self._fail("check_link_exists", e)

    def find_inconsistent_links(self) -> List[Dict[str, Any]]:
        return self.maintenance.find_inconsistent_links()

    def get_link_hierarchy(
        self,
        root_item_id: str,
        max_depth: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            return self.maintenance.get_link_hierarchy(root_item_id, max_depth, actor_id)
        except ToodleException as e:
            return self._fail("get_link_hierarchy", e)

    def cleanup_orphaned_links(self) -> Dict[str, Any]:
        try:
            cleaned = self.maintenance.cleanup_orphaned_links()
        except ToodleException as e:
            return self._fail("cleanup_orphaned_links", e)
        return {"success": True, "items_cleaned": cleaned}

    def remove_all_links(self, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            removed = self.mutator.remove_all_links(item_id, actor_id)
        except ToodleException as e:
            return self._fail("remove_all_links", e)
        return {"success": True, "links_removed": removed}

    # =========================================================================
    # List / item boundary
    # =========================================================================

    def create_list(
        self,
        user_id: str,
        title: str,
        list_type: ListType = ListType.SIMPLE,
        is_private: bool = True,
    ) -> TodoList:
        todo_list = TodoList(user_id=user_id, title=title, type=ListType(list_type), is_private=is_private)
        with self.transactions.transaction(source="lists", description=f"create list {title}"):
            stored = self.store.put_list(todo_list, cause=EventCause.USER)
        return stored

    def share_list(self, list_id: str, user_id: str, role: ShareRole = ShareRole.READ) -> Share:
        if self.store.get_list(list_id) is None:
            raise ListNotFoundError(list_id)
        share = Share(list_id=list_id, user_id=user_id, role=ShareRole(role))
        self.store.add_share(share)
        return share

    def create_item(
        self,
        list_id: str,
        content: str,
        position: Optional[int] = None,
        is_completed: bool = False,
        target_date: Optional[str] = None,
    ) -> Item:
        with self.transactions.transaction(source="items", description=f"create item in {list_id}"):
            view = self.store.view()
            if view.get_list(list_id) is None:
                raise ListNotFoundError(list_id)
            if position is None:
                existing = view.items_in_list(list_id)
                position = existing[-1].position + 1 if existing else 0
            item = Item(list_id=list_id, content=content, position=position, target_date=target_date)
            item.set_completed(is_completed)
            stored = self.store.put_item(item, cause=EventCause.USER)
        return stored

    def delete_item(self, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            deleted = self.mutator.delete_item(item_id, actor_id)
        except ToodleException as e:
            return self._fail("delete_item", e)
        return {"success": True, "deleted": deleted}

    def delete_list(self, list_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            count = self.mutator.delete_list(list_id, actor_id)
        except ToodleException as e:
            return self._fail("delete_list", e)
        return {"success": True, "items_deleted": count}
