"""
links/maintenance.py - Link inspection and repair

Statistics, consistency checks, hierarchy views and orphan cleanup
over the stored link sets.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, TYPE_CHECKING
import logging

from toodle.bootstrap.config import LinkConfig
from toodle.core.enums import EventCause
from toodle.errors import ItemNotFoundError
from .graph import LinkGraph

if TYPE_CHECKING:
    from toodle.transactions.manager import TransactionManager
    from .store import LinkStore, StoreView

logger = logging.getLogger("links.maintenance")


class LinkMaintenance:
    """Read-side diagnostics and repair of the link graph."""

    def __init__(
        self,
        store: "LinkStore",
        transactions: "TransactionManager",
        config: Optional[LinkConfig] = None,
    ):
        self._store = store
        self._transactions = transactions
        self._config = config or LinkConfig()

    def _visible_item(self, view: "StoreView", item_id: str, actor_id: Optional[str]):
        item = view.get_item(item_id)
        if item is None or not view.is_visible(item.list_id, actor_id):
            raise ItemNotFoundError(item_id)
        return item

    def _visible_ids(self, view: "StoreView", item_ids, actor_id: Optional[str]) -> List[str]:
        visible = []
        for item_id in sorted(item_ids):
            item = view.get_item(item_id)
            if item is not None and view.is_visible(item.list_id, actor_id):
                visible.append(item_id)
        return visible

    def get_item_link_stats(self, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        item = self._visible_item(self._store.view(), item_id, actor_id)
        links = item.linked_items
        return {
            "item_id": item_id,
            "children_count": len(links.children),
            "parents_count": len(links.parents),
            "bidirectional_count": len(links.bidirectional),
            "total_links": links.total(),
            "remaining_capacity": max(0, self._config.max_total_links - links.total()),
        }

    def get_link_summary(self, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """Linked ids of an item by relation, limited to items the actor can see."""
        view = self._store.view()
        links = self._visible_item(view, item_id, actor_id).linked_items
        children = self._visible_ids(view, links.children, actor_id)
        parents = self._visible_ids(view, links.parents, actor_id)
        bidirectional = self._visible_ids(view, links.bidirectional, actor_id)
        return {
            "item_id": item_id,
            "total_links": len(children) + len(parents) + len(bidirectional),
            "children_count": len(children),
            "parents_count": len(parents),
            "bidirectional_count": len(bidirectional),
            "children": children,
            "parents": parents,
            "bidirectional": bidirectional,
        }

    def has_relationships(self, item_id: str, actor_id: Optional[str] = None) -> bool:
        """True when the item has any parent or child."""
        links = self._visible_item(self._store.view(), item_id, actor_id).linked_items
        return bool(links.children or links.parents)

    def check_deletion_impact(self, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        What deleting an item would touch.

        Deletion is never blocked by links; each relation kind present
        adds a warning. can_delete reflects the actor's edit rights.
        """
        view = self._store.view()
        item = self._visible_item(view, item_id, actor_id)
        links = item.linked_items

        warnings = []
        if links.children:
            warnings.append(f"This item has {len(links.children)} child item(s) that will be unlinked.")
        if links.parents:
            warnings.append(f"This item is a child of {len(links.parents)} parent item(s) that will be updated.")
        if links.bidirectional:
            warnings.append(f"This item has {len(links.bidirectional)} bidirectional link(s) that will be removed.")

        return {
            "item_id": item_id,
            "can_delete": view.can_edit(item.list_id, actor_id),
            "affected_items": self._visible_ids(view, links.all_ids(), actor_id),
            "warnings": warnings,
        }

    def check_link_exists(self, parent_id: str, child_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """Both sides of one edge and whether they agree."""
        view = self._store.view()
        for item_id in (parent_id, child_id):
            item = view.get_item(item_id)
            if item is not None and not view.is_visible(item.list_id, actor_id):
                raise ItemNotFoundError(item_id)

        parent_children = view.children_of(parent_id) or set()
        child_parents = view.parents_of(child_id) or set()

        parent_has_child = child_id in parent_children
        child_has_parent = parent_id in child_parents
        return {
            "parent_id": parent_id,
            "child_id": child_id,
            "link_exists": parent_has_child and child_has_parent,
            "parent_has_child": parent_has_child,
            "child_has_parent": child_has_parent,
            "is_consistent": parent_has_child == child_has_parent,
        }

    def find_inconsistent_links(self) -> List[Dict[str, Any]]:
        """
        One-sided and dangling references.

        Issues:
            orphaned_child_reference   A.children has B, B.parents lacks A
            orphaned_parent_reference  A.parents has B, B.children lacks A
            dangling_reference         a relation set names a missing item
            self_reference             an item lists itself
        """
        view = self._store.view()
        issues = []

        for item in view.iter_items():
            links = item.linked_items
            for kind, targets in (
                ("children", links.children),
                ("parents", links.parents),
                ("bidirectional", links.bidirectional),
            ):
                for target_id in sorted(targets):
                    issue = None
                    if target_id == item.id:
                        issue = "self_reference"
                    elif not view.has_item(target_id):
                        issue = "dangling_reference"
                    elif kind == "children" and item.id not in view.parents_of(target_id):
                        issue = "orphaned_child_reference"
                    elif kind == "parents" and item.id not in view.children_of(target_id):
                        issue = "orphaned_parent_reference"

                    if issue:
                        issues.append({
                            "item_id": item.id,
                            "linked_item_id": target_id,
                            "relation": kind,
                            "issue": issue,
                        })

        if issues:
            logger.warning(f"Found {len(issues)} inconsistent link reference(s)")
        return issues

    def find_cycles(self) -> List[List[str]]:
        return LinkGraph(self._store.view()).find_cycles()

    def get_link_hierarchy(
        self,
        root_id: str,
        max_depth: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Descendant tree of an item, breadth first.

        Descendants the actor cannot see keep their place in the tree
        with their details withheld.
        """
        view = self._store.view()
        root = self._visible_item(view, root_id, actor_id)

        depth = max_depth if max_depth is not None else self._config.max_hierarchy_depth
        nodes = LinkGraph(view).hierarchy(root_id, depth)
        for node in nodes:
            list_id = node["list_id"]
            node["hidden"] = list_id is not None and not view.is_visible(list_id, actor_id)
            if node["hidden"]:
                node.update(content=None, is_completed=None, list_id=None)

        return {
            "root_id": root_id,
            "content": root.content,
            "is_completed": root.is_completed,
            "list_id": root.list_id,
            "max_depth": depth,
            "nodes": nodes,
        }

    def cleanup_orphaned_links(self) -> int:
        """
        Remove references to missing items and self references.

        Returns the number of items cleaned.
        """
        with self._transactions.transaction(
            source="link_maintenance", description="cleanup orphaned links"
        ):
            view = self._store.view()
            cleaned = 0
            for item in view.iter_items():
                stale = {
                    target_id for target_id in item.linked_items.all_ids()
                    if target_id == item.id or not view.has_item(target_id)
                }
                if not stale:
                    continue
                for target_id in stale:
                    item.linked_items.discard(target_id)
                self._store.put_item(item, cause=EventCause.USER)
                cleaned += 1

        if cleaned:
            logger.info(f"Cleaned orphaned links on {cleaned} item(s)")
        return cleaned
