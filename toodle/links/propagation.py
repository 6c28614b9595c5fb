"""
links/propagation.py - Transitive completion-status propagation

Changing an item's completion status sets the same status on every
item reachable over `children` edges, across lists, in the same
transaction as the direct change. Direction is strictly parent to
descendants.

Only descendants whose status differs are written and reported, so the
preview and the applied update list exactly the same items.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING
import logging

from toodle.core.constants import ITEM_FIELD_TYPES, UPDATABLE_ITEM_FIELDS
from toodle.core.enums import EventCause
from toodle.core.models import Item
from toodle.errors import (
    AccessDeniedError,
    DanglingEdgeError,
    InvalidUpdateError,
    ItemNotFoundError,
    UnexpectedCycleError,
)
from .graph import LinkGraph, Traversal

if TYPE_CHECKING:
    from toodle.transactions.manager import TransactionManager
    from .store import LinkStore, StoreView

logger = logging.getLogger("links.propagation")


@dataclass
class PropagatedUpdate:
    """One descendant whose status was changed by propagation."""
    item_id: str
    list_id: str
    old_status: bool
    new_status: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
        }

    def to_preview_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "current_status": self.old_status,
            "new_status": self.new_status,
        }


@dataclass
class PropagationResult:
    """Outcome of update_with_propagation."""
    updated_item: Item
    propagated: List[PropagatedUpdate] = field(default_factory=list)
    affected_list_ids: List[str] = field(default_factory=list)
    transaction_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Shape of update_item_with_propagation."""
        return {
            "success": True,
            "updated_item": self.updated_item.to_dict(),
            "propagated_updates": [p.to_dict() for p in self.propagated],
            "affected_list_ids": list(self.affected_list_ids),
        }


@dataclass
class PropagationPreview:
    """Outcome of preview_propagation."""
    item_id: str
    new_status: bool
    affected: List[PropagatedUpdate] = field(default_factory=list)

    @property
    def affected_count(self) -> int:
        return len(self.affected)

    def to_dict(self) -> Dict[str, Any]:
        """Shape of preview_status_propagation."""
        return {
            "affected_items": [a.to_preview_dict() for a in self.affected],
            "affected_count": self.affected_count,
        }


def check_field_changes(item_id: str, field_changes: Dict[str, Any]) -> None:
    """Raise InvalidUpdateError unless every field is updatable with a value of its type."""
    unknown = set(field_changes) - UPDATABLE_ITEM_FIELDS
    if unknown:
        raise InvalidUpdateError(
            f"Fields cannot be updated: {', '.join(sorted(unknown))}",
            item_ids=[item_id],
        )

    for name, value in sorted(field_changes.items()):
        accepted = ITEM_FIELD_TYPES[name]
        # bool is an int subclass and is not a position
        if not isinstance(value, accepted) or (isinstance(value, bool) and bool not in accepted):
            raise InvalidUpdateError(
                f"Invalid value for {name}: expected "
                f"{' or '.join(t.__name__ for t in accepted)}, got {type(value).__name__}",
                item_ids=[item_id],
            )


class PropagationEngine:
    """
    Applies item updates with downward status propagation.

    Usage:
        engine = PropagationEngine(store, transactions)
        preview = engine.preview_propagation(item_id, True)
        result = engine.update_with_propagation(item_id, {"is_completed": True})
    """

    def __init__(self, store: "LinkStore", transactions: "TransactionManager"):
        self._store = store
        self._transactions = transactions

    def update_with_propagation(
        self,
        item_id: str,
        field_changes: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> PropagationResult:
        """
        Apply field changes to an item, propagating a status change.

        Raises:
            InvalidUpdateError: a field cannot be updated or its value has the wrong type
            ItemNotFoundError: item missing or not visible to the actor
            AccessDeniedError: the actor may see the item but not edit it
            LinkIntegrityError: a dangling edge or cycle was met; nothing is written
        """
        check_field_changes(item_id, field_changes)

        with self._transactions.transaction(
            source="propagation", description=f"update {item_id}"
        ) as tx:
            view = self._store.view()
            item = view.get_item(item_id)
            if item is None or not view.is_visible(item.list_id, actor_id):
                raise ItemNotFoundError(item_id, transaction_id=tx.transaction_id)
            if not view.can_edit(item.list_id, actor_id):
                raise AccessDeniedError(actor_id, item_id, "update", transaction_id=tx.transaction_id)

            status_changed = self._apply_fields(item, field_changes)
            updated = self._store.put_item(item, cause=EventCause.USER)

            propagated: List[PropagatedUpdate] = []
            if status_changed:
                propagated = self._propagate(view, item_id, item.is_completed)

            affected_list_ids = [item.list_id]
            for update in propagated:
                if update.list_id not in affected_list_ids:
                    affected_list_ids.append(update.list_id)

        if propagated:
            logger.info(
                f"Item {item_id} set to completed={updated.is_completed}; "
                f"propagated to {len(propagated)} descendant(s) in "
                f"{len(affected_list_ids)} list(s)"
            )
        else:
            logger.debug(f"Item {item_id} updated: {sorted(field_changes)}")

        return PropagationResult(
            updated_item=updated,
            propagated=propagated,
            affected_list_ids=affected_list_ids,
            transaction_id=tx.transaction_id,
        )

    def preview_propagation(
        self,
        item_id: str,
        new_status: bool,
        actor_id: Optional[str] = None,
    ) -> PropagationPreview:
        """Items a status change on item_id would change, without writing."""
        view = self._store.view()
        item = view.get_item(item_id)
        if item is None or not view.is_visible(item.list_id, actor_id):
            raise ItemNotFoundError(item_id)

        preview = PropagationPreview(item_id=item_id, new_status=new_status)
        if item.is_completed == new_status:
            return preview

        traversal = LinkGraph(view).descendants(item_id)
        if not traversal.is_clean:
            # Reads never fail on bad data; the write path will refuse it
            self._log_integrity(item_id, traversal)

        for descendant_id in traversal.order:
            descendant = view.get_item(descendant_id)
            if descendant is not None and descendant.is_completed != new_status:
                preview.affected.append(PropagatedUpdate(
                    item_id=descendant_id,
                    list_id=descendant.list_id,
                    old_status=descendant.is_completed,
                    new_status=new_status,
                ))
        return preview

    # =========================================================================
    # Internals
    # =========================================================================

    def _apply_fields(self, item: Item, field_changes: Dict[str, Any]) -> bool:
        """Apply direct changes. Returns True when the completion status changed."""
        status_changed = False
        for name, value in field_changes.items():
            if name == "is_completed":
                status_changed = item.set_completed(value)
            else:
                setattr(item, name, value)
        return status_changed

    def _propagate(self, view: "StoreView", origin_id: str, new_status: bool) -> List[PropagatedUpdate]:
        traversal = LinkGraph(view).descendants(origin_id)
        if traversal.dangling:
            source_id, missing_id = traversal.dangling[0]
            self._log_integrity(origin_id, traversal)
            raise DanglingEdgeError(source_id, missing_id)
        if traversal.returned_to_start:
            self._log_integrity(origin_id, traversal)
            raise UnexpectedCycleError([origin_id] + self._cycle_tail(view, traversal) + [origin_id])

        propagated = []
        for descendant_id in traversal.order:
            descendant = view.get_item(descendant_id)
            old_status = descendant.is_completed
            if not descendant.set_completed(new_status):
                continue
            self._store.put_item(descendant, cause=EventCause.PROPAGATED)
            propagated.append(PropagatedUpdate(
                item_id=descendant_id,
                list_id=descendant.list_id,
                old_status=old_status,
                new_status=new_status,
            ))
        return propagated

    def _cycle_tail(self, view: "StoreView", traversal: Traversal) -> List[str]:
        """Descendant path that closes back on the origin."""
        for item_id in traversal.order:
            if traversal.start_id in (view.children_of(item_id) or set()):
                return traversal.path_to(item_id)[1:]
        return []

    def _log_integrity(self, origin_id: str, traversal: Traversal) -> None:
        for source_id, missing_id in traversal.dangling:
            logger.error(
                f"Link integrity: {source_id} references missing item {missing_id} "
                f"(propagating from {origin_id})"
            )
        if traversal.returned_to_start:
            logger.error(f"Link integrity: cycle through {origin_id}")
