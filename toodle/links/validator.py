"""
links/validator.py - Link request validation

Decides which proposed parent -> child edges are acceptable. Pure with
respect to the store: it reads one view and writes nothing.

Checks per child, in order:
1. self_link            child is the parent
2. not_found            child missing, or its list is not visible to the actor
3. cross_user           parent's list is not visible to the actor
4. circular_dependency  child already reaches parent over children edges
5. max_limit            batch or total relation bounds would be exceeded

Every child is checked against the graph as it was before the batch.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING
import logging

from toodle.bootstrap.config import LinkConfig
from toodle.core.constants import rejection_message
from toodle.core.enums import LinkRejectionReason
from .graph import LinkGraph

if TYPE_CHECKING:
    from .store import LinkStore, StoreView

logger = logging.getLogger("links.validator")


@dataclass
class LinkRejection:
    """A proposed child that was not accepted."""
    child_id: str
    reason: LinkRejectionReason

    @property
    def message(self) -> str:
        return rejection_message(self.reason, self.child_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"child_id": self.child_id, "reason": self.reason.value}


@dataclass
class LinkValidationResult:
    """Outcome of validating one batch."""
    parent_id: str
    acceptable: List[str] = field(default_factory=list)
    rejected: List[LinkRejection] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    # Acceptable ids that are already children of the parent
    existing: List[str] = field(default_factory=list)

    # Invariant violations met while validating (not rejections)
    integrity_issues: List[str] = field(default_factory=list)

    # Batch-level failure, e.g. the parent itself does not exist
    error: Optional[str] = None

    @property
    def new_links(self) -> List[str]:
        return [cid for cid in self.acceptable if cid not in self.existing]

    def rejection_for(self, child_id: str) -> Optional[LinkRejectionReason]:
        for rejection in self.rejected:
            if rejection.child_id == child_id:
                return rejection.reason
        return None

    def rejection_warnings(self) -> List[str]:
        return [rejection.message for rejection in self.rejected]

    def to_dict(self) -> Dict[str, Any]:
        """Shape of validate_link_creation."""
        result = {
            "valid_links": list(self.acceptable),
            "invalid_links": [r.to_dict() for r in self.rejected],
            "warnings": self.warnings + self.rejection_warnings(),
        }
        if self.error:
            result["error"] = self.error
        return result


class LinkValidator:
    """
    Validates parent -> children link batches.

    Usage:
        validator = LinkValidator(store, config.link)
        result = validator.validate(parent_id, [child_a, child_b], actor_id=user_id)
    """

    def __init__(self, store: "LinkStore", config: Optional[LinkConfig] = None):
        self._store = store
        self._config = config or LinkConfig()

    def validate(
        self,
        parent_id: str,
        child_ids: List[str],
        actor_id: Optional[str] = None,
        view: Optional["StoreView"] = None,
    ) -> LinkValidationResult:
        """
        Validate a proposed batch of children for one parent.

        Args:
            parent_id: Parent item
            child_ids: Proposed children, evaluated in order
            actor_id: Acting user; None is the system context
            view: Store view to validate against (defaults to the caller's view)
        """
        view = view or self._store.view()
        graph = LinkGraph(view)
        result = LinkValidationResult(parent_id=parent_id)

        parent = view.get_item(parent_id)
        if parent is None:
            result.error = "Parent item not found"
            for child_id in self._dedupe(child_ids, result):
                result.rejected.append(LinkRejection(child_id, LinkRejectionReason.NOT_FOUND))
            return result

        parent_visible = view.is_visible(parent.list_id, actor_id)
        parent_total = parent.linked_items.total()
        new_count = 0

        for child_id in self._dedupe(child_ids, result):
            reason = self._check_child(
                view, graph, parent, child_id, actor_id, parent_visible, result
            )

            if reason is None and child_id not in parent.linked_items.children:
                reason = self._check_limits(view, parent_total, new_count, child_id)
                if reason is None:
                    new_count += 1

            if reason is None:
                result.acceptable.append(child_id)
                if child_id in parent.linked_items.children:
                    result.existing.append(child_id)
            else:
                result.rejected.append(LinkRejection(child_id, reason))

        logger.debug(
            f"Validated {len(result.acceptable) + len(result.rejected)} link(s) from {parent_id}: "
            f"{len(result.acceptable)} acceptable, {len(result.rejected)} rejected"
        )
        return result

    def _dedupe(self, child_ids: List[str], result: LinkValidationResult) -> List[str]:
        seen = set()
        unique = []
        for child_id in child_ids:
            if child_id in seen:
                result.warnings.append(f"Duplicate child id ignored: {child_id}")
                continue
            seen.add(child_id)
            unique.append(child_id)
        return unique

    def _check_child(
        self,
        view: "StoreView",
        graph: LinkGraph,
        parent,
        child_id: str,
        actor_id: Optional[str],
        parent_visible: bool,
        result: LinkValidationResult,
    ) -> Optional[LinkRejectionReason]:
        if child_id == parent.id:
            return LinkRejectionReason.SELF_LINK

        child = view.get_item(child_id)
        if child is None or not view.is_visible(child.list_id, actor_id):
            return LinkRejectionReason.NOT_FOUND

        if not parent_visible:
            return LinkRejectionReason.CROSS_USER

        if child_id in parent.linked_items.children:
            return None

        creates_cycle, traversal = graph.reaches(child_id, parent.id)
        for source_id, missing_id in traversal.dangling:
            issue = f"Item {source_id} references missing item {missing_id}"
            if issue not in result.integrity_issues:
                result.integrity_issues.append(issue)
                logger.error(f"Link integrity: {issue}")
        if creates_cycle:
            return LinkRejectionReason.CIRCULAR_DEPENDENCY

        return None

    def _check_limits(
        self,
        view: "StoreView",
        parent_total: int,
        new_count: int,
        child_id: str,
    ) -> Optional[LinkRejectionReason]:
        if new_count >= self._config.max_links_per_batch:
            return LinkRejectionReason.MAX_LIMIT
        if parent_total + new_count + 1 > self._config.max_total_links:
            return LinkRejectionReason.MAX_LIMIT

        child = view.get_item(child_id)
        if child is not None and child.linked_items.total() + 1 > self._config.max_total_links:
            return LinkRejectionReason.MAX_LIMIT
        return None
