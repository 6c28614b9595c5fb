"""
links/graph.py - Traversal over the parent/child link graph

Read-only reachability on a StoreView: descendant and ancestor closure,
single-edge cycle tests and hierarchy trees. Whole-graph scans build a
networkx DiGraph of the children edges.
Edges pointing at missing items are collected, never followed.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Dict, List, Optional, Set, Tuple, TYPE_CHECKING
import logging

import networkx as nx

from toodle.core.enums import RelationKind

if TYPE_CHECKING:
    from .store import StoreView

logger = logging.getLogger("links.graph")

# Upper bound on cycles listed by one integrity scan
MAX_REPORTED_CYCLES = 100


@dataclass
class Traversal:
    """Result of a breadth-first walk from one item."""
    start_id: str
    direction: RelationKind
    order: List[str] = field(default_factory=list)
    depth: Dict[str, int] = field(default_factory=dict)
    via: Dict[str, str] = field(default_factory=dict)

    # (from_id, missing_id) pairs met on the way
    dangling: List[Tuple[str, str]] = field(default_factory=list)

    # True when the walk led back to the start item
    returned_to_start: bool = False

    @property
    def is_clean(self) -> bool:
        return not self.dangling and not self.returned_to_start

    def path_to(self, item_id: str) -> List[str]:
        """Path from the start item to item_id, inclusive."""
        if item_id != self.start_id and item_id not in self.via:
            return []
        path = [item_id]
        while path[-1] != self.start_id:
            path.append(self.via[path[-1]])
        return list(reversed(path))


class LinkGraph:
    """
    Reachability over `children` / `parents` edges of a store view.

    Every walk keeps a visited set, so a corrupted (cyclic) graph still
    terminates; the cycle is reported instead.
    """

    def __init__(self, view: "StoreView"):
        self._view = view

    def _neighbours(self, item_id: str, direction: RelationKind) -> Optional[Set[str]]:
        if direction == RelationKind.CHILDREN:
            return self._view.children_of(item_id)
        return self._view.parents_of(item_id)

    def walk(
        self,
        start_id: str,
        direction: RelationKind = RelationKind.CHILDREN,
        max_depth: Optional[int] = None,
        stop_at: Optional[str] = None,
    ) -> Traversal:
        """
        Breadth-first walk from start_id.

        Args:
            start_id: Item to start from (not included in order)
            direction: CHILDREN for descendants, PARENTS for ancestors
            max_depth: Stop expanding beyond this depth
            stop_at: Short-circuit as soon as this id is reached
        """
        result = Traversal(start_id=start_id, direction=direction)
        visited = {start_id}
        queue = deque([(start_id, 0)])

        while queue:
            current, depth = queue.popleft()
            if max_depth is not None and depth >= max_depth:
                continue

            neighbours = self._neighbours(current, direction)
            if neighbours is None:
                continue

            for nxt in sorted(neighbours):
                if nxt == start_id:
                    result.returned_to_start = True
                    continue
                if nxt in visited:
                    continue
                if not self._view.has_item(nxt):
                    result.dangling.append((current, nxt))
                    continue

                visited.add(nxt)
                result.order.append(nxt)
                result.depth[nxt] = depth + 1
                result.via[nxt] = current

                if nxt == stop_at:
                    return result
                queue.append((nxt, depth + 1))

        return result

    def descendants(self, item_id: str) -> Traversal:
        return self.walk(item_id, RelationKind.CHILDREN)

    def ancestors(self, item_id: str) -> Traversal:
        return self.walk(item_id, RelationKind.PARENTS)

    def reaches(self, source_id: str, target_id: str) -> Tuple[bool, Traversal]:
        """
        True if a directed children-path exists from source to target.

        Adding edge target -> source would close a cycle exactly when this
        holds.
        """
        if source_id == target_id:
            return True, Traversal(start_id=source_id, direction=RelationKind.CHILDREN)
        traversal = self.walk(source_id, RelationKind.CHILDREN, stop_at=target_id)
        return target_id in traversal.depth, traversal

    def hierarchy(self, root_id: str, max_depth: int) -> List[Dict[str, Any]]:
        """Descendant tree of root_id as flat nodes with depth and parent."""
        traversal = self.walk(root_id, RelationKind.CHILDREN, max_depth=max_depth)
        nodes = []
        for item_id in traversal.order:
            item = self._view.get_item(item_id)
            nodes.append({
                "item_id": item_id,
                "parent_id": traversal.via[item_id],
                "depth": traversal.depth[item_id],
                "content": item.content if item else None,
                "is_completed": item.is_completed if item else None,
                "list_id": item.list_id if item else None,
            })
        return nodes

    def to_digraph(self) -> "nx.DiGraph":
        """Children edges between existing items as a directed graph."""
        graph = nx.DiGraph()
        for item_id in self._view.item_ids():
            graph.add_node(item_id)
            for child in self._view.children_of(item_id) or set():
                if self._view.has_item(child):
                    graph.add_edge(item_id, child)
        return graph

    def find_cycles(self, limit: int = MAX_REPORTED_CYCLES) -> List[List[str]]:
        """Cycles over children edges, each as a closed path."""
        cycles = []
        for cycle in islice(nx.simple_cycles(self.to_digraph()), limit):
            cycles.append(list(cycle) + [cycle[0]])

        if cycles:
            logger.error(f"Link graph contains {len(cycles)} cycle(s)")
        return cycles
