"""
Toodle Link Graph Engine

Provides:
- LinkStore: durable record of items, lists and link sets
- LinkGraph: reachability over children/parents edges
- LinkValidator: acceptance decisions for link batches
- LinkMutator: atomic link writes and deletion cascades
- PropagationEngine: transitive completion-status propagation
- LinkMaintenance: diagnostics and orphan cleanup
- LinkingService: RPC facade
"""

from .store import LinkStore, StoreView
from .graph import LinkGraph, Traversal
from .validator import (
    LinkValidator,
    LinkValidationResult,
    LinkRejection,
)
from .mutator import LinkMutator, LinkBatchResult
from .propagation import (
    PropagationEngine,
    PropagationResult,
    PropagationPreview,
    PropagatedUpdate,
)
from .maintenance import LinkMaintenance
from .service import LinkingService

__all__ = [
    # Store
    "LinkStore",
    "StoreView",
    # Graph
    "LinkGraph",
    "Traversal",
    # Validation
    "LinkValidator",
    "LinkValidationResult",
    "LinkRejection",
    # Mutation
    "LinkMutator",
    "LinkBatchResult",
    # Propagation
    "PropagationEngine",
    "PropagationResult",
    "PropagationPreview",
    "PropagatedUpdate",
    # Maintenance
    "LinkMaintenance",
    # Service
    "LinkingService",
]
