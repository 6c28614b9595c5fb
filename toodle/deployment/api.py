"""
deployment/api.py - REST API

Serves the linking RPC surface over HTTP:

    POST /rpc/<operation>                  one endpoint per service operation
    GET  /api/v1/items/{id}/link-stats     maintenance reads
    GET  /api/v1/items/{id}/link-summary
    GET  /api/v1/items/{id}/deletion-impact
    GET  /api/v1/items/{id}/hierarchy
    GET  /api/v1/integrity                operators only
    POST /api/v1/lists ...                 list/item boundary

Every route except /health acts as the user named in the X-User-Id header
and answers 400 without it. Link rejections are data in a 200 response;
raised faults map to an HTTP status by category.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictBool, StrictInt, StrictStr, field_validator

from toodle import __version__
from toodle.core.enums import ListType, ShareRole
from toodle.errors import AccessDeniedError, ErrorCategory, ListNotFoundError
from toodle.links.service import failure

if TYPE_CHECKING:
    from toodle.bootstrap.app import AppContext

logger = logging.getLogger("deployment.api")


# HTTP status per fault category
STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION.value: 400,
    ErrorCategory.NOT_FOUND.value: 404,
    ErrorCategory.TRANSACTION.value: 503,
    ErrorCategory.INTEGRITY.value: 500,
    ErrorCategory.PERMISSION.value: 403,
}


# =============================================================================
# Request Models
# =============================================================================

class LinkRequest(BaseModel):
    """Request model for validating or creating parent-child links."""
    parent_item_id: str
    child_item_ids: List[str]

    @field_validator('child_item_ids')
    @classmethod
    def validate_children(cls, v):
        if not v:
            raise ValueError('child_item_ids cannot be empty')
        return v


class UnlinkRequest(BaseModel):
    """Request model for removing one parent-child link."""
    parent_item_id: str
    child_item_id: str


class ItemRef(BaseModel):
    """Request model naming one item."""
    item_id: str


class ItemFieldChanges(BaseModel):
    """Updatable item fields. Values are not coerced; unknown fields are refused."""
    model_config = {"extra": "forbid"}

    content: Optional[StrictStr] = None
    is_completed: Optional[StrictBool] = None
    position: Optional[StrictInt] = None
    target_date: Optional[StrictStr] = None

    @field_validator('content', 'is_completed', 'position')
    @classmethod
    def validate_not_null(cls, v):
        if v is None:
            raise ValueError('value cannot be null')
        return v

    def changes(self) -> Dict[str, Any]:
        """Only the fields the caller sent."""
        return self.model_dump(exclude_unset=True)


class PropagationUpdate(BaseModel):
    """Request model for an item update with status propagation."""
    item_id: str
    field_changes: ItemFieldChanges


class BatchUpdateRequest(BaseModel):
    """Request model for several updates, each applied on its own."""
    updates: List[PropagationUpdate]

    @field_validator('updates')
    @classmethod
    def validate_updates(cls, v):
        if not v:
            raise ValueError('updates cannot be empty')
        return v


class PropagationPreviewRequest(BaseModel):
    """Request model for previewing status propagation."""
    item_id: str
    new_status: bool


class ListCreate(BaseModel):
    """Request model for creating a list."""
    title: str
    type: ListType = ListType.SIMPLE
    is_private: bool = True


class ShareCreate(BaseModel):
    """Request model for sharing a list."""
    user_id: str
    role: ShareRole = ShareRole.READ


class ItemCreate(BaseModel):
    """Request model for creating an item."""
    content: str
    position: Optional[int] = None
    is_completed: bool = False
    target_date: Optional[str] = None


# =============================================================================
# Application
# =============================================================================

def create_fastapi_app(context: "AppContext"):
    """
    Create FastAPI application.

    Args:
        context: Built application context

    Returns:
        FastAPI application instance
    """
    config = context.config
    service = context.service

    app = FastAPI(
        title="Toodle API",
        description="Cross-list link graph engine",
        version=__version__,
        docs_url=config.api.docs_url if config.api.enable_docs else None,
        redoc_url="/redoc" if config.api.enable_docs else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def respond(result: Dict[str, Any]):
        """Pass through successes and rejections; map raised faults to a status code."""
        if result.get("success", True) is not False or "error_category" not in result:
            return result
        status = STATUS_BY_CATEGORY.get(result["error_category"], 500)
        return JSONResponse(status_code=status, content=result)

    def acting_user(x_user_id: Optional[str]) -> str:
        if not x_user_id:
            raise HTTPException(status_code=400, detail="X-User-Id header required")
        return x_user_id

    def operator(x_user_id: Optional[str]) -> str:
        user_id = acting_user(x_user_id)
        if user_id not in config.api.operator_ids:
            raise HTTPException(status_code=403, detail="Operator access required")
        return user_id

    # =========================================================================
    # Health Endpoints
    # =========================================================================

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "uptime_seconds": context.get_uptime(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


    # =========================================================================
    # Link RPC Endpoints
    # =========================================================================

    @app.post("/rpc/validate_link_creation")
    def validate_link_creation(request: LinkRequest, x_user_id: Optional[str] = Header(None)):
        return service.validate_link_creation(
            request.parent_item_id, request.child_item_ids, actor_id=acting_user(x_user_id)
        )

    @app.post("/rpc/create_parent_child_link")
    def create_parent_child_link(request: LinkRequest, x_user_id: Optional[str] = Header(None)):
        return respond(service.create_parent_child_link(
            request.parent_item_id, request.child_item_ids, actor_id=acting_user(x_user_id)
        ))

    @app.post("/rpc/remove_parent_child_link")
    def remove_parent_child_link(request: UnlinkRequest, x_user_id: Optional[str] = Header(None)):
        return respond(service.remove_parent_child_link(
            request.parent_item_id, request.child_item_id, actor_id=acting_user(x_user_id)
        ))

    @app.post("/rpc/get_child_items")
    def get_child_items(request: ItemRef, x_user_id: Optional[str] = Header(None)):
        return service.get_child_items(request.item_id, actor_id=acting_user(x_user_id))

    @app.post("/rpc/get_parent_items")
    def get_parent_items(request: ItemRef, x_user_id: Optional[str] = Header(None)):
        return service.get_parent_items(request.item_id, actor_id=acting_user(x_user_id))

    @app.post("/rpc/update_item_with_propagation")
    def update_item_with_propagation(request: PropagationUpdate, x_user_id: Optional[str] = Header(None)):
        return respond(service.update_item_with_propagation(
            request.item_id, request.field_changes.changes(), actor_id=acting_user(x_user_id)
        ))

    @app.post("/rpc/batch_update_with_propagation")
    def batch_update_with_propagation(request: BatchUpdateRequest, x_user_id: Optional[str] = Header(None)):
        updates = [
            {"item_id": u.item_id, "field_changes": u.field_changes.changes()}
            for u in request.updates
        ]
        return service.batch_update_with_propagation(updates, actor_id=acting_user(x_user_id))

    @app.post("/rpc/preview_status_propagation")
    def preview_status_propagation(request: PropagationPreviewRequest, x_user_id: Optional[str] = Header(None)):
        return respond(service.preview_status_propagation(
            request.item_id, request.new_status, actor_id=acting_user(x_user_id)
        ))

    @app.post("/rpc/remove_all_links")
    def remove_all_links(request: ItemRef, x_user_id: Optional[str] = Header(None)):
        return respond(service.remove_all_links(request.item_id, actor_id=acting_user(x_user_id)))

    @app.post("/rpc/cleanup_orphaned_links")
    def cleanup_orphaned_links(x_user_id: Optional[str] = Header(None)):
        operator(x_user_id)
        return respond(service.cleanup_orphaned_links())

    # =========================================================================
    # Maintenance Endpoints
    # =========================================================================

    @app.get("/api/v1/items/{item_id}/link-stats")
    def get_item_link_stats(item_id: str, x_user_id: Optional[str] = Header(None)):
        return respond(service.get_item_link_stats(item_id, actor_id=acting_user(x_user_id)))

    @app.get("/api/v1/items/{item_id}/link-summary")
    def get_link_summary(item_id: str, x_user_id: Optional[str] = Header(None)):
        return respond(service.get_link_summary(item_id, actor_id=acting_user(x_user_id)))

    @app.get("/api/v1/items/{item_id}/has-relationships")
    def has_relationships(item_id: str, x_user_id: Optional[str] = Header(None)):
        return {
            "item_id": item_id,
            "has_relationships": service.has_relationships(item_id, actor_id=acting_user(x_user_id)),
        }

    @app.get("/api/v1/items/{item_id}/deletion-impact")
    def check_deletion_impact(item_id: str, x_user_id: Optional[str] = Header(None)):
        return respond(service.check_deletion_impact(item_id, actor_id=acting_user(x_user_id)))

    @app.get("/api/v1/items/{item_id}/hierarchy")
    def get_link_hierarchy(item_id: str, max_depth: Optional[int] = None, x_user_id: Optional[str] = Header(None)):
        return respond(service.get_link_hierarchy(item_id, max_depth, actor_id=acting_user(x_user_id)))

    @app.get("/api/v1/links/check")
    def check_link_exists(parent_id: str, child_id: str, x_user_id: Optional[str] = Header(None)):
        return respond(service.check_link_exists(parent_id, child_id, actor_id=acting_user(x_user_id)))

    @app.get("/api/v1/integrity")
    def integrity_report(x_user_id: Optional[str] = Header(None)):
        operator(x_user_id)
        issues = service.find_inconsistent_links()
        cycles = service.maintenance.find_cycles()
        return {
            "healthy": not issues and not cycles,
            "inconsistent_links": issues,
            "cycles": cycles,
            "recent_faults": [f.to_dict() for f in service.get_recent_faults()],
        }

    # =========================================================================
    # List / Item Endpoints
    # =========================================================================

    @app.get("/api/v1/lists")
    def get_lists(x_user_id: Optional[str] = Header(None)):
        user_id = acting_user(x_user_id)
        return [l.to_dict() for l in context.store.view().lists_for_user(user_id)]

    @app.post("/api/v1/lists")
    def create_list(request: ListCreate, x_user_id: Optional[str] = Header(None)):
        todo_list = service.create_list(acting_user(x_user_id), request.title, request.type, request.is_private)
        return todo_list.to_dict()

    @app.delete("/api/v1/lists/{list_id}")
    def delete_list(list_id: str, x_user_id: Optional[str] = Header(None)):
        return respond(service.delete_list(list_id, actor_id=acting_user(x_user_id)))

    @app.post("/api/v1/lists/{list_id}/shares")
    def share_list(list_id: str, request: ShareCreate, x_user_id: Optional[str] = Header(None)):
        user_id = acting_user(x_user_id)
        view = context.store.view()
        if view.get_list(list_id) is None or not view.is_visible(list_id, user_id):
            return respond(failure(ListNotFoundError(list_id)))
        if view.get_list(list_id).user_id != user_id:
            return respond(failure(AccessDeniedError(user_id, list_id, "share")))
        share = service.share_list(list_id, request.user_id, request.role)
        return share.to_dict()

    @app.get("/api/v1/lists/{list_id}/items")
    def get_list_items(list_id: str, x_user_id: Optional[str] = Header(None)):
        user_id = acting_user(x_user_id)
        view = context.store.view()
        if view.get_list(list_id) is None or not view.is_visible(list_id, user_id):
            raise HTTPException(status_code=404, detail="List not found")
        return [item.to_dict() for item in view.items_in_list(list_id)]

    @app.post("/api/v1/lists/{list_id}/items")
    def create_item(list_id: str, request: ItemCreate, x_user_id: Optional[str] = Header(None)):
        user_id = acting_user(x_user_id)
        view = context.store.view()
        if view.get_list(list_id) is None or not view.is_visible(list_id, user_id):
            return respond(failure(ListNotFoundError(list_id)))
        if not view.can_edit(list_id, user_id):
            return respond(failure(AccessDeniedError(user_id, list_id, "add items to")))
        try:
            item = service.create_item(
                list_id,
                request.content,
                position=request.position,
                is_completed=request.is_completed,
                target_date=request.target_date,
            )
        except ListNotFoundError as e:
            return respond(failure(e))
        return item.to_dict()

    @app.delete("/api/v1/items/{item_id}")
    def delete_item(item_id: str, x_user_id: Optional[str] = Header(None)):
        return respond(service.delete_item(item_id, actor_id=acting_user(x_user_id)))

    logger.info("API routes registered")
    return app
