"""Service approval endpoints."""

import logging
from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse

from approvalhub.api.responses import envelope, paginated
from approvalhub.services.approval import ApprovalWorkflowEngine, get_approval_workflow_engine
from approvalhub.services.approval.schemas import (
    ApprovalCreate,
    ApprovalListFilters,
    ApprovalPriority,
    ApprovalStatus,
    ApprovalType,
    ApprovalUpdate,
    ApprovalUrgency,
    BulkApprovalUpdate,
    TransitionRequest,
)
from approvalhub.services.auth import ServiceAuthContext, require_permission
from approvalhub.services.stats import ApprovalStatsService, get_approval_stats_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/approvals", tags=["Approvals"])

Engine = Annotated[ApprovalWorkflowEngine, Depends(get_approval_workflow_engine)]


def _service(permission: str):
    return Annotated[ServiceAuthContext, Depends(require_permission(permission))]


Reader = _service("approvals:read")
Creator = _service("approvals:create")
Updater = _service("approvals:update")
Deleter = _service("approvals:delete")
Approver = _service("approvals:approve")
Manager = _service("approvals:manage")


@router.get("")
async def list_approvals(
    service: Reader,
    engine: Engine,
    approval_type: ApprovalType | None = Query(None, alias="approvalType"),
    approval_status: ApprovalStatus | None = Query(None, alias="status"),
    priority: ApprovalPriority | None = Query(None),
    urgency: ApprovalUrgency | None = Query(None),
    external_id: str | None = Query(None, alias="externalId"),
    date_from: datetime | None = Query(None, alias="dateFrom"),
    date_to: datetime | None = Query(None, alias="dateTo"),
    sort_by: Literal["created_at", "updated_at", "due_date", "priority", "title", "status"] = Query(
        "created_at", alias="sortBy"
    ),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    limit: int = Query(20, ge=1, description="Page size (capped at 100)"),
    offset: int = Query(0, ge=0),
) -> JSONResponse:
    """List the calling service's approvals.

    Requires: approvals:read
    """
    filters = ApprovalListFilters(
        approval_type=approval_type,
        status=approval_status,
        priority=priority,
        urgency=urgency,
        external_id=external_id,
        date_from=date_from,
        date_to=date_to,
    )
    views, total, limit, offset = await engine.list_approvals(
        service, filters, limit=limit, offset=offset, sort_by=sort_by, sort_order=sort_order
    )
    return paginated(views, total, limit, offset)


@router.post("")
async def create_approval(
    service: Creator, engine: Engine, request: ApprovalCreate
) -> JSONResponse:
    """Create a multi-level approval.

    Requires: approvals:create
    """
    view = await engine.create(service, request)
    return envelope(
        view, message="Approval created successfully", status_code=status.HTTP_201_CREATED
    )


@router.patch("")
async def bulk_update_approvals(
    service: Updater, engine: Engine, request: BulkApprovalUpdate
) -> JSONResponse:
    """Apply one update to several approvals.

    Requires: approvals:update
    """
    updated = await engine.bulk_update(service, request.approval_ids, request.updates)
    return envelope({"updatedCount": updated}, message=f"Updated {updated} approvals")


@router.delete("")
async def bulk_delete_approvals(
    service: Deleter,
    engine: Engine,
    approval_ids: str = Query(..., alias="approvalIds", description="Comma-separated IDs"),
) -> JSONResponse:
    """Delete several approvals.

    Requires: approvals:delete
    """
    ids = [i.strip() for i in approval_ids.split(",") if i.strip()]
    deleted = await engine.bulk_delete(service, ids)
    return envelope({"deletedCount": deleted}, message=f"Deleted {deleted} approvals")


@router.get("/stats")
async def get_approval_stats(
    service: Reader,
    stats: Annotated[ApprovalStatsService, Depends(get_approval_stats_service)],
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
) -> JSONResponse:
    """Usage statistics of the calling service.

    Requires: approvals:read
    """
    result = await stats.get_stats(
        service.service_id, start_date=start_date, end_date=end_date
    )
    return envelope(result)


@router.get("/{approval_id}")
async def get_approval(approval_id: str, service: Reader, engine: Engine) -> JSONResponse:
    """Get one approval with its workflow.

    Requires: approvals:read
    """
    return envelope(await engine.get(service, approval_id))


@router.patch("/{approval_id}")
async def update_approval(
    approval_id: str, service: Updater, engine: Engine, request: ApprovalUpdate
) -> JSONResponse:
    """Edit descriptive fields.

    Requires: approvals:update
    """
    view = await engine.update(service, approval_id, request)
    return envelope(view, message="Approval updated successfully")


@router.delete("/{approval_id}")
async def delete_approval(approval_id: str, service: Deleter, engine: Engine) -> JSONResponse:
    """Delete an approval and its decisions.

    Requires: approvals:delete
    """
    await engine.delete(service, approval_id)
    return envelope(message="Approval deleted successfully")


@router.post("/{approval_id}/approve")
async def approve_approval(
    approval_id: str,
    service: Approver,
    engine: Engine,
    request: TransitionRequest | None = Body(None),
) -> JSONResponse:
    """Approve at the current level.

    Requires: approvals:approve
    """
    request = request or TransitionRequest()
    view = await engine.approve(
        service, approval_id, expected_level=request.expected_level, comments=request.comments
    )
    message = (
        "Approval completed successfully"
        if view.status == ApprovalStatus.APPROVED
        else f"Approved at level {view.current_level - 1}, moved to level {view.current_level}"
    )
    return envelope(view, message=message)


@router.post("/{approval_id}/reject")
async def reject_approval(
    approval_id: str,
    service: Approver,
    engine: Engine,
    request: TransitionRequest | None = Body(None),
) -> JSONResponse:
    """Reject at the current level.

    Requires: approvals:approve
    """
    request = request or TransitionRequest()
    view = await engine.reject(
        service, approval_id, expected_level=request.expected_level, comments=request.comments
    )
    return envelope(view, message="Approval rejected")


@router.post("/{approval_id}/cancel")
async def cancel_approval(
    approval_id: str,
    service: Manager,
    engine: Engine,
    request: TransitionRequest | None = Body(None),
) -> JSONResponse:
    """Cancel a pending approval.

    Requires: approvals:manage
    """
    request = request or TransitionRequest()
    view = await engine.cancel(
        service, approval_id, expected_level=request.expected_level, comments=request.comments
    )
    return envelope(view, message="Approval cancelled")
