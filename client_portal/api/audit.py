"""API routes for the audit trail."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from ..core.dependencies import AuditServiceDep, CurrentUserDep
from ..models import AuditAction, AuditLog, as_utc
from ..schemas import AuditLogEntry, AuditLogResponse, TwoFactorHistoryResponse

router = APIRouter(prefix="/audit", tags=["audit"])


def build_entry(entry: AuditLog) -> AuditLogEntry:
    return AuditLogEntry(
        id=entry.id,
        workspace_id=entry.workspace_id,
        actor_id=entry.actor_id,
        action=entry.action,
        resource_type=entry.resource_type,
        resource_id=entry.resource_id,
        details=entry.details or {},
        created_at=as_utc(entry.created_at),
    )


@router.get("/log", response_model=AuditLogResponse)
async def get_audit_log(
    current_user: CurrentUserDep,
    service: AuditServiceDep,
    page: int = Query(1, ge=1),
    page_size: Annotated[int, Query(ge=1, le=200, alias="pageSize")] = 50,
    actor_id: Annotated[UUID | None, Query(alias="actorId")] = None,
    action: list[AuditAction] | None = Query(None),
    resource_type: Annotated[str | None, Query(alias="resourceType")] = None,
    resource_id: Annotated[UUID | None, Query(alias="resourceId")] = None,
    date_from: Annotated[datetime | None, Query(alias="dateFrom")] = None,
    date_to: Annotated[datetime | None, Query(alias="dateTo")] = None,
):
    """Query the caller's workspace trail with filters, newest first.

    Callers without a workspace only see entries they are the actor of.
    """
    offset = (page - 1) * page_size

    workspace_id = current_user.organization_id
    if workspace_id is None:
        actor_id = current_user.id

    entries, total = await service.query(
        workspace_id=workspace_id,
        actor_id=actor_id,
        actions=action,
        resource_type=resource_type,
        resource_id=resource_id,
        date_from=date_from,
        date_to=date_to,
        limit=page_size,
        offset=offset,
    )

    return AuditLogResponse(
        items=[build_entry(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get("/two-factor", response_model=TwoFactorHistoryResponse)
async def get_two_factor_history(
    current_user: CurrentUserDep,
    service: AuditServiceDep,
):
    """The current user's 2FA enrollment changes, latest 50."""
    entries = await service.two_factor_history(current_user.id)
    return TwoFactorHistoryResponse(items=[build_entry(e) for e in entries])
