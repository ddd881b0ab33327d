"""Pydantic schemas for the audit trail."""

from datetime import datetime
from typing import Any
from uuid import UUID

from ..models import AuditAction
from .base import PaginatedResponse, PortalBaseModel


class AuditLogEntry(PortalBaseModel):
    """A single audit log entry."""

    id: UUID
    workspace_id: UUID | None = None
    actor_id: UUID | None = None  # None for anonymous clients
    action: AuditAction
    resource_type: str
    resource_id: UUID | None = None
    details: dict[str, Any]
    created_at: datetime


class AuditLogResponse(PaginatedResponse):
    """Paginated audit log response."""

    items: list[AuditLogEntry]


class TwoFactorHistoryResponse(PortalBaseModel):
    items: list[AuditLogEntry]
