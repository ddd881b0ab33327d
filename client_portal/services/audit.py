"""Audit service: append-only trail and history queries."""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    TWO_FA_ACTIONS,
    AuditAction,
    AuditLog,
    ConsentAction,
    ConsentCategory,
    utcnow,
)

logger = logging.getLogger(__name__)

TWO_FA_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class HistoryChange:
    """One consent category flip derived from a before/after pair."""
    category: ConsentCategory
    action: ConsentAction
    timestamp: datetime


def diff_to_history(
    before: Any,
    after: Any,
    timestamp: datetime | None = None,
) -> list[HistoryChange]:
    """Compare consent flags pairwise and emit one entry per changed category.

    ``necessary`` is never compared; it cannot change. Unchanged categories
    produce nothing, so the trail grows only with real changes.
    """
    timestamp = timestamp or utcnow()
    changes = []
    for category in ConsentCategory:
        previous = bool(getattr(before, category.value))
        current = bool(getattr(after, category.value))
        if previous == current:
            continue
        changes.append(
            HistoryChange(
                category=category,
                action=ConsentAction.OPT_IN if current else ConsentAction.OPT_OUT,
                timestamp=timestamp,
            )
        )
    return changes


class AuditService:
    """Service for audit logging and compliance queries.

    Entries are written by the operation they document and only read
    afterwards. There is no update or delete path.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self._clock = clock

    async def append(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: UUID | None = None,
        actor_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        workspace_id: UUID | None = None,
    ) -> AuditLog:
        """Insert one audit entry in the caller's transaction."""
        entry = AuditLog(
            workspace_id=workspace_id,
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            created_at=self._clock(),
        )
        self.session.add(entry)
        await self.session.flush()
        logger.debug(f"Audit {action.value} on {resource_type}:{resource_id}")
        return entry

    async def query(
        self,
        workspace_id: UUID | None = None,
        actor_id: UUID | None = None,
        action: AuditAction | None = None,
        actions: Iterable[AuditAction] | None = None,
        resource_type: str | None = None,
        resource_id: UUID | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
        ascending: bool = False,
    ) -> tuple[Sequence[AuditLog], int]:
        """Query the audit log with filters, newest first unless ``ascending``."""
        query = select(AuditLog)

        if workspace_id:
            query = query.where(AuditLog.workspace_id == workspace_id)
        if actor_id:
            query = query.where(AuditLog.actor_id == actor_id)
        if action:
            query = query.where(AuditLog.action == action)
        if actions:
            query = query.where(AuditLog.action.in_(list(actions)))
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)
        if date_from:
            query = query.where(AuditLog.created_at >= date_from)
        if date_to:
            query = query.where(AuditLog.created_at <= date_to)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        if ascending:
            query = query.order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        else:
            query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        result = await self.session.execute(query.limit(limit).offset(offset))

        return result.scalars().all(), total

    async def two_factor_history(self, user_id: UUID) -> Sequence[AuditLog]:
        """2FA enrollment changes for one user, as the security settings show."""
        entries, _ = await self.query(
            actor_id=user_id,
            actions=TWO_FA_ACTIONS,
            limit=TWO_FA_HISTORY_LIMIT,
        )
        return entries
