"""FastAPI dependencies for authentication, collaborators and services."""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import utcnow
from ..services import (
    AuditService,
    ConsentService,
    LinkService,
    MessageDispatcher,
    NotificationService,
    PortalAccessService,
    ResourceProvider,
    get_dispatcher,
    get_resource_provider,
)
from .config import Settings, get_settings
from .database import get_session
from .security import decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """Represents the authenticated studio user."""

    def __init__(self, user_id: UUID, organization_id: UUID | None = None):
        self.id = user_id
        self.organization_id = organization_id


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> CurrentUser:
    """Dependency to get the current authenticated studio user from a JWT."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    try:
        user_id = UUID(payload.sub)
        org_id = UUID(payload.org) if payload.org else None
    except ValueError:
        logger.warning("Access token carried a malformed subject")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )

    return CurrentUser(user_id=user_id, organization_id=org_id)


# =============================================================================
# COLLABORATORS
# =============================================================================


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_resource_provider_dep(
    settings: Annotated[Settings, Depends(get_settings)],
) -> ResourceProvider:
    try:
        return get_resource_provider(settings)
    except RuntimeError as e:
        logger.error(f"Decision payload source is not configured: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Decision content is temporarily unavailable",
        )


def get_dispatcher_dep(
    settings: Annotated[Settings, Depends(get_settings)],
) -> MessageDispatcher:
    return get_dispatcher(settings)


# =============================================================================
# SERVICES
# =============================================================================


def get_link_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> LinkService:
    """Link management for studio endpoints. Never fetches decision payloads."""
    return LinkService(session, settings=settings, clock=clock)


def get_portal_access_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
    dispatcher: Annotated[MessageDispatcher, Depends(get_dispatcher_dep)],
) -> PortalAccessService:
    """Passcode gate for clients. Never fetches decision payloads."""
    return PortalAccessService(
        session,
        dispatcher=dispatcher,
        settings=settings,
        clock=clock,
    )


def get_portal_consume_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
    resource_provider: Annotated[ResourceProvider, Depends(get_resource_provider_dep)],
    dispatcher: Annotated[MessageDispatcher, Depends(get_dispatcher_dep)],
) -> PortalAccessService:
    """Link consumption, the only path that needs the decision payload source."""
    return PortalAccessService(
        session,
        resource_provider=resource_provider,
        dispatcher=dispatcher,
        settings=settings,
        clock=clock,
    )


def get_audit_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> AuditService:
    return AuditService(session, clock=clock)


def get_notification_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> NotificationService:
    return NotificationService(session, settings=settings, clock=clock)


def get_consent_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> ConsentService:
    return ConsentService(session, clock=clock)


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
ClockDep = Annotated[Callable[[], datetime], Depends(get_clock)]
DispatcherDep = Annotated[MessageDispatcher, Depends(get_dispatcher_dep)]
LinkServiceDep = Annotated[LinkService, Depends(get_link_service)]
PortalAccessDep = Annotated[PortalAccessService, Depends(get_portal_access_service)]
PortalConsumeDep = Annotated[PortalAccessService, Depends(get_portal_consume_service)]
AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
ConsentServiceDep = Annotated[ConsentService, Depends(get_consent_service)]
