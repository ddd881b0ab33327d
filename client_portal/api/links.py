"""API routes for share links.

Studio users issue and manage links; anonymous clients verify and consume
them. Every token problem renders the same message.
"""

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, Query, status

from ..core.dependencies import (
    ClockDep,
    CurrentUserDep,
    DispatcherDep,
    LinkServiceDep,
    PortalConsumeDep,
)
from ..models import ShareLink, as_utc
from ..schemas import (
    ConsumeLinkResponse,
    ExtendLinkRequest,
    ExtendLinkResponse,
    GeneratedLinkResponse,
    GenerateLinkRequest,
    ReissueLinkRequest,
    RevokeLinkResponse,
    ShareLinkListResponse,
    ShareLinkSummary,
    VerifyLinkResponse,
)
from ..services import GENERIC_LINK_MESSAGE, GeneratedLink, PortalError
from .errors import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/links", tags=["links"])


# =============================================================================
# RESPONSE BUILDERS
# =============================================================================


def build_generated_response(link: GeneratedLink, emailed: bool = False) -> GeneratedLinkResponse:
    return GeneratedLinkResponse(
        id=link.id,
        token=link.token,
        url=link.url,
        decision_id=link.resource_id,
        expires_at=as_utc(link.expires_at),
        requires_otp=link.requires_otp,
        max_usage=link.max_usage,
        created_at=as_utc(link.created_at),
        emailed=emailed,
    )


def build_link_summary(link: ShareLink, now: datetime) -> ShareLinkSummary:
    reason = link.denial_reason(now)
    return ShareLinkSummary(
        id=link.id,
        decision_id=link.resource_id,
        status=reason.value if reason else "active",
        created_at=as_utc(link.created_at),
        expires_at=as_utc(link.expires_at),
        requires_otp=link.requires_otp,
        max_usage=link.max_usage,
        usage_count=link.usage_count,
        revoked_at=as_utc(link.revoked_at),
        last_used_at=as_utc(link.last_used_at),
        superseded_by_id=link.superseded_by_id,
    )


# =============================================================================
# STUDIO ENDPOINTS
# =============================================================================


@router.post(
    "/generate",
    response_model=GeneratedLinkResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a share link for a decision",
)
async def generate_link(
    request: GenerateLinkRequest,
    current_user: CurrentUserDep,
    service: LinkServiceDep,
    dispatcher: DispatcherDep,
):
    """Issue a link. With a recipient email the URL is also sent, best effort."""
    try:
        link = await service.generate(
            resource_id=request.decision_id,
            expiry_seconds=request.expiry_seconds,
            require_otp=request.require_otp,
            max_usage=request.max_usage,
            created_by=current_user.id,
            no_expiry=request.no_expiry,
            workspace_id=current_user.organization_id,
        )
    except PortalError as e:
        return error_response(e)

    emailed = False
    if request.recipient_email:
        emailed = await dispatcher.send_link(request.recipient_email, link.url)
        if not emailed:
            logger.warning(f"Share link {link.id} was issued but could not be emailed")

    return build_generated_response(link, emailed=emailed)


@router.get("", response_model=ShareLinkListResponse, summary="List links for a decision")
async def list_links(
    current_user: CurrentUserDep,
    service: LinkServiceDep,
    clock: ClockDep,
    decision_id: UUID = Query(..., alias="decisionId"),
):
    """Links for a decision issued within the caller's workspace.

    Callers without a workspace only see links they issued themselves.
    """
    if current_user.organization_id:
        links = await service.list_links(
            decision_id, workspace_id=current_user.organization_id
        )
    else:
        links = await service.list_links(decision_id, created_by=current_user.id)
    now = clock()
    return ShareLinkListResponse(
        items=[build_link_summary(link, now) for link in links],
        total=len(links),
    )


@router.post("/{token}/revoke", response_model=RevokeLinkResponse)
async def revoke_link(
    token: str,
    current_user: CurrentUserDep,
    service: LinkServiceDep,
):
    """Kill a link. Revoking an already revoked link still succeeds."""
    try:
        success = await service.revoke(token, actor_id=current_user.id)
    except PortalError as e:
        return error_response(e)

    return RevokeLinkResponse(success=success)


@router.post(
    "/{token}/reissue",
    response_model=GeneratedLinkResponse,
    status_code=status.HTTP_201_CREATED,
)
async def reissue_link(
    token: str,
    current_user: CurrentUserDep,
    service: LinkServiceDep,
    request: ReissueLinkRequest | None = None,
):
    """Revoke a link and issue its replacement in one transaction."""
    request = request or ReissueLinkRequest()
    try:
        link = await service.reissue(
            token,
            actor_id=current_user.id,
            expiry_seconds=request.expiry_seconds,
            require_otp=request.require_otp,
            max_usage=request.max_usage,
            no_expiry=request.no_expiry,
            clear_max_usage=request.clear_max_usage,
        )
    except PortalError as e:
        return error_response(e)

    return build_generated_response(link)


@router.post("/{token}/extend", response_model=ExtendLinkResponse)
async def extend_link(
    token: str,
    request: ExtendLinkRequest,
    current_user: CurrentUserDep,
    service: LinkServiceDep,
):
    try:
        result = await service.extend(
            token,
            actor_id=current_user.id,
            expires_at=request.expires_at,
            expiry_seconds=request.expiry_seconds,
        )
    except PortalError as e:
        return error_response(e)

    return ExtendLinkResponse(success=result.success, expires_at=result.expires_at)


# =============================================================================
# CLIENT ENDPOINTS
# =============================================================================


@router.get("/{token}/verify", response_model=VerifyLinkResponse)
async def verify_link(token: str, service: LinkServiceDep):
    """Check a link without using it. Safe to call on every page load."""
    result = await service.verify(token)
    if not result.valid:
        return VerifyLinkResponse(valid=False, message=GENERIC_LINK_MESSAGE)

    return VerifyLinkResponse(
        valid=True,
        decision_id=result.resource_id,
        expires_at=result.expires_at,
        requires_otp=result.requires_otp,
        usage_count=result.usage_count,
        max_usage=result.max_usage,
    )


@router.post("/{token}/consume", response_model=ConsumeLinkResponse)
async def consume_link(
    token: str,
    service: PortalConsumeDep,
    x_portal_session: Annotated[str | None, Header()] = None,
):
    """Count one use of the link and return the decision view."""
    try:
        result = await service.consume(token, portal_session=x_portal_session)
    except PortalError as e:
        return error_response(e)

    return ConsumeLinkResponse(
        success=result.success,
        decision_id=result.resource_id,
        view_payload=result.view_payload,
        usage_count=result.usage_count,
    )
