"""API routes for the client passcode gate."""

from fastapi import APIRouter

from ..core.dependencies import PortalAccessDep
from ..schemas import (
    SendOtpRequest,
    SendOtpResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from ..services import PortalError
from .errors import error_response

router = APIRouter(prefix="/verification", tags=["verification"])


@router.post("/send-otp", response_model=SendOtpResponse)
async def send_otp(request: SendOtpRequest, service: PortalAccessDep):
    """Email a fresh passcode. Earlier codes for the same decision stop working."""
    try:
        result = await service.send_otp(request.decision_id, request.email)
    except PortalError as e:
        return error_response(e)

    return SendOtpResponse(
        sent=result.sent,
        expires_at=result.expires_at,
        retry_after_seconds=result.retry_after_seconds,
    )


@router.post("/verify-otp", response_model=VerifyOtpResponse)
async def verify_otp(request: VerifyOtpRequest, service: PortalAccessDep):
    """Check a passcode and hand back the portal session used by consume."""
    try:
        result = await service.verify_otp(request.email, request.otp, request.decision_id)
    except PortalError as e:
        return error_response(e)

    return VerifyOtpResponse(
        verified=result.verified,
        portal_session=result.portal_session,
        expires_at=result.expires_at,
    )
