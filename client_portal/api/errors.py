"""Translate service exceptions into HTTP responses.

Portal errors are returned, not raised, so the request session still
commits what the failed operation recorded (denial audit entries, passcode
attempt counts). Transient failures are raised so the session rolls back.
"""

import logging

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from ..schemas import ErrorResponse
from ..services import (
    GENERIC_LINK_MESSAGE,
    GENERIC_OTP_MESSAGE,
    InvalidInputError,
    InvalidOperationError,
    LinkUnavailableError,
    NotificationNotFoundError,
    OtpLockedError,
    OtpMismatchError,
    OtpRequiredError,
    PortalError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)


def error_response(exc: PortalError) -> JSONResponse:
    """Render a portal error. Link failures never reveal their reason."""
    if isinstance(exc, StoreUnavailableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc) or "Service temporarily unavailable",
            headers={"Retry-After": "1"},
        ) from exc

    remaining = None
    if isinstance(exc, LinkUnavailableError):
        logger.info(f"Link request refused: {exc.reason.value}")
        code, error, message = status.HTTP_404_NOT_FOUND, "link_unavailable", GENERIC_LINK_MESSAGE
    elif isinstance(exc, OtpRequiredError):
        code, error, message = status.HTTP_403_FORBIDDEN, "otp_required", str(exc)
    elif isinstance(exc, OtpMismatchError):
        code, error, message = status.HTTP_400_BAD_REQUEST, "otp_mismatch", str(exc)
        remaining = exc.remaining_attempts
    elif isinstance(exc, OtpLockedError):
        code, error, message = status.HTTP_400_BAD_REQUEST, "otp_invalid", GENERIC_OTP_MESSAGE
    elif isinstance(exc, InvalidInputError):
        code, error, message = status.HTTP_400_BAD_REQUEST, "invalid_input", str(exc)
    elif isinstance(exc, InvalidOperationError):
        code, error, message = status.HTTP_409_CONFLICT, "invalid_operation", str(exc)
    elif isinstance(exc, NotificationNotFoundError):
        code, error, message = status.HTTP_404_NOT_FOUND, "not_found", str(exc)
    else:
        code, error, message = status.HTTP_400_BAD_REQUEST, "portal_error", str(exc)

    return JSONResponse(
        status_code=code,
        content=ErrorResponse(
            error=error,
            message=message,
            remaining_attempts=remaining,
        ).model_dump(by_alias=True, exclude_none=True),
    )
