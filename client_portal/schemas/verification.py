"""Pydantic schemas for the passcode gate."""

from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field

from .base import PortalBaseModel


class SendOtpRequest(PortalBaseModel):
    email: EmailStr
    decision_id: UUID


class SendOtpResponse(PortalBaseModel):
    sent: bool
    expires_at: datetime | None = None
    retry_after_seconds: int | None = None


class VerifyOtpRequest(PortalBaseModel):
    email: EmailStr
    otp: str = Field(min_length=1, max_length=16)
    decision_id: UUID


class VerifyOtpResponse(PortalBaseModel):
    verified: bool
    portal_session: str | None = None
    expires_at: datetime | None = None
    remaining_attempts: int | None = None
    message: str | None = None
