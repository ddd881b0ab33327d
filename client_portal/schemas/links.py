"""Pydantic schemas for share links."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import EmailStr, Field, model_validator

from .base import PortalBaseModel


class GenerateLinkRequest(PortalBaseModel):
    """Issue a link for one decision."""

    decision_id: UUID
    expiry_seconds: int | None = Field(default=None, gt=0)
    require_otp: bool = False
    max_usage: int | None = Field(default=None, ge=1)
    no_expiry: bool = False
    recipient_email: EmailStr | None = None


class GeneratedLinkResponse(PortalBaseModel):
    """The only response that ever carries a plaintext token."""

    id: UUID
    token: str
    url: str
    decision_id: UUID
    expires_at: datetime | None
    requires_otp: bool
    max_usage: int | None
    created_at: datetime
    emailed: bool = False


class VerifyLinkResponse(PortalBaseModel):
    valid: bool
    decision_id: UUID | None = None
    expires_at: datetime | None = None
    requires_otp: bool | None = None
    usage_count: int | None = None
    max_usage: int | None = None
    message: str | None = None


class ConsumeLinkResponse(PortalBaseModel):
    success: bool
    decision_id: UUID
    view_payload: dict[str, Any]
    usage_count: int


class RevokeLinkResponse(PortalBaseModel):
    success: bool


class ReissueLinkRequest(PortalBaseModel):
    """Overrides for the replacement link. Omitted fields keep the old policy."""

    expiry_seconds: int | None = Field(default=None, gt=0)
    require_otp: bool | None = None
    max_usage: int | None = Field(default=None, ge=1)
    no_expiry: bool = False
    clear_max_usage: bool = False


class ExtendLinkRequest(PortalBaseModel):
    expires_at: datetime | None = None
    expiry_seconds: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def exactly_one_target(self) -> "ExtendLinkRequest":
        if (self.expires_at is None) == (self.expiry_seconds is None):
            raise ValueError("Provide exactly one of expiresAt or expirySeconds")
        return self


class ExtendLinkResponse(PortalBaseModel):
    success: bool
    expires_at: datetime


class ShareLinkSummary(PortalBaseModel):
    """Operator view of a link. Never includes the token or its hash."""

    id: UUID
    decision_id: UUID
    status: Literal["active", "revoked", "expired", "exhausted"]
    created_at: datetime
    expires_at: datetime | None
    requires_otp: bool
    max_usage: int | None
    usage_count: int
    revoked_at: datetime | None
    last_used_at: datetime | None
    superseded_by_id: UUID | None


class ShareLinkListResponse(PortalBaseModel):
    items: list[ShareLinkSummary]
    total: int
