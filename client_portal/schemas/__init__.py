"""Pydantic schemas for API request/response validation."""

from .audit import AuditLogEntry, AuditLogResponse, TwoFactorHistoryResponse
from .base import (
    ErrorResponse,
    PaginatedResponse,
    PortalBaseModel,
)
from .consent import (
    ConsentHistoryItem,
    ConsentSnapshotResponse,
    ConsentStateSchema,
    ConsentUpdateRequest,
)
from .links import (
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
from .notifications import (
    MarkAllReadResponse,
    MuteRequest,
    NotificationChannels,
    NotificationListResponse,
    NotificationPreferencesRequest,
    NotificationPreferencesResponse,
    NotificationResponse,
    PublishEventRequest,
    PublishEventResponse,
    SnoozeRequest,
)
from .verification import (
    SendOtpRequest,
    SendOtpResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)

__all__ = [
    # Base
    "PortalBaseModel",
    "PaginatedResponse",
    "ErrorResponse",
    # Links
    "GenerateLinkRequest",
    "GeneratedLinkResponse",
    "VerifyLinkResponse",
    "ConsumeLinkResponse",
    "RevokeLinkResponse",
    "ReissueLinkRequest",
    "ExtendLinkRequest",
    "ExtendLinkResponse",
    "ShareLinkSummary",
    "ShareLinkListResponse",
    # Verification
    "SendOtpRequest",
    "SendOtpResponse",
    "VerifyOtpRequest",
    "VerifyOtpResponse",
    # Audit
    "AuditLogEntry",
    "AuditLogResponse",
    "TwoFactorHistoryResponse",
    # Notifications
    "NotificationResponse",
    "NotificationListResponse",
    "MarkAllReadResponse",
    "MuteRequest",
    "SnoozeRequest",
    "PublishEventRequest",
    "PublishEventResponse",
    "NotificationChannels",
    "NotificationPreferencesRequest",
    "NotificationPreferencesResponse",
    # Consent
    "ConsentStateSchema",
    "ConsentUpdateRequest",
    "ConsentHistoryItem",
    "ConsentSnapshotResponse",
]
