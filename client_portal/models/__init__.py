"""SQLAlchemy ORM Models for the client portal."""

from .base import Base, CreatedAtMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    AuditAction,
    ConsentAction,
    ConsentCategory,
    LinkDenialReason,
    NotificationFrequency,
    NotificationType,
    TWO_FA_ACTIONS,
    # Share links
    ShareLink,
    OtpChallenge,
    # Audit
    AuditLog,
    # Notifications
    DecisionNotification,
    NotificationPreference,
    # Consent
    ConsentHistoryEntry,
    ConsentState,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "CreatedAtMixin",
    "as_utc",
    "utcnow",
    # Enums
    "AuditAction",
    "ConsentAction",
    "ConsentCategory",
    "LinkDenialReason",
    "NotificationFrequency",
    "NotificationType",
    "TWO_FA_ACTIONS",
    # Share links
    "ShareLink",
    "OtpChallenge",
    # Audit
    "AuditLog",
    # Notifications
    "DecisionNotification",
    "NotificationPreference",
    # Consent
    "ConsentState",
    "ConsentHistoryEntry",
]
