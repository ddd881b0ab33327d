"""SQLAlchemy ORM Models for the client portal access core.

Every table touched by share links, passcodes, the audit trail,
notifications and cookie consent is declared here; nothing reaches the
store through untyped table access.
"""

from datetime import datetime, time
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, CreatedAtMixin, UUIDMixin, as_utc


# =============================================================================
# ENUMS
# =============================================================================


class AuditAction(str, PyEnum):
    # Share links
    LINK_GENERATED = "link_generated"
    LINK_CONSUMED = "link_consumed"
    LINK_CONSUME_DENIED = "link_consume_denied"
    LINK_REVOKED = "link_revoked"
    LINK_REISSUED = "link_reissued"
    LINK_EXTENDED = "link_extended"
    # Passcodes
    OTP_SENT = "otp_sent"
    OTP_VERIFIED = "otp_verified"
    OTP_FAILED = "otp_failed"
    OTP_LOCKED = "otp_locked"
    # Two-factor enrollment
    TWO_FA_ENROLLED_TOTP = "2fa_enrolled_totp"
    TWO_FA_ENROLLED_SMS = "2fa_enrolled_sms"
    TWO_FA_DISABLED = "2fa_disabled"
    TWO_FA_RECOVERY_CODES_REGENERATED = "2fa_recovery_codes_regenerated"
    # Consent
    CONSENT_UPDATED = "consent_updated"
    # Workspace
    MEMBER_INVITED = "member_invited"
    MEMBER_REMOVED = "member_removed"
    ROLE_CHANGED = "role_changed"


TWO_FA_ACTIONS = (
    AuditAction.TWO_FA_ENROLLED_TOTP,
    AuditAction.TWO_FA_ENROLLED_SMS,
    AuditAction.TWO_FA_DISABLED,
    AuditAction.TWO_FA_RECOVERY_CODES_REGENERATED,
)


class LinkDenialReason(str, PyEnum):
    """Why a link could not be used. Recorded in the audit trail only."""
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    OTP_REQUIRED = "otp_required"


class NotificationType(str, PyEnum):
    COMMENT = "comment"
    MENTION = "mention"
    APPROVAL = "approval"
    CHANGES_REQUESTED = "changes_requested"
    REMINDER = "reminder"


class ConsentCategory(str, PyEnum):
    ANALYTICS = "analytics"
    MARKETING = "marketing"
    PREFERENCES = "preferences"


class NotificationFrequency(str, PyEnum):
    IMMEDIATE = "immediate"
    DIGEST = "digest"


class ConsentAction(str, PyEnum):
    OPT_IN = "opt-in"
    OPT_OUT = "opt-out"


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# SHARE LINKS
# =============================================================================


class ShareLink(Base, UUIDMixin, CreatedAtMixin):
    """Capability token granting no-login access to one decision.

    Only the SHA-256 digest of the bearer token is stored. Rows are never
    deleted; revocation and supersession are recorded in place.
    """

    __tablename__ = "share_links"

    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    resource_id: Mapped[UUID] = mapped_column(nullable=False)
    workspace_id: Mapped[UUID | None] = mapped_column()
    created_by: Mapped[UUID | None] = mapped_column()
    expires_at: Mapped[datetime | None] = mapped_column()
    requires_otp: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_usage: Mapped[int | None] = mapped_column(Integer)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column()
    last_used_at: Mapped[datetime | None] = mapped_column()
    superseded_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("share_links.id"))

    __table_args__ = (
        CheckConstraint("max_usage IS NULL OR max_usage >= 1", name="max_usage_positive"),
        CheckConstraint("usage_count >= 0", name="usage_count_non_negative"),
        CheckConstraint(
            "max_usage IS NULL OR usage_count <= max_usage",
            name="usage_within_cap",
        ),
        Index("idx_share_links_resource", "resource_id", "created_at"),
    )

    def denial_reason(self, now: datetime) -> LinkDenialReason | None:
        """First failing liveness condition, or None when the link is live."""
        if self.revoked_at is not None:
            return LinkDenialReason.REVOKED
        expires_at = as_utc(self.expires_at)
        if expires_at is not None and expires_at <= now:
            return LinkDenialReason.EXPIRED
        if self.max_usage is not None and self.usage_count >= self.max_usage:
            return LinkDenialReason.EXHAUSTED
        return None

    def is_live(self, now: datetime) -> bool:
        return self.denial_reason(now) is None


# =============================================================================
# ONE-TIME PASSCODES
# =============================================================================


class OtpChallenge(Base, UUIDMixin):
    """A passcode issued to a client email for one decision."""

    __tablename__ = "otp_challenges"

    decision_id: Mapped[UUID] = mapped_column(nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    code_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column()
    invalidated_at: Mapped[datetime | None] = mapped_column()
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_otp_challenges_pair", "decision_id", "email", "issued_at"),
    )


# =============================================================================
# AUDIT TRAIL
# =============================================================================


class AuditLog(Base, UUIDMixin, CreatedAtMixin):
    """Append-only audit trail."""

    __tablename__ = "audit_log"

    workspace_id: Mapped[UUID | None] = mapped_column()
    actor_id: Mapped[UUID | None] = mapped_column()
    action: Mapped[AuditAction] = mapped_column(_enum(AuditAction, "audit_action"), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[UUID | None] = mapped_column()
    details: Mapped[dict[str, Any]] = mapped_column(default=dict)

    __table_args__ = (
        Index("idx_audit_log_workspace", "workspace_id", "created_at"),
        Index("idx_audit_log_actor", "actor_id", "created_at"),
        Index("idx_audit_log_action", "action", "created_at"),
        Index("idx_audit_log_resource", "resource_type", "resource_id"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class DecisionNotification(Base, UUIDMixin, CreatedAtMixin):
    """Per-recipient projection of a decision event."""

    __tablename__ = "decision_notifications"

    user_id: Mapped[UUID] = mapped_column(nullable=False)
    decision_id: Mapped[UUID] = mapped_column(nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type"), nullable=False
    )
    reference_id: Mapped[str | None] = mapped_column(String(255))
    payload: Mapped[dict[str, Any]] = mapped_column(default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(String(255))
    read_at: Mapped[datetime | None] = mapped_column()
    muted_until: Mapped[datetime | None] = mapped_column()
    snoozed_until: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        Index("idx_decision_notifications_user", "user_id", "created_at"),
        Index(
            "idx_decision_notifications_idempotency",
            "idempotency_key",
            "user_id",
            unique=True,
        ),
    )


class NotificationPreference(Base, UUIDMixin):
    """Delivery preferences for one user. Absent rows mean the defaults."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[UUID] = mapped_column(unique=True, nullable=False)
    in_app: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sms: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency: Mapped[NotificationFrequency] = mapped_column(
        _enum(NotificationFrequency, "notification_frequency"),
        default=NotificationFrequency.IMMEDIATE,
        nullable=False,
    )
    # Quiet hours are a UTC wall-clock window and may wrap midnight
    quiet_hours_start: Mapped[time | None] = mapped_column(Time)
    quiet_hours_end: Mapped[time | None] = mapped_column(Time)
    global_mute: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)


# =============================================================================
# COOKIE CONSENT
# =============================================================================


class ConsentState(Base, UUIDMixin):
    """Current consent flags for one browser or user identity."""

    __tablename__ = "consent_states"

    subject: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    necessary: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    analytics: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    marketing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    preferences: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        CheckConstraint("necessary", name="necessary_always_on"),
    )


class ConsentHistoryEntry(Base, UUIDMixin):
    """One category flip. Immutable once written."""

    __tablename__ = "consent_history"

    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    category: Mapped[ConsentCategory] = mapped_column(
        _enum(ConsentCategory, "consent_category"), nullable=False
    )
    action: Mapped[ConsentAction] = mapped_column(
        _enum(ConsentAction, "consent_action"), nullable=False
    )
    note: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("idx_consent_history_subject", "subject", "timestamp"),
    )
