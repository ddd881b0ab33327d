"""Business logic services for the client portal."""

from .audit import AuditService, HistoryChange, diff_to_history
from .collaborators import (
    HttpEmailDispatcher,
    HttpResourceProvider,
    LoggingDispatcher,
    MessageDispatcher,
    MockResourceProvider,
    ResourceProvider,
    get_dispatcher,
    get_resource_provider,
)
from .consent import (
    CONSENT_STORAGE_KEY,
    ConsentPreferences,
    ConsentService,
    ConsentSnapshot,
)
from .errors import (
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
from .links import (
    ConsumeResult,
    ExtendResult,
    GeneratedLink,
    LinkService,
    LinkStatus,
)
from .notifications import (
    INDEFINITE_MUTE,
    NotificationService,
    TrailEvent,
    TrailEventKind,
    held_by_preferences,
    in_quiet_hours,
    is_active,
    resolve_recipients,
)
from .otp import OtpSendResult, OtpService, OtpVerifyResult
from .portal import PortalAccessService, PortalVerification

__all__ = [
    # Share links
    "LinkService",
    "GeneratedLink",
    "LinkStatus",
    "ConsumeResult",
    "ExtendResult",
    # Passcodes
    "OtpService",
    "OtpSendResult",
    "OtpVerifyResult",
    "PortalAccessService",
    "PortalVerification",
    # Audit
    "AuditService",
    "HistoryChange",
    "diff_to_history",
    # Consent
    "ConsentService",
    "ConsentPreferences",
    "ConsentSnapshot",
    "CONSENT_STORAGE_KEY",
    # Notifications
    "NotificationService",
    "TrailEvent",
    "TrailEventKind",
    "INDEFINITE_MUTE",
    "held_by_preferences",
    "in_quiet_hours",
    "is_active",
    "resolve_recipients",
    # Collaborators
    "ResourceProvider",
    "HttpResourceProvider",
    "MockResourceProvider",
    "get_resource_provider",
    "MessageDispatcher",
    "HttpEmailDispatcher",
    "LoggingDispatcher",
    "get_dispatcher",
    # Errors
    "GENERIC_LINK_MESSAGE",
    "GENERIC_OTP_MESSAGE",
    "PortalError",
    "InvalidInputError",
    "InvalidOperationError",
    "LinkUnavailableError",
    "OtpRequiredError",
    "OtpMismatchError",
    "OtpLockedError",
    "NotificationNotFoundError",
    "StoreUnavailableError",
]
