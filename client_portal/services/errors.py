"""Exceptions raised by the portal services.

Routers translate these into HTTP responses. Anything that reveals why a
link or passcode failed stays on the exception (for logging and the audit
trail) and is never rendered to the client.
"""

from ..models import LinkDenialReason


GENERIC_LINK_MESSAGE = "This link is invalid or has expired"
GENERIC_OTP_MESSAGE = "This code is invalid or has expired. Request a new one."


class PortalError(Exception):
    """Base exception for portal operations."""
    pass


class InvalidInputError(PortalError):
    """Request failed validation before touching the store."""
    pass


class LinkUnavailableError(PortalError):
    """Link is unknown, expired, revoked or exhausted."""

    def __init__(self, reason: LinkDenialReason):
        super().__init__(GENERIC_LINK_MESSAGE)
        self.reason = reason


class OtpRequiredError(PortalError):
    """Link requires a verified passcode for this decision first."""
    pass


class OtpMismatchError(PortalError):
    """Presented passcode did not match; the challenge is still usable."""

    def __init__(self, remaining_attempts: int):
        super().__init__("Incorrect code")
        self.remaining_attempts = remaining_attempts


class OtpLockedError(PortalError):
    """No usable challenge: expired, consumed, or attempt cap reached."""
    pass


class InvalidOperationError(PortalError):
    """Operation not allowed in current state."""
    pass


class NotificationNotFoundError(PortalError):
    """Notification does not exist for this recipient."""
    pass


class StoreUnavailableError(PortalError):
    """Transient storage or collaborator failure. Safe to retry."""
    pass
