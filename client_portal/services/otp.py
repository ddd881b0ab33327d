"""
OTP Gate: short-lived passcodes for no-login portal access.

Guarantees:
1. Only a salted, context-bound hash of each code is stored
2. A code verifies at most once, and only before it expires
3. After ``otp_max_attempts`` wrong guesses the challenge is dead, even for
   the correct code; the client must request a new one
4. The gate knows nothing about share links
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.security import (
    generate_otp_code,
    hash_otp_code,
    normalize_email,
    verify_otp_code,
)
from ..models import AuditAction, OtpChallenge, as_utc, utcnow
from .audit import AuditService
from .collaborators import MessageDispatcher, get_dispatcher
from .errors import (
    GENERIC_OTP_MESSAGE,
    InvalidInputError,
    OtpLockedError,
    OtpMismatchError,
)

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "otp_challenge"


@dataclass
class OtpSendResult:
    sent: bool
    expires_at: datetime | None = None
    retry_after_seconds: int | None = None


@dataclass
class OtpVerifyResult:
    verified: bool
    decision_id: UUID
    email: str


class OtpService:
    """Issue and check passcodes per (decision, email) pair."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: MessageDispatcher | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._settings = settings or get_settings()
        self._dispatcher = dispatcher or get_dispatcher(self._settings)
        self._clock = clock
        self._audit = AuditService(session, clock=clock)

    # =========================================================================
    # SEND
    # =========================================================================

    async def send_otp(
        self,
        decision_id: UUID,
        email: str,
        workspace_id: UUID | None = None,
    ) -> OtpSendResult:
        """Issue a fresh code, superseding any open challenge for the pair.

        ``workspace_id`` only tags the audit entries; the gate itself is
        keyed by decision and email.
        """
        email = normalize_email(email)
        if "@" not in email:
            raise InvalidInputError("A valid email address is required")

        now = self._clock()
        latest = await self._latest_open_challenge(decision_id, email)
        cooldown = timedelta(seconds=self._settings.otp_resend_cooldown_seconds)
        if latest is not None and now - as_utc(latest.issued_at) < cooldown:
            retry_after = cooldown - (now - as_utc(latest.issued_at))
            logger.info(f"Passcode resend throttled for decision {decision_id}")
            return OtpSendResult(
                sent=False,
                retry_after_seconds=max(int(retry_after.total_seconds()), 1),
            )

        # One open challenge per pair: older codes stop working now
        await self._session.execute(
            update(OtpChallenge)
            .where(
                OtpChallenge.decision_id == decision_id,
                OtpChallenge.email == email,
                OtpChallenge.consumed_at.is_(None),
                OtpChallenge.invalidated_at.is_(None),
            )
            .values(invalidated_at=now)
            .execution_options(synchronize_session=False)
        )

        code = generate_otp_code(self._settings.otp_length)
        challenge = OtpChallenge(
            decision_id=decision_id,
            email=email,
            code_hash=hash_otp_code(code, decision_id, email),
            issued_at=now,
            expires_at=now + timedelta(seconds=self._settings.otp_ttl_seconds),
            attempt_count=0,
        )
        self._session.add(challenge)
        await self._session.flush()

        delivered = await self._dispatcher.send_code(email, code, decision_id)
        if not delivered:
            # Undeliverable codes must not hold the resend cooldown
            challenge.invalidated_at = now
            await self._session.flush()

        await self._audit.append(
            action=AuditAction.OTP_SENT,
            resource_type=RESOURCE_TYPE,
            resource_id=challenge.id,
            workspace_id=workspace_id,
            details={
                "decision_id": str(decision_id),
                "email": email,
                "delivered": delivered,
            },
        )

        return OtpSendResult(
            sent=delivered,
            expires_at=challenge.expires_at if delivered else None,
        )

    # =========================================================================
    # VERIFY
    # =========================================================================

    async def verify_otp(
        self,
        email: str,
        code: str,
        decision_id: UUID,
        workspace_id: UUID | None = None,
    ) -> OtpVerifyResult:
        """Check a code against the newest open challenge for the pair."""
        email = normalize_email(email)
        code = "".join((code or "").split())
        length = self._settings.otp_length
        if len(code) != length or not code.isdigit():
            raise InvalidInputError(f"Please enter a valid {length}-digit code")

        now = self._clock()
        challenge = await self._latest_open_challenge(decision_id, email, for_update=True)
        if challenge is None or as_utc(challenge.expires_at) <= now:
            await self._log_failure(
                challenge, decision_id, email, "no_open_challenge", workspace_id=workspace_id
            )
            raise OtpLockedError(GENERIC_OTP_MESSAGE)

        if verify_otp_code(code, decision_id, email, challenge.code_hash):
            claimed = await self._session.execute(
                update(OtpChallenge)
                .where(
                    OtpChallenge.id == challenge.id,
                    OtpChallenge.consumed_at.is_(None),
                    OtpChallenge.invalidated_at.is_(None),
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await self._log_failure(
                    challenge, decision_id, email, "already_used", workspace_id=workspace_id
                )
                raise OtpLockedError(GENERIC_OTP_MESSAGE)

            await self._audit.append(
                action=AuditAction.OTP_VERIFIED,
                resource_type=RESOURCE_TYPE,
                resource_id=challenge.id,
                workspace_id=workspace_id,
                details={"decision_id": str(decision_id), "email": email},
            )
            return OtpVerifyResult(verified=True, decision_id=decision_id, email=email)

        attempts = (
            await self._session.execute(
                update(OtpChallenge)
                .where(OtpChallenge.id == challenge.id)
                .values(attempt_count=OtpChallenge.attempt_count + 1)
                .returning(OtpChallenge.attempt_count)
                .execution_options(synchronize_session=False)
            )
        ).scalar_one()

        max_attempts = self._settings.otp_max_attempts
        if attempts >= max_attempts:
            await self._session.execute(
                update(OtpChallenge)
                .where(OtpChallenge.id == challenge.id)
                .values(invalidated_at=now)
                .execution_options(synchronize_session=False)
            )
            await self._audit.append(
                action=AuditAction.OTP_LOCKED,
                resource_type=RESOURCE_TYPE,
                resource_id=challenge.id,
                workspace_id=workspace_id,
                details={
                    "decision_id": str(decision_id),
                    "email": email,
                    "attempts": attempts,
                },
            )
            logger.warning(f"Passcode challenge {challenge.id} locked after {attempts} attempts")
            raise OtpLockedError(GENERIC_OTP_MESSAGE)

        await self._log_failure(
            challenge, decision_id, email, "mismatch", attempts, workspace_id=workspace_id
        )
        raise OtpMismatchError(remaining_attempts=max_attempts - attempts)

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _latest_open_challenge(
        self,
        decision_id: UUID,
        email: str,
        for_update: bool = False,
    ) -> OtpChallenge | None:
        query = (
            select(OtpChallenge)
            .where(
                OtpChallenge.decision_id == decision_id,
                OtpChallenge.email == email,
                OtpChallenge.consumed_at.is_(None),
                OtpChallenge.invalidated_at.is_(None),
            )
            .order_by(OtpChallenge.issued_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def _log_failure(
        self,
        challenge: OtpChallenge | None,
        decision_id: UUID,
        email: str,
        reason: str,
        attempts: int | None = None,
        workspace_id: UUID | None = None,
    ) -> None:
        details = {"decision_id": str(decision_id), "email": email, "reason": reason}
        if attempts is not None:
            details["attempts"] = attempts
        await self._audit.append(
            action=AuditAction.OTP_FAILED,
            resource_type=RESOURCE_TYPE,
            resource_id=challenge.id if challenge else None,
            workspace_id=workspace_id,
            details=details,
        )
