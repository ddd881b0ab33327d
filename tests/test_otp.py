"""
Tests for the OTP Gate and the portal access flow.

These tests verify:
1. Codes are stored hashed, bound to their decision and email
2. A code verifies once, only before it expires
3. The attempt cap kills a challenge even for the correct code
4. Links that require a passcode only consume with a portal session
5. Portal sessions expire on the same clock that issued them
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from client_portal.core.security import create_portal_session_token, verify_otp_code
from client_portal.models import AuditAction, LinkDenialReason, OtpChallenge
from client_portal.services import (
    AuditService,
    InvalidInputError,
    OtpLockedError,
    OtpMismatchError,
    OtpRequiredError,
    OtpService,
    PortalAccessService,
)

EMAIL = "user@x.com"


@pytest.fixture
def otp(session, dispatcher, settings, clock) -> OtpService:
    return OtpService(session, dispatcher=dispatcher, settings=settings, clock=clock)


@pytest.fixture
def portal(session, resources, dispatcher, settings, clock) -> PortalAccessService:
    return PortalAccessService(
        session,
        resource_provider=resources,
        dispatcher=dispatcher,
        settings=settings,
        clock=clock,
    )


def wrong_code(code: str) -> str:
    return "".join(str((int(c) + 1) % 10) for c in code)


async def challenges(session, decision_id):
    result = await session.execute(
        select(OtpChallenge)
        .where(OtpChallenge.decision_id == decision_id)
        .order_by(OtpChallenge.issued_at)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


# =============================================================================
# TEST: SEND
# =============================================================================


class TestSendOtp:

    async def test_send_stores_hash_only(self, otp, session, dispatcher, decision_id, clock):
        result = await otp.send_otp(decision_id, EMAIL)

        assert result.sent
        assert result.expires_at == clock.now + timedelta(minutes=10)
        code = dispatcher.last_code
        assert len(code) == 6 and code.isdigit()

        [challenge] = await challenges(session, decision_id)
        assert challenge.code_hash != code
        assert challenge.code_hash.startswith("$2b$")
        assert verify_otp_code(code, decision_id, EMAIL, challenge.code_hash)
        assert challenge.attempt_count == 0

    async def test_send_normalizes_email(self, otp, session, dispatcher, decision_id):
        await otp.send_otp(decision_id, "  User@X.com ")

        [challenge] = await challenges(session, decision_id)
        assert challenge.email == EMAIL
        assert dispatcher.codes[0][0] == EMAIL

    async def test_resend_within_cooldown_is_refused(self, otp, dispatcher, decision_id, clock):
        await otp.send_otp(decision_id, EMAIL)
        clock.advance(seconds=20)

        result = await otp.send_otp(decision_id, EMAIL)

        assert not result.sent
        assert result.retry_after_seconds == 40
        assert len(dispatcher.codes) == 1

    async def test_resend_invalidates_previous_code(self, otp, dispatcher, decision_id, clock):
        await otp.send_otp(decision_id, EMAIL)
        first = dispatcher.last_code
        clock.advance(minutes=2)
        await otp.send_otp(decision_id, EMAIL)
        second = dispatcher.last_code

        if first != second:
            with pytest.raises((OtpMismatchError, OtpLockedError)):
                await otp.verify_otp(EMAIL, first, decision_id)
        assert (await otp.verify_otp(EMAIL, second, decision_id)).verified

    async def test_undelivered_code_does_not_hold_cooldown(self, otp, dispatcher, decision_id):
        dispatcher.deliver = False
        assert not (await otp.send_otp(decision_id, EMAIL)).sent

        dispatcher.deliver = True
        assert (await otp.send_otp(decision_id, EMAIL)).sent

    async def test_send_rejects_invalid_email(self, otp, decision_id):
        with pytest.raises(InvalidInputError):
            await otp.send_otp(decision_id, "not-an-email")


# =============================================================================
# TEST: VERIFY
# =============================================================================


class TestVerifyOtp:

    async def test_correct_code_verifies(self, otp, dispatcher, decision_id):
        await otp.send_otp(decision_id, EMAIL)

        result = await otp.verify_otp(EMAIL, dispatcher.last_code, decision_id)

        assert result.verified
        assert result.email == EMAIL

    async def test_code_is_single_use(self, otp, dispatcher, decision_id):
        await otp.send_otp(decision_id, EMAIL)
        code = dispatcher.last_code

        assert (await otp.verify_otp(EMAIL, code, decision_id)).verified
        with pytest.raises(OtpLockedError):
            await otp.verify_otp(EMAIL, code, decision_id)

    async def test_code_is_bound_to_its_decision(self, otp, dispatcher, decision_id):
        await otp.send_otp(decision_id, EMAIL)

        with pytest.raises(OtpLockedError):
            await otp.verify_otp(EMAIL, dispatcher.last_code, uuid4())

    async def test_expired_code_fails(self, otp, dispatcher, decision_id, clock):
        await otp.send_otp(decision_id, EMAIL)
        clock.advance(minutes=10)

        with pytest.raises(OtpLockedError):
            await otp.verify_otp(EMAIL, dispatcher.last_code, decision_id)

    async def test_mismatch_reports_remaining_attempts(self, otp, session, dispatcher, decision_id):
        await otp.send_otp(decision_id, EMAIL)

        with pytest.raises(OtpMismatchError) as exc_info:
            await otp.verify_otp(EMAIL, wrong_code(dispatcher.last_code), decision_id)

        assert exc_info.value.remaining_attempts == 4
        [challenge] = await challenges(session, decision_id)
        assert challenge.attempt_count == 1

    async def test_malformed_code_is_not_counted(self, otp, session, decision_id):
        await otp.send_otp(decision_id, EMAIL)

        with pytest.raises(InvalidInputError):
            await otp.verify_otp(EMAIL, "12ab", decision_id)

        [challenge] = await challenges(session, decision_id)
        assert challenge.attempt_count == 0

    async def test_attempt_cap_then_fresh_code(self, otp, session, dispatcher, decision_id, clock):
        """Five wrong codes lock the challenge; only a new send recovers."""
        await otp.send_otp(decision_id, EMAIL)
        correct = dispatcher.last_code

        for remaining in (4, 3, 2, 1):
            with pytest.raises(OtpMismatchError) as exc_info:
                await otp.verify_otp(EMAIL, wrong_code(correct), decision_id)
            assert exc_info.value.remaining_attempts == remaining
        with pytest.raises(OtpLockedError):
            await otp.verify_otp(EMAIL, wrong_code(correct), decision_id)

        with pytest.raises(OtpLockedError):
            await otp.verify_otp(EMAIL, correct, decision_id)

        [challenge] = await challenges(session, decision_id)
        assert challenge.attempt_count == 5
        assert challenge.invalidated_at is not None

        clock.advance(seconds=1)
        assert (await otp.send_otp(decision_id, EMAIL)).sent
        assert (await otp.verify_otp(EMAIL, dispatcher.last_code, decision_id)).verified

    async def test_verify_outcomes_are_audited(self, otp, session, dispatcher, decision_id):
        await otp.send_otp(decision_id, EMAIL)
        with pytest.raises(OtpMismatchError):
            await otp.verify_otp(EMAIL, wrong_code(dispatcher.last_code), decision_id)
        await otp.verify_otp(EMAIL, dispatcher.last_code, decision_id)

        entries, _ = await AuditService(session).query(resource_type="otp_challenge", limit=10)
        actions = sorted(e.action.value for e in entries)
        assert actions == ["otp_failed", "otp_sent", "otp_verified"]
        for entry in entries:
            assert dispatcher.last_code not in str(entry.details)


# =============================================================================
# TEST: PORTAL ACCESS
# =============================================================================


class TestPortalAccess:

    async def test_open_link_consumes_without_session(self, portal, decision_id):
        link = await portal.links.generate(decision_id)

        result = await portal.consume(link.token)

        assert result.success

    async def test_protected_link_requires_portal_session(self, portal, session, decision_id):
        link = await portal.links.generate(decision_id, require_otp=True)

        with pytest.raises(OtpRequiredError):
            await portal.consume(link.token)

        entries, _ = await AuditService(session).query(action=AuditAction.LINK_CONSUME_DENIED)
        assert entries[0].details["reason"] == LinkDenialReason.OTP_REQUIRED.value
        assert not (await portal.links.verify(link.token)).usage_count

    async def test_verified_passcode_opens_protected_link(self, portal, dispatcher, decision_id):
        link = await portal.links.generate(decision_id, require_otp=True, max_usage=1)
        await portal.otp.send_otp(decision_id, EMAIL)

        verification = await portal.verify_otp(EMAIL, dispatcher.last_code, decision_id)
        result = await portal.consume(link.token, portal_session=verification.portal_session)

        assert verification.verified
        assert result.success
        assert result.usage_count == 1

    async def test_session_for_another_decision_is_rejected(self, portal, decision_id):
        link = await portal.links.generate(decision_id, require_otp=True)
        other = create_portal_session_token(uuid4(), EMAIL)

        with pytest.raises(OtpRequiredError):
            await portal.consume(link.token, portal_session=other)

    async def test_portal_session_expires_on_the_service_clock(
        self, portal, dispatcher, decision_id, clock, settings
    ):
        link = await portal.links.generate(decision_id, require_otp=True)
        await portal.send_otp(decision_id, EMAIL)
        verification = await portal.verify_otp(EMAIL, dispatcher.last_code, decision_id)

        assert verification.expires_at == clock.now + timedelta(
            minutes=settings.portal_session_ttl_minutes
        )
        clock.advance(minutes=settings.portal_session_ttl_minutes + 1)
        with pytest.raises(OtpRequiredError):
            await portal.consume(link.token, portal_session=verification.portal_session)

    async def test_passcode_events_carry_the_link_workspace(
        self, portal, session, dispatcher, decision_id, workspace_id
    ):
        await portal.links.generate(decision_id, require_otp=True, workspace_id=workspace_id)

        await portal.send_otp(decision_id, EMAIL)
        await portal.verify_otp(EMAIL, dispatcher.last_code, decision_id)

        entries, _ = await AuditService(session).query(workspace_id=workspace_id, limit=20)
        actions = {entry.action for entry in entries}
        assert AuditAction.OTP_SENT in actions
        assert AuditAction.OTP_VERIFIED in actions
