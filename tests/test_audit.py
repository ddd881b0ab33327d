"""Tests for the audit trail: append-only writes and filtered queries."""

from datetime import timedelta
from uuid import uuid4

import pytest

from client_portal.models import AuditAction
from client_portal.services import AuditService


@pytest.fixture
def audit(session, clock) -> AuditService:
    return AuditService(session, clock=clock)


class TestAuditQuery:

    async def test_append_uses_injected_clock(self, audit, clock):
        entry = await audit.append(AuditAction.MEMBER_INVITED, "workspace", details={"email": "a@x.com"})

        assert entry.created_at == clock.now
        assert entry.details == {"email": "a@x.com"}

    async def test_filters_by_actor_and_action(self, audit, user_id):
        other = uuid4()
        await audit.append(AuditAction.MEMBER_INVITED, "workspace", actor_id=user_id)
        await audit.append(AuditAction.ROLE_CHANGED, "workspace", actor_id=user_id)
        await audit.append(AuditAction.MEMBER_INVITED, "workspace", actor_id=other)

        entries, total = await audit.query(actor_id=user_id)
        assert total == 2

        entries, total = await audit.query(actor_id=user_id, action=AuditAction.ROLE_CHANGED)
        assert total == 1
        assert entries[0].action == AuditAction.ROLE_CHANGED

    async def test_filters_by_date_range(self, audit, clock):
        start = clock.now
        await audit.append(AuditAction.MEMBER_INVITED, "workspace")
        clock.advance(days=1)
        await audit.append(AuditAction.MEMBER_REMOVED, "workspace")
        clock.advance(days=1)
        await audit.append(AuditAction.ROLE_CHANGED, "workspace")

        entries, total = await audit.query(
            date_from=start + timedelta(hours=12),
            date_to=start + timedelta(days=1, hours=12),
        )

        assert total == 1
        assert entries[0].action == AuditAction.MEMBER_REMOVED

    async def test_newest_first_with_pagination(self, audit, clock):
        for _ in range(5):
            await audit.append(AuditAction.MEMBER_INVITED, "workspace")
            clock.advance(minutes=1)

        page_one, total = await audit.query(limit=2)
        page_two, _ = await audit.query(limit=2, offset=2)

        assert total == 5
        stamps = [e.created_at for e in [*page_one, *page_two]]
        assert stamps == sorted(stamps, reverse=True)
        assert len({e.id for e in [*page_one, *page_two]}) == 4

    async def test_ascending_order(self, audit, clock):
        first = await audit.append(AuditAction.MEMBER_INVITED, "workspace")
        clock.advance(minutes=1)
        second = await audit.append(AuditAction.MEMBER_REMOVED, "workspace")

        entries, _ = await audit.query(ascending=True)

        assert [e.id for e in entries] == [first.id, second.id]


class TestTwoFactorHistory:

    async def test_only_two_factor_actions_for_user(self, audit, user_id, clock):
        await audit.append(AuditAction.TWO_FA_ENROLLED_TOTP, "user", actor_id=user_id)
        clock.advance(minutes=1)
        await audit.append(AuditAction.ROLE_CHANGED, "workspace", actor_id=user_id)
        await audit.append(AuditAction.TWO_FA_DISABLED, "user", actor_id=uuid4())
        clock.advance(minutes=1)
        await audit.append(AuditAction.TWO_FA_RECOVERY_CODES_REGENERATED, "user", actor_id=user_id)

        entries = await audit.two_factor_history(user_id)

        assert [e.action.value for e in entries] == [
            "2fa_recovery_codes_regenerated",
            "2fa_enrolled_totp",
        ]

    async def test_limited_to_latest_fifty(self, audit, user_id, clock):
        for _ in range(55):
            await audit.append(AuditAction.TWO_FA_ENROLLED_SMS, "user", actor_id=user_id)
            clock.advance(seconds=1)

        entries = await audit.two_factor_history(user_id)

        assert len(entries) == 50
