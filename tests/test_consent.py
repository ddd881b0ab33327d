"""
Tests for consent state and its change-only history.

These tests verify:
1. DIFF: only categories whose value changed produce history
2. NECESSARY: the necessary category can never be turned off
3. SNAPSHOT: the stored blob matches what the browser keeps locally
"""

from datetime import datetime, timezone

import pytest

from client_portal.models import AuditAction, ConsentAction, ConsentCategory
from client_portal.services import (
    CONSENT_STORAGE_KEY,
    AuditService,
    ConsentPreferences,
    ConsentService,
    InvalidInputError,
    diff_to_history,
)

SUBJECT = "browser-7f3a"


@pytest.fixture
def consent(session, clock) -> ConsentService:
    return ConsentService(session, clock=clock)


# =============================================================================
# TEST: DIFF TO HISTORY
# =============================================================================


class TestDiffToHistory:

    def test_identical_states_produce_nothing(self):
        state = ConsentPreferences(analytics=True, marketing=False, preferences=True)
        assert diff_to_history(state, state) == []

    def test_each_single_flip_produces_one_entry(self):
        base = ConsentPreferences()
        stamp = datetime(2026, 1, 15, tzinfo=timezone.utc)

        for category in ConsentCategory:
            flipped = base.with_changes({category.value: True})

            [entry] = diff_to_history(base, flipped, timestamp=stamp)
            assert entry.category == category
            assert entry.action == ConsentAction.OPT_IN
            assert entry.timestamp == stamp

            [back] = diff_to_history(flipped, base, timestamp=stamp)
            assert back.category == category
            assert back.action == ConsentAction.OPT_OUT

    def test_necessary_is_never_compared(self):
        before = ConsentPreferences()
        after = ConsentPreferences(necessary=False)
        assert after.necessary is True
        assert diff_to_history(before, after) == []


# =============================================================================
# TEST: PREFERENCES VALUE OBJECT
# =============================================================================


class TestConsentPreferences:

    def test_necessary_cannot_be_disabled(self):
        prefs = ConsentPreferences().with_changes({"necessary": False, "analytics": True})
        assert prefs.necessary is True
        assert prefs.analytics is True

    def test_unknown_category_is_rejected(self):
        with pytest.raises(InvalidInputError):
            ConsentPreferences().with_changes({"tracking": True})


# =============================================================================
# TEST: CONSENT SERVICE
# =============================================================================


class TestConsentService:

    async def test_first_contact_initializes_defaults_without_history(self, consent):
        prefs = await consent.get(SUBJECT)

        assert prefs == ConsentPreferences()
        assert await consent.history(SUBJECT) == []

    async def test_accept_all_then_reset(self, consent, clock):
        """Accept-all adds three opt-ins; reset adds three opt-outs."""
        assert (await consent.get(SUBJECT)).to_dict() == {
            "necessary": True,
            "analytics": False,
            "marketing": False,
            "preferences": False,
        }

        await consent.accept_all(SUBJECT)
        history = await consent.history(SUBJECT)
        assert len(history) == 3
        assert {h.action for h in history} == {ConsentAction.OPT_IN}
        assert {h.category for h in history} == set(ConsentCategory)

        clock.advance(minutes=1)
        await consent.reset(SUBJECT)
        history = await consent.history(SUBJECT)
        assert len(history) == 6
        assert [h.action for h in history[3:]] == [ConsentAction.OPT_OUT] * 3

    async def test_noop_save_writes_nothing(self, consent, session):
        await consent.save(SUBJECT, {"analytics": False, "marketing": False})

        assert await consent.history(SUBJECT) == []
        entries, total = await AuditService(session).query(action=AuditAction.CONSENT_UPDATED)
        assert total == 0

    async def test_partial_save_touches_only_given_categories(self, consent):
        await consent.save(SUBJECT, {"marketing": True})

        prefs = await consent.get(SUBJECT)
        assert prefs.marketing is True
        assert prefs.analytics is False
        [entry] = await consent.history(SUBJECT)
        assert entry.category == ConsentCategory.MARKETING

    async def test_accept_all_twice_is_change_only(self, consent):
        await consent.accept_all(SUBJECT)
        await consent.accept_all(SUBJECT)

        assert len(await consent.history(SUBJECT)) == 3

    async def test_changes_are_audited(self, consent, session):
        await consent.save(SUBJECT, {"analytics": True})

        entries, _ = await AuditService(session).query(action=AuditAction.CONSENT_UPDATED)
        assert entries[0].details["subject"] == SUBJECT
        assert entries[0].details["changes"] == [{"category": "analytics", "action": "opt-in"}]

    async def test_snapshot_matches_local_storage_shape(self, consent, clock):
        await consent.save(SUBJECT, {"preferences": True})

        snapshot = await consent.snapshot(SUBJECT)
        blob = snapshot.to_storage()

        assert CONSENT_STORAGE_KEY == "archject.cookie-consent"
        assert blob["consent"] == {
            "necessary": True,
            "analytics": False,
            "marketing": False,
            "preferences": True,
        }
        assert blob["history"] == [
            {
                "timestamp": clock.now.isoformat(),
                "category": "preferences",
                "action": "opt-in",
            }
        ]

    async def test_history_is_ordered_by_timestamp(self, consent, clock):
        await consent.save(SUBJECT, {"analytics": True})
        clock.advance(minutes=5)
        await consent.save(SUBJECT, {"analytics": False})

        history = await consent.history(SUBJECT)
        assert [h.action for h in history] == [ConsentAction.OPT_IN, ConsentAction.OPT_OUT]

    async def test_subjects_are_independent(self, consent):
        await consent.accept_all("browser-a")

        assert (await consent.get("browser-b")) == ConsentPreferences()

    async def test_blank_subject_is_rejected(self, consent):
        with pytest.raises(InvalidInputError):
            await consent.get("   ")
