"""
Cookie consent state with a change-only history trail.

The stored shape mirrors the blob the browser keeps under
``CONSENT_STORAGE_KEY``, so a client can sync its local copy with
``snapshot()`` without translation.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    AuditAction,
    ConsentCategory,
    ConsentHistoryEntry,
    ConsentState,
    as_utc,
    utcnow,
)
from .audit import AuditService, diff_to_history
from .errors import InvalidInputError

logger = logging.getLogger(__name__)

CONSENT_STORAGE_KEY = "archject.cookie-consent"
SUBJECT_MAX_LENGTH = 255


@dataclass(frozen=True)
class ConsentPreferences:
    """Consent flags. ``necessary`` cannot be turned off."""
    necessary: bool = True
    analytics: bool = False
    marketing: bool = False
    preferences: bool = False

    def __post_init__(self):
        if not self.necessary:
            object.__setattr__(self, "necessary", True)

    @classmethod
    def from_state(cls, state: ConsentState) -> "ConsentPreferences":
        return cls(
            analytics=state.analytics,
            marketing=state.marketing,
            preferences=state.preferences,
        )

    def with_changes(self, changes: Mapping[str, Any]) -> "ConsentPreferences":
        known = {c.value for c in ConsentCategory} | {"necessary"}
        unknown = set(changes) - known
        if unknown:
            raise InvalidInputError(f"Unknown consent categories: {', '.join(sorted(unknown))}")
        updates = {
            key: bool(value)
            for key, value in changes.items()
            if key != "necessary" and value is not None
        }
        return replace(self, **updates)

    def to_dict(self) -> dict[str, bool]:
        return {
            "necessary": True,
            "analytics": self.analytics,
            "marketing": self.marketing,
            "preferences": self.preferences,
        }


@dataclass
class ConsentSnapshot:
    consent: ConsentPreferences
    history: list[ConsentHistoryEntry] = field(default_factory=list)

    def to_storage(self) -> dict[str, Any]:
        """The exact blob a browser stores under CONSENT_STORAGE_KEY."""
        return {
            "consent": self.consent.to_dict(),
            "history": [
                {
                    "timestamp": as_utc(entry.timestamp).isoformat(),
                    "category": entry.category.value,
                    "action": entry.action.value,
                }
                for entry in self.history
            ],
        }


class ConsentService:
    """Read and change consent for one subject (browser or user identity)."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self._clock = clock
        self._audit = AuditService(session, clock=clock)

    async def get(self, subject: str) -> ConsentPreferences:
        """Current flags. First contact stores the defaults without history."""
        state = await self._load_or_create(subject)
        return ConsentPreferences.from_state(state)

    async def save(
        self,
        subject: str,
        changes: Mapping[str, Any] | ConsentPreferences,
        note: str | None = None,
    ) -> ConsentPreferences:
        """Apply changes and append one history entry per flipped category."""
        if isinstance(changes, ConsentPreferences):
            changes = changes.to_dict()

        state = await self._load_or_create(subject)
        subject = state.subject
        before = ConsentPreferences.from_state(state)
        after = before.with_changes(changes)

        now = self._clock()
        history = diff_to_history(before, after, timestamp=now)
        if not history:
            return after

        state.analytics = after.analytics
        state.marketing = after.marketing
        state.preferences = after.preferences
        state.updated_at = now

        for change in history:
            self.session.add(
                ConsentHistoryEntry(
                    subject=subject,
                    timestamp=change.timestamp,
                    category=change.category,
                    action=change.action,
                    note=note,
                )
            )
        await self.session.flush()

        await self._audit.append(
            action=AuditAction.CONSENT_UPDATED,
            resource_type="consent",
            details={
                "subject": subject,
                "changes": [
                    {"category": c.category.value, "action": c.action.value}
                    for c in history
                ],
            },
        )
        logger.info(f"Consent updated for {subject}: {len(history)} change(s)")
        return after

    async def accept_all(self, subject: str) -> ConsentPreferences:
        return await self.save(
            subject,
            {c.value: True for c in ConsentCategory},
            note="accept-all",
        )

    async def reset(self, subject: str) -> ConsentPreferences:
        return await self.save(
            subject,
            {c.value: False for c in ConsentCategory},
            note="reset",
        )

    async def history(self, subject: str) -> Sequence[ConsentHistoryEntry]:
        """History for display, oldest first."""
        result = await self.session.execute(
            select(ConsentHistoryEntry)
            .where(ConsentHistoryEntry.subject == (subject or "").strip())
            .order_by(ConsentHistoryEntry.timestamp.asc(), ConsentHistoryEntry.category.asc())
        )
        return result.scalars().all()

    async def snapshot(self, subject: str) -> ConsentSnapshot:
        consent = await self.get(subject)
        history = await self.history(subject)
        return ConsentSnapshot(consent=consent, history=list(history))

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _load_or_create(self, subject: str) -> ConsentState:
        subject = (subject or "").strip()
        if not subject or len(subject) > SUBJECT_MAX_LENGTH:
            raise InvalidInputError("A consent subject is required")

        result = await self.session.execute(
            select(ConsentState).where(ConsentState.subject == subject)
        )
        state = result.scalar_one_or_none()
        if state is not None:
            return state

        state = ConsentState(
            subject=subject,
            necessary=True,
            analytics=False,
            marketing=False,
            preferences=False,
            updated_at=self._clock(),
        )
        self.session.add(state)
        await self.session.flush()
        return state
