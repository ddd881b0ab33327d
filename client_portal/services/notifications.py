"""
Notification Fan-out: per-recipient notifications derived from decision events.

Each event is projected into one DecisionNotification row per recipient.
The audit trail stays the system of record; these rows only track what a
user has seen, muted or snoozed.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from enum import Enum as PyEnum
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..models import (
    DecisionNotification,
    NotificationFrequency,
    NotificationPreference,
    NotificationType,
    as_utc,
    utcnow,
)
from .errors import (
    InvalidInputError,
    NotificationNotFoundError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

# muted_until for a mute without expiry
INDEFINITE_MUTE = datetime(9999, 12, 31, tzinfo=timezone.utc)


# =============================================================================
# EVENTS
# =============================================================================


class TrailEventKind(str, PyEnum):
    COMMENT_ADDED = "comment_added"
    MENTION = "mention"
    APPROVAL = "approval"
    CHANGES_REQUESTED = "changes_requested"


NOTIFICATION_TYPES = {
    TrailEventKind.COMMENT_ADDED: NotificationType.COMMENT,
    TrailEventKind.MENTION: NotificationType.MENTION,
    TrailEventKind.APPROVAL: NotificationType.APPROVAL,
    TrailEventKind.CHANGES_REQUESTED: NotificationType.CHANGES_REQUESTED,
}


@dataclass
class TrailEvent:
    """A decision event that may notify people."""
    kind: TrailEventKind
    decision_id: UUID
    actor_id: UUID | None = None
    owner_id: UUID | None = None
    assignee_ids: list[UUID] = field(default_factory=list)
    mentioned_ids: list[UUID] = field(default_factory=list)
    reference_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None


def resolve_recipients(event: TrailEvent) -> list[UUID]:
    """Who hears about an event, in a stable order, without the actor.

    - comment_added: assignees, then the owner
    - mention: the mentioned users only
    - approval / changes_requested: the owner, then assignees
    """
    if event.kind == TrailEventKind.COMMENT_ADDED:
        candidates: Iterable[UUID | None] = [*event.assignee_ids, event.owner_id]
    elif event.kind == TrailEventKind.MENTION:
        candidates = event.mentioned_ids
    else:
        candidates = [event.owner_id, *event.assignee_ids]

    recipients = []
    seen = set()
    for user_id in candidates:
        if user_id is None or user_id == event.actor_id or user_id in seen:
            continue
        seen.add(user_id)
        recipients.append(user_id)
    return recipients


def in_quiet_hours(start: time | None, end: time | None, moment: datetime) -> bool:
    """True when ``moment`` falls in the [start, end) UTC window, which may wrap midnight."""
    if start is None or end is None or start == end:
        return False
    current = as_utc(moment).time()
    if start < end:
        return start <= current < end
    return current >= start or current < end


def held_by_preferences(preferences: NotificationPreference, now: datetime) -> bool:
    """Whether the recipient's own settings suppress in-app delivery at ``now``."""
    if preferences.global_mute or not preferences.in_app:
        return True
    return in_quiet_hours(preferences.quiet_hours_start, preferences.quiet_hours_end, now)


def is_active(
    notification: DecisionNotification,
    now: datetime | None = None,
    preferences: NotificationPreference | None = None,
) -> bool:
    """True when the notification is neither muted nor snoozed at ``now``
    and the recipient's preferences do not hold it back.
    """
    now = now or utcnow()
    if preferences is not None and held_by_preferences(preferences, now):
        return False
    muted_until = as_utc(notification.muted_until)
    if muted_until is not None and muted_until > now:
        return False
    snoozed_until = as_utc(notification.snoozed_until)
    if snoozed_until is not None and snoozed_until > now:
        return False
    return True


# =============================================================================
# NOTIFICATION SERVICE
# =============================================================================


class NotificationService:
    """Derive, list and update in-app decision notifications."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self._settings = settings or get_settings()
        self._clock = clock

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def derive(self, event: TrailEvent) -> list[DecisionNotification]:
        """Insert one row per recipient.

        Replaying an event with the same idempotency key returns the rows
        already created for it instead of inserting duplicates. Inserts run
        in a savepoint, so losing a race to a concurrent replay leaves the
        rest of the caller's transaction intact.
        """
        recipients = resolve_recipients(event)
        if not recipients:
            return []

        existing = await self._existing_for_key(event.idempotency_key, recipients)
        missing = [r for r in recipients if r not in existing]

        if missing:
            try:
                await self._insert(event, missing)
            except IntegrityError:
                logger.info(f"Notification fan-out for key {event.idempotency_key} already applied")
            existing = await self._existing_for_key(event.idempotency_key, recipients)

        logger.info(
            f"Fan-out {event.kind.value} on decision {event.decision_id}: "
            f"{len(missing)} new, {len(recipients) - len(missing)} existing"
        )
        return [existing[r] for r in recipients if r in existing]

    async def _insert(self, event: TrailEvent, recipients: list[UUID]) -> None:
        attempts = self._settings.notification_fanout_retries + 1
        for attempt in range(attempts):
            try:
                async with self.session.begin_nested():
                    self.session.add_all(self._build_rows(event, recipients))
                    await self.session.flush()
                return
            except OperationalError as e:
                if attempt == attempts - 1:
                    logger.error(f"Notification fan-out failed for decision {event.decision_id}: {e!r}")
                    raise StoreUnavailableError("Notifications could not be stored") from e
                logger.warning(
                    f"Notification fan-out attempt {attempt + 1} failed, retrying: {e!r}"
                )

    def _build_rows(
        self,
        event: TrailEvent,
        recipients: list[UUID],
    ) -> list[DecisionNotification]:
        now = self._clock()
        return [
            DecisionNotification(
                user_id=user_id,
                decision_id=event.decision_id,
                type=NOTIFICATION_TYPES[event.kind],
                reference_id=event.reference_id,
                payload=event.payload,
                idempotency_key=event.idempotency_key,
                created_at=now,
            )
            for user_id in recipients
        ]

    async def _existing_for_key(
        self,
        idempotency_key: str | None,
        recipients: list[UUID],
    ) -> dict[UUID, DecisionNotification]:
        if not idempotency_key:
            return {}
        result = await self.session.execute(
            select(DecisionNotification).where(
                DecisionNotification.idempotency_key == idempotency_key,
                DecisionNotification.user_id.in_(recipients),
            )
        )
        return {n.user_id: n for n in result.scalars().all()}

    # =========================================================================
    # READ STATE
    # =========================================================================

    async def list_for_user(
        self,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[DecisionNotification], int]:
        """Newest first, with the unread total for the badge."""
        query = select(DecisionNotification).where(DecisionNotification.user_id == user_id)
        if unread_only:
            query = query.where(DecisionNotification.read_at.is_(None))

        result = await self.session.execute(
            query.order_by(
                DecisionNotification.created_at.desc(),
                DecisionNotification.id.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
        unread = await self.session.execute(
            select(func.count())
            .select_from(DecisionNotification)
            .where(
                DecisionNotification.user_id == user_id,
                DecisionNotification.read_at.is_(None),
            )
        )
        return result.scalars().all(), unread.scalar_one()

    async def mark_read(self, notification_id: UUID, user_id: UUID) -> DecisionNotification:
        """Set read_at once. A second call keeps the first timestamp."""
        await self.session.execute(
            update(DecisionNotification)
            .where(
                DecisionNotification.id == notification_id,
                DecisionNotification.user_id == user_id,
                DecisionNotification.read_at.is_(None),
            )
            .values(read_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        return await self._require(notification_id, user_id)

    async def mark_all_read(self, user_id: UUID) -> int:
        result = await self.session.execute(
            update(DecisionNotification)
            .where(
                DecisionNotification.user_id == user_id,
                DecisionNotification.read_at.is_(None),
            )
            .values(read_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # =========================================================================
    # MUTE / SNOOZE
    # =========================================================================

    async def mute(
        self,
        notification_id: UUID,
        user_id: UUID,
        duration_minutes: int | None = None,
    ) -> DecisionNotification:
        """Suppress delivery for a while, or indefinitely when no duration applies."""
        if duration_minutes is None:
            duration_minutes = self._settings.notification_default_mute_minutes
        if duration_minutes is not None and duration_minutes <= 0:
            raise InvalidInputError("Mute duration must be a positive number of minutes")

        notification = await self._require(notification_id, user_id)
        if duration_minutes is None:
            notification.muted_until = INDEFINITE_MUTE
        else:
            notification.muted_until = self._clock() + timedelta(minutes=duration_minutes)
        await self.session.flush()
        return notification

    async def snooze(
        self,
        notification_id: UUID,
        user_id: UUID,
        until: datetime,
    ) -> DecisionNotification:
        until = as_utc(until)
        if until <= self._clock():
            raise InvalidInputError("Snooze time must be in the future")

        notification = await self._require(notification_id, user_id)
        notification.snoozed_until = until
        await self.session.flush()
        return notification

    def is_active(
        self,
        notification: DecisionNotification,
        preferences: NotificationPreference | None = None,
    ) -> bool:
        return is_active(notification, self._clock(), preferences)

    # =========================================================================
    # PREFERENCES
    # =========================================================================

    async def get_preferences(self, user_id: UUID) -> NotificationPreference:
        """Stored preferences, or unsaved defaults when the user never set any."""
        result = await self.session.execute(
            select(NotificationPreference)
            .where(NotificationPreference.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        preferences = result.scalar_one_or_none()
        if preferences is None:
            preferences = NotificationPreference(
                user_id=user_id,
                in_app=True,
                email=True,
                sms=False,
                frequency=NotificationFrequency.IMMEDIATE,
                global_mute=False,
                updated_at=self._clock(),
            )
        return preferences

    async def update_preferences(
        self,
        user_id: UUID,
        in_app: bool = True,
        email: bool = True,
        sms: bool = False,
        frequency: NotificationFrequency = NotificationFrequency.IMMEDIATE,
        quiet_hours_start: time | None = None,
        quiet_hours_end: time | None = None,
        global_mute: bool = False,
    ) -> NotificationPreference:
        """Replace the user's preferences. Omitted fields go back to their defaults."""
        if (quiet_hours_start is None) != (quiet_hours_end is None):
            raise InvalidInputError("Quiet hours need both a start and an end")
        if quiet_hours_start is not None and quiet_hours_start == quiet_hours_end:
            raise InvalidInputError("Quiet hours must start and end at different times")

        preferences = await self.get_preferences(user_id)
        preferences.in_app = in_app
        preferences.email = email
        preferences.sms = sms
        preferences.frequency = NotificationFrequency(frequency)
        preferences.quiet_hours_start = quiet_hours_start
        preferences.quiet_hours_end = quiet_hours_end
        preferences.global_mute = global_mute
        preferences.updated_at = self._clock()
        self.session.add(preferences)
        await self.session.flush()
        logger.info(f"Notification preferences updated for user {user_id}")
        return preferences

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _require(self, notification_id: UUID, user_id: UUID) -> DecisionNotification:
        result = await self.session.execute(
            select(DecisionNotification)
            .where(
                DecisionNotification.id == notification_id,
                DecisionNotification.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotificationNotFoundError("Notification not found")
        return notification
