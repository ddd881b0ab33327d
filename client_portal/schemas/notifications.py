"""Pydantic schemas for decision notifications."""

from datetime import datetime, time
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import NotificationFrequency, NotificationType
from ..services.notifications import TrailEventKind
from .base import PortalBaseModel


class NotificationResponse(PortalBaseModel):
    id: UUID
    user_id: UUID
    decision_id: UUID
    type: NotificationType
    reference_id: str | None = None
    payload: dict[str, Any]
    read_at: datetime | None = None
    muted_until: datetime | None = None
    snoozed_until: datetime | None = None
    created_at: datetime
    active: bool = True


class NotificationListResponse(PortalBaseModel):
    items: list[NotificationResponse]
    unread_count: int


class MarkAllReadResponse(PortalBaseModel):
    updated: int


class MuteRequest(PortalBaseModel):
    duration_minutes: int | None = Field(default=None, gt=0)


class SnoozeRequest(PortalBaseModel):
    until: datetime


class PublishEventRequest(PortalBaseModel):
    """A decision event to fan out. The caller is the actor."""

    kind: TrailEventKind
    decision_id: UUID
    owner_id: UUID | None = None
    assignee_ids: list[UUID] = []
    mentioned_ids: list[UUID] = []
    reference_id: str | None = Field(default=None, max_length=255)
    payload: dict[str, Any] = {}
    idempotency_key: str | None = Field(default=None, max_length=255)


class PublishEventResponse(PortalBaseModel):
    notifications: list[NotificationResponse]
    count: int


# =============================================================================
# PREFERENCES
# =============================================================================


class NotificationChannels(PortalBaseModel):
    in_app: bool = True
    email: bool = True
    sms: bool = False


class NotificationPreferencesRequest(PortalBaseModel):
    """Full replacement of a user's preferences. Omitted fields reset to defaults."""

    channels: NotificationChannels = Field(default_factory=NotificationChannels)
    frequency: NotificationFrequency = NotificationFrequency.IMMEDIATE
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
    global_mute: bool = False


class NotificationPreferencesResponse(PortalBaseModel):
    user_id: UUID
    channels: NotificationChannels
    frequency: NotificationFrequency
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
    global_mute: bool
    updated_at: datetime | None = None
