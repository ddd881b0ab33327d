"""API routes for in-app decision notifications."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from ..core.dependencies import CurrentUserDep, NotificationServiceDep
from ..models import DecisionNotification, NotificationPreference, as_utc
from ..schemas import (
    MarkAllReadResponse,
    MuteRequest,
    NotificationChannels,
    NotificationListResponse,
    NotificationPreferencesRequest,
    NotificationPreferencesResponse,
    NotificationResponse,
    PublishEventRequest,
    PublishEventResponse,
    SnoozeRequest,
)
from ..services import NotificationService, PortalError, TrailEvent, TrailEventKind
from .errors import error_response

router = APIRouter(prefix="/notifications", tags=["notifications"])


def build_notification(
    notification: DecisionNotification,
    service: NotificationService,
    preferences: NotificationPreference | None = None,
) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        user_id=notification.user_id,
        decision_id=notification.decision_id,
        type=notification.type,
        reference_id=notification.reference_id,
        payload=notification.payload or {},
        read_at=as_utc(notification.read_at),
        muted_until=as_utc(notification.muted_until),
        snoozed_until=as_utc(notification.snoozed_until),
        created_at=as_utc(notification.created_at),
        active=service.is_active(notification, preferences),
    )


def build_preferences(preferences: NotificationPreference) -> NotificationPreferencesResponse:
    return NotificationPreferencesResponse(
        user_id=preferences.user_id,
        channels=NotificationChannels(
            in_app=preferences.in_app,
            email=preferences.email,
            sms=preferences.sms,
        ),
        frequency=preferences.frequency,
        quiet_hours_start=preferences.quiet_hours_start,
        quiet_hours_end=preferences.quiet_hours_end,
        global_mute=preferences.global_mute,
        updated_at=as_utc(preferences.updated_at),
    )


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """The caller's notifications, newest first."""
    items, unread = await service.list_for_user(
        current_user.id,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    preferences = await service.get_preferences(current_user.id)
    return NotificationListResponse(
        items=[build_notification(n, service, preferences) for n in items],
        unread_count=unread,
    )


@router.get("/preferences", response_model=NotificationPreferencesResponse)
async def get_preferences(current_user: CurrentUserDep, service: NotificationServiceDep):
    """The caller's notification preferences, or the defaults when never set."""
    preferences = await service.get_preferences(current_user.id)
    return build_preferences(preferences)


@router.put("/preferences", response_model=NotificationPreferencesResponse)
async def update_preferences(
    request: NotificationPreferencesRequest,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    """Replace the caller's preferences."""
    try:
        preferences = await service.update_preferences(
            current_user.id,
            in_app=request.channels.in_app,
            email=request.channels.email,
            sms=request.channels.sms,
            frequency=request.frequency,
            quiet_hours_start=request.quiet_hours_start,
            quiet_hours_end=request.quiet_hours_end,
            global_mute=request.global_mute,
        )
    except PortalError as e:
        return error_response(e)

    return build_preferences(preferences)


@router.post("/mark-all-read", response_model=MarkAllReadResponse)
async def mark_all_read(current_user: CurrentUserDep, service: NotificationServiceDep):
    updated = await service.mark_all_read(current_user.id)
    return MarkAllReadResponse(updated=updated)


@router.post(
    "/publish",
    response_model=PublishEventResponse,
    status_code=status.HTTP_201_CREATED,
)
async def publish_event(
    request: PublishEventRequest,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    """Fan a decision event out to its recipients. Replays are idempotent by key."""
    event = TrailEvent(
        kind=TrailEventKind(request.kind),
        decision_id=request.decision_id,
        actor_id=current_user.id,
        owner_id=request.owner_id,
        assignee_ids=list(request.assignee_ids),
        mentioned_ids=list(request.mentioned_ids),
        reference_id=request.reference_id,
        payload=dict(request.payload),
        idempotency_key=request.idempotency_key,
    )
    try:
        notifications = await service.derive(event)
    except PortalError as e:
        return error_response(e)

    return PublishEventResponse(
        notifications=[build_notification(n, service) for n in notifications],
        count=len(notifications),
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    try:
        notification = await service.mark_read(notification_id, current_user.id)
    except PortalError as e:
        return error_response(e)

    return build_notification(notification, service)


@router.post("/{notification_id}/mute", response_model=NotificationResponse)
async def mute(
    notification_id: UUID,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    request: MuteRequest | None = None,
):
    """Mute for a number of minutes. Without a duration the configured default applies."""
    request = request or MuteRequest()
    try:
        notification = await service.mute(
            notification_id,
            current_user.id,
            duration_minutes=request.duration_minutes,
        )
    except PortalError as e:
        return error_response(e)

    return build_notification(notification, service)


@router.post("/{notification_id}/snooze", response_model=NotificationResponse)
async def snooze(
    notification_id: UUID,
    request: SnoozeRequest,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    try:
        notification = await service.snooze(notification_id, current_user.id, request.until)
    except PortalError as e:
        return error_response(e)

    return build_notification(notification, service)
