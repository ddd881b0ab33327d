"""Pydantic schemas for cookie consent."""

from datetime import datetime

from ..models import ConsentAction, ConsentCategory
from .base import PortalBaseModel


class ConsentStateSchema(PortalBaseModel):
    necessary: bool = True
    analytics: bool = False
    marketing: bool = False
    preferences: bool = False


class ConsentUpdateRequest(PortalBaseModel):
    """Partial update. ``necessary`` is accepted and ignored."""

    necessary: bool | None = None
    analytics: bool | None = None
    marketing: bool | None = None
    preferences: bool | None = None


class ConsentHistoryItem(PortalBaseModel):
    timestamp: datetime
    category: ConsentCategory
    action: ConsentAction


class ConsentSnapshotResponse(PortalBaseModel):
    """Same shape as the browser's stored consent blob, plus its key."""

    storage_key: str
    consent: ConsentStateSchema
    history: list[ConsentHistoryItem]
