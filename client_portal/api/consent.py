"""API routes for cookie consent.

Responses carry the same ``{consent, history}`` blob the browser stores
locally, so the client can replace its copy wholesale.
"""

from fastapi import APIRouter

from ..core.dependencies import ConsentServiceDep
from ..models import as_utc
from ..schemas import (
    ConsentHistoryItem,
    ConsentSnapshotResponse,
    ConsentStateSchema,
    ConsentUpdateRequest,
)
from ..services import CONSENT_STORAGE_KEY, ConsentService, PortalError
from .errors import error_response

router = APIRouter(prefix="/consent", tags=["consent"])


async def build_snapshot(service: ConsentService, subject: str) -> ConsentSnapshotResponse:
    snapshot = await service.snapshot(subject)
    return ConsentSnapshotResponse(
        storage_key=CONSENT_STORAGE_KEY,
        consent=ConsentStateSchema(**snapshot.consent.to_dict()),
        history=[
            ConsentHistoryItem(
                timestamp=as_utc(entry.timestamp),
                category=entry.category,
                action=entry.action,
            )
            for entry in snapshot.history
        ],
    )


@router.get("/{subject}", response_model=ConsentSnapshotResponse)
async def get_consent(subject: str, service: ConsentServiceDep):
    try:
        return await build_snapshot(service, subject)
    except PortalError as e:
        return error_response(e)


@router.put("/{subject}", response_model=ConsentSnapshotResponse)
async def save_consent(
    subject: str,
    request: ConsentUpdateRequest,
    service: ConsentServiceDep,
):
    """Apply the given categories. Only real changes reach the history."""
    try:
        await service.save(subject, request.model_dump(exclude_none=True))
        return await build_snapshot(service, subject)
    except PortalError as e:
        return error_response(e)


@router.post("/{subject}/accept-all", response_model=ConsentSnapshotResponse)
async def accept_all(subject: str, service: ConsentServiceDep):
    try:
        await service.accept_all(subject)
        return await build_snapshot(service, subject)
    except PortalError as e:
        return error_response(e)


@router.post("/{subject}/reset", response_model=ConsentSnapshotResponse)
async def reset(subject: str, service: ConsentServiceDep):
    try:
        await service.reset(subject)
        return await build_snapshot(service, subject)
    except PortalError as e:
        return error_response(e)
