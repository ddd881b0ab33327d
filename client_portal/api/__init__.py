"""API routes for the client portal."""

from fastapi import APIRouter

from .audit import router as audit_router
from .consent import router as consent_router
from .links import router as links_router
from .notifications import router as notifications_router
from .verification import router as verification_router

# Main API router
api_router = APIRouter()

# Share links: studio management plus anonymous verify/consume
api_router.include_router(links_router)

# Passcode gate for links that require it
api_router.include_router(verification_router)

api_router.include_router(audit_router)
api_router.include_router(notifications_router)
api_router.include_router(consent_router)

__all__ = ["api_router"]
