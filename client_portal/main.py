"""Archject Client Portal: Main FastAPI Application.

No-login access to decisions through share links, with an optional
passcode gate, an audit trail of every access, in-app notifications for
the studio and cookie consent for portal visitors.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorResponse

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables outside production, dispose the pool on shutdown."""
    logger.info(f"Starting {settings.app_name} ({settings.environment})")

    # Production schemas are managed by migrations
    if settings.environment != "production":
        try:
            await init_db()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Could not initialize database: {e!r}")

    if not settings.use_mock_data and not settings.resource_api_url:
        logger.error("RESOURCE_API_URL is not set; link consumption is unavailable")
    yield
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Archject Client Portal API

    ### Share links
    Studio users issue time-boxed, usage-capped, revocable links to a single
    decision. Clients open them without an account.

    ### Passcodes
    Links can require a one-time passcode sent to the client's email before
    the decision is shown.

    ### Authentication
    Studio endpoints require a valid JWT in the `Authorization: Bearer <token>`
    header. Client endpoints (verify, consume, passcodes, consent) are anonymous.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

# The portal origin first; credentials rule out a wildcard
cors_origins = [settings.portal_base_url.rstrip("/")]
for origin in settings.allowed_origins:
    if origin and origin not in cors_origins:
        cors_origins.append(origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """Storage failures are transient from the client's point of view."""
    logger.error(f"Database error on {request.url.path}: {exc!r}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(
            error="store_unavailable",
            message="Service temporarily unavailable. Please retry.",
            retryable=True,
        ).model_dump(by_alias=True, exclude_none=True),
        headers={"Retry-After": "1"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions without leaking internals."""
    logger.exception(f"Unhandled exception on {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message="An unexpected error occurred",
        ).model_dump(by_alias=True, exclude_none=True),
    )


@app.get("/health", tags=["health"])
async def health_check():
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "client_portal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
