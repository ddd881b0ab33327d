"""Core application utilities.

Request dependencies live in ``core.dependencies`` and are imported from
there directly, since they sit on top of the service layer.
"""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session,
    init_db,
)
from .security import (
    create_access_token,
    create_portal_session_token,
    decode_portal_session_token,
    decode_token,
    generate_otp_code,
    generate_token,
    hash_otp_code,
    hash_token,
    validate_token_format,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "init_db",
    "close_db",
    # Security
    "generate_token",
    "hash_token",
    "validate_token_format",
    "generate_otp_code",
    "hash_otp_code",
    "create_access_token",
    "decode_token",
    "create_portal_session_token",
    "decode_portal_session_token",
]
