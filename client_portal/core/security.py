"""Security utilities: share-link tokens, passcodes, JWT handling."""

import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


# =============================================================================
# OPAQUE TOKENS (share links, reset links)
# =============================================================================

TOKEN_MIN_LENGTH = 10
TOKEN_MAX_LENGTH = 512
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9\-_+=]+$")


@dataclass(frozen=True)
class TokenFormatResult:
    """Outcome of the cheap pre-lookup token check."""
    valid: bool
    error: str | None = None


def generate_token(nbytes: int | None = None) -> str:
    """Generate an unguessable base64url bearer token.

    Never fewer than 32 random bytes (256 bits).
    """
    nbytes = max(nbytes or settings.link_token_bytes, 32)
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a bearer token. Only the digest is persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def validate_token_format(token: str | None) -> TokenFormatResult:
    """Reject malformed tokens before they reach the store."""
    if not token or not isinstance(token, str):
        return TokenFormatResult(False, "Token is required")
    if len(token) < TOKEN_MIN_LENGTH:
        return TokenFormatResult(False, "Token is too short")
    if len(token) > TOKEN_MAX_LENGTH:
        return TokenFormatResult(False, "Token is too long")
    if not TOKEN_PATTERN.match(token):
        return TokenFormatResult(False, "Token contains invalid characters")
    return TokenFormatResult(True)


# =============================================================================
# ONE-TIME PASSCODES
# =============================================================================


def generate_otp_code(length: int | None = None) -> str:
    """Generate a numeric passcode, zero-padded to ``length`` digits."""
    length = length or settings.otp_length
    return "".join(secrets.choice("0123456789") for _ in range(length))


def normalize_email(email: str) -> str:
    return email.strip().lower()


# Password hashing context for passcodes
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.otp_hash_rounds,
)


def _otp_material(
    code: str,
    decision_id: UUID,
    email: str,
    secret_key: str | None = None,
) -> str:
    """HMAC of the passcode and its challenge, keyed with the server secret."""
    message = f"{code.strip()}:{decision_id}:{normalize_email(email)}"
    key = (secret_key or settings.secret_key).encode("utf-8")
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()


def hash_otp_code(
    code: str,
    decision_id: UUID,
    email: str,
    secret_key: str | None = None,
) -> str:
    """Salted hash of a passcode bound to the challenge it was issued for."""
    return pwd_context.hash(_otp_material(code, decision_id, email, secret_key))


def verify_otp_code(
    code: str,
    decision_id: UUID,
    email: str,
    code_hash: str,
    secret_key: str | None = None,
) -> bool:
    """Verify a presented passcode against a stored hash."""
    try:
        return pwd_context.verify(
            _otp_material(code, decision_id, email, secret_key), code_hash
        )
    except ValueError:
        logger.warning("Stored passcode hash is not in a recognised format")
        return False


# =============================================================================
# JWT HANDLING
# =============================================================================


class TokenPayload(BaseModel):
    """JWT token payload for studio users."""

    sub: str  # User ID
    org: str | None = None  # Workspace ID
    exp: datetime
    iat: datetime
    type: str = "access"


class PortalSessionPayload(BaseModel):
    """Proof that a client passed the OTP gate for one decision."""

    sub: str  # Verified email
    rid: str  # Decision ID
    exp: datetime
    iat: datetime
    type: str = "portal"


def create_access_token(
    user_id: UUID,
    organization_id: UUID | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user_id),
        "org": str(organization_id) if organization_id else None,
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a studio access token."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def create_portal_session_token(
    resource_id: UUID,
    email: str,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    """Issue the short-lived portal session granted after a verified passcode.

    ``now`` is the issuing service's clock; expiry is measured from it and
    checked against the same clock when the session is presented.
    """
    now = now or datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.portal_session_ttl_minutes)
    )
    payload = {
        "sub": normalize_email(email),
        "rid": str(resource_id),
        "exp": expire,
        "iat": now,
        "type": "portal",
    }
    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_portal_session_token(
    token: str,
    now: datetime | None = None,
) -> PortalSessionPayload | None:
    """Decode a portal session token; None when invalid, expired or wrong type."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=["HS256"],
            options={"require": ["exp"], "verify_exp": False, "verify_iat": False},
        )
    except jwt.InvalidTokenError:
        return None
    if payload.get("type") != "portal":
        return None
    claims = PortalSessionPayload(**payload)
    if claims.exp <= (now or datetime.now(timezone.utc)):
        return None
    return claims
