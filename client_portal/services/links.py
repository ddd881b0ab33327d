"""
Link Lifecycle: share-link state transitions for the client portal.

State machine per link:
    ACTIVE -> CONSUMED (n times) -> EXHAUSTED when usage_count == max_usage
    ACTIVE -> EXPIRED  (absorbing)
    ACTIVE -> REVOKED  (absorbing, also reached through reissue)

Rules:
- The plaintext token exists only in the response to generate/reissue
- Verify never mutates anything
- Consume increments usage with a single conditional UPDATE, so two
  concurrent requests on a max_usage=1 link cannot both succeed
- Every transition, successful or denied, is written to the audit trail
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.security import generate_token, hash_token, validate_token_format
from ..models import (
    AuditAction,
    LinkDenialReason,
    ShareLink,
    as_utc,
    utcnow,
)
from .audit import AuditService
from .collaborators import ResourceProvider
from .errors import (
    InvalidInputError,
    InvalidOperationError,
    LinkUnavailableError,
)

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "share_link"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class GeneratedLink:
    """A freshly issued link. The only place the plaintext token appears."""
    id: UUID
    token: str
    url: str
    resource_id: UUID
    expires_at: datetime | None
    requires_otp: bool
    max_usage: int | None
    created_at: datetime


@dataclass
class LinkStatus:
    """Result of Verify. Metadata is only populated for live links."""
    valid: bool
    resource_id: UUID | None = None
    expires_at: datetime | None = None
    requires_otp: bool | None = None
    usage_count: int | None = None
    max_usage: int | None = None


@dataclass
class ConsumeResult:
    success: bool
    resource_id: UUID
    view_payload: dict[str, Any]
    usage_count: int


@dataclass
class ExtendResult:
    success: bool
    expires_at: datetime


# =============================================================================
# LINK SERVICE
# =============================================================================


class LinkService:
    """Generate, verify, consume, revoke, reissue and extend share links."""

    def __init__(
        self,
        session: AsyncSession,
        resource_provider: ResourceProvider | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._resources = resource_provider
        self._settings = settings or get_settings()
        self._clock = clock
        self._audit = AuditService(session, clock=clock)

    # =========================================================================
    # GENERATE
    # =========================================================================

    async def generate(
        self,
        resource_id: UUID,
        expiry_seconds: int | None = None,
        require_otp: bool = False,
        max_usage: int | None = None,
        created_by: UUID | None = None,
        no_expiry: bool = False,
        workspace_id: UUID | None = None,
    ) -> GeneratedLink:
        """Issue a new link for a decision and persist only its digest.

        Without ``expiry_seconds`` the configured default window applies;
        ``no_expiry`` issues a link that never expires even when a default
        is configured.
        """
        self._check_policy(expiry_seconds, no_expiry, max_usage)
        if expiry_seconds is None and not no_expiry:
            expiry_seconds = self._settings.link_default_expiry_seconds

        now = self._clock()
        token = generate_token(self._settings.link_token_bytes)
        link = ShareLink(
            token_hash=hash_token(token),
            resource_id=resource_id,
            workspace_id=workspace_id,
            created_by=created_by,
            created_at=now,
            expires_at=now + timedelta(seconds=expiry_seconds) if expiry_seconds else None,
            requires_otp=require_otp,
            max_usage=max_usage,
            usage_count=0,
        )
        self._session.add(link)
        await self._session.flush()

        await self._audit.append(
            action=AuditAction.LINK_GENERATED,
            resource_type=RESOURCE_TYPE,
            resource_id=link.id,
            actor_id=created_by,
            workspace_id=workspace_id,
            details={
                "decision_id": str(resource_id),
                "expires_at": link.expires_at.isoformat() if link.expires_at else None,
                "requires_otp": require_otp,
                "max_usage": max_usage,
            },
        )
        logger.info(f"Generated share link {link.token_hash[:12]} for decision {resource_id}")

        return GeneratedLink(
            id=link.id,
            token=token,
            url=self.build_url(token),
            resource_id=resource_id,
            expires_at=link.expires_at,
            requires_otp=require_otp,
            max_usage=max_usage,
            created_at=now,
        )

    def build_url(self, token: str) -> str:
        return f"{self._settings.portal_base_url.rstrip('/')}/portal/{token}"

    # =========================================================================
    # VERIFY (read-only)
    # =========================================================================

    async def verify(self, token: str) -> LinkStatus:
        """Report liveness without side effects. Safe on every page load."""
        if not validate_token_format(token).valid:
            return LinkStatus(valid=False)

        link = await self._get_by_hash(hash_token(token))
        if link is None or not link.is_live(self._clock()):
            return LinkStatus(valid=False)

        return LinkStatus(
            valid=True,
            resource_id=link.resource_id,
            expires_at=as_utc(link.expires_at),
            requires_otp=link.requires_otp,
            usage_count=link.usage_count,
            max_usage=link.max_usage,
        )

    async def peek(self, token: str) -> ShareLink | None:
        """Load a live link record by token, or None. Used by the portal gate."""
        if not validate_token_format(token).valid:
            return None
        link = await self._get_by_hash(hash_token(token))
        if link is None or not link.is_live(self._clock()):
            return None
        return link

    # =========================================================================
    # CONSUME
    # =========================================================================

    async def consume(self, token: str) -> ConsumeResult:
        """Atomically count one use and return the protected payload.

        The liveness check and the increment are one conditional UPDATE. A
        request that loses the race sees zero affected rows and is denied as
        exhausted, exactly as if it had arrived after the cap was reached.
        """
        if not validate_token_format(token).valid:
            raise LinkUnavailableError(LinkDenialReason.MALFORMED)

        token_hash = hash_token(token)
        now = self._clock()

        stmt = (
            update(ShareLink)
            .where(
                ShareLink.token_hash == token_hash,
                ShareLink.revoked_at.is_(None),
                or_(ShareLink.expires_at.is_(None), ShareLink.expires_at > now),
                or_(
                    ShareLink.max_usage.is_(None),
                    ShareLink.usage_count < ShareLink.max_usage,
                ),
            )
            .values(usage_count=ShareLink.usage_count + 1, last_used_at=now)
            .returning(
                ShareLink.id,
                ShareLink.resource_id,
                ShareLink.workspace_id,
                ShareLink.usage_count,
            )
            .execution_options(synchronize_session=False)
        )
        row = (await self._session.execute(stmt)).first()

        if row is None:
            link = await self._get_by_hash(token_hash)
            if link is None:
                reason = LinkDenialReason.NOT_FOUND
            else:
                reason = link.denial_reason(now) or LinkDenialReason.EXHAUSTED
            await self.record_denial(link, reason)
            raise LinkUnavailableError(reason)

        link_id, resource_id, workspace_id, usage_count = row

        try:
            payload = await self._fetch_payload(resource_id)
        except LinkUnavailableError as e:
            # Decision is gone: give the use back before denying
            await self._session.execute(
                update(ShareLink)
                .where(ShareLink.id == link_id, ShareLink.usage_count > 0)
                .values(usage_count=ShareLink.usage_count - 1)
                .execution_options(synchronize_session=False)
            )
            await self._audit.append(
                action=AuditAction.LINK_CONSUME_DENIED,
                resource_type=RESOURCE_TYPE,
                resource_id=link_id,
                workspace_id=workspace_id,
                details={"reason": e.reason.value, "decision_id": str(resource_id)},
            )
            raise

        await self._audit.append(
            action=AuditAction.LINK_CONSUMED,
            resource_type=RESOURCE_TYPE,
            resource_id=link_id,
            workspace_id=workspace_id,
            details={"decision_id": str(resource_id), "usage_count": usage_count},
        )
        logger.info(f"Share link {token_hash[:12]} consumed ({usage_count} uses)")

        return ConsumeResult(
            success=True,
            resource_id=resource_id,
            view_payload=payload,
            usage_count=usage_count,
        )

    async def record_denial(
        self,
        link: ShareLink | None,
        reason: LinkDenialReason,
    ) -> None:
        """Write the internal reason for a refused consume to the trail."""
        logger.info(f"Share link consume denied: {reason.value}")
        await self._audit.append(
            action=AuditAction.LINK_CONSUME_DENIED,
            resource_type=RESOURCE_TYPE,
            resource_id=link.id if link else None,
            workspace_id=link.workspace_id if link else None,
            details={
                "reason": reason.value,
                "decision_id": str(link.resource_id) if link else None,
            },
        )

    # =========================================================================
    # REVOKE
    # =========================================================================

    async def revoke(self, token: str, actor_id: UUID | None = None) -> bool:
        """Kill a link permanently. Revoking twice still succeeds."""
        link = await self._require_link(token, for_update=True)
        already_revoked = link.revoked_at is not None
        if not already_revoked:
            link.revoked_at = self._clock()
            await self._session.flush()

        await self._audit.append(
            action=AuditAction.LINK_REVOKED,
            resource_type=RESOURCE_TYPE,
            resource_id=link.id,
            actor_id=actor_id,
            workspace_id=link.workspace_id,
            details={
                "decision_id": str(link.resource_id),
                "already_revoked": already_revoked,
            },
        )
        return True

    # =========================================================================
    # REISSUE
    # =========================================================================

    async def reissue(
        self,
        token: str,
        actor_id: UUID | None = None,
        expiry_seconds: int | None = None,
        require_otp: bool | None = None,
        max_usage: int | None = None,
        no_expiry: bool = False,
        clear_max_usage: bool = False,
    ) -> GeneratedLink:
        """Replace a link: the old one is revoked before the new one exists.

        The new link keeps the old policy (passcode requirement, usage cap and
        window length) unless overridden, and starts with zero uses.
        ``no_expiry`` and ``clear_max_usage`` drop an inherited window or cap.
        """
        if clear_max_usage and max_usage is not None:
            raise InvalidInputError("Provide either a usage limit or clearMaxUsage, not both")
        self._check_policy(expiry_seconds, no_expiry, max_usage)

        old = await self._require_link(token, for_update=True)
        now = self._clock()

        if old.revoked_at is None:
            old.revoked_at = now

        if expiry_seconds is None and not no_expiry:
            if old.expires_at is None:
                no_expiry = True
            else:
                window = as_utc(old.expires_at) - as_utc(old.created_at)
                expiry_seconds = max(int(window.total_seconds()), 1)

        if clear_max_usage:
            max_usage = None
        elif max_usage is None:
            max_usage = old.max_usage

        new = await self.generate(
            resource_id=old.resource_id,
            expiry_seconds=expiry_seconds,
            require_otp=old.requires_otp if require_otp is None else require_otp,
            max_usage=max_usage,
            created_by=actor_id,
            no_expiry=no_expiry,
            workspace_id=old.workspace_id,
        )
        old.superseded_by_id = new.id
        await self._session.flush()

        await self._audit.append(
            action=AuditAction.LINK_REISSUED,
            resource_type=RESOURCE_TYPE,
            resource_id=old.id,
            actor_id=actor_id,
            workspace_id=old.workspace_id,
            details={
                "decision_id": str(old.resource_id),
                "new_link_id": str(new.id),
            },
        )
        return new

    # =========================================================================
    # EXTEND
    # =========================================================================

    async def extend(
        self,
        token: str,
        actor_id: UUID | None = None,
        expires_at: datetime | None = None,
        expiry_seconds: int | None = None,
    ) -> ExtendResult:
        """Push expires_at forward. Never resurrects and never shortens."""
        if (expires_at is None) == (expiry_seconds is None):
            raise InvalidInputError("Provide exactly one of expiresAt or expirySeconds")
        if expiry_seconds is not None and expiry_seconds <= 0:
            raise InvalidInputError("Expiry must be a positive number of seconds")

        link = await self._require_link(token, for_update=True)
        now = self._clock()
        reason = link.denial_reason(now)
        if reason in (LinkDenialReason.REVOKED, LinkDenialReason.EXPIRED):
            raise LinkUnavailableError(reason)

        current = as_utc(link.expires_at)
        if current is None:
            raise InvalidOperationError("Link never expires; an expiry would shorten access")

        if expires_at is not None:
            target = as_utc(expires_at)
        else:
            target = current + timedelta(seconds=expiry_seconds)

        if target <= current:
            raise InvalidOperationError(
                "New expiry must be later than the current expiry"
            )

        link.expires_at = target
        await self._session.flush()

        await self._audit.append(
            action=AuditAction.LINK_EXTENDED,
            resource_type=RESOURCE_TYPE,
            resource_id=link.id,
            actor_id=actor_id,
            workspace_id=link.workspace_id,
            details={
                "decision_id": str(link.resource_id),
                "previous_expires_at": current.isoformat(),
                "expires_at": target.isoformat(),
            },
        )
        return ExtendResult(success=True, expires_at=target)

    # =========================================================================
    # LISTING
    # =========================================================================

    async def list_links(
        self,
        resource_id: UUID,
        workspace_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> Sequence[ShareLink]:
        """Links issued for a decision, newest first, narrowed to an owner."""
        query = select(ShareLink).where(ShareLink.resource_id == resource_id)
        if workspace_id:
            query = query.where(ShareLink.workspace_id == workspace_id)
        if created_by:
            query = query.where(ShareLink.created_by == created_by)
        result = await self._session.execute(
            query.order_by(ShareLink.created_at.desc())
        )
        return result.scalars().all()

    async def workspace_for(self, resource_id: UUID) -> UUID | None:
        """Workspace of the newest link issued for a decision, if any."""
        result = await self._session.execute(
            select(ShareLink.workspace_id)
            .where(ShareLink.resource_id == resource_id)
            .order_by(ShareLink.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    @staticmethod
    def _check_policy(
        expiry_seconds: int | None,
        no_expiry: bool,
        max_usage: int | None,
    ) -> None:
        if no_expiry and expiry_seconds is not None:
            raise InvalidInputError("A link cannot both expire and never expire")
        if expiry_seconds is not None and expiry_seconds <= 0:
            raise InvalidInputError("Expiry must be a positive number of seconds")
        if max_usage is not None and max_usage < 1:
            raise InvalidInputError("Usage limit must be at least 1")

    async def _get_by_hash(
        self,
        token_hash: str,
        for_update: bool = False,
    ) -> ShareLink | None:
        # Always re-read: usage_count and revoked_at must never come from cache
        query = (
            select(ShareLink)
            .where(ShareLink.token_hash == token_hash)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def _require_link(self, token: str, for_update: bool = False) -> ShareLink:
        if not validate_token_format(token).valid:
            raise LinkUnavailableError(LinkDenialReason.MALFORMED)
        link = await self._get_by_hash(hash_token(token), for_update=for_update)
        if link is None:
            raise LinkUnavailableError(LinkDenialReason.NOT_FOUND)
        return link

    async def _fetch_payload(self, resource_id: UUID) -> dict[str, Any]:
        if self._resources is None:
            return {}
        return await self._resources.fetch_decision_payload(resource_id)
