"""Client-facing access flow: passcode first, then consume."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.security import create_portal_session_token, decode_portal_session_token
from ..models import LinkDenialReason, utcnow
from .collaborators import MessageDispatcher, ResourceProvider
from .errors import OtpRequiredError
from .links import ConsumeResult, LinkService
from .otp import OtpSendResult, OtpService

logger = logging.getLogger(__name__)


@dataclass
class PortalVerification:
    verified: bool
    portal_session: str
    expires_at: datetime


class PortalAccessService:
    """Composes the OTP gate with link consumption.

    A verified passcode yields a signed portal session bound to the decision
    and email. Links that require a passcode only consume with that session.
    """

    def __init__(
        self,
        session: AsyncSession,
        resource_provider: ResourceProvider | None = None,
        dispatcher: MessageDispatcher | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings or get_settings()
        self._clock = clock
        self.links = LinkService(
            session,
            resource_provider=resource_provider,
            settings=self._settings,
            clock=clock,
        )
        self.otp = OtpService(
            session,
            dispatcher=dispatcher,
            settings=self._settings,
            clock=clock,
        )

    async def send_otp(self, decision_id: UUID, email: str) -> OtpSendResult:
        workspace_id = await self.links.workspace_for(decision_id)
        return await self.otp.send_otp(decision_id, email, workspace_id=workspace_id)

    async def verify_otp(
        self,
        email: str,
        code: str,
        decision_id: UUID,
    ) -> PortalVerification:
        workspace_id = await self.links.workspace_for(decision_id)
        result = await self.otp.verify_otp(
            email, code, decision_id, workspace_id=workspace_id
        )
        now = self._clock()
        ttl = timedelta(minutes=self._settings.portal_session_ttl_minutes)
        token = create_portal_session_token(
            resource_id=decision_id,
            email=result.email,
            expires_delta=ttl,
            now=now,
        )
        return PortalVerification(
            verified=True,
            portal_session=token,
            expires_at=now + ttl,
        )

    async def consume(
        self,
        token: str,
        portal_session: str | None = None,
    ) -> ConsumeResult:
        """Consume a link, enforcing the passcode step where the link asks for it."""
        link = await self.links.peek(token)
        if link is not None and link.requires_otp:
            claims = (
                decode_portal_session_token(portal_session, now=self._clock())
                if portal_session
                else None
            )
            if claims is None or claims.rid != str(link.resource_id):
                await self.links.record_denial(link, LinkDenialReason.OTP_REQUIRED)
                raise OtpRequiredError("Verify your email to open this link")
        return await self.links.consume(token)
