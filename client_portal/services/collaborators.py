"""
Outbound collaborators: decision payloads and message delivery.

The portal core never owns decision content or mail infrastructure. It asks:
1. A ResourceProvider for the protected read-model of a decision
2. A MessageDispatcher to deliver passcodes and links (best effort)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

import httpx

from ..core.config import Settings, get_settings
from ..models import LinkDenialReason
from .errors import LinkUnavailableError, StoreUnavailableError

logger = logging.getLogger(__name__)


# =============================================================================
# DECISION PAYLOADS
# =============================================================================


class ResourceProvider(ABC):
    """Source of the protected decision read-model embedded in Consume."""

    @abstractmethod
    async def fetch_decision_payload(self, resource_id: UUID) -> dict[str, Any]:
        """Return options, media and comments for a decision."""
        pass


class HttpResourceProvider(ResourceProvider):
    """Fetch decision payloads from the workspace API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._retries = retries
        self._transport = transport

    async def fetch_decision_payload(self, resource_id: UUID) -> dict[str, Any]:
        url = f"{self._base_url}/decisions/{resource_id}/portal-view"
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

        last_error: Exception | None = None
        for attempt in range(self._retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.get(url, headers=headers)
                if response.status_code == 404:
                    raise LinkUnavailableError(LinkDenialReason.NOT_FOUND)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    break
            except httpx.TransportError as e:
                last_error = e
            except ValueError as e:
                # Body is not JSON
                last_error = e
                break
            if attempt < self._retries:
                logger.warning(
                    f"Decision payload fetch failed for {resource_id}, retrying: {last_error!r}"
                )
                await asyncio.sleep(0.2)

        logger.error(f"Decision payload unavailable for {resource_id}: {last_error!r}")
        raise StoreUnavailableError("Decision content is temporarily unavailable")


class MockResourceProvider(ResourceProvider):
    """Demo-mode payloads. Only used when ``use_mock_data`` is enabled."""

    async def fetch_decision_payload(self, resource_id: UUID) -> dict[str, Any]:
        return {
            "decision": {
                "id": str(resource_id),
                "title": "Kitchen finishes",
                "projectId": None,
            },
            "options": [
                {"id": "opt-1", "title": "Oak veneer", "mediaUrls": [], "mediaAssets": [], "annotations": []},
                {"id": "opt-2", "title": "Matte lacquer", "mediaUrls": [], "mediaAssets": [], "annotations": []},
            ],
            "mediaAssets": [],
            "comments": [],
            "annotations": [],
            "branding": {},
            "mock": True,
        }


def get_resource_provider(settings: Settings | None = None) -> ResourceProvider:
    """Select the payload source from configuration.

    Demo data is an explicit switch; a missing API URL outside demo mode is a
    configuration error rather than a reason to fabricate content.
    """
    settings = settings or get_settings()
    if settings.use_mock_data:
        return MockResourceProvider()
    if not settings.resource_api_url:
        raise RuntimeError("RESOURCE_API_URL must be set unless USE_MOCK_DATA is enabled")
    return HttpResourceProvider(
        base_url=settings.resource_api_url,
        api_key=settings.resource_api_key,
        timeout=settings.resource_api_timeout,
        retries=settings.resource_api_retries,
    )


# =============================================================================
# MESSAGE DELIVERY
# =============================================================================


class MessageDispatcher(ABC):
    """Best-effort delivery. Returns True when the message was accepted for send."""

    @abstractmethod
    async def send_code(self, recipient: str, code: str, decision_id: UUID) -> bool:
        pass

    @abstractmethod
    async def send_link(self, recipient: str, url: str) -> bool:
        pass


class HttpEmailDispatcher(MessageDispatcher):
    """Email delivery through a transactional email HTTP API."""

    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        from_email: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_url = api_url
        self._api_key = api_key
        self._from_email = from_email
        self._timeout = timeout
        self._transport = transport

    async def send_code(self, recipient: str, code: str, decision_id: UUID) -> bool:
        return await self._send(
            recipient,
            subject="Your verification code",
            text=f"Your verification code is {code}. It expires in a few minutes.",
        )

    async def send_link(self, recipient: str, url: str) -> bool:
        return await self._send(
            recipient,
            subject="A decision is waiting for your review",
            text=f"Open the decision here: {url}",
        )

    async def _send(self, recipient: str, subject: str, text: str) -> bool:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self._api_url,
                    json={
                        "to": recipient,
                        "from": self._from_email,
                        "subject": subject,
                        "text": text,
                    },
                    headers=headers,
                )
            if response.is_success:
                return True
            logger.error(f"Email API rejected message to {recipient}: HTTP {response.status_code}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Failed to send email to {recipient}: {e!r}")
            return False


class LoggingDispatcher(MessageDispatcher):
    """Development dispatcher: records that a message would have been sent."""

    async def send_code(self, recipient: str, code: str, decision_id: UUID) -> bool:
        # Never log the code itself
        logger.info(f"[EMAIL] Verification code for decision {decision_id} to {recipient}")
        return True

    async def send_link(self, recipient: str, url: str) -> bool:
        logger.info(f"[EMAIL] Portal link to {recipient}")
        return True


def get_dispatcher(settings: Settings | None = None) -> MessageDispatcher:
    settings = settings or get_settings()
    if settings.email_enabled:
        return HttpEmailDispatcher(
            api_url=settings.email_api_url,
            api_key=settings.email_api_key,
            from_email=settings.email_from,
        )
    return LoggingDispatcher()
