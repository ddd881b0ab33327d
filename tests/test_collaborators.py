"""Tests for the outbound HTTP collaborators using httpx mock transports."""

import json
from uuid import uuid4

import httpx
import pytest

from client_portal.core.config import Settings
from client_portal.models import LinkDenialReason
from client_portal.services import (
    HttpEmailDispatcher,
    HttpResourceProvider,
    LinkUnavailableError,
    LoggingDispatcher,
    MockResourceProvider,
    StoreUnavailableError,
    get_dispatcher,
    get_resource_provider,
)


def recording_transport(responses):
    """MockTransport that replays ``responses`` in order and keeps the requests."""
    requests = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    return httpx.MockTransport(handler), requests


# =============================================================================
# TEST: RESOURCE PROVIDER
# =============================================================================


class TestHttpResourceProvider:

    async def test_fetches_payload_with_api_key(self):
        decision_id = uuid4()
        transport, requests = recording_transport(
            [httpx.Response(200, json={"decision": {"id": str(decision_id)}})]
        )
        provider = HttpResourceProvider(
            "https://api.archject.test/", api_key="k-123", transport=transport
        )

        payload = await provider.fetch_decision_payload(decision_id)

        assert payload["decision"]["id"] == str(decision_id)
        assert str(requests[0].url) == f"https://api.archject.test/decisions/{decision_id}/portal-view"
        assert requests[0].headers["Authorization"] == "Bearer k-123"

    async def test_missing_decision_is_not_found(self):
        transport, _ = recording_transport([httpx.Response(404)])
        provider = HttpResourceProvider("https://api.archject.test", transport=transport)

        with pytest.raises(LinkUnavailableError) as exc_info:
            await provider.fetch_decision_payload(uuid4())

        assert exc_info.value.reason == LinkDenialReason.NOT_FOUND

    async def test_server_errors_are_retried(self):
        transport, requests = recording_transport(
            [httpx.Response(503), httpx.Response(200, json={"ok": True})]
        )
        provider = HttpResourceProvider("https://api.archject.test", retries=1, transport=transport)

        assert await provider.fetch_decision_payload(uuid4()) == {"ok": True}
        assert len(requests) == 2

    async def test_persistent_failure_is_store_unavailable(self):
        transport, requests = recording_transport([httpx.Response(500)])
        provider = HttpResourceProvider("https://api.archject.test", retries=1, transport=transport)

        with pytest.raises(StoreUnavailableError):
            await provider.fetch_decision_payload(uuid4())
        assert len(requests) == 2

    async def test_client_errors_are_not_retried(self):
        transport, requests = recording_transport([httpx.Response(403)])
        provider = HttpResourceProvider("https://api.archject.test", retries=2, transport=transport)

        with pytest.raises(StoreUnavailableError):
            await provider.fetch_decision_payload(uuid4())
        assert len(requests) == 1

    async def test_non_json_body_is_store_unavailable(self):
        transport, requests = recording_transport(
            [httpx.Response(200, text="<html>maintenance</html>")]
        )
        provider = HttpResourceProvider("https://api.archject.test", retries=2, transport=transport)

        with pytest.raises(StoreUnavailableError):
            await provider.fetch_decision_payload(uuid4())
        assert len(requests) == 1


class TestResourceProviderSelection:

    def test_mock_data_is_explicit(self):
        settings = Settings(_env_file=None, use_mock_data=True)
        assert isinstance(get_resource_provider(settings), MockResourceProvider)

    def test_missing_url_outside_demo_mode_fails(self):
        settings = Settings(_env_file=None, use_mock_data=False, resource_api_url=None)
        with pytest.raises(RuntimeError):
            get_resource_provider(settings)

    def test_configured_url_uses_http(self):
        settings = Settings(
            _env_file=None,
            use_mock_data=False,
            resource_api_url="https://api.archject.test",
        )
        assert isinstance(get_resource_provider(settings), HttpResourceProvider)

    async def test_mock_payload_is_flagged(self):
        payload = await MockResourceProvider().fetch_decision_payload(uuid4())
        assert payload["mock"] is True


# =============================================================================
# TEST: MESSAGE DISPATCH
# =============================================================================


class TestHttpEmailDispatcher:

    async def test_code_is_posted_to_email_api(self):
        transport, requests = recording_transport([httpx.Response(202)])
        dispatcher = HttpEmailDispatcher(
            "https://mail.test/send", "mk", "portal@archject.app", transport=transport
        )

        assert await dispatcher.send_code("client@x.com", "123456", uuid4())

        body = json.loads(requests[0].content)
        assert body["to"] == "client@x.com"
        assert body["from"] == "portal@archject.app"
        assert "123456" in body["text"]

    async def test_rejected_message_returns_false(self):
        transport, _ = recording_transport([httpx.Response(500)])
        dispatcher = HttpEmailDispatcher(
            "https://mail.test/send", None, "portal@archject.app", transport=transport
        )

        assert not await dispatcher.send_link("client@x.com", "https://portal/x")

    async def test_transport_failure_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        dispatcher = HttpEmailDispatcher(
            "https://mail.test/send",
            None,
            "portal@archject.app",
            transport=httpx.MockTransport(handler),
        )

        assert not await dispatcher.send_code("client@x.com", "123456", uuid4())


class TestDispatcherSelection:

    def test_logging_dispatcher_without_email_api(self):
        settings = Settings(_env_file=None, email_api_url=None)
        assert isinstance(get_dispatcher(settings), LoggingDispatcher)

    def test_email_dispatcher_when_configured(self):
        settings = Settings(_env_file=None, email_api_url="https://mail.test/send")
        assert isinstance(get_dispatcher(settings), HttpEmailDispatcher)

    async def test_logging_dispatcher_never_logs_code(self, caplog):
        caplog.set_level("INFO")
        assert await LoggingDispatcher().send_code("client@x.com", "987654", uuid4())
        assert "987654" not in caplog.text
