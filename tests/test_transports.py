# tests/test_transports.py
"""
Tests for message transports:
- Meta Cloud API transport (aiohttp session mocked)
- Dry-run transport
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from bulkdispatch.core.errors import TransportConnectError, TransportQueryError, TransportSendError
from bulkdispatch.core.ports import TransportEvent
from bulkdispatch.transport.dry_run_transport import DryRunTransport
from bulkdispatch.transport.meta_transport import MetaCloudTransport, normalize_number

GET_SESSION = "bulkdispatch.transport.meta_transport.get_session"


def _make_mock_response(status=200, json_data=None):
    """Create a mock aiohttp response."""
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data or {})
    return resp


def _make_mock_session(response):
    """Create a mock session whose .get() and .post() return the given response."""
    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get = MagicMock(return_value=ctx)
    session.post = MagicMock(return_value=ctx)
    return session


def _transport() -> MetaCloudTransport:
    return MetaCloudTransport(access_token="tok", phone_number_id="1055", graph_api_version="v20.0")


async def _next_event(transport) -> TransportEvent:
    events = transport.events()
    try:
        return await events.__anext__()
    finally:
        await events.aclose()


class TestNormalizeNumber:
    @pytest.mark.parametrize("raw, expected", [
        ("+258 84-123-4567", "258841234567"),
        ("whatsapp:+15551234567", "15551234567"),
        ("00447700900123", "447700900123"),
        ("(258) 841234567", "258841234567"),
        ("258841234567", "258841234567"),
    ])
    def test_valid(self, raw, expected):
        assert normalize_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", "+123", "1" * 16, "+25884abc4567"])
    def test_invalid(self, raw):
        assert normalize_number(raw) is None


class TestMetaConnect:
    @pytest.mark.asyncio
    async def test_not_configured_is_permanent(self):
        with patch("bulkdispatch.transport.meta_transport.settings") as mock_settings:
            mock_settings.meta_access_token = None
            mock_settings.meta_phone_number_id = None
            transport = MetaCloudTransport(graph_api_version="v20.0")
            with pytest.raises(TransportConnectError) as exc_info:
                await transport.connect()
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_success_emits_open_event(self):
        session = _make_mock_session(_make_mock_response(200, {"display_phone_number": "+1 555"}))
        transport = _transport()

        with patch(GET_SESSION, return_value=session) as mock_get:
            await transport.connect()

        mock_get.assert_called_once_with("probe")
        assert await _next_event(transport) == TransportEvent("connection", "open")
        url = session.get.call_args[0][0]
        assert url == "https://graph.facebook.com/v20.0/1055"
        assert session.get.call_args[1]["headers"]["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_invalid_token_is_permanent(self):
        body = {"error": {"code": 190, "message": "Invalid OAuth access token"}}
        session = _make_mock_session(_make_mock_response(401, body))
        transport = _transport()

        with patch(GET_SESSION, return_value=session):
            with pytest.raises(TransportConnectError) as exc_info:
                await transport.connect()

        assert exc_info.value.retryable is False
        assert transport._events.empty()

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        session = _make_mock_session(_make_mock_response(503, {}))
        transport = _transport()

        with patch(GET_SESSION, return_value=session):
            with pytest.raises(TransportConnectError) as exc_info:
                await transport.connect()

        assert exc_info.value.retryable is True
        assert transport._events.empty()

    @pytest.mark.asyncio
    async def test_network_error_is_retryable(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))

        with patch(GET_SESSION, return_value=session):
            with pytest.raises(TransportConnectError) as exc_info:
                await _transport().connect()

        assert exc_info.value.retryable is True


class TestMetaSend:
    @pytest.mark.asyncio
    async def test_exists_on_network_normalizes(self):
        transport = _transport()
        assert await transport.exists_on_network("+258841234567") == "258841234567"
        assert await transport.exists_on_network("not-a-number") is None

    @pytest.mark.asyncio
    async def test_send_text_payload(self):
        body = {"messages": [{"id": "wamid.ABC"}]}
        session = _make_mock_session(_make_mock_response(200, body))

        with patch(GET_SESSION, return_value=session) as mock_get:
            await _transport().send("258841234567", "hello")

        url = session.post.call_args[0][0]
        payload = session.post.call_args[1]["json"]
        assert url == "https://graph.facebook.com/v20.0/1055/messages"
        assert payload["to"] == "258841234567"
        assert payload["type"] == "text"
        assert payload["text"] == {"body": "hello"}
        mock_get.assert_called_once_with("send")

    @pytest.mark.asyncio
    async def test_auth_error_is_permanent_and_closes_connection(self):
        body = {"error": {"code": 190, "message": "Session expired"}}
        session = _make_mock_session(_make_mock_response(401, body))
        transport = _transport()

        with patch(GET_SESSION, return_value=session):
            with pytest.raises(TransportSendError) as exc_info:
                await transport.send("258841234567", "hello")

        assert exc_info.value.retryable is False
        event = await _next_event(transport)
        assert event.permanent is True

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self):
        body = {"error": {"code": 130429, "message": "Rate limit hit"}}
        session = _make_mock_session(_make_mock_response(429, body))

        with patch(GET_SESSION, return_value=session):
            with pytest.raises(TransportSendError) as exc_info:
                await _transport().send("258841234567", "hello")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_recipient_not_on_whatsapp_is_not_retryable(self):
        body = {"error": {"code": 131026, "message": "Message undeliverable"}}
        session = _make_mock_session(_make_mock_response(400, body))

        with patch(GET_SESSION, return_value=session):
            with pytest.raises(TransportSendError, match="not on WhatsApp") as exc_info:
                await _transport().send("258841234567", "hello")

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_unknown_server_error_is_retryable(self):
        session = _make_mock_session(_make_mock_response(500, {}))

        with patch(GET_SESSION, return_value=session):
            with pytest.raises(TransportSendError) as exc_info:
                await _transport().send("258841234567", "hello")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        session = MagicMock()
        session.post = MagicMock(side_effect=asyncio.TimeoutError())

        with patch(GET_SESSION, return_value=session):
            with pytest.raises(TransportSendError) as exc_info:
                await _transport().send("258841234567", "hello")

        assert exc_info.value.retryable is True


class TestDryRunTransport:
    @pytest.mark.asyncio
    async def test_records_sends(self):
        transport = DryRunTransport()
        await transport.send("111", "hi")
        assert transport.sent == [("111", "hi")]

    @pytest.mark.asyncio
    async def test_existence(self):
        transport = DryRunTransport(missing={"333"}, unreachable={"444"})
        assert await transport.exists_on_network("111") == "111"
        assert await transport.exists_on_network("333") is None
        with pytest.raises(TransportQueryError):
            await transport.exists_on_network("444")

    @pytest.mark.asyncio
    async def test_connect_emits_open(self):
        transport = DryRunTransport()
        await transport.connect()
        assert await _next_event(transport) == TransportEvent("connection", "open")
