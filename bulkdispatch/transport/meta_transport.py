# bulkdispatch/transport/meta_transport.py
"""
Meta WhatsApp Cloud API transport.

Uses the Graph API to:
- Verify credentials on connect (GET /{phone_number_id})
- Send text messages (POST /{phone_number_id}/messages)

The Cloud API has no lookup for "is this number on WhatsApp", so
``exists_on_network`` is a syntactic E.164 check that also normalizes the
address to the digits-only form Meta expects. A number that turns out not
to be on WhatsApp is reported by the send call (error code 131026).

Error classification (TransportError.retryable):
- Token expired/invalid  → NOT retryable (needs human intervention)
- Invalid recipient      → NOT retryable (number not on WhatsApp)
- Rate limiting (429)    → retryable
- Network / timeout      → retryable
- Unknown server error   → retryable
"""
from __future__ import annotations

import asyncio
import re
from typing import AsyncIterator

import aiohttp

from bulkdispatch.config import settings
from bulkdispatch.core.errors import TransportConnectError, TransportSendError
from bulkdispatch.core.ports import TransportEvent
from bulkdispatch.infra.http_client import get_session
from bulkdispatch.infra.logging_config import get_logger, mask_recipient
from bulkdispatch.infra.metrics import inc_counter

logger = get_logger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"

# E.164: up to 15 digits; shortest real national numbers give 8
_E164_DIGITS = re.compile(r"^\d{8,15}$")
_STRIP = re.compile(r"[\s\-().]")

# Meta error codes
_AUTH_ERROR_CODE = 190
_RATE_LIMIT_CODES = (4, 80007, 130429)
_NOT_ON_WHATSAPP_CODE = 131026


def normalize_number(raw: str) -> str | None:
    """
    Normalize a recipient to Meta's format (E.164 digits, no ``+``).

    Returns None when the value cannot be a phone number.
    """
    clean = _STRIP.sub("", raw.replace("whatsapp:", "")).strip()
    if clean.startswith("+"):
        clean = clean[1:]
    elif clean.startswith("00"):
        clean = clean[2:]
    return clean if _E164_DIGITS.match(clean) else None


class MetaCloudTransport:
    name = "meta"

    def __init__(
        self,
        *,
        access_token: str | None = None,
        phone_number_id: str | None = None,
        graph_api_version: str | None = None,
    ):
        self._access_token = access_token or settings.meta_access_token
        self._phone_number_id = phone_number_id or settings.meta_phone_number_id
        self._graph_api_version = graph_api_version or settings.meta_graph_api_version
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _graph_url(self, path: str) -> str:
        return f"{GRAPH_API_BASE}/{self._graph_api_version}/{path}"

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # MessageTransport
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Verify the access token and phone number ID.

        Raises:
            TransportConnectError: not retryable on auth/config errors
        """
        if not self._access_token or not self._phone_number_id:
            raise TransportConnectError(
                "Meta transport is not configured (access token / phone number ID)",
                retryable=False,
            )

        url = self._graph_url(self._phone_number_id)
        try:
            session = get_session("probe")
            async with session.get(
                url,
                params={"fields": "display_phone_number,verified_name"},
                headers=self._auth_headers(),
            ) as resp:
                body = await _safe_response_json(resp)
                if resp.status == 200:
                    display = (body or {}).get("display_phone_number", "unknown")
                    logger.info(f"Meta transport connected: number={display}")
                    await self._events.put(TransportEvent("connection", "open"))
                    return

                error = (body or {}).get("error", {})
                code = error.get("code")
                message = error.get("message", f"HTTP {resp.status}")
                permanent = resp.status in (400, 401, 403, 404) or code == _AUTH_ERROR_CODE
                # the raised error reports this failure; close events are for live disconnects
                raise TransportConnectError(
                    f"Meta API connect error {resp.status} (code={code}): {message}",
                    retryable=not permanent,
                )
        except TransportConnectError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(f"Meta API connect failed: {type(exc).__name__}")
            raise TransportConnectError(type(exc).__name__, retryable=True) from exc

    async def exists_on_network(self, identifier: str) -> str | None:
        return normalize_number(identifier)

    async def send(self, address: str, text: str) -> None:
        """
        Send a text message.

        Raises:
            TransportSendError: on API errors (check .retryable)
        """
        url = self._graph_url(f"{self._phone_number_id}/messages")
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": address,
            "type": "text",
            "text": {"body": text},
        }
        await self._send_request(url, payload, address)

    async def events(self) -> AsyncIterator[TransportEvent]:
        while True:
            yield await self._events.get()

    async def close(self) -> None:
        logger.debug("Meta transport closed")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _send_request(self, url: str, payload: dict, to: str) -> dict:
        masked = mask_recipient(to)
        try:
            session = get_session("send")
            async with session.post(url, json=payload, headers=self._auth_headers()) as resp:
                body = await _safe_response_json(resp)

                if resp.status in (200, 201) and body is not None:
                    msg_id = (body.get("messages") or [{}])[0].get("id", "unknown")
                    logger.info(f"Meta message sent: to={masked}, msg_id={msg_id[:20]}")
                    inc_counter("meta_outbound_sent")
                    return body

                error = (body or {}).get("error", {})
                error_code = error.get("code")
                error_msg = error.get("message", "Unknown error")

                if resp.status == 401 or error_code == _AUTH_ERROR_CODE:
                    logger.error(f"Meta API auth error: status={resp.status}, code={error_code}")
                    inc_counter("meta_outbound_auth_error")
                    await self._events.put(
                        TransportEvent("connection", "close", permanent=True, detail=error_msg)
                    )
                    raise TransportSendError(
                        f"Meta API auth error {resp.status}: {error_msg}", retryable=False,
                    )

                if resp.status == 429 or error_code in _RATE_LIMIT_CODES:
                    logger.warning(f"Meta API rate limit: status={resp.status}, code={error_code}")
                    inc_counter("meta_outbound_rate_limited")
                    raise TransportSendError(
                        f"Meta API rate limit {resp.status}: {error_msg}", retryable=True,
                    )

                if error_code == _NOT_ON_WHATSAPP_CODE:
                    logger.warning(f"Meta API: recipient not on WhatsApp: to={masked}")
                    inc_counter("meta_outbound_invalid_recipient")
                    raise TransportSendError(
                        f"Recipient not on WhatsApp: {error_msg}", retryable=False,
                    )

                logger.error(f"Meta API error: status={resp.status}, code={error_code}")
                inc_counter("meta_outbound_error")
                raise TransportSendError(
                    f"Meta API error {resp.status} (code={error_code}): {error_msg}",
                    retryable=True,
                )

        except TransportSendError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(f"Meta API connection error: {type(exc).__name__}")
            inc_counter("meta_outbound_connection_error")
            raise TransportSendError(type(exc).__name__, retryable=True) from exc


async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | None:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        logger.warning(f"Meta API returned non-JSON body: status={resp.status}")
        return None
