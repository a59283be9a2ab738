# bulkdispatch/transport/supervisor.py
"""
Transport connection supervisor.

Keeps the message transport connected and relays its event stream to
observers:

- ``pairing-code`` events are published as-is;
- connection open/close changes update ``connected`` and publish a ``status``.

Reconnection: exponential backoff (1s → 2s → 4s → ... → 30s max) on
retryable failures and on non-permanent disconnects. A permanent close
(logged out, revoked credentials) stops reconnecting; an operator has to
re-pair and restart.

Usage:
    supervisor = TransportSupervisor(transport, hub)
    await supervisor.start()
    ...
    await supervisor.stop()
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from bulkdispatch.core.errors import TransportError
from bulkdispatch.core.ports import EventSink, MessageTransport, TransportEvent
from bulkdispatch.infra.logging_config import LogContext, get_logger
from bulkdispatch.infra.metrics import inc_counter

logger = get_logger(__name__)


class TransportSupervisor:
    def __init__(
        self,
        transport: MessageTransport,
        events: EventSink,
        *,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._transport = transport
        self._events = events
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._sleep = sleep
        self._backoff = initial_delay
        self._connected = False
        self._logged_out = False
        self._running = False
        self._reconnect = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._log = LogContext(logger, transport=transport.name)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def logged_out(self) -> bool:
        return self._logged_out

    async def start(self) -> None:
        if self._running:
            logger.warning("Transport supervisor already running")
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._pump_events(), name=f"transport_events_{self._transport.name}"),
            asyncio.create_task(self._connect_loop(), name=f"transport_connect_{self._transport.name}"),
        ]
        self._log.info("Transport supervisor started")

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        await self._transport.close()
        self._connected = False
        self._log.info("Transport supervisor stopped")

    async def _connect_loop(self) -> None:
        while self._running and not self._logged_out:
            self._reconnect.clear()
            try:
                await self._transport.connect()
                self._backoff = self._initial_delay
                await self._reconnect.wait()
                if self._logged_out:
                    break
                self._log.info("Transport disconnected, reconnecting")
                continue
            except asyncio.CancelledError:
                raise
            except TransportError as exc:
                if not exc.retryable:
                    self._logged_out = True
                    self._connected = False
                    self._log.critical(f"Transport connection failed permanently: {exc}")
                    inc_counter("transport_connect_failed", permanent="true")
                    await self._events.publish(
                        "status",
                        "Connection closed permanently. Re-pair the account and restart the server.",
                    )
                    break
                error = exc
            except Exception as exc:
                error = exc

            delay = self._backoff
            self._log.warning(f"Transport connection failed: {error}. Retrying in {delay:.0f}s")
            inc_counter("transport_connect_failed", permanent="false")
            await self._events.publish("status", f"Connection failed, retrying in {delay:.0f}s...")
            await self._sleep(delay)
            self._backoff = min(self._backoff * 2, self._max_delay)

    async def _pump_events(self) -> None:
        async for event in self._transport.events():
            try:
                await self._handle_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._log.error(f"Transport event handling failed: {exc}", exc_info=True)

    async def _handle_event(self, event: TransportEvent) -> None:
        if event.kind == "pairing-code":
            self._log.info("Pairing code received, forwarding to observers")
            await self._events.publish("pairing-code", event.value)
            return

        if event.value == "open":
            self._connected = True
            await self._events.publish("status", "Connected to WhatsApp successfully!")
            return

        if not event.permanent and not self._connected:
            # the connect loop already owns this failure
            self._log.debug(f"Ignoring close while disconnected: {event.detail}")
            return

        self._connected = False
        if event.permanent:
            self._logged_out = True
            self._log.critical(f"Transport closed permanently: {event.detail}")
            await self._events.publish(
                "status",
                "Connection closed (logged out). Re-pair the account and restart the server.",
            )
        else:
            self._log.warning(f"Transport connection closed: {event.detail}")
            await self._events.publish("status", "Connection lost, reconnecting...")
        self._reconnect.set()
