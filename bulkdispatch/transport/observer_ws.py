# bulkdispatch/transport/observer_ws.py
"""
WebSocket observer endpoint.

Server → client: every hub event as JSON ``{"event": ..., "data": ...}``
(``status``, ``log``, ``progress``, ``pairing-code``). The latest status,
progress and pairing code are replayed on connect.

Client → server:
    {"event": "start-sending", "data": {"message": ..., "source": ..., ...}}
    {"event": "stop-sending"}

Commands are only queued here; the dispatch controller is the single
consumer. When ADMIN_TOKEN is configured the client must pass it as the
``token`` query parameter.
"""
from __future__ import annotations

import asyncio

from fastapi import WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as PydanticValidationError

from bulkdispatch.config import settings
from bulkdispatch.core.controller import DispatchController
from bulkdispatch.infra.event_hub import ObserverHub
from bulkdispatch.infra.logging_config import get_logger
from bulkdispatch.infra.metrics import inc_counter
from bulkdispatch.transport.schemas import StartSendingIn
from bulkdispatch.transport.security import verify_admin_token

logger = get_logger(__name__)


async def observer_socket(websocket: WebSocket, hub: ObserverHub, controller: DispatchController) -> None:
    if settings.admin_token and not verify_admin_token(websocket.query_params.get("token")):
        logger.warning("Observer rejected: invalid or missing token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue = hub.subscribe()
    inc_counter("observer_connections")

    forward = asyncio.create_task(_forward_events(websocket, queue), name="observer_forward")
    receive = asyncio.create_task(_receive_commands(websocket, controller), name="observer_receive")
    try:
        done, pending = await asyncio.wait({forward, receive}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
        for task in done:
            exc = task.exception()
            if exc and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"Observer connection ended with error: {exc.__class__.__name__}: {exc}")
    finally:
        hub.unsubscribe(queue)


async def _forward_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _receive_commands(websocket: WebSocket, controller: DispatchController) -> None:
    while True:
        try:
            message = await websocket.receive_json()
        except ValueError:
            await _reply_error(websocket, "ERROR: commands must be JSON objects.")
            continue

        if not isinstance(message, dict):
            await _reply_error(websocket, "ERROR: commands must be JSON objects.")
            continue

        event = message.get("event")
        if event == "start-sending":
            try:
                payload = StartSendingIn.model_validate(message.get("data") or {})
            except PydanticValidationError as exc:
                fields = ", ".join(str(err["loc"][-1]) for err in exc.errors() if err.get("loc"))
                await _reply_error(websocket, f"ERROR: invalid start-sending payload ({fields}).")
                continue
            logger.info(f"start-sending received: source={payload.source}")
            await controller.submit_start(payload.to_command())
        elif event == "stop-sending":
            logger.info("stop-sending received")
            await controller.submit_stop()
        else:
            await _reply_error(websocket, f"ERROR: unknown command '{event}'.")


async def _reply_error(websocket: WebSocket, text: str) -> None:
    inc_counter("observer_invalid_commands")
    await websocket.send_json({"event": "log", "data": text})
