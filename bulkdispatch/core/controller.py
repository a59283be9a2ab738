# bulkdispatch/core/controller.py
"""
Dispatch controller: one resumable, paced, single-flight send loop.

Observers never touch session state directly. They put commands on two
inbound channels (start, stop) and the controller is the only reader:

    controller = DispatchController(store, transport, hub)
    await controller.start()                  # consumer task
    await controller.submit_start(command)    # from a WebSocket / HTTP handler
    await controller.submit_stop()
    ...
    await controller.stop()

Session lifecycle:
    idle -> preparing -> sending -> completed | stopped | failed -> idle

Per pending record, in order: drain commands (honor stop) -> existence
check -> send -> persist status -> emit progress -> random pacing delay.
A failing recipient is marked ``failed`` and the loop moves on.
"""
from __future__ import annotations

import asyncio
import random
from contextlib import aclosing
from typing import Awaitable, Callable, Optional

from bulkdispatch.core.domain import (
    DispatchState,
    RecipientRecord,
    RecipientStatus,
    SessionContext,
    SessionResult,
    StartCommand,
)
from bulkdispatch.core.errors import StoreError, ValidationError
from bulkdispatch.core.number_generator import NumberGenerator
from bulkdispatch.core.ports import AsyncRecipientStore, EventSink, MessageTransport
from bulkdispatch.core.recipients import resolve_recipients
from bulkdispatch.infra.logging_config import LogContext, get_logger
from bulkdispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class DispatchController:
    def __init__(
        self,
        store: AsyncRecipientStore,
        transport: MessageTransport,
        events: EventSink,
        *,
        generator: NumberGenerator | None = None,
        pacing_window: tuple[int, int] = (3, 10),
        page_size: int = 50,
        resume_pending: bool = False,
        max_quantity: int | None = None,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._store = store
        self._transport = transport
        self._events = events
        self._generator = generator or NumberGenerator()
        low, high = pacing_window
        self._pacing_window = (min(low, high), max(low, high))
        self._page_size = page_size
        self._resume_pending = resume_pending
        self._max_quantity = max_quantity
        self._rng = rng or random.Random()
        self._sleep = sleep

        self._start_queue: asyncio.Queue[StartCommand] = asyncio.Queue()
        self._stop_queue: asyncio.Queue[None] = asyncio.Queue()
        self._session: SessionContext | None = None
        self._accepted: SessionContext | None = None
        self._last_session: SessionContext | None = None
        self._task: asyncio.Task | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Inbound channels
    # ------------------------------------------------------------------

    async def submit_start(self, command: StartCommand) -> None:
        """
        Queue a start command for the consumer task.

        The session counts as active from this point, so a stop that
        arrives before the consumer picks the command up still applies,
        and a second start is rejected.
        """
        active = self._session or self._accepted
        if active is not None:
            await self._reject(active)
            return
        self._discard_stale_stops()
        self._accepted = SessionContext(state=DispatchState.PREPARING, is_sending=True)
        self._start_queue.put_nowait(command)

    async def submit_stop(self) -> None:
        """Queue a stop request. Ignored when no session is active."""
        if not self.is_sending:
            logger.info("Stop requested while idle, ignoring")
            return
        self._stop_queue.put_nowait(None)
        await self._events.publish(
            "log", "Stop signal received. Sending will stop after the current message."
        )

    # ------------------------------------------------------------------
    # Consumer task
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start consuming start commands as an asyncio task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="dispatch_controller")
        self._task.add_done_callback(self._on_task_done)
        logger.info(
            f"Dispatch controller started: transport={self._transport.name}, "
            f"pacing={self._pacing_window[0]}-{self._pacing_window[1]}s, "
            f"resume_pending={self._resume_pending}"
        )

    async def stop(self) -> None:
        """Cancel the consumer task. Records not yet reached stay pending."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._accepted = None
        while not self._start_queue.empty():
            self._start_queue.get_nowait()
        logger.info("Dispatch controller stopped")

    async def _loop(self) -> None:
        while self._running:
            command = await self._start_queue.get()
            try:
                await self.run_session(command)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Dispatch session crashed: {exc}", exc_info=True)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Dispatch controller task died unexpectedly: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def is_sending(self) -> bool:
        return self._session is not None or self._accepted is not None

    def snapshot(self) -> dict:
        """Current (or last) session state for status reporting."""
        session = self._session or self._accepted or self._last_session
        if session is None:
            return {"state": DispatchState.IDLE.value, "session_id": None, "is_sending": False,
                    "progress": None}
        return {
            "state": session.state.value,
            "session_id": session.session_id,
            "is_sending": session.is_sending,
            "progress": session.progress().to_dict(),
        }

    async def run_session(self, command: StartCommand) -> SessionResult:
        """
        Run one dispatch session to completion, stop or failure.

        Returns a REJECTED result without touching the store when another
        session is active.
        """
        if self._session is not None:
            return await self._reject(self._session)

        session, self._accepted = self._accepted, None
        if session is None:
            self._discard_stale_stops()
            session = SessionContext(state=DispatchState.PREPARING, is_sending=True)
        self._session = session
        DispatchMetrics.session_started()
        log = LogContext(logger, session_id=session.session_id, transport=self._transport.name)

        try:
            await self._events.publish("status", "Starting dispatch...")
            log.info(f"Dispatch session started: source={command.source.value}")

            if not await self._prepare(session, command, log):
                return self._result(session, reason="no recipients")

            return await self._send_all(session, command, log)

        except asyncio.CancelledError:
            session.finish(DispatchState.STOPPED)
            log.warning("Dispatch session cancelled")
            raise
        except Exception as exc:
            log.critical(f"Dispatch session failed: {exc}", exc_info=True)
            await self._events.publish("log", f"CRITICAL ERROR: {exc}")
            await self._events.publish("status", "An error occurred. Check the server logs.")
            session.finish(DispatchState.FAILED)
            return self._result(session, reason=str(exc))
        finally:
            DispatchMetrics.session_finished(session.state.value)
            self._last_session = session
            self._session = None

    async def _prepare(self, session: SessionContext, command: StartCommand, log: LogContext) -> bool:
        """Seed the store. Returns False when the session ends here."""
        if self._resume_pending:
            pending = await self._store.count_pending()
            if pending:
                log.info(f"Resuming {pending} pending recipient(s)")
                await self._events.publish(
                    "log",
                    f"Resuming {pending} pending number(s) from the previous session; "
                    f"the new number list is ignored.",
                )
                return True

        await self._store.reset()
        await self._events.publish("log", "Clearing the number list from the previous session...")

        try:
            identifiers = resolve_recipients(
                command, self._generator, max_quantity=self._max_quantity
            )
        except ValidationError as exc:
            log.warning(f"Dispatch rejected: {exc}")
            await self._events.publish("log", f"{exc}.")
            await self._events.publish("status", "Failed: empty or invalid number list.")
            session.finish(DispatchState.FAILED)
            return False

        result = await self._store.bulk_insert(identifiers)
        if result.skipped:
            await self._events.publish("log", f"{result.skipped} duplicate number(s) were ignored.")

        loaded = await self._store.count_all()
        await self._events.publish("log", f"{loaded} number(s) loaded for this session.")
        log.info(f"Recipients loaded: inserted={result.inserted}, skipped={result.skipped}")
        return True

    async def _send_all(self, session: SessionContext, command: StartCommand, log: LogContext) -> SessionResult:
        session.total = await self._store.count_pending()
        session.state = DispatchState.SENDING
        await self._events.publish("progress", session.progress().to_dict())

        if command.image_url:
            log.info("Image attachment requested; attachments are not sent")

        async with aclosing(self._store.pending_cursor(self._page_size)) as records:
            async for record in records:
                self._drain_commands(session)
                if session.cancel_requested:
                    await self._events.publish("status", "Sending stopped by the user.")
                    log.info(
                        f"Dispatch stopped: sent={session.sent}, failed={session.failed}, "
                        f"total={session.total}"
                    )
                    session.finish(DispatchState.STOPPED)
                    return self._result(session, reason="stopped by user")

                await self._process(session, record, command.message, log)
                await self._events.publish("progress", session.progress().to_dict())
                await self._pace()

        await self._events.publish("status", "Dispatch completed!")
        log.info(
            f"Dispatch completed: sent={session.sent}, failed={session.failed}, "
            f"total={session.total}"
        )
        session.finish(DispatchState.COMPLETED)
        return self._result(session)

    async def _process(
        self,
        session: SessionContext,
        record: RecipientRecord,
        message: str,
        log: LogContext,
    ) -> None:
        """Attempt one recipient and persist its terminal status."""
        identifier = record.identifier
        rlog = log.bind(recipient=identifier)
        transport = self._transport.name
        status = RecipientStatus.FAILED

        try:
            address = await self._transport.exists_on_network(identifier)
            if address:
                with DispatchMetrics.track_send_time(transport):
                    await self._transport.send(address, message)
                status = RecipientStatus.SENT
                session.record_sent()
                DispatchMetrics.recipient_sent(transport)
                await self._events.publish("log", f"SUCCESS: message sent to {identifier}")
            else:
                session.record_failed()
                DispatchMetrics.recipient_failed(transport, "not_on_network")
                await self._events.publish(
                    "log", f"FAILED: number {identifier} does not exist on the network."
                )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            session.record_failed()
            DispatchMetrics.recipient_failed(transport, exc.__class__.__name__)
            rlog.error(f"Recipient failed: {exc.__class__.__name__}: {exc}")
            await self._events.publish(
                "log", f"ERROR while processing {identifier}. Check the server logs."
            )

        try:
            await self._store.update_status(identifier, status)
        except StoreError as exc:
            rlog.error(f"Could not persist status {status.value}: {exc}")
            await self._events.publish(
                "log", f"ERROR: could not save the status of {identifier}."
            )

    async def _pace(self) -> None:
        low, high = self._pacing_window
        delay = self._rng.randint(low, high)
        if delay > 0:
            await self._sleep(delay)

    # ------------------------------------------------------------------
    # Command draining
    # ------------------------------------------------------------------

    def _drain_commands(self, session: SessionContext) -> None:
        """Apply queued stop requests."""
        while not self._stop_queue.empty():
            self._stop_queue.get_nowait()
            session.cancel_requested = True

    def _discard_stale_stops(self) -> None:
        while not self._stop_queue.empty():
            self._stop_queue.get_nowait()

    async def _reject(self, active: SessionContext) -> SessionResult:
        logger.warning(
            "Start command rejected: a dispatch is already in progress",
            extra={"session_id": active.session_id},
        )
        await self._events.publish("log", "WARNING: a dispatch is already in progress.")
        return SessionResult(
            session_id=active.session_id,
            state=DispatchState.REJECTED,
            progress=active.progress(),
            reason="dispatch already in progress",
        )

    @staticmethod
    def _result(session: SessionContext, reason: Optional[str] = None) -> SessionResult:
        return SessionResult(
            session_id=session.session_id,
            state=session.state,
            progress=session.progress(),
            reason=reason,
        )
