from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

from loguru import logger

from flow_assistant_client.errors import RequestTimeoutError
from flow_assistant_client.models import FlowEvent
from flow_assistant_client.polling.cadence import CadencePolicy
from flow_assistant_client.polling.event_poller import EventPoller
from flow_assistant_client.transport import Transport

EventsCallback = Callable[[list[FlowEvent]], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]


class DeliveryMode(str, Enum):
    # Cursor advances on receipt; a failing consumer loses that batch.
    AT_MOST_ONCE = "at_most_once"
    # Cursor is rolled back when the consumer fails, so the batch is fetched again.
    AT_LEAST_ONCE = "at_least_once"


class PollingController:
    """Drives an EventPoller on a self-rescheduling timer.

    Each cycle fires, awaits one poll, delivers non-empty batches and only then
    arms the timer again, so polls never overlap. ``stop()`` bumps the
    generation; any poll still in flight is discarded when it settles.
    Must be started from inside a running event loop.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        policy: CadencePolicy | None = None,
        delivery_mode: DeliveryMode = DeliveryMode.AT_MOST_ONCE,
        poll_timeout_seconds: float | None = None,
    ):
        self._transport = transport
        self._policy = policy or CadencePolicy()
        self._delivery_mode = delivery_mode
        self._poll_timeout_seconds = poll_timeout_seconds if poll_timeout_seconds else None
        self._poller = EventPoller(transport, self._policy)
        self._generation = 0
        self._active = False
        self._session_id: str | None = None
        self._on_events: EventsCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: asyncio.Task | None = None
        self._consecutive_failures = 0
        self._streams: list[asyncio.Queue[list[FlowEvent] | None]] = []

    @property
    def is_running(self) -> bool:
        return self._active

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def cursor(self) -> str:
        return self._poller.cursor

    @property
    def current_interval_ms(self) -> int:
        return self._poller.current_interval_ms

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def delivery_mode(self) -> DeliveryMode:
        return self._delivery_mode

    def start(
        self,
        session_id: str,
        on_events: EventsCallback,
        on_error: ErrorCallback | None = None,
        initial_interval_ms: int | None = None,
    ) -> None:
        if not session_id or not session_id.strip():
            raise ValueError("session_id is required to start polling")
        # Raises before any state changes when called outside a running loop.
        asyncio.get_running_loop()
        if self._active:
            logger.info(f"Restarting polling (was session {self._session_id})")
            self.stop()

        # A fresh poller per start keeps a late in-flight poll of the previous
        # loop from touching the new cursor.
        self._poller = EventPoller(self._transport, self._policy)
        self._poller.reset(initial_interval_ms)
        self._consecutive_failures = 0
        self._generation += 1
        self._session_id = session_id
        self._on_events = on_events
        self._on_error = on_error
        self._active = True
        logger.info(
            f"Started polling for session {session_id} "
            f"(interval={self._poller.current_interval_ms}ms, mode={self._delivery_mode.value})"
        )
        self._fire(self._generation)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        was_active = self._active
        self._active = False
        self._generation += 1
        self._close_streams()
        if was_active:
            logger.info(f"Stopped polling for session {self._session_id}")

    def dispose(self) -> None:
        self.stop()
        self._session_id = None
        self._on_events = None
        self._on_error = None
        self._consecutive_failures = 0
        self._poller = EventPoller(self._transport, self._policy)

    async def aclose(self) -> None:
        task = self._inflight
        self.dispose()
        if task is not None and not task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def stream(
        self,
        session_id: str,
        *,
        on_error: ErrorCallback | None = None,
        initial_interval_ms: int | None = None,
    ) -> AsyncIterator[FlowEvent]:
        """Async-iterator form of ``start``; ends when the controller is stopped."""
        queue: asyncio.Queue[list[FlowEvent] | None] = asyncio.Queue()
        self.start(session_id, queue.put_nowait, on_error, initial_interval_ms)
        self._streams.append(queue)
        generation = self._generation
        try:
            while True:
                batch = await queue.get()
                if batch is None:
                    return
                for event in batch:
                    yield event
        finally:
            if queue in self._streams:
                self._streams.remove(queue)
            if self._generation == generation:
                self.stop()

    def _is_live(self, generation: int) -> bool:
        return self._active and generation == self._generation

    def _fire(self, generation: int) -> None:
        self._timer = None
        if not self._is_live(generation):
            return
        self._inflight = asyncio.get_running_loop().create_task(
            self._cycle(generation, self._poller, self._session_id or "")
        )

    def _schedule(self, generation: int, delay_ms: int) -> None:
        if not self._is_live(generation):
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(0, delay_ms) / 1000, self._fire, generation)

    async def _cycle(self, generation: int, poller: EventPoller, session_id: str) -> None:
        if not self._is_live(generation):
            return
        cursor_before = poller.cursor

        try:
            events = await self._poll(poller, session_id)
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            if not self._is_live(generation):
                return
            self._consecutive_failures += 1
            logger.warning(
                f"Polling error for session {session_id} "
                f"(consecutive failures: {self._consecutive_failures}): {ex}"
            )
            await self._report(ex)
            self._schedule(generation, poller.current_interval_ms)
            return

        if not self._is_live(generation):
            logger.debug(f"Discarding poll result for stopped session {session_id}")
            return

        self._consecutive_failures = 0
        if events:
            await self._deliver(generation, poller, events, cursor_before)
            if not self._is_live(generation):
                return

        batch = poller.last_batch
        drain = bool(events) and batch is not None and batch.has_more
        self._schedule(generation, 0 if drain else poller.current_interval_ms)

    async def _poll(self, poller: EventPoller, session_id: str) -> list[FlowEvent]:
        if self._poll_timeout_seconds is None:
            return await poller.poll_once(session_id)
        try:
            return await asyncio.wait_for(poller.poll_once(session_id), self._poll_timeout_seconds)
        except TimeoutError as ex:
            raise RequestTimeoutError(f"Poll timed out after {self._poll_timeout_seconds}s") from ex

    async def _deliver(
        self,
        generation: int,
        poller: EventPoller,
        events: list[FlowEvent],
        cursor_before: str,
    ) -> None:
        callback = self._on_events
        if callback is None:
            return
        try:
            result = callback(events)
            if inspect.isawaitable(result):
                await result
        except Exception as ex:
            if self._delivery_mode is DeliveryMode.AT_LEAST_ONCE and self._is_live(generation):
                poller.restore_cursor(cursor_before)
                logger.warning(f"Event consumer failed, will refetch from cursor {cursor_before}: {ex}")
            else:
                logger.error(f"Event consumer failed, {len(events)} event(s) dropped: {ex}")
            await self._report(ex)

    async def _report(self, error: Exception) -> None:
        callback = self._on_error
        if callback is None:
            return
        try:
            result = callback(error)
            if inspect.isawaitable(result):
                await result
        except Exception as ex:
            logger.error(f"Polling error callback failed: {ex}")

    def _close_streams(self) -> None:
        for queue in self._streams:
            queue.put_nowait(None)
        self._streams.clear()
