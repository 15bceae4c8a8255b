from __future__ import annotations

from loguru import logger

from flow_assistant_client.models import INITIAL_CURSOR, EventBatch, FlowEvent, decode_event_batch, parse_cursor
from flow_assistant_client.polling.cadence import AdaptiveCadence, CadencePolicy
from flow_assistant_client.transport import Transport


def invocation_response_path(session_id: str, cursor: str) -> str:
    return f"/flow_assistants/{session_id}/invocation_response/{cursor}"


class EventPoller:
    def __init__(self, transport: Transport, policy: CadencePolicy | None = None):
        self._transport = transport
        self._cadence = AdaptiveCadence(policy)
        self._cursor = INITIAL_CURSOR
        self._last_event_id: str | None = None
        self._last_batch: EventBatch | None = None

    @property
    def cursor(self) -> str:
        return self._cursor

    @property
    def cadence(self) -> AdaptiveCadence:
        return self._cadence

    @property
    def current_interval_ms(self) -> int:
        return self._cadence.current_interval_ms

    @property
    def empty_poll_streak(self) -> int:
        return self._cadence.empty_poll_streak

    @property
    def last_event_id(self) -> str | None:
        return self._last_event_id

    @property
    def last_batch(self) -> EventBatch | None:
        return self._last_batch

    async def poll_once(self, session_id: str, from_cursor: str | int | None = None) -> list[FlowEvent]:
        """Fetch the events newer than the cursor and advance it.

        On any failure the exception propagates and neither the cursor nor the
        cadence state change.
        """
        cursor = str(parse_cursor(from_cursor)) if from_cursor is not None else self._cursor
        payload = await self._transport.post(invocation_response_path(session_id, cursor), json={})
        batch = decode_event_batch(payload)

        max_timestamp = batch.max_timestamp
        if max_timestamp is not None and max_timestamp > parse_cursor(self._cursor):
            self._cursor = str(max_timestamp)
        if batch.events:
            self._last_event_id = batch.events[-1].event_id

        self._cadence.record(len(batch.events))
        self._last_batch = batch
        logger.debug(
            f"Polled session {session_id} from {cursor}: {len(batch.events)} event(s), "
            f"cursor={self._cursor}, interval={self._cadence.current_interval_ms}ms"
        )
        return batch.events

    def restore_cursor(self, cursor: str) -> None:
        """Roll the cursor back to a value captured before an undelivered poll."""
        self._cursor = str(parse_cursor(cursor))

    def reset(self, initial_interval_ms: int | None = None) -> None:
        self._cursor = INITIAL_CURSOR
        self._last_event_id = None
        self._last_batch = None
        self._cadence.reset(initial_interval_ms)
