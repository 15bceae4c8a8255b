from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from flow_assistant_client.errors import MalformedResponseError

INITIAL_CURSOR = "0"

# Keys under which a wrapped poll response may carry its event list.
_BATCH_LIST_KEYS = ("messages", "events", "data")
_EVENT_ID_KEYS = ("event_id", "message_id", "id")


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@dataclass(frozen=True)
class Session:
    session_id: str
    flow_id: str
    workspace_id: str | None = None
    chat_id: str | None = None
    session_name: str | None = None
    status: str = "active"
    created_at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class FlowEvent:
    event_id: str | None
    created_at_timestamp: int | None
    event_type: str | None = None
    action_type: str | None = None
    metadata: Any = None
    component_name: str | None = None
    credits: float | None = None
    workspace_id: str | None = None
    session_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def timestamp(self) -> str | None:
        if self.created_at_timestamp is None:
            return None
        return str(self.created_at_timestamp)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowEvent:
        event_id = next((data[k] for k in _EVENT_ID_KEYS if data.get(k) is not None), None)
        credits = data.get("credits")
        return cls(
            event_id=str(event_id) if event_id is not None else None,
            created_at_timestamp=parse_timestamp(data.get("created_at_timestamp")),
            event_type=data.get("event_type"),
            action_type=data.get("action_type"),
            metadata=data.get("metadata"),
            component_name=data.get("component_name"),
            credits=float(credits) if isinstance(credits, (int, float)) else None,
            workspace_id=data.get("workspace_id"),
            session_id=data.get("session_id"),
            raw=dict(data),
        )


@dataclass(frozen=True)
class EventBatch:
    events: list[FlowEvent]
    has_more: bool = False

    @property
    def max_timestamp(self) -> int | None:
        stamps = [e.created_at_timestamp for e in self.events if e.created_at_timestamp is not None]
        return max(stamps) if stamps else None


def parse_timestamp(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_cursor(value: str | int) -> int:
    parsed = parse_timestamp(value)
    if parsed is None or parsed < 0:
        raise ValueError(f"Invalid cursor: {value!r}")
    return parsed


def decode_event_batch(payload: Any) -> EventBatch:
    """Normalize a poll response into an EventBatch.

    The endpoint answers either with a bare list of events or with an object
    wrapping that list (plus an optional ``has_more`` flag).
    """
    if isinstance(payload, list):
        return EventBatch(events=_decode_events(payload))

    if isinstance(payload, dict):
        key = next((k for k in _BATCH_LIST_KEYS if isinstance(payload.get(k), list)), None)
        if key is None:
            raise MalformedResponseError(
                f"Poll response object has no event list (keys: {sorted(payload)})"
            )
        return EventBatch(
            events=_decode_events(payload[key]),
            has_more=bool(payload.get("has_more", False)),
        )

    raise MalformedResponseError(f"Unexpected poll response type: {type(payload).__name__}")


def _decode_events(items: list[Any]) -> list[FlowEvent]:
    events: list[FlowEvent] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise MalformedResponseError(
                f"Poll response item {index} is {type(item).__name__}, expected object"
            )
        events.append(FlowEvent.from_dict(item))
    return events


class MessageType(str, Enum):
    HUMAN = "human"
    AI = "ai"
    SYSTEM = "system"
    ERROR = "error"
    LOADING = "loading"


@dataclass(frozen=True)
class ChatMessage:
    id: str
    content: str
    type: MessageType
    timestamp: str = field(default_factory=utc_now)
    is_loading: bool = False
    metadata: dict[str, Any] | None = None


_MESSAGE_TYPE_ALIASES = {
    "human": MessageType.HUMAN,
    "user": MessageType.HUMAN,
    "ai": MessageType.AI,
    "assistant": MessageType.AI,
    "bot": MessageType.AI,
    "system": MessageType.SYSTEM,
    "error": MessageType.ERROR,
}


def parse_message_type(value: str | None) -> MessageType:
    if not value:
        return MessageType.SYSTEM
    return _MESSAGE_TYPE_ALIASES.get(value.strip().lower(), MessageType.SYSTEM)


def chat_message_from_event(event: FlowEvent) -> ChatMessage | None:
    """Turn an event that carries text into a transcript entry, else None."""
    metadata = event.metadata
    text = ""
    role: str | None = None
    if isinstance(metadata, str):
        text = metadata
    elif isinstance(metadata, dict):
        for key in ("message", "content", "text"):
            value = metadata.get(key)
            if isinstance(value, str) and value.strip():
                text = value
                break
        role = metadata.get("message_type") or metadata.get("sender")

    if not text.strip() or event.event_id is None:
        return None

    return ChatMessage(
        id=event.event_id,
        content=text,
        type=parse_message_type(role or event.action_type or event.event_type),
        timestamp=event.timestamp or utc_now(),
        metadata=metadata if isinstance(metadata, dict) else None,
    )
