from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any
from uuid import uuid4

from loguru import logger

from flow_assistant_client.models import ChatMessage, FlowEvent, MessageType, Session, chat_message_from_event
from flow_assistant_client.polling.controller import PollingController
from flow_assistant_client.sessions.message_submitter import MessageSubmitter
from flow_assistant_client.sessions.session_manager import SessionManager


@dataclass(frozen=True)
class ConversationState:
    current_session: Session | None = None
    messages: tuple[ChatMessage, ...] = ()
    is_loading: bool = False
    is_polling: bool = False
    error: str | None = None
    current_flow_id: str | None = None


class Conversation:
    """Chat transcript for one flow session, fed by the polling controller."""

    def __init__(
        self,
        sessions: SessionManager,
        submitter: MessageSubmitter,
        controller: PollingController,
        *,
        workspace_id: str | None = None,
        degraded_after_failures: int = 3,
        on_change: Callable[[ConversationState], None] | None = None,
        on_message: Callable[[ChatMessage], None] | None = None,
    ):
        self._sessions = sessions
        self._submitter = submitter
        self._controller = controller
        self._workspace_id = workspace_id
        self._degraded_after_failures = max(1, degraded_after_failures)
        self._on_change = on_change
        self._on_message = on_message
        self._state = ConversationState()
        self._processed_ids: set[str] = set()

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def controller(self) -> PollingController:
        return self._controller

    @property
    def connection_degraded(self) -> bool:
        return (
            self._controller.is_running
            and self._controller.consecutive_failures >= self._degraded_after_failures
        )

    async def initialize_session(
        self,
        flow_id: str,
        session_name: str | None = None,
        inputs: dict[str, Any] | None = None,
    ) -> bool:
        self._set_state(is_loading=True, error=None, current_flow_id=flow_id)
        try:
            session = await self._sessions.create_session(
                flow_id,
                workspace_id=self._workspace_id,
                session_name=session_name,
                inputs=inputs,
            )
        except Exception as ex:
            logger.error(f"Failed to initialize session: {ex}")
            self._set_state(is_loading=False, error=f"Failed to start chat session: {ex}")
            return False

        self._processed_ids = set()
        self._set_state(current_session=session, messages=(), is_loading=False)
        self._controller.start(session.session_id, self._handle_events, self._handle_poll_error)
        self._set_state(is_polling=True)
        logger.info(f"Initialized session: {session.session_id}")
        return True

    async def send_message(self, text: str) -> bool:
        session = self._state.current_session
        if session is None:
            self._set_state(error="No active session. Please initialize a session first.")
            return False

        placeholder = ChatMessage(
            id=f"{uuid4().hex}_loading",
            content="",
            type=MessageType.LOADING,
            is_loading=True,
        )
        self._set_state(messages=self._state.messages + (placeholder,), error=None)

        try:
            await self._submitter.send_message(session.session_id, text)
        except Exception as ex:
            logger.error(f"Failed to send message: {ex}")
            failure = ChatMessage(
                id=uuid4().hex,
                content="Failed to send message. Please try again.",
                type=MessageType.ERROR,
                metadata={"text": text},
            )
            kept = tuple(m for m in self._state.messages if not m.is_loading)
            self._set_state(messages=kept + (failure,), error=f"Failed to send message: {ex}")
            self._emit(failure)
            return False
        return True

    async def retry_last_message(self) -> bool:
        failed = next(
            (m for m in reversed(self._state.messages) if m.type is MessageType.ERROR and m.metadata),
            None,
        )
        last_human = next((m for m in reversed(self._state.messages) if m.type is MessageType.HUMAN), None)
        text = failed.metadata.get("text") if failed is not None and failed.metadata else None
        if not text and last_human is not None:
            text = last_human.content
        if not text:
            return False

        self._set_state(messages=tuple(m for m in self._state.messages if m.type is not MessageType.ERROR))
        return await self.send_message(text)

    def delete_message(self, message_id: str) -> None:
        self._set_state(messages=tuple(m for m in self._state.messages if m.id != message_id))

    def clear_session(self) -> None:
        session = self._state.current_session
        self._controller.dispose()
        if session is not None:
            self._sessions.forget(session.session_id)
        self._processed_ids = set()
        self._state = ConversationState()
        self._notify()

    async def close(self) -> None:
        await self._controller.aclose()
        self._set_state(is_polling=False)

    def _handle_events(self, events: list[FlowEvent]) -> None:
        existing = {m.id for m in self._state.messages}
        fresh: list[ChatMessage] = []
        for event in events:
            message = chat_message_from_event(event)
            if message is None or message.id in self._processed_ids or message.id in existing:
                continue
            self._processed_ids.add(message.id)
            fresh.append(message)

        if not fresh:
            return

        # Any assistant output retires the pending placeholder.
        kept = self._state.messages
        if any(m.type is not MessageType.HUMAN for m in fresh):
            kept = tuple(m for m in kept if not m.is_loading)
        self._set_state(messages=kept + tuple(fresh))
        for message in fresh:
            self._emit(message)

    def _handle_poll_error(self, error: Exception) -> None:
        failures = self._controller.consecutive_failures
        if failures == self._degraded_after_failures:
            logger.warning(f"Connection degraded after {failures} consecutive poll failures: {error}")
            self._notify()

    def _set_state(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self._state)

    def _emit(self, message: ChatMessage) -> None:
        if self._on_message is not None:
            self._on_message(message)
