from __future__ import annotations

from typing import Any

from loguru import logger

from flow_assistant_client.sessions.session_manager import SessionManager
from flow_assistant_client.transport import Transport


def invoke_path(session_id: str) -> str:
    return f"/flow_assistants/{session_id}/invoke"


class MessageSubmitter:
    """Sends user input into a session.

    The backend runs the flow asynchronously: the reply is never part of the
    invoke response and only shows up through the event poller.
    """

    def __init__(self, transport: Transport, sessions: SessionManager | None = None):
        self._transport = transport
        self._sessions = sessions

    async def send_message(
        self,
        session_id: str,
        message: str,
        message_type: str = "human",
        inputs: dict[str, Any] | None = None,
        stream_response: bool = False,
    ) -> None:
        if not session_id or not session_id.strip():
            raise ValueError("session_id is required to send a message")
        if not message or not message.strip():
            raise ValueError("message must not be empty")
        if self._sessions is not None and self._sessions.get_session(session_id) is None:
            raise ValueError(f"Session does not exist: {session_id}")

        body: dict[str, Any] = {
            "message": message,
            "message_type": message_type,
            "stream_response": stream_response,
        }
        if inputs is not None:
            body["inputs"] = inputs

        try:
            await self._transport.post(invoke_path(session_id), json=body)
        except Exception as ex:
            logger.error(f"Failed to send message to session {session_id}: {ex}")
            raise
        logger.info(f"Sent message to session {session_id}")
