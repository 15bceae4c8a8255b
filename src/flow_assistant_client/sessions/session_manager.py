from __future__ import annotations

from typing import Any

from loguru import logger

from flow_assistant_client.errors import MalformedResponseError
from flow_assistant_client.models import Session, utc_now
from flow_assistant_client.transport import Transport

CREATE_SESSION_PATH = "/flow_assistants/create"


class SessionManager:
    def __init__(self, transport: Transport):
        self._transport = transport
        self._sessions: dict[str, Session] = {}
        self._current: Session | None = None

    @property
    def current_session(self) -> Session | None:
        return self._current

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def create_session(
        self,
        flow_id: str,
        workspace_id: str | None = None,
        chat_id: str | None = None,
        session_name: str | None = None,
        inputs: dict[str, Any] | None = None,
    ) -> Session:
        if not flow_id or not flow_id.strip():
            raise ValueError("flow_id is required to create a session")

        body: dict[str, Any] = {"flow_id": flow_id}
        if chat_id is not None:
            body["chat_id"] = chat_id
        if session_name is not None:
            body["session_name"] = session_name
        if inputs is not None:
            body["inputs"] = inputs

        # workspace_id is routed as a query parameter, never in the body
        params = {"workspace_id": workspace_id} if workspace_id else None

        logger.info(f"Creating session for flow {flow_id} (workspace={workspace_id})")
        try:
            payload = await self._transport.post(CREATE_SESSION_PATH, json=body, params=params)
        except Exception as ex:
            logger.error(f"Failed to create session: {ex}")
            raise

        if not isinstance(payload, dict) or not str(payload.get("session_id") or "").strip():
            raise MalformedResponseError("Create session response missing session_id")

        created_at = payload.get("created_at")
        session = Session(
            session_id=str(payload["session_id"]).strip(),
            flow_id=flow_id,
            workspace_id=workspace_id,
            chat_id=chat_id,
            session_name=session_name,
            created_at=str(created_at) if created_at is not None else utc_now(),
        )
        self._sessions[session.session_id] = session
        self._current = session
        logger.info(f"Created session: {session.session_id}")
        return session

    def forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        if self._current is not None and self._current.session_id == session_id:
            self._current = None
