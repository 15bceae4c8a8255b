import asyncio
import unittest
from typing import Any

from flow_assistant_client.conversation import Conversation, ConversationState
from flow_assistant_client.errors import NetworkError, ServerError
from flow_assistant_client.models import MessageType
from flow_assistant_client.polling.cadence import CadencePolicy
from flow_assistant_client.polling.controller import PollingController
from flow_assistant_client.sessions import MessageSubmitter, SessionManager

_FAST = CadencePolicy(min_interval_ms=10, max_interval_ms=20)


def _chat_event(event_id: str, ts: int, text: str, role: str) -> dict[str, Any]:
    return {"event_id": event_id, "created_at_timestamp": ts, "metadata": {"message": text, "message_type": role}}


class _BackendStub:
    """Routes requests by path: create, invoke and invocation_response."""

    def __init__(self) -> None:
        self.create_error: Exception | None = None
        self.invoke_errors: list[Exception] = []
        self.poll_error: Exception | None = None
        self.invoked: list[str] = []
        self._pending: list[dict[str, Any]] = []

    async def post(self, path: str, *, json: Any = None, params: dict | None = None) -> Any:
        if path == "/flow_assistants/create":
            if self.create_error is not None:
                raise self.create_error
            return {"session_id": "s1", "created_at": "2026-02-19T00:00:00Z"}
        if path.endswith("/invoke"):
            if self.invoke_errors:
                raise self.invoke_errors.pop(0)
            text = json["message"]
            self.invoked.append(text)
            n = len(self.invoked)
            self._pending.append(_chat_event(f"h{n}", n * 10, text, "human"))
            self._pending.append(_chat_event(f"a{n}", n * 10 + 1, f"echo: {text}", "ai"))
            return None
        if "/invocation_response/" in path:
            if self.poll_error is not None:
                raise self.poll_error
            # Inclusive cursor: the server re-sends everything it has.
            return list(self._pending)
        raise AssertionError(f"Unexpected path {path}")


def _make_conversation(backend: _BackendStub, **kwargs: Any) -> Conversation:
    sessions = SessionManager(backend)
    return Conversation(
        sessions,
        MessageSubmitter(backend, sessions),
        PollingController(backend, policy=_FAST),
        **kwargs,
    )


class ConversationTests(unittest.TestCase):
    def test_round_trip_through_polling(self) -> None:
        backend = _BackendStub()
        changes: list[ConversationState] = []
        conversation = _make_conversation(backend, on_change=changes.append)

        async def scenario() -> None:
            self.assertTrue(await conversation.initialize_session("f1", session_name="Desk"))
            self.assertTrue(conversation.state.is_polling)
            self.assertTrue(await conversation.send_message("hello"))
            self.assertTrue(conversation.state.messages[-1].is_loading)
            await asyncio.sleep(0.08)
            await conversation.close()

        asyncio.run(scenario())

        messages = conversation.state.messages
        self.assertEqual(["h1", "a1"], [m.id for m in messages])
        self.assertEqual([MessageType.HUMAN, MessageType.AI], [m.type for m in messages])
        self.assertEqual("echo: hello", messages[1].content)
        self.assertFalse(any(m.is_loading for m in messages))
        self.assertTrue(changes)

    def test_initialize_failure_sets_error(self) -> None:
        backend = _BackendStub()
        backend.create_error = ServerError("down", status_code=503)
        conversation = _make_conversation(backend)

        ok = asyncio.run(conversation.initialize_session("f1"))

        self.assertFalse(ok)
        self.assertFalse(conversation.state.is_loading)
        self.assertIn("Failed to start chat session", conversation.state.error)
        self.assertIsNone(conversation.state.current_session)
        self.assertFalse(conversation.controller.is_running)

    def test_send_without_session(self) -> None:
        conversation = _make_conversation(_BackendStub())

        self.assertFalse(asyncio.run(conversation.send_message("hi")))
        self.assertIn("No active session", conversation.state.error)

    def test_send_failure_then_retry(self) -> None:
        backend = _BackendStub()
        backend.invoke_errors.append(NetworkError("offline"))
        emitted: list[str] = []
        conversation = _make_conversation(backend, on_message=lambda m: emitted.append(m.id))

        async def scenario() -> None:
            await conversation.initialize_session("f1")
            self.assertFalse(await conversation.send_message("hello"))
            state = conversation.state
            self.assertEqual([MessageType.ERROR], [m.type for m in state.messages])
            self.assertIn("Failed to send message", state.error)

            self.assertTrue(await conversation.retry_last_message())
            await asyncio.sleep(0.08)
            await conversation.close()

        asyncio.run(scenario())
        self.assertEqual(["hello"], backend.invoked)
        self.assertEqual(["h1", "a1"], [m.id for m in conversation.state.messages])
        self.assertIn("a1", emitted)

    def test_retry_with_nothing_to_resend(self) -> None:
        conversation = _make_conversation(_BackendStub())

        async def scenario() -> None:
            await conversation.initialize_session("f1")
            self.assertFalse(await conversation.retry_last_message())
            await conversation.close()

        asyncio.run(scenario())

    def test_connection_degraded_after_repeated_poll_failures(self) -> None:
        backend = _BackendStub()
        backend.poll_error = NetworkError("flaky")
        conversation = _make_conversation(backend, degraded_after_failures=2)

        async def scenario() -> None:
            await conversation.initialize_session("f1")
            await asyncio.sleep(0.08)
            self.assertTrue(conversation.connection_degraded)
            self.assertIsNone(conversation.state.error)

            backend.poll_error = None
            await asyncio.sleep(0.05)
            self.assertFalse(conversation.connection_degraded)
            await conversation.close()

        asyncio.run(scenario())

    def test_delete_and_clear(self) -> None:
        backend = _BackendStub()
        conversation = _make_conversation(backend)

        async def scenario() -> None:
            await conversation.initialize_session("f1")
            await conversation.send_message("hello")
            await asyncio.sleep(0.05)
            conversation.delete_message("h1")
            self.assertEqual(["a1"], [m.id for m in conversation.state.messages])

            conversation.clear_session()
            self.assertEqual(ConversationState(), conversation.state)
            self.assertFalse(conversation.controller.is_running)

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
