import asyncio
import unittest

from flow_assistant_client.errors import MalformedResponseError, NetworkError
from flow_assistant_client.polling.cadence import CadencePolicy
from flow_assistant_client.polling.event_poller import EventPoller
from tests.fakes import FakeTransport, event


class EventPollerTests(unittest.TestCase):
    def test_poll_advances_cursor_to_max_timestamp(self) -> None:
        transport = FakeTransport([[event("e1", 100), event("e2", 150)]])
        poller = EventPoller(transport)

        events = asyncio.run(poller.poll_once("s1", "0"))

        self.assertEqual(["e1", "e2"], [e.event_id for e in events])
        self.assertEqual("150", poller.cursor)
        self.assertEqual("e2", poller.last_event_id)
        path, body, _ = transport.calls[0]
        self.assertEqual("/flow_assistants/s1/invocation_response/0", path)
        self.assertEqual({}, body)

    def test_cursor_never_regresses(self) -> None:
        transport = FakeTransport([[event("e0", 100)], [event("e1", 50)]])
        poller = EventPoller(transport)

        async def scenario() -> None:
            await poller.poll_once("s1")
            self.assertEqual("100", poller.cursor)
            events = await poller.poll_once("s1")
            self.assertEqual(["e1"], [e.event_id for e in events])

        asyncio.run(scenario())
        self.assertEqual("100", poller.cursor)

    def test_out_of_order_batch_uses_maximum(self) -> None:
        transport = FakeTransport([[event("a", 300), event("b", 200)]])
        poller = EventPoller(transport)

        events = asyncio.run(poller.poll_once("s1"))

        self.assertEqual(["a", "b"], [e.event_id for e in events])
        self.assertEqual("300", poller.cursor)

    def test_omitted_cursor_uses_last_known(self) -> None:
        transport = FakeTransport([[event("e1", 42)], []])
        poller = EventPoller(transport)

        async def scenario() -> None:
            await poller.poll_once("s1")
            await poller.poll_once("s1")

        asyncio.run(scenario())
        self.assertEqual(
            ["/flow_assistants/s1/invocation_response/0", "/flow_assistants/s1/invocation_response/42"],
            transport.paths,
        )

    def test_accepts_wrapped_response_and_string_timestamps(self) -> None:
        transport = FakeTransport([{"messages": [event("e1", "200")], "has_more": True}])
        poller = EventPoller(transport)

        events = asyncio.run(poller.poll_once("s1"))

        self.assertEqual(200, events[0].created_at_timestamp)
        self.assertEqual("200", poller.cursor)
        self.assertTrue(poller.last_batch.has_more)

    def test_events_without_timestamp_do_not_move_cursor(self) -> None:
        transport = FakeTransport([[event("e1", None)]])
        poller = EventPoller(transport)

        events = asyncio.run(poller.poll_once("s1"))

        self.assertEqual(1, len(events))
        self.assertEqual("0", poller.cursor)

    def test_non_finite_timestamps_do_not_move_cursor(self) -> None:
        transport = FakeTransport([[event("e1", float("nan")), event("e2", float("inf")), event("e3", 30)]])
        poller = EventPoller(transport)

        events = asyncio.run(poller.poll_once("s1"))

        self.assertEqual(["e1", "e2", "e3"], [e.event_id for e in events])
        self.assertEqual([None, None, 30], [e.created_at_timestamp for e in events])
        self.assertEqual("30", poller.cursor)

    def test_ten_empty_polls_grow_interval(self) -> None:
        transport = FakeTransport()
        poller = EventPoller(transport, CadencePolicy(min_interval_ms=500, growth_factor=1.5, empty_poll_threshold=10))

        async def scenario() -> None:
            for _ in range(10):
                await poller.poll_once("s1")

        asyncio.run(scenario())
        self.assertEqual(750, poller.current_interval_ms)
        self.assertEqual(0, poller.empty_poll_streak)

    def test_non_empty_poll_resets_backoff(self) -> None:
        transport = FakeTransport([[]] * 10 + [[event("e1", 5)]])
        poller = EventPoller(transport)

        async def scenario() -> None:
            for _ in range(11):
                await poller.poll_once("s1")

        asyncio.run(scenario())
        self.assertEqual(500, poller.current_interval_ms)
        self.assertEqual(0, poller.empty_poll_streak)

    def test_failure_leaves_cursor_and_backoff_untouched(self) -> None:
        transport = FakeTransport([[event("e1", 100)], [], [], NetworkError("down")])
        poller = EventPoller(transport)

        async def scenario() -> None:
            await poller.poll_once("s1")
            await poller.poll_once("s1")
            await poller.poll_once("s1")
            with self.assertRaises(NetworkError):
                await poller.poll_once("s1")

        asyncio.run(scenario())
        self.assertEqual("100", poller.cursor)
        self.assertEqual(2, poller.empty_poll_streak)

    def test_malformed_responses_raise(self) -> None:
        for payload in ("oops", {"unexpected": 1}, [1, 2], None):
            with self.subTest(payload=payload):
                poller = EventPoller(FakeTransport([payload]))
                with self.assertRaises(MalformedResponseError):
                    asyncio.run(poller.poll_once("s1"))
                self.assertEqual("0", poller.cursor)
                self.assertEqual(0, poller.empty_poll_streak)

    def test_restore_and_reset(self) -> None:
        poller = EventPoller(FakeTransport([[event("e1", 100)]]))
        asyncio.run(poller.poll_once("s1"))

        poller.restore_cursor("40")
        self.assertEqual("40", poller.cursor)

        poller.reset(initial_interval_ms=1000)
        self.assertEqual("0", poller.cursor)
        self.assertIsNone(poller.last_event_id)
        self.assertEqual(1000, poller.current_interval_ms)

    def test_invalid_cursor_rejected(self) -> None:
        poller = EventPoller(FakeTransport())
        with self.assertRaises(ValueError):
            asyncio.run(poller.poll_once("s1", "not-a-number"))


if __name__ == "__main__":
    unittest.main()
