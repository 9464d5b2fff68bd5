"""
Unit tests for infrastructure/event_bus.py
"""
import asyncio
import unittest

from infrastructure.event_bus import EventBus, EventType, GraphEvent


class TestSyncDispatch(unittest.TestCase):

    def setUp(self):
        self.bus = EventBus()
        self.received = []

    def _handler(self, event):
        self.received.append(event)

    def test_emit_reaches_subscriber(self):
        self.bus.subscribe(EventType.NODE_CREATED, self._handler)
        self.bus.emit(EventType.NODE_CREATED, {"node_id": "a"}, source="session")

        self.assertEqual(len(self.received), 1)
        event = self.received[0]
        self.assertIsInstance(event, GraphEvent)
        self.assertEqual(event.type, EventType.NODE_CREATED)
        self.assertEqual(event.payload, {"node_id": "a"})
        self.assertEqual(event.source, "session")
        self.assertGreater(event.timestamp, 0)

    def test_other_types_not_delivered(self):
        self.bus.subscribe(EventType.NODE_CREATED, self._handler)
        self.bus.emit(EventType.EDGE_CREATED, {"edge_id": "e"})
        self.assertEqual(self.received, [])

    def test_duplicate_subscription_ignored(self):
        self.bus.subscribe(EventType.NODE_DELETED, self._handler)
        self.bus.subscribe(EventType.NODE_DELETED, self._handler)
        self.assertEqual(self.bus.subscriber_count(EventType.NODE_DELETED), 1)

    def test_subscribe_all(self):
        self.bus.subscribe_all(self._handler)
        self.assertEqual(self.bus.subscriber_count(), len(EventType))
        self.bus.emit(EventType.SETTINGS_CHANGED, {})
        self.assertEqual(len(self.received), 1)

    def test_unsubscribe(self):
        self.bus.subscribe(EventType.NODE_CREATED, self._handler)
        self.bus.unsubscribe(EventType.NODE_CREATED, self._handler)
        self.bus.emit(EventType.NODE_CREATED, {})
        self.assertEqual(self.received, [])

    def test_failing_handler_does_not_stop_others(self):
        def broken(event):
            raise RuntimeError("subscriber bug")

        self.bus.subscribe(EventType.NODE_CREATED, broken)
        self.bus.subscribe(EventType.NODE_CREATED, self._handler)

        with self.assertLogs("metrimap.event_bus", level="ERROR"):
            self.bus.emit(EventType.NODE_CREATED, {})

        self.assertEqual(len(self.received), 1)

    def test_clear_subscribers(self):
        self.bus.subscribe(EventType.NODE_CREATED, self._handler)
        self.bus.subscribe(EventType.EDGE_CREATED, self._handler)

        self.bus.clear_subscribers(EventType.NODE_CREATED)
        self.assertEqual(self.bus.subscriber_count(), 1)

        self.bus.clear_subscribers()
        self.assertEqual(self.bus.subscriber_count(), 0)


def test_async_handler_scheduled_on_running_loop():
    bus = EventBus()
    seen = []

    async def handler(event):
        seen.append(event.payload["node_id"])

    bus.subscribe_async(EventType.NODE_CREATED, handler)

    async def scenario():
        bus.emit(EventType.NODE_CREATED, {"node_id": "a"})
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    asyncio.run(scenario())
    assert seen == ["a"]


def test_async_handler_without_loop_is_skipped(caplog):
    bus = EventBus()

    async def handler(event):
        raise AssertionError("should not run")

    bus.subscribe_async(EventType.NODE_CREATED, handler)
    bus.emit(EventType.NODE_CREATED, {})

    assert "no event loop running" in caplog.text


def test_async_handler_tasks_are_tracked_until_done(caplog):
    """
    A coroutine handler that raises.

    Verifies:
    - The task is held by the bus while it runs
    - Its exception is logged instead of lost
    - The bus lets go of the task once it finishes
    """
    bus = EventBus()
    started = []

    async def handler(event):
        started.append(event.type)
        raise RuntimeError("store unavailable")

    bus.subscribe_async(EventType.NODE_DELETED, handler)

    async def scenario():
        bus.emit(EventType.NODE_DELETED, {"node_id": "a"})
        assert bus.pending_tasks == 1
        for _ in range(10):
            if bus.pending_tasks == 0:
                break
            await asyncio.sleep(0)

    with caplog.at_level("ERROR", logger="metrimap.event_bus"):
        asyncio.run(scenario())

    assert started == [EventType.NODE_DELETED]
    assert bus.pending_tasks == 0
    assert "store unavailable" in caplog.text
    assert "node_deleted" in caplog.text
