# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import pytest

from unittest.mock import AsyncMock, Mock

from src.events import EventBus
from src.types.event_types import Event, EventType


class TestEventBus:
    @pytest.mark.asyncio
    async def test_publish_stores_per_publisher(self, event_bus):
        await event_bus.publish(Event(type=EventType.ASSISTANT_MESSAGE, content="a"), "one")
        await event_bus.publish(Event(type=EventType.TOOL_CALL, content="b"), "two")

        assert [e.content for e in event_bus.get_events("one")] == ["a"]
        assert event_bus.get_events("two")[0].metadata["publisher_id"] == "two"
        assert event_bus.get_events("three") == []
        assert event_bus.publishers() == ["one", "two"]

    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers(self, event_bus):
        sync_cb = Mock()
        async_cb = AsyncMock()
        event_bus.subscribe(EventType.TOOL_CALL, sync_cb)
        event_bus.subscribe([EventType.TOOL_CALL, EventType.TOOL_RESULT], async_cb)

        await event_bus.publish(Event(type=EventType.TOOL_CALL, content="x"), "p")
        await event_bus.publish(Event(type=EventType.TOOL_RESULT, content="y"), "p")

        assert sync_cb.call_count == 1
        assert async_cb.await_count == 2

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_reach_publisher(self, event_bus):
        after = Mock()
        event_bus.subscribe(EventType.APPLICATION_ERROR, Mock(side_effect=RuntimeError("bad")))
        event_bus.subscribe(EventType.APPLICATION_ERROR, after)

        await event_bus.publish(Event(type=EventType.APPLICATION_ERROR, content="e"), "p")

        after.assert_called_once()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, event_bus):
        callback = Mock()
        event_bus.subscribe({EventType.STATE_ENTERED}, callback)
        event_bus.unsubscribe({EventType.STATE_ENTERED}, callback)

        await event_bus.publish(Event(type=EventType.STATE_ENTERED, content="s"), "p")

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_events_by_type_across_publishers(self, event_bus):
        await event_bus.publish(Event(type=EventType.TOOL_CALL, content="1"), "a")
        await event_bus.publish(Event(type=EventType.TOOL_RESULT, content="2"), "a")
        await event_bus.publish(Event(type=EventType.TOOL_CALL, content="3"), "b")

        calls = event_bus.get_events_by_type(EventType.TOOL_CALL)
        assert [e.content for e in calls] == ["1", "3"]

    @pytest.mark.asyncio
    async def test_buses_are_independent(self):
        first, second = EventBus(), EventBus()
        await first.publish(Event(type=EventType.TOOL_CALL, content="x"), "p")
        assert second.get_events("p") == []

    @pytest.mark.asyncio
    async def test_dump_events(self, event_bus, tmp_path):
        await event_bus.publish(
            Event(type=EventType.WORKFLOW_STARTED, content="go", metadata={"path": tmp_path}), "w"
        )
        target = tmp_path / "out" / "events.json"

        event_bus.dump_events(target)

        data = json.loads(target.read_text())
        assert data["w"][0]["type"] == "workflow_started"
        assert data["w"][0]["metadata"]["path"] == str(tmp_path)

    @pytest.mark.asyncio
    async def test_clear(self, event_bus):
        callback = Mock()
        event_bus.subscribe(EventType.TOOL_CALL, callback)
        await event_bus.publish(Event(type=EventType.TOOL_CALL, content="x"), "p")

        event_bus.clear()
        await event_bus.publish(Event(type=EventType.TOOL_CALL, content="y"), "p")

        assert callback.call_count == 1
        assert [e.content for e in event_bus.get_events("p")] == ["y"]
