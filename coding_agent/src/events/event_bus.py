# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Event bus module for centralized event management."""

import json
import inspect
import logging

from collections import defaultdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Any
from pydantic import BaseModel, PrivateAttr

from ..types.event_types import EventType, Event

logger = logging.getLogger(__name__)

EventTypes = EventType | set[EventType] | list[EventType] | tuple[EventType, ...]


def _as_types(event_type: EventTypes) -> Iterable[EventType]:
    if isinstance(event_type, (set, list, tuple)):
        return event_type
    return (event_type,)


class EventEncoder(json.JSONEncoder):
    """Serialises events, including the paths and models found in metadata."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Event):
            return {
                "type": obj.type.value,
                "content": obj.content,
                "metadata": obj.metadata,
                "timestamp": obj.timestamp.isoformat(),
            }
        if hasattr(obj, "model_dump"):
            return obj.model_dump()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (datetime, Path)):
            return obj.isoformat() if isinstance(obj, datetime) else str(obj)
        return super().default(obj)


class EventBus(BaseModel):
    """
    Publish/subscribe bus for conversation and workflow events.

    One bus is created per application (or per test) and injected into the
    sessions, agents and state machine that should share it. Events are
    stored per publisher id so that the transcript of a single agent can be
    recovered after a run.
    """

    _subscribers: Dict[EventType, List[Callable]] = PrivateAttr(
        default_factory=lambda: defaultdict(list)
    )
    _event_store: Dict[str, List[Event]] = PrivateAttr(default_factory=dict)

    async def publish(self, event: Event, publisher_id: str) -> None:
        """Store `event` under `publisher_id` and notify its subscribers.

        Subscriber failures are logged and never reach the publisher.
        """
        event.metadata["publisher_id"] = publisher_id
        self._event_store.setdefault(publisher_id, []).append(event)
        logger.debug(f"{publisher_id} published {event.type.value}")

        for callback in list(self._subscribers[event.type]):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Subscriber {callback} failed on {event.type.value}: {e}")

    def subscribe(self, event_type: EventTypes, callback: Callable) -> None:
        """Call `callback` (sync or async) for every event of the given type(s)."""
        for et in _as_types(event_type):
            self._subscribers[et].append(callback)

    def unsubscribe(self, event_type: EventTypes, callback: Callable) -> None:
        for et in _as_types(event_type):
            if callback in self._subscribers[et]:
                self._subscribers[et].remove(callback)

    def get_events(self, publisher_id: str) -> List[Event]:
        return self._event_store.get(publisher_id, [])

    def get_events_by_type(self, event_type: EventType) -> List[Event]:
        """All events of one type across publishers, oldest first."""
        events = [
            e
            for publisher_events in self._event_store.values()
            for e in publisher_events
            if e.type == event_type
        ]
        return sorted(events, key=lambda e: e.timestamp)

    def publishers(self) -> List[str]:
        return list(self._event_store)

    def clear(self) -> None:
        """Drop stored events and subscribers."""
        self._event_store.clear()
        self._subscribers.clear()

    def dump_events(self, path: Path) -> None:
        """Write the event store to a JSON file, keyed by publisher."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self._event_store, indent=2, cls=EventEncoder))
