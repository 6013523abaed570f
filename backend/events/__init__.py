"""Event system for plan execution broadcasts.

This package provides the event infrastructure between the execution engine
and the chat frontend. The event system is an async pub/sub pattern using
asyncio.Queue, consumed by the Server-Sent Events endpoint.

Key Components:
    - EventType: Enum of all event types produced by the engine
    - EngineEvent: Pydantic model for events flowing through the system
    - EventBus: Async pub/sub implementation for event distribution

Event Flow:
    1. The orchestrator graph publishes events via EventBus.publish()
    2. The SSE endpoint subscribes to the conversation's events
    3. Events are written to the browser as `event:` / `data:` frames
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    EngineEvent,
    EventType,
)

__all__ = [
    "EventType",
    "EngineEvent",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
