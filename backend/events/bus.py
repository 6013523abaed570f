"""Async event bus for plan execution pub/sub communication.

This module provides an EventBus class that enables asynchronous
publish/subscribe communication between the execution engine and
frontend consumers (via Server-Sent Events).

The event bus supports:
- Multiple subscribers per conversation
- Async event delivery via bounded asyncio.Queue instances
- Conversation lifecycle management (closing terminates all subscribers)

Broadcast is best effort: there is no replay of events once they have been
delivered, and a subscriber whose queue stays full drops events rather than
blocking the engine.
"""

import asyncio
import threading
import time
from collections import defaultdict

import structlog

from events.types import EngineEvent, EventType

logger = structlog.get_logger()


def _stream_closed(conversation_id: str) -> EngineEvent:
    return EngineEvent(
        type=EventType.STREAM_CLOSED,
        conversation_id=conversation_id,
        data={"reason": "stream_closed"},
    )


class EventBus:
    """Async pub/sub event bus for engine events.

    Event Buffering:
        Events published before any subscriber connects are buffered (up to
        MAX_BUFFER_PER_CONVERSATION). When the first subscriber connects, the
        buffered events are delivered immediately. This covers the window
        between approving a plan and the browser opening its event stream.

        Closing a conversation that nobody is subscribed to keeps its buffer
        for CLOSED_BUFFER_RETENTION_SECONDS, so a late subscriber still sees
        the final events followed by the STREAM_CLOSED sentinel. Expired
        buffers are evicted on the next bus operation.

    Backpressure:
        Subscriber queues hold at most SUBSCRIBER_QUEUE_SIZE events. Delivery
        to a full queue waits DELIVERY_TIMEOUT_SECONDS, then the event is
        dropped for that subscriber only.

    Thread Safety:
        Registry access is guarded by a threading.Lock.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe("conv_123")
        >>> await bus.publish(EngineEvent(
        ...     type=EventType.AGENT_START,
        ...     conversation_id="conv_123",
        ...     agent_id="seo",
        ... ))
        >>> event = await queue.get()
        >>> bus.unsubscribe("conv_123", queue)
        >>> await bus.close_conversation("conv_123")
    """

    MAX_BUFFER_PER_CONVERSATION = 2000
    SUBSCRIBER_QUEUE_SIZE = 4096
    DELIVERY_TIMEOUT_SECONDS = 5.0
    CLOSED_BUFFER_RETENTION_SECONDS = 120.0

    def __init__(self) -> None:
        """Initialize an empty event bus."""
        self._subscribers: dict[str, list[asyncio.Queue[EngineEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[EngineEvent]] = defaultdict(list)
        self._closed_at: dict[str, float] = {}
        self._lock = threading.Lock()
        logger.info("event_bus_initialized")

    def _evict_expired_locked(self) -> None:
        """Drop buffers of closed conversations past their retention. Caller holds the lock."""
        cutoff = time.monotonic() - self.CLOSED_BUFFER_RETENTION_SECONDS
        expired = [cid for cid, closed_at in self._closed_at.items() if closed_at < cutoff]
        for conversation_id in expired:
            del self._closed_at[conversation_id]
            dropped = len(self._event_buffer.pop(conversation_id, []))
            logger.debug(
                "closed_buffer_evicted",
                conversation_id=conversation_id,
                dropped_events=dropped,
            )

    def subscribe(self, conversation_id: str) -> asyncio.Queue[EngineEvent]:
        """Subscribe to events for a conversation.

        If there are buffered events for this conversation, they are
        delivered immediately to the new subscriber. If the conversation
        was already closed, the sentinel follows them and the queue is not
        registered.

        Args:
            conversation_id: The conversation to subscribe to

        Returns:
            An asyncio.Queue that will receive EngineEvent objects
        """
        queue: asyncio.Queue[EngineEvent] = asyncio.Queue(maxsize=self.SUBSCRIBER_QUEUE_SIZE)
        buffered_events: list[EngineEvent] = []

        with self._lock:
            self._evict_expired_locked()
            closed = self._closed_at.pop(conversation_id, None) is not None
            if not closed:
                self._subscribers[conversation_id].append(queue)
            subscriber_count = len(self._subscribers.get(conversation_id, []))
            if conversation_id in self._event_buffer:
                buffered_events = self._event_buffer.pop(conversation_id)

        for event in buffered_events:
            queue.put_nowait(event)
        if closed:
            queue.put_nowait(_stream_closed(conversation_id))

        logger.info(
            "subscriber_added",
            conversation_id=conversation_id,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
            already_closed=closed,
        )
        return queue

    def unsubscribe(self, conversation_id: str, queue: asyncio.Queue[EngineEvent]) -> None:
        """Unsubscribe a queue from conversation events.

        If the queue is not registered, this is a no-op.
        """
        with self._lock:
            queues = self._subscribers.get(conversation_id)
            if queues is None:
                return
            try:
                queues.remove(queue)
            except ValueError:
                logger.warning("unsubscribe_queue_not_found", conversation_id=conversation_id)
                return
            if not queues:
                del self._subscribers[conversation_id]
            logger.info(
                "subscriber_removed",
                conversation_id=conversation_id,
                subscriber_count=len(queues),
            )

    async def publish(self, event: EngineEvent) -> None:
        """Publish an event to all subscribers of its conversation.

        If there are no subscribers, the event is buffered until one
        connects. Publishing to a closed conversation starts a new stream
        and discards what was retained from the previous one. Delivery to a
        full queue times out and the event is dropped for that subscriber
        only.

        Args:
            event: The EngineEvent to publish
        """
        with self._lock:
            self._evict_expired_locked()
            if self._closed_at.pop(event.conversation_id, None) is not None:
                self._event_buffer.pop(event.conversation_id, None)
            subscribers = list(self._subscribers.get(event.conversation_id, []))
            if not subscribers:
                buffer = self._event_buffer[event.conversation_id]
                buffer.append(event)
                if len(buffer) > self.MAX_BUFFER_PER_CONVERSATION:
                    del buffer[: len(buffer) - self.MAX_BUFFER_PER_CONVERSATION]
                logger.debug(
                    "event_buffered",
                    conversation_id=event.conversation_id,
                    event_type=event.type.value,
                    buffer_size=len(buffer),
                )
                return

        for queue in subscribers:
            try:
                await asyncio.wait_for(queue.put(event), timeout=self.DELIVERY_TIMEOUT_SECONDS)
            except TimeoutError:
                logger.warning(
                    "event_delivery_timeout",
                    conversation_id=event.conversation_id,
                    event_type=event.type.value,
                )

        logger.debug(
            "event_published",
            conversation_id=event.conversation_id,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
            agent_id=event.agent_id,
        )

    async def close_conversation(self, conversation_id: str) -> None:
        """Close a conversation's stream and notify all subscribers.

        Puts a STREAM_CLOSED sentinel into each subscriber queue so that
        SSE generators can detect the end and return. A full queue loses
        its oldest event to make room for the sentinel. Buffered events
        with no subscriber are retained until CLOSED_BUFFER_RETENTION_SECONDS
        elapse.

        Args:
            conversation_id: The conversation to close
        """
        with self._lock:
            self._evict_expired_locked()
            queues_to_signal = self._subscribers.pop(conversation_id, [])
            buffer_count = len(self._event_buffer.get(conversation_id, []))
            if buffer_count:
                self._closed_at[conversation_id] = time.monotonic()

        for queue in queues_to_signal:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(_stream_closed(conversation_id))

        logger.info(
            "conversation_stream_closed",
            conversation_id=conversation_id,
            subscribers_removed=len(queues_to_signal),
            buffered_events_retained=buffer_count,
        )

    def get_subscriber_count(self, conversation_id: str) -> int:
        """Get the number of subscribers for a conversation."""
        with self._lock:
            return len(self._subscribers.get(conversation_id, []))

    def get_active_conversations(self) -> list[str]:
        """Get conversation ids with at least one subscriber."""
        with self._lock:
            return list(self._subscribers.keys())

    def get_buffered_count(self, conversation_id: str) -> int:
        """Get the number of events waiting for a first subscriber."""
        with self._lock:
            self._evict_expired_locked()
            return len(self._event_buffer.get(conversation_id, []))


# Global event bus instance
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance.

    Creates the instance on first call (lazy initialization).

    Returns:
        The global EventBus instance
    """
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus instance (used by tests)."""
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.info("event_bus_reset")
