"""Server-Sent Events stream of engine events.

Each connection subscribes to the conversation on the event bus and
forwards events as SSE frames. Events published before the first
subscriber connects are delivered from the bus buffer. A comment line is
sent when the stream is idle so proxies keep the connection open.

Disconnecting only unsubscribes; it never cancels plan execution.
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Annotated

import structlog
from fastapi import APIRouter, Path, Request
from fastapi.responses import StreamingResponse

from config import settings
from events import EngineEvent, EventType, get_event_bus

logger = structlog.get_logger(__name__)

stream_router = APIRouter()

HEARTBEAT_FRAME = ": keep-alive\n\n"


async def event_stream(
    conversation_id: str,
    queue: asyncio.Queue[EngineEvent],
    request: Request | None = None,
    heartbeat_seconds: float | None = None,
) -> AsyncIterator[str]:
    """Yield SSE frames from ``queue`` until the stream is closed.

    Args:
        conversation_id: Conversation being streamed.
        queue: Subscription queue from the event bus.
        request: Used to notice client disconnects between heartbeats.
        heartbeat_seconds: Idle interval before a keep-alive comment.
    """
    interval = heartbeat_seconds or settings.sse_heartbeat_seconds
    event_bus = get_event_bus()
    sent = 0
    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=interval)
            except TimeoutError:
                if request is not None and await request.is_disconnected():
                    break
                yield HEARTBEAT_FRAME
                continue

            # STREAM_CLOSED is the sentinel from close_conversation; stop sending.
            if event.type == EventType.STREAM_CLOSED:
                break
            yield event.to_sse()
            sent += 1
    finally:
        event_bus.unsubscribe(conversation_id, queue)
        logger.info("sse_stream_closed", conversation_id=conversation_id, events_sent=sent)


@stream_router.get(
    "/api/conversations/{conversation_id}/events",
    summary="Stream engine events",
    description="Server-Sent Events stream of every engine event for a conversation.",
    response_class=StreamingResponse,
)
async def stream_events(
    conversation_id: Annotated[str, Path(description="The conversation ID")],
    request: Request,
) -> StreamingResponse:
    """Open an SSE stream for a conversation."""
    queue = get_event_bus().subscribe(conversation_id)
    logger.info("sse_stream_opened", conversation_id=conversation_id)
    return StreamingResponse(
        event_stream(conversation_id, queue, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
