from __future__ import annotations

import asyncio
from typing import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from personagen.application import get_event_hub
from personagen.core.schema import LogEvent
from personagen.infrastructure import Subscription

router = APIRouter(tags=["events"])

KEEPALIVE_COMMENT = ": keep-alive\n\n"


def format_event(event: LogEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"


async def stream_events(subscription: Subscription, keepalive: float) -> AsyncIterator[str]:
    """Render a subscription as SSE frames until it is closed."""

    iterator = subscription.__aiter__()
    while True:
        try:
            event = await asyncio.wait_for(anext(iterator), timeout=keepalive)
        except asyncio.TimeoutError:
            yield KEEPALIVE_COMMENT
            continue
        except StopAsyncIteration:
            return
        yield format_event(event)


@router.get("/logs")
async def stream_logs(request: Request) -> StreamingResponse:
    """Live log stream shared by every pipeline run, one connection per subscriber."""
    hub = get_event_hub()
    keepalive = float(getattr(request.app.state, "event_keepalive", 15.0))

    async def event_generator() -> AsyncIterator[str]:
        # Registered on first read so a stream that never starts leaves nothing behind.
        subscription = hub.subscribe()
        try:
            async for chunk in stream_events(subscription, keepalive):
                yield chunk
        finally:
            hub.unsubscribe(subscription)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
