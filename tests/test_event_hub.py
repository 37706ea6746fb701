from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

from personagen.application import get_event_hub
from personagen.core.schema import LogEvent
from personagen.infrastructure import LogBroadcastHub
from personagen.infrastructure.events import CONNECTED_MESSAGE
from personagen.routes.events import KEEPALIVE_COMMENT, format_event, stream_events, stream_logs


def _messages(subscription) -> list[str]:
    return [event.message for event in subscription.drain()]


def test_subscribe_delivers_connected_event():
    hub = LogBroadcastHub()
    subscription = hub.subscribe()

    events = subscription.drain()
    assert len(events) == 1
    assert events[0].kind == "info"
    assert events[0].message == CONNECTED_MESSAGE
    assert hub.subscriber_count == 1


def test_publish_fans_out_in_order():
    hub = LogBroadcastHub()
    subscribers = [hub.subscribe() for _ in range(3)]

    assert hub.emit("log", "first") == 3
    assert hub.emit("warning", "second", subject="alice") == 3

    for subscription in subscribers:
        events = subscription.drain()
        assert [event.message for event in events] == [CONNECTED_MESSAGE, "first", "second"]
        assert events[2].kind == "warning"
        assert events[2].subject == "alice"


def test_late_subscriber_misses_earlier_events():
    hub = LogBroadcastHub()
    early = hub.subscribe()
    hub.emit("info", "before")
    late = hub.subscribe()
    hub.emit("info", "after")

    assert _messages(early) == [CONNECTED_MESSAGE, "before", "after"]
    assert _messages(late) == [CONNECTED_MESSAGE, "after"]


def test_unsubscribe_is_idempotent_and_stops_delivery():
    hub = LogBroadcastHub()
    kept = hub.subscribe()
    gone = hub.subscribe()

    hub.unsubscribe(gone)
    hub.unsubscribe(gone)

    assert hub.publish(LogEvent(kind="info", message="hello")) == 1
    assert hub.subscriber_count == 1
    assert gone.closed
    assert _messages(gone) == [CONNECTED_MESSAGE]
    assert _messages(kept) == [CONNECTED_MESSAGE, "hello"]


def test_full_subscriber_is_dropped_without_blocking_others():
    hub = LogBroadcastHub(queue_size=2)
    slow = hub.subscribe()
    fast = hub.subscribe()

    assert hub.emit("info", "one") == 2
    # ``fast`` keeps up, ``slow`` never reads
    fast.drain()
    assert hub.emit("info", "two") == 1

    assert hub.subscriber_count == 1
    assert slow.closed
    assert _messages(fast) == ["two"]


def test_iteration_ends_when_hub_shuts_down():
    hub = LogBroadcastHub()
    subscription = hub.subscribe()
    hub.emit("info", "bye")

    async def consume() -> list[str]:
        received = []
        async for event in subscription:
            received.append(event.message)
            if event.message == "bye":
                hub.shutdown()
        return received

    assert asyncio.run(consume()) == [CONNECTED_MESSAGE, "bye"]
    assert hub.subscriber_count == 0


def test_stream_events_renders_sse_frames_and_keepalive():
    hub = LogBroadcastHub()

    async def scenario() -> list[str]:
        subscription = hub.subscribe()
        frames = stream_events(subscription, keepalive=0.01)
        collected = [await anext(frames)]
        hub.emit("error", "boom", subject="alice")
        collected.append(await anext(frames))
        collected.append(await anext(frames))
        await frames.aclose()
        hub.unsubscribe(subscription)
        return collected

    connected, error, keepalive = asyncio.run(scenario())

    assert connected.startswith("data: ") and connected.endswith("\n\n")
    assert json.loads(connected[len("data: "):])["message"] == CONNECTED_MESSAGE
    payload = json.loads(error[len("data: "):])
    assert payload["kind"] == "error"
    assert payload["message"] == "boom"
    assert payload["subject"] == "alice"
    assert keepalive == KEEPALIVE_COMMENT
    assert hub.subscriber_count == 0


def test_format_event_is_single_data_frame():
    frame = format_event(LogEvent(kind="log", message="line one"))
    assert frame.count("data: ") == 1
    assert frame.endswith("\n\n")


def test_log_route_subscribes_only_once_streaming_starts():
    hub = get_event_hub()
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(event_keepalive=0.01)))

    async def scenario() -> tuple[int, int, str]:
        response = await stream_logs(request)
        before = hub.subscriber_count
        first = await anext(response.body_iterator)
        during = hub.subscriber_count
        await response.body_iterator.aclose()
        return before, during, first

    before, during, first = asyncio.run(scenario())

    assert before == 0
    assert during == 1
    assert CONNECTED_MESSAGE in first
    assert hub.subscriber_count == 0
