"""
Unit tests for the generation relay and SSE channel.
"""

import asyncio

import httpx
import pytest

from rag.stream_relay import GenerationStreamer, SSEChannel
from rag.tests.helpers import parse_sse, sse_payload, streaming_response


async def collect(channel: SSEChannel) -> str:
    return b"".join([event async for event in channel.events()]).decode("utf-8")


async def run_relay(upstream, on_complete=None):
    tasks = set()
    streamer = GenerationStreamer(tasks)
    channel = SSEChannel()
    relay = asyncio.create_task(streamer.relay(upstream, channel, on_complete=on_complete))
    channel.attach(relay)
    body = await collect(channel)
    text = await relay
    if tasks:
        await asyncio.gather(*tasks)
    return parse_sse(body), text


@pytest.mark.unit
class TestGenerationStreamer:
    """Ordering, termination and cache callback rules."""

    @pytest.mark.asyncio
    async def test_forwards_deltas_then_single_done(self):
        completed = []

        async def on_complete(text):
            completed.append(text)

        upstream = streaming_response([sse_payload(["Hel", "lo", " there"])])
        events, text = await run_relay(upstream, on_complete)

        assert events == [{"content": "Hel"}, {"content": "lo"}, {"content": " there"}, "[DONE]"]
        assert text == "Hello there"
        assert completed == ["Hello there"]
        assert upstream.is_closed

    @pytest.mark.asyncio
    async def test_bytes_split_anywhere(self):
        payload = sse_payload(["Grüße", " aus", " Berlin"])
        pieces = [payload[i:i + 3] for i in range(0, len(payload), 3)]

        events, text = await run_relay(streaming_response(pieces))

        assert text == "Grüße aus Berlin"
        assert events[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_upstream_without_done_marker_still_terminates(self):
        events, text = await run_relay(streaming_response([sse_payload(["partial"], done=False)]))

        assert events == [{"content": "partial"}, "[DONE]"]
        assert text == "partial"

    @pytest.mark.asyncio
    async def test_mid_stream_error(self):
        completed = []

        async def on_complete(text):
            completed.append(text)

        upstream = streaming_response(
            [sse_payload(["Half an"], done=False)], error=httpx.ReadError("connection reset")
        )
        events, text = await run_relay(upstream, on_complete)

        assert events == [{"content": "Half an"}, {"error": "Stream interrupted"}, "[DONE]"]
        assert events.count("[DONE]") == 1
        assert completed == []
        assert upstream.is_closed

    @pytest.mark.asyncio
    async def test_empty_generation_not_cached(self):
        completed = []

        async def on_complete(text):
            completed.append(text)

        events, text = await run_relay(streaming_response([b"data: [DONE]\n\n"]), on_complete)

        assert events == ["[DONE]"]
        assert text == ""
        assert completed == []

    @pytest.mark.asyncio
    async def test_callback_failure_is_swallowed(self):
        async def on_complete(text):
            raise RuntimeError("redis down")

        events, text = await run_relay(streaming_response([sse_payload(["ok"])]), on_complete)

        assert text == "ok"
        assert events[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_upstream_close_failure_still_terminates(self):
        upstream = streaming_response([sse_payload(["ok"])])

        async def failing_aclose():
            raise httpx.ReadError("socket already gone")

        upstream.aclose = failing_aclose

        events, text = await asyncio.wait_for(run_relay(upstream), timeout=2)

        assert events == [{"content": "ok"}, "[DONE]"]
        assert text == "ok"

    @pytest.mark.asyncio
    async def test_consumer_disconnect_cancels_relay(self):
        gate = asyncio.Event()
        completed = []

        async def body():
            yield sse_payload(["first"], done=False)
            await gate.wait()
            yield sse_payload(["never"])

        async def on_complete(text):
            completed.append(text)

        upstream = httpx.Response(200, content=body())
        channel = SSEChannel()
        relay = asyncio.create_task(GenerationStreamer().relay(upstream, channel, on_complete=on_complete))
        channel.attach(relay)

        events = channel.events()
        first = await events.__anext__()
        await events.aclose()

        with pytest.raises(asyncio.CancelledError):
            await relay
        assert parse_sse(first.decode("utf-8")) == [{"content": "first"}]
        assert upstream.is_closed
        assert completed == []


@pytest.mark.unit
class TestSSEChannel:
    @pytest.mark.asyncio
    async def test_send_after_close_is_dropped(self):
        channel = SSEChannel()
        await channel.send(b"a")
        await channel.close()
        await channel.send(b"b")
        await channel.close()

        assert [event async for event in channel.events()] == [b"a"]
