"""
Unit tests for chat request orchestration.
"""

import httpx
import pytest

from rag.errors import RateLimitExceeded, UpstreamGenerationError
from rag.response_cache import cache_key
from rag.tests.helpers import parse_sse
from rag.validation import ChatRequest, HistoryMessage


async def read_body(reply) -> list:
    return parse_sse(b"".join([event async for event in reply.body]).decode("utf-8"))


@pytest.mark.unit
class TestChatService:
    """Cache, degradation and quota behavior of respond()."""

    @pytest.mark.asyncio
    async def test_miss_streams_then_hit_replays(self, chat_service, fake_llm, store):
        request = ChatRequest(message="What does Nishan build?")

        first = await chat_service.respond(request, "203.0.113.7")
        events = await read_body(first)
        await chat_service.drain()

        assert first.cache_status == "MISS"
        assert first.remaining == 9
        assert events == [{"content": "Nishan "}, {"content": "builds "}, {"content": "data apps."}, "[DONE]"]
        assert store.values[cache_key(request.message, "en")] == "Nishan builds data apps."
        assert store.ttls[cache_key(request.message, "en")] == 86400

        second = await chat_service.respond(ChatRequest(message="  what does nishan   BUILD? "), "203.0.113.7")

        assert second.cache_status == "HIT"
        assert await read_body(second) == [{"content": "Nishan builds data apps."}, "[DONE]"]
        assert len(fake_llm.stream_calls) == 1
        assert (chat_service.cache_hits, chat_service.cache_misses) == (1, 1)

    @pytest.mark.asyncio
    async def test_cache_is_language_scoped(self, chat_service, fake_llm):
        reply = await chat_service.respond(ChatRequest(message="Skills?"), "a")
        await read_body(reply)
        await chat_service.drain()

        german = await chat_service.respond(ChatRequest(message="Skills?", lang="de"), "a")
        await read_body(german)

        assert german.cache_status == "MISS"
        assert len(fake_llm.stream_calls) == 2

    @pytest.mark.asyncio
    async def test_prompt_carries_context_and_history(self, chat_service, fake_llm, fake_embedder):
        history = [HistoryMessage(role="user", content="Hi"), HistoryMessage(role="assistant", content="Hello!")]
        reply = await chat_service.respond(ChatRequest(message="Where does he work?", history=history), "a")
        await read_body(reply)

        messages = fake_llm.stream_calls[0]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert "Senior Software Developer at Novigo Solutions." in messages[0]["content"]
        assert "Python, SQL" not in messages[0]["content"].split("---")[1]
        assert fake_embedder.calls == [fake_llm.hypothesis]

    @pytest.mark.asyncio
    async def test_embedding_outage_still_answers(self, chat_service, fake_llm, fake_embedder):
        fake_embedder.fail = True

        reply = await chat_service.respond(ChatRequest(message="Tell me about him"), "a")
        events = await read_body(reply)

        assert events[-1] == "[DONE]"
        assert "No specific context retrieved" in fake_llm.stream_calls[0][0]["content"]

    @pytest.mark.asyncio
    async def test_index_outage_still_answers(self, chat_service, fake_llm, fake_index):
        fake_index.fail = True

        events = await read_body(await chat_service.respond(ChatRequest(message="Projects?"), "a"))

        assert {"content": "data apps."} in events
        assert "No specific context retrieved" in fake_llm.stream_calls[0][0]["content"]

    @pytest.mark.asyncio
    async def test_hyde_failure_embeds_original_message(self, chat_service, fake_llm, fake_embedder):
        fake_llm.fail_complete = True

        await read_body(await chat_service.respond(ChatRequest(message="Education?"), "a"))

        assert fake_embedder.calls == ["Education?"]

    @pytest.mark.asyncio
    async def test_rate_limit(self, chat_service, fake_llm):
        for _ in range(10):
            reply = await chat_service.respond(ChatRequest(message="Hi"), "198.51.100.1")
            await read_body(reply)
            await chat_service.drain()

        with pytest.raises(RateLimitExceeded) as exc_info:
            await chat_service.respond(ChatRequest(message="Hi"), "198.51.100.1")

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers() == {"Retry-After": "60"}

        other = await chat_service.respond(ChatRequest(message="Hi"), "198.51.100.2")
        assert other.cache_status == "HIT"

    @pytest.mark.asyncio
    async def test_store_outage_fails_open(self, chat_service, store):
        store.fail = True

        reply = await chat_service.respond(ChatRequest(message="Hi"), "a")
        events = await read_body(reply)
        await chat_service.drain()

        assert reply.cache_status == "MISS"
        assert reply.remaining == 99
        assert events[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_generation_failure_propagates(self, chat_service, fake_llm):
        fake_llm.fail_open = True
        with pytest.raises(UpstreamGenerationError):
            await chat_service.respond(ChatRequest(message="Hi"), "a")

    @pytest.mark.asyncio
    async def test_interrupted_stream_not_cached(self, chat_service, fake_llm, store):
        fake_llm.stream_error = httpx.ReadError("reset")

        events = await read_body(await chat_service.respond(ChatRequest(message="Hi"), "a"))
        await chat_service.drain()

        assert {"error": "Stream interrupted"} in events
        assert events.count("[DONE]") == 1
        assert store.values == {}
