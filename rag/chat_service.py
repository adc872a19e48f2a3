"""
Chat request orchestration.

    rate limit -> cache lookup -> HyDE -> embed -> retrieve -> prompt -> stream

Rate limiting and generation are the only steps that can fail the request.
Cache, expansion, embedding and retrieval degrade to a context-less answer.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Set

from rag.errors import DegradableRetrievalError, RateLimitExceeded
from rag.llm_client import ChatCompletionClient
from rag.prompt_builder import PromptProfile, build_messages, build_system_prompt
from rag.query_expander import QueryExpander
from rag.rate_limiter import RateLimiter
from rag.response_cache import ResponseCache
from rag.retriever import DEFAULT_TOP_K, RetrievedChunk, VectorRetriever
from rag.sse import format_content_event, format_done_event
from rag.stream_relay import GenerationStreamer, SSEChannel, spawn_background
from rag.validation import ChatRequest

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    cache_status: str
    remaining: int
    body: AsyncIterator[bytes]


async def replay_cached(text: str) -> AsyncIterator[bytes]:
    """A cached answer goes out as one content event followed by [DONE]."""
    yield format_content_event(text)
    yield format_done_event()


class ChatService:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        cache: ResponseCache,
        expander: QueryExpander,
        embedder,
        retriever: VectorRetriever,
        llm: ChatCompletionClient,
        profile: PromptProfile,
        top_k: int = DEFAULT_TOP_K,
    ):
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.expander = expander
        self.embedder = embedder
        self.retriever = retriever
        self.llm = llm
        self.profile = profile
        self.top_k = top_k

        self.background_tasks: Set[asyncio.Task] = set()
        self.streamer = GenerationStreamer(self.background_tasks)
        self.cache_hits = 0
        self.cache_misses = 0

    async def respond(self, request: ChatRequest, client_id: str) -> ChatReply:
        """
        Raises:
            RateLimitExceeded: Quota for ``client_id`` used up
            UpstreamGenerationError: The completion stream could not be opened
        """
        limit = await self.rate_limiter.check(client_id)
        if not limit.allowed:
            raise RateLimitExceeded(retry_after=limit.reset_after)

        cached = await self.cache.get(request.message, request.lang)
        if cached:
            self.cache_hits += 1
            logger.info(f"Cache HIT: {request.message[:50]}...")
            return ChatReply("HIT", limit.remaining, replay_cached(cached))

        self.cache_misses += 1
        search_text = await self.expander.expand(request.message)
        chunks = await self.retrieve(search_text)

        system_prompt = build_system_prompt(chunks, request.lang, self.profile)
        messages = build_messages(system_prompt, request.history, request.message)
        upstream = await self.llm.open_stream(messages)

        async def write_cache(text: str):
            await self.cache.set(request.message, request.lang, text)

        channel = SSEChannel()
        relay = spawn_background(
            self.streamer.relay(upstream, channel, on_complete=write_cache),
            self.background_tasks,
            name="stream-relay",
        )
        channel.attach(relay)
        return ChatReply("MISS", limit.remaining, channel.events())

    async def retrieve(self, search_text: str) -> List[RetrievedChunk]:
        try:
            vector = await self.embedder.embed(search_text)
            return await self.retriever.search(vector, self.top_k)
        except DegradableRetrievalError as e:
            logger.error(f"Retrieval unavailable, answering without context: {e}")
            return []

    async def drain(self, timeout: float = 5.0):
        """Wait for in-flight relays and the cache writes they spawn (shutdown, tests)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            pending = {task for task in self.background_tasks if not task.done()}
            if not pending:
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                for task in pending:
                    task.cancel()
                logger.warning(f"Cancelled {len(pending)} background tasks at shutdown")
                return
            await asyncio.wait(pending, timeout=remaining)

    async def aclose(self):
        await self.llm.aclose()
        await self.embedder.aclose()
        if self.retriever.index is not None:
            await self.retriever.index.aclose()
