"""
Portfolio RAG Service FastAPI Application

Streams answers about one person's résumé and projects over Server-Sent Events.

Endpoints:
    POST /api/chat   {"message": str, "history": [...], "lang": "en"|"de"}
    GET  /health     Redis connectivity, backends and uptime

Reference:
    - rag/chat_service.py - request pipeline
    - shared/redis_client.py - Redis connection (optional, service degrades without it)
"""

import asyncio
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from shared.redis_client import (
    RedisKeyValueStore,
    UnavailableKeyValueStore,
    close_redis_client,
    get_redis_client,
    ping_redis,
)
from rag.chat_service import ChatService
from rag.config import RAGConfig, cors_origins_from_env
from rag.embeddings import build_embedding_client
from rag.errors import RAGServiceError, UpstreamGenerationError, ValidationError, VectorIndexError
from rag.llm_client import ChatCompletionClient
from rag.prompt_builder import PromptProfile
from rag.query_expander import QueryExpander
from rag.rate_limiter import RateLimiter
from rag.response_cache import ResponseCache
from rag.retriever import VectorRetriever
from rag.validation import parse_chat_request
from rag.vector_index import build_vector_index

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr
)
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class HealthResponse(BaseModel):
    status: str
    redis_connected: bool
    embedding_provider: str
    vector_index: str
    hyde_enabled: bool
    cache_hit_rate: float
    background_tasks: int
    uptime_seconds: float


def build_chat_service(config: RAGConfig, store) -> ChatService:
    """Wire the request pipeline from configuration."""
    llm = ChatCompletionClient(
        api_key=config.llm_api_key,
        base_url=config.llm_base_url,
        model=config.llm_model,
        max_tokens=config.llm_max_tokens,
        temperature=config.llm_temperature,
        top_p=config.llm_top_p,
        timeout=httpx.Timeout(config.llm_read_timeout, connect=config.llm_connect_timeout),
    )

    try:
        index = build_vector_index(config.vector_index, config.embedding.dimension)
    except VectorIndexError as e:
        logger.error(f"Vector index unavailable - answering without retrieval: {e}")
        index = None

    return ChatService(
        rate_limiter=RateLimiter(
            store,
            limit=config.rate_limit_requests,
            window_seconds=config.rate_limit_window,
            fail_open_remaining=config.rate_limit_fail_open_remaining,
        ),
        cache=ResponseCache(store, ttl_seconds=config.cache_ttl),
        expander=QueryExpander(
            llm,
            model=config.hyde_model,
            max_tokens=config.hyde_max_tokens,
            timeout=config.hyde_timeout,
            enabled=config.enable_hyde,
        ),
        embedder=build_embedding_client(config.embedding),
        retriever=VectorRetriever(index, min_score=config.min_score),
        llm=llm,
        profile=PromptProfile.load(config.profile_path),
        top_k=config.top_k,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup/shutdown."""
    logger.info("Starting portfolio RAG service...")

    config = RAGConfig.from_env()
    logger.info(
        f"Configuration loaded: llm={config.llm_model}, embeddings={config.embedding.provider}/"
        f"{config.embedding.model}, index={config.vector_index.backend}"
    )

    # Connect to Redis (optional - service can run without it)
    redis_client = None
    try:
        redis_client = await asyncio.wait_for(get_redis_client(), timeout=15.0)
        logger.info("Redis connected successfully")
    except asyncio.TimeoutError:
        logger.warning("Redis connection timeout - rate limiting and caching disabled")
    except Exception as redis_error:
        logger.warning(f"Redis connection failed: {redis_error} - rate limiting and caching disabled")

    store = RedisKeyValueStore(redis_client) if redis_client is not None else UnavailableKeyValueStore()
    chat_service = build_chat_service(config, store)

    app.state.config = config
    app.state.redis = redis_client
    app.state.chat_service = chat_service
    app.state.start_time = time.time()

    logger.info("Portfolio RAG service ready")

    yield

    logger.info("Shutting down portfolio RAG service...")
    await chat_service.drain()
    await chat_service.aclose()
    if redis_client is not None:
        await close_redis_client()
    logger.info("Portfolio RAG service shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Portfolio RAG Service",
    description="Résumé and project Q&A with vector retrieval and streamed generation",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_from_env(),
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


@app.exception_handler(RAGServiceError)
async def rag_service_error_handler(request: Request, exc: RAGServiceError):
    # 5xx details stay in the logs
    message = exc.public_message if exc.status_code >= 500 else exc.message
    return JSONResponse({"error": message}, status_code=exc.status_code, headers=exc.headers())


def resolve_client_id(request: Request) -> str:
    """CF-Connecting-IP, then the first X-Forwarded-For hop, then the peer address."""
    cf_ip = request.headers.get("cf-connecting-ip", "").strip()
    if cf_ip:
        return cf_ip

    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@app.post("/api/chat")
async def chat(request: Request):
    """
    Answer one chat message as an SSE stream.

    Response headers: X-Cache (HIT|MISS), X-Remaining (requests left in window)
    """
    try:
        body = await request.json()
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")

    chat_service: Optional[ChatService] = getattr(request.app.state, "chat_service", None)
    if chat_service is None:
        raise UpstreamGenerationError("Chat service not initialized")

    config: RAGConfig = request.app.state.config
    chat_request = parse_chat_request(
        body,
        max_message_chars=config.max_message_chars,
        max_history_messages=config.max_history_messages,
        max_history_chars=config.max_history_chars,
    )

    try:
        reply = await chat_service.respond(chat_request, resolve_client_id(request))
    except RAGServiceError:
        raise
    except Exception as e:
        logger.error(f"Chat error: {e}", exc_info=True)
        raise RAGServiceError(str(e)) from e

    return StreamingResponse(
        reply.body,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Cache": reply.cache_status,
            "X-Remaining": str(reply.remaining),
        },
    )


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Service health check.

    "degraded" when Redis is unreachable: chat still works, without rate
    limiting or caching.
    """
    state = request.app.state
    redis_client = getattr(state, "redis", None)
    redis_connected = await ping_redis(redis_client) if redis_client is not None else False

    chat_service: ChatService = state.chat_service
    total_requests = chat_service.cache_hits + chat_service.cache_misses
    cache_hit_rate = chat_service.cache_hits / total_requests if total_requests > 0 else 0.0

    config: RAGConfig = state.config
    return HealthResponse(
        status="healthy" if redis_connected else "degraded",
        redis_connected=redis_connected,
        embedding_provider=config.embedding.provider,
        vector_index=config.vector_index.backend,
        hyde_enabled=config.enable_hyde,
        cache_hit_rate=cache_hit_rate,
        background_tasks=len(chat_service.background_tasks),
        uptime_seconds=time.time() - state.start_time,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8003")),
        workers=1,
        log_level="info"
    )
