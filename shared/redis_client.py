"""
Async Redis Client Wrapper for the Portfolio RAG Services

Provides connection pooling, a singleton client, and the key-value store
abstraction used by the chat service for response caching and rate limiting.

Configuration is read from environment variables (no load_dotenv() calls):
- REDIS_URL: Connection string (overrides individual settings, rediss:// for TLS)
- RAG_REDIS_HOST: Redis server host (default: localhost)
- RAG_REDIS_PORT: Redis server port (default: 6379)
- RAG_REDIS_DB: Redis database number (default: 0)
- RAG_REDIS_PASSWORD: Redis password (optional, default: None)
- RAG_REDIS_MAX_CONNECTIONS: Connection pool size (default: 50)
- RAG_REDIS_SOCKET_TIMEOUT: Socket timeout in seconds (default: 5.0)
- RAG_REDIS_SOCKET_CONNECT_TIMEOUT: Connect timeout in seconds (default: 5.0)

Usage:
    from shared.redis_client import get_redis_client, RedisKeyValueStore

    store = RedisKeyValueStore(await get_redis_client())
    await store.set("key", "value", ttl_seconds=3600)
    allowed, count = await store.sliding_window_increment("rl:ip_1.2.3.4", limit=10, window_seconds=60)
    await close_redis_client()
"""

import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None
_redis_pool: Optional[redis.ConnectionPool] = None
_lock = asyncio.Lock()

# Trims the window, admits the hit only while under the limit, refreshes the TTL.
# Returns {allowed (0/1), count after the call}.
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
    redis.call('ZADD', key, now_ms, member)
    count = count + 1
    allowed = 1
end
redis.call('PEXPIRE', key, window_ms)
return {allowed, count}
"""


@dataclass
class RedisConfig:
    """Redis connection settings."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    url: Optional[str] = None
    max_connections: int = 50
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0

    @staticmethod
    def from_env() -> "RedisConfig":
        """Load configuration from environment variables"""
        return RedisConfig(
            host=os.getenv("RAG_REDIS_HOST", "localhost"),
            port=int(os.getenv("RAG_REDIS_PORT", "6379")),
            db=int(os.getenv("RAG_REDIS_DB", "0")),
            password=os.getenv("RAG_REDIS_PASSWORD") or None,
            url=os.getenv("REDIS_URL") or None,
            max_connections=int(os.getenv("RAG_REDIS_MAX_CONNECTIONS", "50")),
            socket_timeout=float(os.getenv("RAG_REDIS_SOCKET_TIMEOUT", "5.0")),
            socket_connect_timeout=float(os.getenv("RAG_REDIS_SOCKET_CONNECT_TIMEOUT", "5.0")),
        )

    def get_redis_url(self) -> str:
        """Generate Redis connection URL"""
        if self.url:
            return self.url

        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


async def get_redis_pool(config: Optional[RedisConfig] = None) -> redis.ConnectionPool:
    """
    Get or create the Redis connection pool.

    Callers must hold ``_lock``.
    """
    global _redis_pool

    if _redis_pool is None:
        config = config or RedisConfig.from_env()

        logger.info(
            f"Creating Redis connection pool: {config.host}:{config.port}/{config.db} "
            f"(max_connections={config.max_connections}, url_override={bool(config.url)})"
        )

        # decode_responses=True: cached values are plain text answers
        _redis_pool = redis.ConnectionPool.from_url(
            config.get_redis_url(),
            max_connections=config.max_connections,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
            decode_responses=True,
        )

    return _redis_pool


async def get_redis_client(config: Optional[RedisConfig] = None) -> redis.Redis:
    """
    Get or create the async Redis client singleton.

    Pings the server with exponential backoff before handing the client out.

    Raises:
        redis.exceptions.ConnectionError: If connection fails after retries
    """
    global _redis_client

    async with _lock:
        if _redis_client is None:
            pool = await get_redis_pool(config)
            client = redis.Redis(connection_pool=pool)

            retry_delays = [0.5, 1.0, 2.0]
            for attempt, delay in enumerate(retry_delays, start=1):
                try:
                    await client.ping()
                    logger.info("Redis client connected successfully")
                    break
                except redis.exceptions.ConnectionError as e:
                    if attempt == len(retry_delays):
                        logger.error(f"Redis connection failed after {attempt} attempts: {e}")
                        raise
                    logger.warning(
                        f"Redis connection attempt {attempt}/{len(retry_delays)} failed: {e}. "
                        f"Retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)

            _redis_client = client

        return _redis_client


async def ping_redis(client: Optional[redis.Redis] = None) -> bool:
    """
    Test Redis connectivity with simple PING command.

    Returns:
        bool: True if PING successful, False otherwise
    """
    try:
        if client is None:
            client = await get_redis_client()

        result = await client.ping()
        return result is True
    except Exception as e:
        logger.error(f"Redis PING failed: {e}")
        return False


async def close_redis_client():
    """
    Gracefully close Redis client and connection pool.

    Should be called during application shutdown to ensure proper cleanup.
    """
    global _redis_client, _redis_pool

    async with _lock:
        if _redis_client is not None:
            try:
                await _redis_client.aclose()
                logger.info("Redis client closed")
            except Exception as e:
                logger.error(f"Error closing Redis client: {e}")
            finally:
                _redis_client = None

        if _redis_pool is not None:
            try:
                await _redis_pool.disconnect()
                logger.info("Redis connection pool disconnected")
            except Exception as e:
                logger.error(f"Error disconnecting Redis pool: {e}")
            finally:
                _redis_pool = None


class KeyValueStore(Protocol):
    """Remote store used for response caching and rate limiting."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def sliding_window_increment(
        self, key: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int]:
        ...


class RedisKeyValueStore:
    """
    KeyValueStore backed by Redis.

    Every operation is a single atomic server-side call, so no local locking
    is needed across concurrent requests.
    """

    def __init__(self, client: redis.Redis):
        self.client = client
        self._sliding_window = client.register_script(SLIDING_WINDOW_SCRIPT)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def sliding_window_increment(
        self, key: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int]:
        """
        Record one hit in a sliding window (sorted set of hit timestamps).

        Returns:
            (allowed, count): whether the hit was admitted, and the number of
            hits inside the window after this call
        """
        now_ms = int(time.time() * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex[:12]}"
        allowed, count = await self._sliding_window(
            keys=[key],
            args=[now_ms, window_seconds * 1000, limit, member],
        )
        return bool(int(allowed)), int(count)


class UnavailableKeyValueStore:
    """Stand-in used when Redis could not be reached at startup; every call fails."""

    async def get(self, key: str) -> Optional[str]:
        raise RedisConnectionError("Redis not connected")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise RedisConnectionError("Redis not connected")

    async def sliding_window_increment(
        self, key: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int]:
        raise RedisConnectionError("Redis not connected")
