"""
Shared Utilities Module

Redis connection management and the key-value store used for response caching
and per-client rate limiting.

Usage:
    from shared.redis_client import get_redis_client, RedisKeyValueStore

    store = RedisKeyValueStore(await get_redis_client())
    allowed, count = await store.sliding_window_increment("rl:chat:ip_1.2.3.4", 10, 60)
"""

from .redis_client import (
    get_redis_client,
    get_redis_pool,
    close_redis_client,
    ping_redis,
    RedisConfig,
    KeyValueStore,
    RedisKeyValueStore,
    UnavailableKeyValueStore,
)

__all__ = [
    "get_redis_client",
    "get_redis_pool",
    "close_redis_client",
    "ping_redis",
    "RedisConfig",
    "KeyValueStore",
    "RedisKeyValueStore",
    "UnavailableKeyValueStore",
]
