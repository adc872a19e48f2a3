"""
Exact-match response cache.

Full answers are cached under a SHA-256 digest of the normalized question,
qualified by response language so English and German answers to the same text
do not collide. Reads degrade to a miss and writes never raise.
"""

import hashlib
import logging
import re
from typing import Optional

from shared.redis_client import KeyValueStore

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache:"
DEFAULT_CACHE_TTL = 86400

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_for_cache(message: str) -> str:
    return _WHITESPACE_RE.sub(" ", message.strip().lower())


def cache_key(message: str, lang: str = "en") -> str:
    digest = hashlib.sha256(normalize_for_cache(message).encode("utf-8")).hexdigest()
    return f"{CACHE_PREFIX}{lang}:{digest}"


class ResponseCache:
    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEFAULT_CACHE_TTL):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def get(self, message: str, lang: str = "en") -> Optional[str]:
        try:
            cached = await self.store.get(cache_key(message, lang))
        except Exception as e:
            logger.error(f"Cache get failed: {e}")
            return None
        return cached or None

    async def set(self, message: str, lang: str, text: str) -> None:
        try:
            await self.store.set(cache_key(message, lang), text, self.ttl_seconds)
            logger.debug(f"Cached response for: {message[:30]}...")
        except Exception as e:
            logger.warning(f"Cache set failed: {e}")
