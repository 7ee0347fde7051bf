"""
Short-TTL Redis cache for upstream market data.

Upstream price APIs are rate limited, so parsed responses are cached in Redis
for a short time (same key layout for every source: `<namespace>:<key>`).
The cache is optional: with no REDIS_URL configured every lookup misses and
every write is a no-op. Redis errors are logged and treated as misses.
"""

import json
import logging
from typing import Any, Optional

import redis

from utils.settings import get_settings

logger = logging.getLogger(__name__)

# TTLs in seconds
QUOTE_TTL_SECONDS = 60
FX_TTL_SECONDS = 900
SEARCH_TTL_SECONDS = 300
DETAIL_TTL_SECONDS = 3600


class QuoteCache:
    """JSON-over-Redis cache with per-entry TTL."""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    def get(self, namespace: str, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self.redis_client.get(f"{namespace}:{key}")
            if raw is None:
                return None
            return json.loads(raw)
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Cache read failed for {namespace}:{key}: {e}")
            return None

    def set(self, namespace: str, key: str, value: Any, ttl_seconds: int) -> None:
        if not self.enabled:
            return
        try:
            self.redis_client.setex(f"{namespace}:{key}", ttl_seconds, json.dumps(value))
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.warning(f"Cache write failed for {namespace}:{key}: {e}")


_quote_cache: Optional[QuoteCache] = None


def get_quote_cache() -> QuoteCache:
    """Get or create the process-wide cache (disabled when REDIS_URL is unset)."""
    global _quote_cache

    if _quote_cache is None:
        settings = get_settings()
        client = None
        if settings.cache_enabled:
            try:
                client = redis.Redis.from_url(settings.redis_url, socket_timeout=1)
                logger.info("Quote cache connected to Redis")
            except (redis.RedisError, ValueError) as e:
                logger.warning(f"Quote cache disabled, could not configure Redis: {e}")
        _quote_cache = QuoteCache(client)

    return _quote_cache
