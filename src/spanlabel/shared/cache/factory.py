"""Cache factory for creating result caches from environment variables.

Environment Variables:
    SPAN_CACHE_ENABLED: "false" disables caching (default: "true")
    SPAN_CACHE_URL: "redis://..." selects the Redis backend; unset or
        "memory" keeps results in process
    SPAN_CACHE_TTL: Default entry TTL in seconds (default: 3600)
"""

from __future__ import annotations

import logging
import os

from spanlabel.shared.cache.memory_cache import MemoryResultCache
from spanlabel.shared.cache.null_cache import NullResultCache
from spanlabel.shared.cache.protocol import ResultCache

logger = logging.getLogger(__name__)


def create_result_cache() -> ResultCache:
    """Create a result cache based on environment configuration.

    Returns:
        ResultCache: NullResultCache if disabled, RedisResultCache for a
        redis URL, MemoryResultCache otherwise.
    """
    enabled = os.environ.get("SPAN_CACHE_ENABLED", "true").lower() == "true"
    if not enabled:
        logger.debug("[Cache] SPAN_CACHE_ENABLED=false, using NullResultCache")
        return NullResultCache()

    try:
        ttl = int(os.environ.get("SPAN_CACHE_TTL", "3600"))
    except ValueError:
        ttl = 3600

    url = os.environ.get("SPAN_CACHE_URL", "memory")
    if url.startswith(("redis://", "rediss://", "unix://")):
        logger.info(f"[Cache] Using Redis result cache at {url}")
        from spanlabel.shared.cache.redis_cache import RedisResultCache
        return RedisResultCache(url, default_ttl=ttl)

    logger.debug("[Cache] Using in-memory result cache")
    return MemoryResultCache(default_ttl=ttl)
