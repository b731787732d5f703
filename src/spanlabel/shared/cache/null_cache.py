"""NullResultCache implementation for cache-less mode.

When SPAN_CACHE_ENABLED=false, labeling calls always go to the model.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class NullResultCache:
    """No-op cache: every read misses, every write is discarded."""

    def get(self, key: str) -> dict | None:
        return None

    def set(self, key: str, value: dict, ttl: int | None = None) -> bool:
        logger.debug(f"[NullCache] Discarding {key}")
        return False

    def is_available(self) -> bool:
        return False
