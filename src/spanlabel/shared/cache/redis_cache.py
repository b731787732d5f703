"""RedisResultCache implementation using plain Redis keys with expiry.

Stores each result as a JSON string under ``SET key value EX ttl``.
Fails loudly on connection errors (no silent fallback).
"""

from __future__ import annotations

import json
import logging

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600


class RedisResultCache:
    """Redis-backed result cache shared across processes."""

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        default_ttl: int = DEFAULT_TTL,
    ) -> None:
        """Initialize Redis connection settings.

        Args:
            url: Redis connection URL.
            default_ttl: Expiry in seconds when ``set`` gets no ttl.
        """
        self._url = url
        self._default_ttl = default_ttl
        self._client: redis.Redis | None = None
        self._connected = False

    def _get_client(self) -> redis.Redis:
        """Get or create the Redis client, probing until a ping succeeds.

        Raises:
            redis.exceptions.ConnectionError: If Redis is unavailable.
        """
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)

        # A failed ping leaves the flag unset so the next call probes again.
        if not self._connected:
            self._client.ping()
            self._connected = True
            logger.info(f"[RedisCache] Connected to {self._url}")

        return self._client

    def get(self, key: str) -> dict | None:
        client = self._get_client()
        raw = client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[RedisCache] Discarding unreadable entry {key}")
            client.delete(key)
            return None

    def set(self, key: str, value: dict, ttl: int | None = None) -> bool:
        client = self._get_client()
        client.set(key, json.dumps(value), ex=ttl or self._default_ttl)
        logger.debug(f"[RedisCache] Stored {key}")
        return True

    def is_available(self) -> bool:
        """Check if Redis is reachable."""
        try:
            client = self._get_client()
            client.ping()
            return True
        except redis.exceptions.ConnectionError:
            return False
