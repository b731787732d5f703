"""ResultCache Protocol and cache key derivation.

Labeling results are cached by a content hash of the source text, the
validation policy and the template version. Entries expire after a TTL.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Protocol, runtime_checkable

# Bump to invalidate cached results when the labeling pipeline changes.
CACHE_KEY_VERSION = "1"


def build_cache_key(text: str, policy: dict[str, Any] | None, template_version: str | None) -> str:
    """Derive ``span:<text hash>:<policy hash>`` for one labeling request.

    Args:
        text: Source text.
        policy: Wire-format policy plus any processing caps that change
            the result (max spans, confidence floor).
        template_version: Prompt template version.

    Returns:
        Deterministic cache key.
    """
    text_hash = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
    policy_string = json.dumps(
        {
            "v": CACHE_KEY_VERSION,
            "policy": policy or {},
            "templateVersion": template_version or "v1",
        },
        sort_keys=True,
    )
    policy_hash = hashlib.sha256(policy_string.encode("utf-8")).hexdigest()[:8]
    return f"span:{text_hash}:{policy_hash}"


@runtime_checkable
class ResultCache(Protocol):
    """Protocol for labeling result caches.

    Values are JSON-serializable dicts (``LabelingResult.to_dict()``).
    """

    def get(self, key: str) -> dict | None:
        """Return the cached value, or None on miss or expiry."""
        ...

    def set(self, key: str, value: dict, ttl: int | None = None) -> bool:
        """Store a value for ``ttl`` seconds (backend default when None).

        Returns:
            True if stored, False if the cache is disabled.
        """
        ...

    def is_available(self) -> bool:
        """Check if the cache is ready to serve reads and writes."""
        ...
