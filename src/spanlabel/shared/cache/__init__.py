"""Result cache module for span labeling.

Usage:
    from spanlabel.shared.cache import create_result_cache, build_cache_key

    cache = create_result_cache()  # Memory, Redis or Null based on env
    key = build_cache_key(text, policy.to_payload(), options.template_version)
    cached = cache.get(key)
"""

from spanlabel.shared.cache.factory import create_result_cache
from spanlabel.shared.cache.memory_cache import CacheStats, MemoryResultCache
from spanlabel.shared.cache.null_cache import NullResultCache
from spanlabel.shared.cache.protocol import CACHE_KEY_VERSION, ResultCache, build_cache_key

__all__ = [
    # Factory
    "create_result_cache",
    # Protocol & implementations
    "ResultCache",
    "MemoryResultCache",
    "NullResultCache",
    "CacheStats",
    # Keys
    "build_cache_key",
    "CACHE_KEY_VERSION",
]
