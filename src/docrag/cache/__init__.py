"""Answer cache: fast exact-hash tier plus durable semantic tier."""

from .l1 import InMemoryL1Cache, L1Cache, RedisL1Cache, cache_key
from .semantic import (
    CacheStore,
    InMemoryCacheStore,
    PostgresCacheStore,
    SemanticCache,
    hash_query,
    normalize_query,
)

__all__ = [
    # L1
    "L1Cache",
    "RedisL1Cache",
    "InMemoryL1Cache",
    "cache_key",
    # Semantic cache
    "CacheStore",
    "InMemoryCacheStore",
    "PostgresCacheStore",
    "SemanticCache",
    "hash_query",
    "normalize_query",
]
