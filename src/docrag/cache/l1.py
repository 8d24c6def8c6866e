"""Fast exact-hash cache tier.

Keys are ``cache:<query hash>``; values are serialized ``CachedResponse``
JSON with a TTL. Every failure is logged and reported as a miss: the tier
is an accelerator, never a dependency.
"""

import logging
import time
from typing import Callable, Optional, Protocol

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from docrag.models import CachedResponse

logger = logging.getLogger(__name__)

KEY_PREFIX = "cache"


def cache_key(query_hash: str) -> str:
    return f"{KEY_PREFIX}:{query_hash}"


class L1Cache(Protocol):
    @property
    def available(self) -> bool:
        ...

    async def get(self, query_hash: str) -> Optional[CachedResponse]:
        ...

    async def set(self, query_hash: str, response: CachedResponse, ttl_seconds: int) -> None:
        ...


class RedisL1Cache:
    """L1 tier backed by Redis."""

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisL1Cache":
        return cls(Redis.from_url(url, decode_responses=True))

    @property
    def available(self) -> bool:
        return True

    async def get(self, query_hash: str) -> Optional[CachedResponse]:
        key = cache_key(query_hash)
        try:
            cached = await self.client.get(key)
        except RedisError as e:
            logger.warning("L1 cache read failed for %s: %s", key, e)
            return None

        if not cached:
            return None

        try:
            return CachedResponse.model_validate_json(cached)
        except ValidationError as e:
            logger.warning("Discarding malformed L1 entry %s: %s", key, e)
            return None

    async def set(self, query_hash: str, response: CachedResponse, ttl_seconds: int) -> None:
        key = cache_key(query_hash)
        try:
            await self.client.setex(key, ttl_seconds, response.model_dump_json())
        except RedisError as e:
            logger.warning("L1 cache write failed for %s: %s", key, e)

    async def aclose(self) -> None:
        await self.client.aclose()


class InMemoryL1Cache:
    """Process-local L1 tier, used when no Redis URL is configured."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._entries: dict[str, tuple[float, str]] = {}

    @property
    def available(self) -> bool:
        return False

    async def get(self, query_hash: str) -> Optional[CachedResponse]:
        key = cache_key(query_hash)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= self.clock():
            del self._entries[key]
            return None
        return CachedResponse.model_validate_json(payload)

    async def set(self, query_hash: str, response: CachedResponse, ttl_seconds: int) -> None:
        self._entries[cache_key(query_hash)] = (
            self.clock() + ttl_seconds,
            response.model_dump_json(),
        )
