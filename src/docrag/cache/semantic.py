"""Two-tier semantic cache for verified answers.

Lookup order:
1. L1 exact hash (Redis or in-process)
2. L2 exact hash among non-expired rows
3. L2 nearest neighbour by query embedding, accepted only at
   cosine similarity >= 0.95

Only exact hits are written back to L1. Any failure during lookup or store is
logged and treated as a miss. Maintenance calls (``clear_expired``, ``stats``)
raise ``CacheUnavailableError`` when the L2 table cannot be reached.
"""

import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Optional, Protocol
from uuid import UUID, uuid4

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docrag.errors import CacheUnavailableError
from docrag.models import CachedResponse, CacheEntry, CacheStats, Citation
from docrag.pipeline.stage_embed import Embedder, is_zero_vector
from docrag.storage import CacheRepository, SemanticCacheORM, get_session
from docrag.storage.stores import SessionScope

from .l1 import InMemoryL1Cache, L1Cache

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400
DEFAULT_SIMILARITY_THRESHOLD = 0.95


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_query(query: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return " ".join(query.lower().split())


def hash_query(query: str) -> str:
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()


class CacheStore(Protocol):
    async def get_by_hash(self, query_hash: str, now: datetime) -> Optional[CacheEntry]:
        ...

    async def nearest(
        self, embedding: list[float], now: datetime
    ) -> Optional[tuple[CacheEntry, float]]:
        ...

    async def increment_hit_count(self, entry_id: UUID) -> None:
        ...

    async def upsert(
        self,
        query_text: str,
        query_hash: str,
        query_embedding: Optional[list[float]],
        answer_text: str,
        citations: list[Citation],
        confidence: float,
        chunk_ids: list[UUID],
        expires_at: datetime,
    ) -> CacheEntry:
        ...

    async def delete_expired(self, now: datetime) -> int:
        ...

    async def stats(self, now: datetime) -> tuple[int, int, float]:
        ...


def _orm_to_entry(row: SemanticCacheORM) -> CacheEntry:
    # pgvector returns numpy arrays; the entry only needs the answer side.
    return CacheEntry(
        id=row.id,
        query_text=row.query_text,
        query_hash=row.query_hash,
        answer_text=row.answer_text,
        citations=[Citation.model_validate(c) for c in row.citations or []],
        confidence=row.confidence,
        chunk_ids=list(row.chunk_ids or []),
        hit_count=row.hit_count,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


class PostgresCacheStore:
    """L2 tier on the ``semantic_cache`` table."""

    def __init__(self, session_scope: SessionScope = get_session):
        self.session_scope = session_scope

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            raise CacheUnavailableError(f"semantic_cache table unavailable: {e}") from e

    async def get_by_hash(self, query_hash: str, now: datetime) -> Optional[CacheEntry]:
        async with self._session() as session:
            row = await CacheRepository(session).get_valid_by_hash(query_hash, now)
            return _orm_to_entry(row) if row else None

    async def nearest(
        self, embedding: list[float], now: datetime
    ) -> Optional[tuple[CacheEntry, float]]:
        async with self._session() as session:
            found = await CacheRepository(session).nearest(embedding, now)
            if found is None:
                return None
            row, similarity = found
            return _orm_to_entry(row), similarity

    async def increment_hit_count(self, entry_id: UUID) -> None:
        async with self._session() as session:
            await CacheRepository(session).increment_hit_count(entry_id)

    async def upsert(self, **values) -> CacheEntry:
        async with self._session() as session:
            row = await CacheRepository(session).upsert(**values)
            return _orm_to_entry(row)

    async def delete_expired(self, now: datetime) -> int:
        async with self._session() as session:
            return await CacheRepository(session).delete_expired(now)

    async def stats(self, now: datetime) -> tuple[int, int, float]:
        async with self._session() as session:
            return await CacheRepository(session).stats(now)


class InMemoryCacheStore:
    """Process-local L2 tier with the same semantics as the table."""

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    async def get_by_hash(self, query_hash: str, now: datetime) -> Optional[CacheEntry]:
        entry = self._entries.get(query_hash)
        if entry is None or entry.expires_at <= now:
            return None
        return entry

    async def nearest(
        self, embedding: list[float], now: datetime
    ) -> Optional[tuple[CacheEntry, float]]:
        query = np.asarray(embedding, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return None

        best: Optional[tuple[CacheEntry, float]] = None
        for entry in self._entries.values():
            if entry.query_embedding is None or entry.expires_at <= now:
                continue
            vector = np.asarray(entry.query_embedding, dtype=float)
            norm = np.linalg.norm(vector)
            if norm == 0:
                continue
            similarity = float(np.dot(query, vector) / (query_norm * norm))
            if best is None or similarity > best[1]:
                best = (entry, similarity)
        return best

    async def increment_hit_count(self, entry_id: UUID) -> None:
        for query_hash, entry in self._entries.items():
            if entry.id == entry_id:
                self._entries[query_hash] = entry.model_copy(
                    update={"hit_count": entry.hit_count + 1}
                )
                return

    async def upsert(
        self,
        query_text: str,
        query_hash: str,
        query_embedding: Optional[list[float]],
        answer_text: str,
        citations: list[Citation],
        confidence: float,
        chunk_ids: list[UUID],
        expires_at: datetime,
    ) -> CacheEntry:
        existing = self._entries.get(query_hash)
        entry = CacheEntry(
            id=existing.id if existing else uuid4(),
            query_text=query_text,
            query_hash=query_hash,
            query_embedding=query_embedding,
            answer_text=answer_text,
            citations=citations,
            confidence=confidence,
            chunk_ids=chunk_ids,
            hit_count=existing.hit_count if existing else 0,
            created_at=existing.created_at if existing else utcnow(),
            expires_at=expires_at,
        )
        self._entries[query_hash] = entry
        return entry

    async def delete_expired(self, now: datetime) -> int:
        expired = [h for h, e in self._entries.items() if e.expires_at < now]
        for query_hash in expired:
            del self._entries[query_hash]
        return len(expired)

    async def stats(self, now: datetime) -> tuple[int, int, float]:
        live = [e for e in self._entries.values() if e.expires_at > now]
        if not live:
            return 0, 0, 0.0
        return (
            len(live),
            sum(e.hit_count for e in live),
            sum(e.confidence for e in live) / len(live),
        )


class SemanticCache:
    """Exact-then-semantic answer cache."""

    def __init__(
        self,
        store: CacheStore,
        embedder: Optional[Embedder] = None,
        l1: Optional[L1Cache] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = store
        self.embedder = embedder
        self.l1 = l1 or InMemoryL1Cache()
        self.ttl_seconds = ttl_seconds
        self.similarity_threshold = similarity_threshold
        self.clock = clock

    async def _embed(self, normalized: str) -> Optional[list[float]]:
        if self.embedder is None or not self.embedder.is_configured:
            return None
        vector = await self.embedder.embed_text(normalized)
        return None if is_zero_vector(vector) else vector

    async def lookup(self, query: str) -> Optional[CachedResponse]:
        """Find a cached answer for ``query``.

        Returns:
            CachedResponse with ``match`` 'exact' or 'semantic', or None.
        """
        normalized = normalize_query(query)
        query_hash = hash_query(normalized)
        now = self.clock()

        cached = await self.l1.get(query_hash)
        if cached is not None and cached.expires_at > now:
            logger.debug("L1 cache hit for %s", query_hash[:12])
            return cached

        try:
            entry = await self.backend.get_by_hash(query_hash, now)
            if entry is not None:
                await self.backend.increment_hit_count(entry.id)
                entry = entry.model_copy(update={"hit_count": entry.hit_count + 1})
                response = entry.to_response(match="exact")
                await self.l1.set(query_hash, response, self.ttl_seconds)
                logger.debug("L2 exact cache hit for %s", query_hash[:12])
                return response

            embedding = await self._embed(normalized)
            if embedding is None:
                return None

            found = await self.backend.nearest(embedding, now)
            if found is None:
                return None
            entry, similarity = found
            if similarity < self.similarity_threshold:
                logger.debug("Nearest cache entry below threshold (%.4f)", similarity)
                return None

            await self.backend.increment_hit_count(entry.id)
            entry = entry.model_copy(update={"hit_count": entry.hit_count + 1})
            logger.debug("L2 semantic cache hit (similarity %.4f)", similarity)
            return entry.to_response(match="semantic", similarity=similarity)
        except Exception as e:
            logger.warning("Cache lookup failed, treating as miss: %s", e)
            return None

    async def store(
        self,
        query: str,
        answer: str,
        citations: list[Citation],
        confidence: float,
        chunk_ids: list[UUID],
    ) -> Optional[UUID]:
        """Upsert a verified answer under the normalized query hash.

        Returns:
            The entry id, or None if the write failed.
        """
        normalized = normalize_query(query)
        query_hash = hash_query(normalized)
        try:
            embedding = await self._embed(normalized)
            entry = await self.backend.upsert(
                query_text=query,
                query_hash=query_hash,
                query_embedding=embedding,
                answer_text=answer,
                citations=citations,
                confidence=confidence,
                chunk_ids=chunk_ids,
                expires_at=self.clock() + timedelta(seconds=self.ttl_seconds),
            )
        except Exception as e:
            logger.warning("Cache store failed: %s", e)
            return None

        await self.l1.set(query_hash, entry.to_response(match="exact"), self.ttl_seconds)
        return entry.id

    async def clear_expired(self) -> int:
        """Delete expired L2 rows; returns the number removed."""
        deleted = await self.backend.delete_expired(self.clock())
        logger.info("Cleared %d expired cache entries", deleted)
        return deleted

    async def stats(self) -> CacheStats:
        total_entries, total_hits, avg_confidence = await self.backend.stats(self.clock())
        return CacheStats(
            total_entries=total_entries,
            total_hits=total_hits,
            avg_confidence=avg_confidence,
            l1_available=self.l1.available,
        )
