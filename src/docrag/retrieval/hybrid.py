"""Hybrid retrieval: dense vector candidates fused with a lexical rank.

The store returns the vector candidate window (``2 * limit`` nearest
chunks) with each candidate's full-text rank left-joined. Fusion, the
``min_score`` cut and ordering happen here so they can be tested without a
database. Chunks that only match lexically never enter the window and are
not returned.
"""

import logging
import time
from typing import Optional, Protocol
from uuid import UUID

from docrag.models import SearchConfig, SearchResult
from docrag.pipeline.highlight import build_highlight_signature
from docrag.pipeline.stage_embed import Embedder, is_zero_vector

logger = logging.getLogger(__name__)

CANDIDATE_WINDOW_FACTOR = 2


class ChunkStore(Protocol):
    async def search_candidates(
        self,
        query: str,
        embedding: list[float],
        candidate_limit: int,
        owner_id: Optional[str] = None,
    ) -> list[SearchResult]:
        ...

    async def get_chunks_by_ids(self, chunk_ids: list[UUID]) -> list[SearchResult]:
        ...

    async def has_searchable_chunks(self, owner_id: Optional[str] = None) -> bool:
        ...


def fuse_scores(
    candidates: list[SearchResult], config: SearchConfig, truncate: bool = True
) -> list[SearchResult]:
    """Weight, filter, sort and (unless ``truncate`` is False) truncate candidates.

    ``combined_score = vector_weight * vector_score + text_weight * text_score``;
    rows below ``min_score`` are dropped.
    """
    fused = []
    for candidate in candidates:
        combined = (
            config.vector_weight * candidate.vector_score
            + config.text_weight * candidate.text_score
        )
        if combined >= config.min_score:
            fused.append(candidate.model_copy(update={"combined_score": combined}))

    fused.sort(key=lambda r: r.combined_score, reverse=True)
    return fused[:config.limit] if truncate else fused


def source_signature(result: SearchResult) -> tuple:
    boxes = result.highlight_boxes or ([result.bounding_box] if result.bounding_box else [])
    return (result.document_id, result.page_number, build_highlight_signature(boxes))


def dedupe_by_highlight(results: list[SearchResult]) -> list[SearchResult]:
    """Drop results that would highlight the same region as a better one."""
    seen = set()
    unique = []
    for result in results:
        signature = source_signature(result)
        if signature in seen:
            continue
        seen.add(signature)
        unique.append(result)
    return unique


class HybridSearcher:
    """Embeds the query and runs fused vector + lexical search."""

    def __init__(self, embedder: Embedder, store: ChunkStore):
        self.embedder = embedder
        self.store = store

    async def search(self, query: str, config: Optional[SearchConfig] = None) -> list[SearchResult]:
        """Hybrid search over indexed, non-boilerplate chunks of completed documents.

        Args:
            query: Search text.
            config: Limits, weights and the optional owner filter.

        Returns:
            Results sorted by ``combined_score`` descending, at most
            ``config.limit``.
        """
        config = config or SearchConfig()
        start = time.perf_counter()

        embedding = await self.embedder.embed_text(query)
        if is_zero_vector(embedding):
            logger.warning("Query embedding unavailable, hybrid search skipped")
            return []

        candidates = await self.store.search_candidates(
            query,
            embedding,
            candidate_limit=config.limit * CANDIDATE_WINDOW_FACTOR,
            owner_id=config.owner_id,
        )
        fused = fuse_scores(candidates, config, truncate=False)
        results = dedupe_by_highlight(fused)[:config.limit]

        logger.debug(
            "Hybrid search: %d candidates, %d results (%.0f ms)",
            len(candidates),
            len(results),
            (time.perf_counter() - start) * 1000,
        )
        return results

    async def fetch_chunks(self, chunk_ids: list[UUID]) -> list[SearchResult]:
        return await self.store.get_chunks_by_ids(chunk_ids)

    async def corpus_is_empty(self, owner_id: Optional[str] = None) -> bool:
        return not await self.store.has_searchable_chunks(owner_id)
