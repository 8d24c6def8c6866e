"""Second-pass relevance scoring of hybrid search results."""

import logging
from typing import Optional, Protocol

from docrag.models import RerankedResult, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
DEFAULT_MIN_RELEVANCE = 0.3


class RerankProvider(Protocol):
    @property
    def is_configured(self) -> bool:
        ...

    async def rerank(self, query: str, documents: list[str], top_n: int) -> list[dict]:
        ...


def passthrough_ranking(results: list[SearchResult], top_k: int) -> list[RerankedResult]:
    """Keep the hybrid order, using ``combined_score`` as relevance."""
    return [
        RerankedResult(
            **result.model_dump(),
            relevance_score=result.combined_score,
            original_rank=rank,
        )
        for rank, result in enumerate(results[:top_k], start=1)
    ]


class Reranker:
    """Cross-encoder reranking with a pass-through fallback.

    Reranking never fails retrieval: an unconfigured or failing provider
    yields the top ``top_k`` hybrid results in their original order.
    """

    def __init__(
        self,
        provider: Optional[RerankProvider],
        top_k: int = DEFAULT_TOP_K,
        min_relevance: float = DEFAULT_MIN_RELEVANCE,
    ):
        self.provider = provider
        self.top_k = top_k
        self.min_relevance = min_relevance

    @property
    def is_configured(self) -> bool:
        return self.provider is not None and self.provider.is_configured

    async def rerank(
        self, query: str, results: list[SearchResult], top_k: Optional[int] = None
    ) -> list[RerankedResult]:
        top_k = top_k or self.top_k
        if not results:
            return []

        if not self.is_configured:
            logger.debug("Reranker not configured, using hybrid ranking")
            return passthrough_ranking(results, top_k)

        try:
            scored = await self.provider.rerank(query, [r.content for r in results], top_k)
        except Exception as e:
            logger.warning("Reranking failed, using hybrid ranking: %s", e)
            return passthrough_ranking(results, top_k)

        reranked = [
            RerankedResult(
                **results[row["index"]].model_dump(),
                relevance_score=row["relevance_score"],
                original_rank=row["index"] + 1,
            )
            for row in scored
            if 0 <= row["index"] < len(results) and row["relevance_score"] >= self.min_relevance
        ]
        return reranked[:top_k]
