"""Cohere rerank client."""

from typing import Optional

import httpx

from docrag.errors import RetrievalProviderError

from .base import HttpProvider

COHERE_RERANK_URL = "https://api.cohere.com/v2/rerank"


class CohereClient(HttpProvider):
    """Async client for Cohere's v2 rerank endpoint."""

    name = "cohere"
    error_cls = RetrievalProviderError

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "rerank-v3.5",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.model = model

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def rerank(self, query: str, documents: list[str], top_n: int) -> list[dict]:
        """Score documents against the query.

        Returns:
            List of ``{'index': int, 'relevance_score': float}`` ordered by
            descending relevance.
        """
        if not self.api_key:
            raise self.error_cls("cohere api key not configured", retryable=False)

        payload = {
            "model": self.model,
            "query": query,
            "documents": documents,
            "top_n": top_n,
        }
        data = await self._post_json(
            COHERE_RERANK_URL,
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return [
            {"index": int(row["index"]), "relevance_score": float(row["relevance_score"])}
            for row in data.get("results", [])
        ]
