"""Ollama embeddings client for local, offline embedding."""

import logging
from typing import Optional

import httpx

from docrag.errors import RetrievalProviderError

from .base import HttpProvider

logger = logging.getLogger(__name__)


class OllamaEmbeddingProvider(HttpProvider):
    """Embedding provider calling Ollama's ``/api/embeddings``."""

    name = "ollama"
    error_cls = RetrievalProviderError

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.base_url = host.rstrip("/")
        self.model = model

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def embed(self, text: str) -> list[float]:
        data = await self._post_json(
            f"{self.base_url}/api/embeddings",
            {"model": self.model, "prompt": text},
        )
        return list(data.get("embedding", []))
