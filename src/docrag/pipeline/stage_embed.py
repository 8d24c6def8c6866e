"""Embed Stage - Dense vectors for chunk texts and queries.

Texts are embedded in batches: one provider call per text, run
concurrently within a batch, with a fixed delay between batches. A text
that fails to embed gets a zero vector, so one bad chunk never fails an
ingestion.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = 768
CHARS_PER_TOKEN = 4


class EmbeddingProvider(Protocol):
    @property
    def is_configured(self) -> bool:
        ...

    async def embed(self, text: str) -> list[float]:
        ...


@dataclass
class BatchEmbeddingResult:
    """Embeddings in input order, with usage statistics."""

    embeddings: list[list[float]]
    total_tokens: int
    processing_time_ms: float
    api_calls: int


def zero_vector(dimensions: int = DEFAULT_DIMENSIONS) -> list[float]:
    return [0.0] * dimensions


def is_zero_vector(vector: Optional[list[float]]) -> bool:
    return not vector or not any(vector)


class Embedder:
    """Batching wrapper around an embedding provider."""

    def __init__(
        self,
        provider: Optional[EmbeddingProvider],
        batch_size: int = 16,
        batch_delay_ms: int = 250,
        dimensions: int = DEFAULT_DIMENSIONS,
    ):
        self.provider = provider
        self.batch_size = max(1, batch_size)
        self.batch_delay_ms = batch_delay_ms
        self.dimensions = dimensions

    @property
    def is_configured(self) -> bool:
        return self.provider is not None and self.provider.is_configured

    async def _embed_one(self, text: str, index: int) -> tuple[list[float], bool]:
        """Returns (vector, called_provider)."""
        if not text.strip():
            return zero_vector(self.dimensions), False

        try:
            values = await self.provider.embed(text)
        except Exception as e:
            logger.warning("Failed to embed text item %d: %s", index, e)
            return zero_vector(self.dimensions), True

        if len(values) != self.dimensions:
            logger.warning(
                "Embedding for item %d has %d dimensions, expected %d",
                index,
                len(values),
                self.dimensions,
            )
            return zero_vector(self.dimensions), True

        return [float(v) for v in values], True

    async def embed_texts(self, texts: list[str]) -> BatchEmbeddingResult:
        """Embed texts in batches.

        Args:
            texts: Texts to embed.

        Returns:
            BatchEmbeddingResult with one vector per input, in input order.
            Every vector has ``dimensions`` entries.
        """
        start = time.perf_counter()
        embeddings: list[list[float]] = []
        total_tokens = 0
        api_calls = 0

        if not self.is_configured:
            logger.warning("Embedding provider not configured, using zero vectors")
            return BatchEmbeddingResult(
                embeddings=[zero_vector(self.dimensions) for _ in texts],
                total_tokens=0,
                processing_time_ms=(time.perf_counter() - start) * 1000,
                api_calls=0,
            )

        batch_count = math.ceil(len(texts) / self.batch_size)
        for batch_number, offset in enumerate(range(0, len(texts), self.batch_size), start=1):
            batch = texts[offset:offset + self.batch_size]
            logger.debug("Embedding batch %d/%d (%d texts)", batch_number, batch_count, len(batch))

            results = await asyncio.gather(
                *(self._embed_one(text, offset + i) for i, text in enumerate(batch))
            )
            embeddings.extend(vector for vector, _ in results)
            api_calls += sum(1 for _, called in results if called)
            total_tokens += sum(math.ceil(len(text) / CHARS_PER_TOKEN) for text in batch)

            if offset + self.batch_size < len(texts):
                await asyncio.sleep(self.batch_delay_ms / 1000)

        return BatchEmbeddingResult(
            embeddings=embeddings,
            total_tokens=total_tokens,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            api_calls=api_calls,
        )

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text (e.g. a query); zero vector on failure."""
        if not self.is_configured:
            return zero_vector(self.dimensions)
        vector, _ = await self._embed_one(text, 0)
        return vector
