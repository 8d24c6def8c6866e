"""Tests for the embed stage."""

import pytest

from docrag.pipeline import Embedder
from docrag.pipeline.stage_embed import is_zero_vector


class FailingProvider:
    """Fails for one specific text."""

    is_configured = True

    async def embed(self, text: str) -> list[float]:
        if text == "boom":
            raise RuntimeError("provider exploded")
        return [1.0, 0.0, 0.0, 0.0]


class TestEmbedder:
    """Tests for Embedder."""

    @pytest.mark.asyncio
    async def test_vectors_in_input_order(self, make_embedding_provider):
        """Each text maps to its own vector; blanks are zero without a call."""
        provider = make_embedding_provider(
            vectors={"a": [0.0, 1.0, 0.0, 0.0], "b": [0.0, 0.0, 1.0, 0.0]}
        )
        embedder = Embedder(provider, batch_size=2, batch_delay_ms=0, dimensions=4)

        result = await embedder.embed_texts(["a", "  ", "b"])

        assert result.embeddings == [[0.0, 1.0, 0.0, 0.0], [0.0] * 4, [0.0, 0.0, 1.0, 0.0]]
        assert result.api_calls == 2
        assert sorted(provider.calls) == ["a", "b"]
        assert result.total_tokens == 3

    @pytest.mark.asyncio
    async def test_failure_gives_zero_vector(self):
        """One failing text does not fail the batch."""
        embedder = Embedder(FailingProvider(), batch_size=4, batch_delay_ms=0, dimensions=4)

        result = await embedder.embed_texts(["ok", "boom"])

        assert not is_zero_vector(result.embeddings[0])
        assert is_zero_vector(result.embeddings[1])
        assert result.api_calls == 2

    @pytest.mark.asyncio
    async def test_wrong_dimensions_rejected(self, make_embedding_provider):
        """Vectors of the wrong size are replaced by zeros."""
        provider = make_embedding_provider(default=[1.0, 2.0])
        embedder = Embedder(provider, batch_size=4, batch_delay_ms=0, dimensions=4)

        assert await embedder.embed_text("query") == [0.0] * 4

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self):
        """No provider means zero vectors and no calls."""
        embedder = Embedder(None, dimensions=4)

        result = await embedder.embed_texts(["a", "b"])

        assert result.embeddings == [[0.0] * 4, [0.0] * 4]
        assert result.api_calls == 0
        assert await embedder.embed_text("a") == [0.0] * 4
