"""Tests for repository methods that need no live database."""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from docrag.models import SemanticChunk
from docrag.storage import ChunkRepository


@pytest.fixture
def session():
    session = MagicMock()
    session.flush = AsyncMock()
    return session


def chunk(block, index, embedding, is_boilerplate=False):
    return SemanticChunk(
        text=block.text,
        page=1,
        bbox=block.bbox,
        index=index,
        token_count=5,
        source_blocks=[block],
        embedding=embedding,
        is_boilerplate=is_boilerplate,
    )


class TestChunkRepositoryCreateBatch:
    """Tests for ChunkRepository.create_batch."""

    @pytest.mark.asyncio
    async def test_failed_embedding_stored_as_null(self, session, make_block):
        block = make_block("release gate checks")
        chunks = [
            chunk(block, 0, [1.0, 0.0, 0.0, 0.0]),
            chunk(block, 1, [0.0, 0.0, 0.0, 0.0]),
            chunk(block, 2, [1.0, 0.0, 0.0, 0.0], is_boilerplate=True),
        ]

        rows = await ChunkRepository(session).create_batch(uuid4(), chunks)

        assert rows[0].embedding == [1.0, 0.0, 0.0, 0.0]
        assert rows[1].embedding is None
        assert rows[2].embedding is None
        session.add_all.assert_called_once_with(rows)
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_coarse_highlight_not_stored(self, session, make_block):
        """A page-sized source block keeps the chunk bbox but no highlight boxes."""
        small = make_block("release gate checks")
        page_wide = make_block("scanned page", x=0.05, y=0.05, width=0.9, height=0.85)

        rows = await ChunkRepository(session).create_batch(
            uuid4(), [chunk(small, 0, None), chunk(page_wide, 1, None)]
        )

        assert rows[0].highlight_boxes == [small.bbox.model_dump()]
        assert rows[1].highlight_boxes is None
        assert rows[1].bounding_box == page_wide.bbox.model_dump()
