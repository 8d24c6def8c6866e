"""Tests for the semantic chunker."""

from docrag.models import ChunkerConfig
from docrag.pipeline.stage_chunk import (
    SemanticChunker,
    build_header_hierarchy,
    chunk_document,
    detect_header,
    estimate_token_count,
    split_long_segment,
)

BODY = (
    "The deployment checklist covers 12 steps, from backup verification to the final smoke test, "
    "and every step has an owner, a deadline and a rollback note recorded in the tracker"
)


class TestEstimateTokenCount:
    """Tests for token estimation."""

    def test_words_times_one_and_a_half(self):
        """Three words estimate to five tokens."""
        assert estimate_token_count("one two three") == 5

    def test_empty(self):
        """Whitespace-only text has no tokens."""
        assert estimate_token_count("   ") == 0


class TestDetectHeader:
    """Tests for header detection."""

    def test_markdown_header(self):
        """Markdown headers keep their level."""
        header = detect_header("### Rollback")
        assert header.level == 3
        assert header.text == "Rollback"

    def test_title_line(self):
        """Short capitalized lines are level-2 headers."""
        header = detect_header("Installation Steps")
        assert header.level == 2
        assert header.raw == "## Installation Steps"

    def test_body_line_is_not_header(self):
        """Lines with digits or commas are body text."""
        assert detect_header("Run step 3, then restart the service") is None
        assert detect_header("lowercase start") is None

    def test_breadcrumb(self):
        """Header stack renders as a breadcrumb."""
        stack = [detect_header("# Guide"), detect_header("## Setup")]
        assert build_header_hierarchy(stack) == "# Guide > ## Setup"


class TestSplitLongSegment:
    """Tests for oversized segment splitting."""

    def test_pieces_respect_budget_with_overlap(self):
        """Word-level splits stay under budget and carry an overlap prefix."""
        text = " ".join(f"item{i}" for i in range(60))
        pieces = split_long_segment(text, max_tokens=30, overlap_percent=0.2)

        assert len(pieces) > 1
        assert all(estimate_token_count(p) <= 30 for p in pieces)
        # floor(30 * 0.2) = 6 tokens -> 4 words of overlap
        assert pieces[1].split()[:4] == pieces[0].split()[-4:]

    def test_paragraphs_kept_whole_when_they_fit(self):
        """Paragraphs under budget are not split mid-way."""
        first = "alpha beta gamma delta"
        second = "epsilon zeta eta theta"
        pieces = split_long_segment(f"{first}\n\n{second}", max_tokens=8, overlap_percent=0.0)

        assert pieces == [first, second]

    def test_overlap_never_pushes_paragraph_chunks_over_budget(self):
        """The overlap prefix shrinks so paragraph-packed pieces stay within budget."""
        paragraphs = [" ".join(f"p{n}w{i}" for i in range(60)) for n in range(3)]
        pieces = split_long_segment("\n\n".join(paragraphs), max_tokens=100, overlap_percent=0.15)

        assert len(pieces) == 3
        assert all(estimate_token_count(p) <= 100 for p in pieces)
        # 90-token paragraphs leave room for 6 overlap words, not the full 10
        assert pieces[1].split()[:6] == paragraphs[0].split()[-6:]
        assert pieces[1].split()[6] == "p1w0"


class TestSemanticChunker:
    """Tests for SemanticChunker."""

    def test_header_breadcrumb_on_chunk(self, make_page):
        """Chunks carry the live header chain."""
        page = make_page(f"# Guide\n## Setup\n{BODY}")
        chunks = SemanticChunker(ChunkerConfig(min_tokens=5)).chunk([page])

        assert len(chunks) == 1
        assert chunks[0].parent_header == "# Guide > ## Setup"
        assert chunks[0].text.startswith("## Setup")

    def test_chunks_never_span_pages(self, make_page):
        """Every chunk and its source blocks belong to one page."""
        pages = [make_page(BODY, page_number=1), make_page(BODY, page_number=2)]
        chunks = chunk_document(pages, ChunkerConfig(min_tokens=5))

        assert [c.page for c in chunks] == [1, 2]
        for chunk in chunks:
            assert chunk.source_blocks
            assert all(block.page == chunk.page for block in chunk.source_blocks)

    def test_sequential_indexes(self, make_page):
        """Indexes count up from zero across pages."""
        text = " ".join(f"item{i}" for i in range(80))
        pages = [make_page(text, page_number=1), make_page(BODY, page_number=2)]
        chunks = chunk_document(pages, ChunkerConfig(max_tokens=40, overlap_percent=0.1, min_tokens=5))

        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert all(c.token_count <= 40 for c in chunks)

    def test_short_document_dropped_below_min_tokens(self, make_page):
        """A document shorter than min_tokens yields no chunks at all."""
        page = make_page("Short note, only a few words here")
        assert chunk_document([page]) == []

    def test_bbox_is_envelope_of_source_blocks(self, make_block, make_page):
        """Chunk geometry merges the matched blocks."""
        blocks = [
            make_block("deployment checklist covers", x=0.1, y=0.2, width=0.3),
            make_block("rollback note recorded", x=0.2, y=0.3, width=0.5),
        ]
        page = make_page(BODY, blocks=blocks)
        chunk = chunk_document([page], ChunkerConfig(min_tokens=5))[0]

        assert chunk.bbox.x == 0.1
        assert chunk.bbox.y == 0.2
        assert abs(chunk.bbox.x2 - 0.7) < 1e-9
        assert abs(chunk.bbox.y2 - 0.32) < 1e-9

    def test_every_chunk_within_budget(self, make_page):
        """Chunks built from several paragraphs with overlap respect max_tokens."""
        text = "\n".join(" ".join(f"p{n}w{i}" for i in range(60)) for n in range(4))
        config = ChunkerConfig(max_tokens=100, overlap_percent=0.15, min_tokens=5)

        chunks = SemanticChunker(config).chunk([make_page(text)])

        assert len(chunks) == 4
        assert all(c.token_count <= 100 for c in chunks)
        assert all(estimate_token_count(c.text) <= 100 for c in chunks)
