"""Tests for highlight geometry."""

from docrag.models import BoundingBox, SemanticChunk, merge_bounding_boxes
from docrag.pipeline.highlight import (
    build_highlight_signature,
    highlight_boxes_for_chunk,
    highlight_text_for_chunk,
    is_coarse_highlight_set,
    merge_nearby_boxes,
)


def box(x, y, width=0.1, height=0.02):
    return BoundingBox(x=x, y=y, width=width, height=height)


class TestMergeBoundingBoxes:
    """Tests for envelope merging."""

    def test_empty_is_zero_box(self):
        """No boxes merge to the zero box."""
        assert merge_bounding_boxes([]) == BoundingBox.zero()

    def test_single_box_unchanged(self):
        """One box merges to an equal box."""
        only = box(0.2, 0.3)
        assert merge_bounding_boxes([only]) == only

    def test_order_independent(self):
        """Any permutation yields the same envelope."""
        boxes = [box(0.1, 0.1), box(0.5, 0.4), box(0.3, 0.8)]
        assert merge_bounding_boxes(boxes) == merge_bounding_boxes(list(reversed(boxes)))


class TestMergeNearbyBoxes:
    """Tests for same-row merging."""

    def test_touching_boxes_on_one_row_merge(self):
        """Adjacent spans on a line become one box."""
        merged = merge_nearby_boxes([box(0.1, 0.5), box(0.21, 0.505)])

        assert len(merged) == 1
        assert merged[0].x == 0.1
        assert abs(merged[0].x2 - 0.31) < 1e-9

    def test_far_apart_boxes_stay_separate(self):
        """A wide horizontal gap keeps boxes apart."""
        assert len(merge_nearby_boxes([box(0.1, 0.5), box(0.6, 0.5)])) == 2

    def test_different_rows_stay_separate(self):
        """Boxes on different lines are not merged."""
        merged = merge_nearby_boxes([box(0.1, 0.6), box(0.1, 0.5)])

        assert len(merged) == 2
        assert merged[0].y == 0.5


class TestHighlightSignature:
    """Tests for highlight signatures."""

    def test_order_independent(self):
        """Box order does not change the signature."""
        boxes = [box(0.1, 0.1), box(0.2, 0.3)]
        assert build_highlight_signature(boxes) == build_highlight_signature(boxes[::-1])

    def test_sensitive_to_perturbation(self):
        """Any coordinate change changes the signature."""
        original = [box(0.1, 0.1), box(0.2, 0.3)]
        moved = [box(0.1, 0.1), box(0.2, 0.3000001)]
        assert build_highlight_signature(original) != build_highlight_signature(moved)


class TestCoarseHighlight:
    """Tests for coarse highlight detection."""

    def test_small_boxes_are_fine(self):
        """A few line boxes are a precise highlight."""
        assert not is_coarse_highlight_set([box(0.1, 0.1), box(0.1, 0.13)])

    def test_single_wide_box_is_coarse(self):
        """A near-full-width box is too coarse."""
        assert is_coarse_highlight_set([box(0.05, 0.1, width=0.9)])

    def test_too_many_boxes(self):
        """More than twelve boxes is coarse."""
        boxes = [box(0.1, 0.03 * i) for i in range(13)]
        assert is_coarse_highlight_set(boxes)

    def test_empty_is_not_coarse(self):
        assert not is_coarse_highlight_set([])


class TestChunkHighlights:
    """Tests for per-chunk highlight helpers."""

    def test_boxes_and_text_from_chunk(self, make_block):
        """Source-block boxes are merged and the text is collapsed and capped."""
        blocks = [
            make_block("alpha", x=0.1, y=0.5, width=0.1),
            make_block("beta", x=0.21, y=0.5, width=0.1),
        ]
        chunk = SemanticChunk(
            text="alpha   beta\n" + "x" * 400,
            page=1,
            bbox=merge_bounding_boxes(b.bbox for b in blocks),
            index=0,
            token_count=3,
            source_blocks=blocks,
        )

        assert len(highlight_boxes_for_chunk(chunk)) == 1
        text = highlight_text_for_chunk(chunk)
        assert text.startswith("alpha beta x")
        assert len(text) == 280

    def test_coarse_boxes_dropped(self, make_block):
        """A page-wide source block gives no highlight boxes."""
        block = make_block("whole page scan", x=0.05, y=0.05, width=0.9, height=0.8)
        chunk = SemanticChunk(
            text="whole page scan",
            page=1,
            bbox=block.bbox,
            index=0,
            token_count=5,
            source_blocks=[block],
        )

        assert highlight_boxes_for_chunk(chunk) == []
