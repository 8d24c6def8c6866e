"""Highlight geometry for citations.

Per-chunk highlight boxes are the chunk's source-block boxes with touching
boxes on the same text row merged. A signature over a box set identifies
identical highlight regions regardless of box order.
"""

import hashlib
from typing import Iterable, Optional

from docrag.models import BoundingBox, SemanticChunk

ROW_Y_TOLERANCE = 0.02
ROW_HEIGHT_TOLERANCE = 0.03
ROW_GAP_TOLERANCE = 0.03

SINGLE_BOX_MAX_AREA = 0.2
SINGLE_BOX_MAX_HEIGHT = 0.25
SINGLE_BOX_MAX_WIDTH = 0.8
MAX_HIGHLIGHT_BOXES = 12
ENVELOPE_MAX_AREA = 0.35
TOTAL_MAX_AREA = 0.45

HIGHLIGHT_TEXT_LIMIT = 280


def envelope(boxes: list[BoundingBox]) -> Optional[BoundingBox]:
    """Smallest box containing all boxes, or None for an empty list."""
    if not boxes:
        return None
    min_x = min(b.x for b in boxes)
    min_y = min(b.y for b in boxes)
    max_x = max(b.x2 for b in boxes)
    max_y = max(b.y2 for b in boxes)
    return BoundingBox(
        x=min_x,
        y=min_y,
        width=max(0.0, max_x - min_x),
        height=max(0.0, max_y - min_y),
    )


def total_area(boxes: Iterable[BoundingBox]) -> float:
    return sum(b.area for b in boxes)


def is_coarse_highlight_set(boxes: list[BoundingBox]) -> bool:
    """True when the boxes cover too much of the page to be a useful highlight."""
    if not boxes:
        return False

    if len(boxes) == 1:
        box = boxes[0]
        return (
            box.area > SINGLE_BOX_MAX_AREA
            or box.height > SINGLE_BOX_MAX_HEIGHT
            or box.width > SINGLE_BOX_MAX_WIDTH
        )

    if len(boxes) > MAX_HIGHLIGHT_BOXES:
        return True

    env = envelope(boxes)
    return env.area > ENVELOPE_MAX_AREA or total_area(boxes) > TOTAL_MAX_AREA


def merge_nearby_boxes(boxes: list[BoundingBox]) -> list[BoundingBox]:
    """Merge boxes that sit on the same row and touch horizontally.

    Args:
        boxes: Normalized boxes in any order.

    Returns:
        Merged boxes sorted top to bottom, left to right.
    """
    if len(boxes) <= 1:
        return [b.model_copy() for b in boxes]

    merged: list[BoundingBox] = []
    for box in sorted(boxes, key=lambda b: (b.y, b.x)):
        if merged:
            last = merged[-1]
            similar_row = (
                abs(last.y - box.y) < ROW_Y_TOLERANCE
                and abs(last.height - box.height) < ROW_HEIGHT_TOLERANCE
            )
            touching = box.x <= last.x2 + ROW_GAP_TOLERANCE
            if similar_row and touching:
                min_x = min(last.x, box.x)
                min_y = min(last.y, box.y)
                merged[-1] = BoundingBox(
                    x=min_x,
                    y=min_y,
                    width=max(last.x2, box.x2) - min_x,
                    height=max(last.y2, box.y2) - min_y,
                )
                continue
        merged.append(box.model_copy())

    return merged


def build_highlight_signature(boxes: Iterable[BoundingBox]) -> str:
    """Order-independent digest of a box set at full float precision."""
    packed = sorted(f"{b.x!r},{b.y!r},{b.width!r},{b.height!r}" for b in boxes)
    return hashlib.sha256("|".join(packed).encode("utf-8")).hexdigest()[:32]


def highlight_boxes_for_chunk(chunk: SemanticChunk) -> list[BoundingBox]:
    """Merged source-block boxes; empty when they are too coarse to point at the text."""
    boxes = merge_nearby_boxes([block.bbox for block in chunk.source_blocks])
    return [] if is_coarse_highlight_set(boxes) else boxes


def highlight_text_for_chunk(chunk: SemanticChunk) -> str:
    return " ".join(chunk.text.split())[:HIGHLIGHT_TEXT_LIMIT]
