"""Base models and common types for docrag."""

from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field


class ProcessingStatus(str, Enum):
    """Status of document ingestion."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AccessLevel(str, Enum):
    """Visibility of an ingested document."""

    PRIVATE = "private"
    TEAM = "team"
    PUBLIC = "public"


class BoundingBox(BaseModel):
    """Bounding box normalized to [0, 1] with a top-left origin."""

    x: float = Field(..., description="Left edge X coordinate")
    y: float = Field(..., description="Top edge Y coordinate")
    width: float = Field(..., description="Box width")
    height: float = Field(..., description="Box height")

    @property
    def x2(self) -> float:
        """Right edge X coordinate."""
        return self.x + self.width

    @property
    def y2(self) -> float:
        """Bottom edge Y coordinate."""
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @classmethod
    def zero(cls) -> "BoundingBox":
        return cls(x=0.0, y=0.0, width=0.0, height=0.0)

    def overlap_ratio(self, other: "BoundingBox") -> float:
        """Intersection area divided by the smaller of the two areas.

        Args:
            other: Box to compare against.

        Returns:
            Ratio in [0, 1]; 0 when the boxes do not intersect or either is empty.
        """
        left = max(self.x, other.x)
        right = min(self.x2, other.x2)
        top = max(self.y, other.y)
        bottom = min(self.y2, other.y2)
        if right <= left or bottom <= top:
            return 0.0

        area_a = self.width * self.height
        area_b = other.width * other.height
        if area_a <= 0 or area_b <= 0:
            return 0.0

        return (right - left) * (bottom - top) / min(area_a, area_b)


def merge_bounding_boxes(boxes: Iterable[BoundingBox]) -> BoundingBox:
    """Envelope of all boxes (min top-left corner, max bottom-right corner).

    An empty input yields a zero box; a single box yields an equal copy.
    """
    boxes = list(boxes)
    if not boxes:
        return BoundingBox.zero()
    if len(boxes) == 1:
        return boxes[0].model_copy()

    min_x = min(b.x for b in boxes)
    min_y = min(b.y for b in boxes)
    max_x = max(b.x2 for b in boxes)
    max_y = max(b.y2 for b in boxes)

    return BoundingBox(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)

