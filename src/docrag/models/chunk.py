"""Chunk models for embeddings and retrieval."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .base import BoundingBox
from .document import TextBlock


class ChunkerConfig(BaseModel):
    """Token budget for the semantic chunker."""

    max_tokens: int = Field(default=1200, ge=1)
    overlap_percent: float = Field(default=0.15, ge=0.0, lt=1.0)
    min_tokens: int = Field(default=50, ge=0)

    class Config:
        frozen = True


class SemanticChunk(BaseModel):
    """
    Unit of retrieval produced by the chunker.

    Chunks never span a page boundary: every entry in ``source_blocks`` is on
    ``page``. Only ``is_boilerplate`` and ``embedding`` are set after creation.
    """

    text: str
    page: int = Field(..., ge=1)
    bbox: BoundingBox
    parent_header: str = Field("", description="Breadcrumb, e.g. '# Guide > ## Setup'")
    index: int = Field(..., ge=0, description="Sequential per document")
    token_count: int = Field(..., ge=0)
    source_blocks: list[TextBlock] = Field(default_factory=list)

    is_boilerplate: bool = False
    embedding: Optional[list[float]] = Field(None, description="Dense vector embedding")


class SearchConfig(BaseModel):
    """Hybrid search parameters."""

    limit: int = Field(default=20, ge=1)
    min_score: float = Field(default=0.3, ge=0.0)
    vector_weight: float = Field(default=0.7, ge=0.0)
    text_weight: float = Field(default=0.3, ge=0.0)
    owner_id: Optional[str] = Field(
        None, description="Restrict to public documents plus this owner's documents"
    )

    class Config:
        frozen = True


class SearchResult(BaseModel):
    """A chunk joined to its document, with hybrid scores."""

    chunk_id: UUID
    document_id: UUID
    content: str
    page_number: int
    bounding_box: Optional[BoundingBox] = None
    highlight_boxes: list[BoundingBox] = Field(default_factory=list)
    highlight_text: Optional[str] = None
    parent_header: Optional[str] = None
    chunk_index: int = 0
    filename: Optional[str] = None

    vector_score: float = 0.0
    text_score: float = 0.0
    combined_score: float = 0.0


class RerankedResult(SearchResult):
    relevance_score: float = 0.0
    original_rank: int = Field(..., ge=1)
