"""Semantic cache models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class Citation(BaseModel):
    """Citation stored with a cached answer."""

    id: str = Field(..., description="Citation id as used in the answer text, e.g. '1'")
    chunk_id: UUID
    page: int
    confidence: float = 0.0


class CachedResponse(BaseModel):
    """A verified answer served from the cache."""

    id: UUID
    query_text: str
    query_hash: str
    answer_text: str
    citations: list[Citation] = Field(default_factory=list)
    confidence: float
    chunk_ids: list[UUID] = Field(default_factory=list)
    hit_count: int = 0
    created_at: datetime
    expires_at: datetime
    match: str = Field(default="exact", description="'exact' or 'semantic'")
    similarity: Optional[float] = None


class CacheEntry(BaseModel):
    """Row of the durable cache tier."""

    id: UUID
    query_text: str
    query_hash: str
    query_embedding: Optional[list[float]] = None
    answer_text: str
    citations: list[Citation] = Field(default_factory=list)
    confidence: float
    chunk_ids: list[UUID] = Field(default_factory=list)
    hit_count: int = 0
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True

    def to_response(self, match: str = "exact", similarity: Optional[float] = None) -> CachedResponse:
        return CachedResponse(
            id=self.id,
            query_text=self.query_text,
            query_hash=self.query_hash,
            answer_text=self.answer_text,
            citations=self.citations,
            confidence=self.confidence,
            chunk_ids=self.chunk_ids,
            hit_count=self.hit_count,
            created_at=self.created_at,
            expires_at=self.expires_at,
            match=match,
            similarity=similarity,
        )


class CacheStats(BaseModel):
    total_entries: int = 0
    total_hits: int = 0
    avg_confidence: float = 0.0
    l1_available: bool = False
