"""Models for the answer path: request config, sources, audit and response."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .base import BoundingBox
from .chunk import SearchConfig
from .concept import AmbiguityPolicy, ContextScope, QueryInterpretation


class RAGState(str, Enum):
    """States of the per-request answer state machine."""

    CACHE_CHECK = "cache_check"
    RETRIEVE = "retrieve"
    GENERATE = "generate"
    AUDIT = "audit"
    CACHE_STORE = "cache_store"
    RESPOND = "respond"
    DEGRADED = "degraded"


class EngineId(str, Enum):
    COMPAT = "compat"
    GRAPH = "graph"


class RAGConfig(BaseModel):
    """Immutable per-request answer configuration."""

    engine: EngineId = EngineId.COMPAT
    search: SearchConfig = Field(default_factory=SearchConfig)
    top_k: int = Field(default=5, ge=1)
    confidence_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    generator_model: str = "gemini-2.0-flash"
    auditor_model: str = "claude-3-5-haiku-latest"
    temperature: float = 0.0
    skip_verification: bool = False
    context_scope: Optional[ContextScope] = None
    as_of: Optional[datetime] = None
    ambiguity_policy: AmbiguityPolicy = AmbiguityPolicy.SHOW_BOTH

    class Config:
        frozen = True

    @classmethod
    def from_settings(cls, settings, **overrides) -> "RAGConfig":
        """Build a config seeded from application settings."""
        values = {
            "top_k": settings.rag_top_k,
            "confidence_threshold": settings.rag_confidence_threshold,
            "generator_model": settings.generator_model,
            "auditor_model": settings.auditor_model,
        }
        values.update(overrides)
        return cls(**values)


class SourceChunk(BaseModel):
    """A retrieved chunk as shown to the user, keyed by citation id."""

    citation_id: str
    chunk_id: UUID
    document_id: UUID
    content: str
    page_number: int
    bounding_box: Optional[BoundingBox] = None
    highlight_boxes: list[BoundingBox] = Field(default_factory=list)
    highlight_text: Optional[str] = None
    parent_header: Optional[str] = None
    filename: Optional[str] = None
    relevance_score: float = 0.0


class AuditResult(BaseModel):
    """Verdict of the auditor on a generated answer."""

    verified: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    assessment: str = ""
    verified_claims: list[str] = Field(default_factory=list)
    removed_claims: list[str] = Field(default_factory=list)
    corrected_response: str = ""
    skipped: bool = False


class RAGStats(BaseModel):
    retrieval_time_ms: float = 0.0
    generation_time_ms: float = 0.0
    verification_time_ms: float = 0.0
    total_time_ms: float = 0.0
    chunks_retrieved: int = 0
    chunks_used: int = 0
    attempts: int = 0


class RAGResponse(BaseModel):
    """Successful-shaped answer, including degraded and cached answers."""

    response: str
    sources: list[SourceChunk] = Field(default_factory=list)
    verified: bool = False
    confidence: float = 0.0
    degraded: bool = False
    cached: bool = False
    engine: EngineId = EngineId.COMPAT
    verification: Optional[AuditResult] = None
    stats: RAGStats = Field(default_factory=RAGStats)
    state_trace: list[RAGState] = Field(default_factory=list)
    error_code: Optional[str] = None
    interpretation: Optional[QueryInterpretation] = None
    chat_id: Optional[UUID] = None
