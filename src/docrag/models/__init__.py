"""Pydantic models for docrag.

Models describe data flowing through ingestion and answering. Parser output
(``TextBlock``, ``ParsedPage``) is immutable; chunks only gain boilerplate and
embedding metadata after creation. Persisted models support SQLAlchemy via
``from_attributes = True``.

Model Hierarchy:
- ParsedDocument → ParsedPage → TextBlock
- SemanticChunk → SearchResult → RerankedResult → SourceChunk
- RAGConfig → RAGResponse (AuditResult, RAGStats)
"""

from .base import (
    AccessLevel,
    BoundingBox,
    ProcessingStatus,
    merge_bounding_boxes,
)
from .cache import (
    CachedResponse,
    CacheEntry,
    CacheStats,
    Citation,
)
from .chunk import (
    ChunkerConfig,
    RerankedResult,
    SearchConfig,
    SearchResult,
    SemanticChunk,
)
from .concept import (
    AliasMatch,
    Ambiguity,
    AmbiguityPolicy,
    ConceptCriticality,
    ContextScope,
    DefinitionMatch,
    QueryFlowResult,
    QueryInterpretation,
    RelationMatch,
    ResolvedConcept,
    ScopedRow,
    TermCandidateInput,
)
from .document import (
    DocumentMetadata,
    IngestDiagnostics,
    IngestOptions,
    IngestResult,
    IngestStats,
    OcrRescueDiagnostics,
    ParsedDocument,
    ParsedPage,
    TextBlock,
)
from .rag import (
    AuditResult,
    EngineId,
    RAGConfig,
    RAGResponse,
    RAGState,
    RAGStats,
    SourceChunk,
)
from .template import (
    DEFAULT_MATCH_THRESHOLD,
    DetectionMode,
    TemplateAnchor,
    TemplateDetectionResult,
    TemplateDiagnostics,
    TemplatePageFingerprint,
    TemplateProfile,
)

__all__ = [
    # Base types
    "AccessLevel",
    "BoundingBox",
    "ProcessingStatus",
    "merge_bounding_boxes",
    # Document
    "DocumentMetadata",
    "ParsedDocument",
    "ParsedPage",
    "TextBlock",
    "IngestOptions",
    "IngestDiagnostics",
    "IngestResult",
    "IngestStats",
    "OcrRescueDiagnostics",
    # Chunk
    "ChunkerConfig",
    "SemanticChunk",
    "SearchConfig",
    "SearchResult",
    "RerankedResult",
    # Template
    "DEFAULT_MATCH_THRESHOLD",
    "DetectionMode",
    "TemplateAnchor",
    "TemplateDetectionResult",
    "TemplateDiagnostics",
    "TemplatePageFingerprint",
    "TemplateProfile",
    # Cache
    "CachedResponse",
    "CacheEntry",
    "CacheStats",
    "Citation",
    # RAG
    "AuditResult",
    "EngineId",
    "RAGConfig",
    "RAGResponse",
    "RAGState",
    "RAGStats",
    "SourceChunk",
    # Concept graph
    "AliasMatch",
    "Ambiguity",
    "AmbiguityPolicy",
    "ConceptCriticality",
    "ContextScope",
    "DefinitionMatch",
    "QueryFlowResult",
    "QueryInterpretation",
    "RelationMatch",
    "ResolvedConcept",
    "ScopedRow",
    "TermCandidateInput",
]
