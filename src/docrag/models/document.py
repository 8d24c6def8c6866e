"""Document-level models: parser output and ingestion results."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .base import AccessLevel, BoundingBox
from .template import TemplateDiagnostics


class TextBlock(BaseModel):
    """A positioned run of text on one page."""

    text: str
    page: int = Field(..., ge=1)
    bbox: BoundingBox

    class Config:
        frozen = True


class ParsedPage(BaseModel):
    """
    One page of parser output.

    Immutable: OCR rescue builds a new page via ``model_copy`` rather than
    editing ``full_text`` in place.
    """

    page_number: int = Field(..., ge=1, description="1-indexed page number")
    width: float = Field(..., description="Page width in points")
    height: float = Field(..., description="Page height in points")
    text_blocks: list[TextBlock] = Field(default_factory=list)
    full_text: str = ""

    class Config:
        frozen = True

    @property
    def text_length(self) -> int:
        """Character count of the text layer (stripped block text)."""
        return sum(len(block.text.strip()) for block in self.text_blocks)


class DocumentMetadata(BaseModel):
    """Metadata extracted from the source file."""

    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    creator: Optional[str] = None  # Software that created the PDF


class ParsedDocument(BaseModel):
    """Parser output for one ingestion run."""

    page_count: int = Field(..., ge=0)
    pages: list[ParsedPage] = Field(default_factory=list)
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


class IngestOptions(BaseModel):
    """Caller-supplied options for a single ingestion."""

    owner_id: str
    access_level: AccessLevel = AccessLevel.PRIVATE
    skip_embedding: bool = False
    skip_storage: bool = False
    template_profile_id: Optional[str] = None


class OcrRescueDiagnostics(BaseModel):
    """What OCR rescue did (or did not do) for one ingestion."""

    triggered: bool = False
    applied: bool = False
    engine: Optional[str] = None
    candidate_pages: list[int] = Field(default_factory=list)
    pages_processed: int = 0
    chunks_before: int = 0
    chunks_after: int = 0
    used_short_text_fallback: bool = False
    latency_ms: float = 0.0
    warnings: list[str] = Field(default_factory=list)


class IngestDiagnostics(BaseModel):
    template: TemplateDiagnostics = Field(default_factory=TemplateDiagnostics)
    ocr_rescue: OcrRescueDiagnostics = Field(default_factory=OcrRescueDiagnostics)
    warnings: list[str] = Field(default_factory=list)


class IngestStats(BaseModel):
    """Timing and volume counters for one ingestion."""

    parse_time_ms: float = 0.0
    chunk_time_ms: float = 0.0
    ocr_time_ms: float = 0.0
    template_time_ms: float = 0.0
    embed_time_ms: float = 0.0
    store_time_ms: float = 0.0
    total_time_ms: float = 0.0
    page_count: int = 0
    chunk_count: int = 0
    boilerplate_chunk_count: int = 0
    total_text_blocks: int = 0
    total_tokens: int = 0
    embedding_api_calls: int = 0


class IngestResult(BaseModel):
    """Return value of ``IngestionPipeline.ingest``."""

    document_id: Optional[UUID] = None
    status: str = Field(..., description="'completed', 'duplicate' or 'skipped'")
    duplicate: bool = False
    diagnostics: IngestDiagnostics = Field(default_factory=IngestDiagnostics)
    stats: IngestStats = Field(default_factory=IngestStats)
