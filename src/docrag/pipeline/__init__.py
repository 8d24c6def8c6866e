"""Pipeline stages for docrag ingestion.

Stages:
1. stage_parse - PDF/text to positioned text blocks
2. stage_chunk - Semantic, header-aware chunking
3. stage_ocr / stage_rescue - OCR rescue for low-text PDFs
4. stage_template - Template boilerplate detection
5. stage_embed - Batched embeddings
6. stage_terms - Internal term mining

Each stage is independent and can be run separately. The storage-backed
orchestration lives in ``docrag.pipeline.ingest.IngestionPipeline``.
"""

from .highlight import (
    build_highlight_signature,
    is_coarse_highlight_set,
    merge_nearby_boxes,
)
from .stage_chunk import SemanticChunker, chunk_document, estimate_token_count
from .stage_embed import BatchEmbeddingResult, Embedder
from .stage_ocr import GeminiOcrEngine, TesseractOCR, TesseractOcrEngine, run_ocr_provider
from .stage_parse import compute_content_hash, parse_document
from .stage_rescue import rescue_low_text_document
from .stage_template import TemplateDetector, build_template_profile, load_template_profiles
from .stage_terms import mine_terms, normalize_term

__all__ = [
    # Parse
    "parse_document",
    "compute_content_hash",
    # Chunk
    "SemanticChunker",
    "chunk_document",
    "estimate_token_count",
    # Highlight geometry
    "build_highlight_signature",
    "is_coarse_highlight_set",
    "merge_nearby_boxes",
    # OCR
    "GeminiOcrEngine",
    "TesseractOCR",
    "TesseractOcrEngine",
    "run_ocr_provider",
    "rescue_low_text_document",
    # Template
    "TemplateDetector",
    "build_template_profile",
    "load_template_profiles",
    # Embed
    "BatchEmbeddingResult",
    "Embedder",
    # Terms
    "mine_terms",
    "normalize_term",
]
