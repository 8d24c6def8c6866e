"""OCR Rescue Stage - Recover chunks from PDFs with little or no text layer.

A PDF that chunks into two or fewer chunks is treated as a likely scan. Its
low-text pages are sent to the configured OCR engine, the recognized text is
appended to each page's ``full_text`` and the document is rechunked. The
rescue is kept only if it produces strictly more chunks than before.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from docrag.models import (
    ChunkerConfig,
    OcrRescueDiagnostics,
    ParsedPage,
    SemanticChunk,
)

from .stage_chunk import DEFAULT_CHUNKER_CONFIG, chunk_document
from .stage_ocr import DEFAULT_OCR_TIMEOUT_SECONDS, OcrEngine, run_ocr_provider
from .stage_parse import PDF_MIME_TYPE

logger = logging.getLogger(__name__)

OCR_LOW_CHUNK_THRESHOLD = 2
OCR_PAGE_TEXT_LENGTH_THRESHOLD = 120
OCR_PAGE_SCAN_CAP = 20


@dataclass
class RechunkResult:
    chunks: list[SemanticChunk]
    used_short_text_fallback: bool


@dataclass
class OcrRescueOutcome:
    """Pages and chunks to continue ingestion with, plus diagnostics."""

    pages: list[ParsedPage]
    chunks: list[SemanticChunk]
    diagnostics: OcrRescueDiagnostics = field(default_factory=OcrRescueDiagnostics)


def should_trigger_ocr_rescue(mime_type: str, chunk_count: int) -> bool:
    return mime_type == PDF_MIME_TYPE and chunk_count <= OCR_LOW_CHUNK_THRESHOLD


def resolve_ocr_candidate_pages(pages: list[ParsedPage]) -> list[int]:
    """Page numbers with under 120 characters of text layer, first 20 only."""
    low_text = sorted(
        page.page_number for page in pages if page.text_length < OCR_PAGE_TEXT_LENGTH_THRESHOLD
    )
    return low_text[:OCR_PAGE_SCAN_CAP]


def merge_ocr_text_into_pages(
    pages: list[ParsedPage],
    ocr_by_page: dict[int, str],
) -> list[ParsedPage]:
    """Append OCR text after the existing text layer, never replacing it."""
    merged = []
    for page in pages:
        ocr_text = (ocr_by_page.get(page.page_number) or "").strip()
        if not ocr_text:
            merged.append(page)
            continue
        full_text = "\n".join(part for part in (page.full_text, ocr_text) if part).strip()
        merged.append(page.model_copy(update={"full_text": full_text}))
    return merged


def rechunk_pages_after_ocr(
    pages: list[ParsedPage],
    config: ChunkerConfig = DEFAULT_CHUNKER_CONFIG,
) -> RechunkResult:
    """Rechunk with the standard config, falling back to ``min_tokens=1``.

    The fallback keeps short but real content such as a page holding only a
    name and a phone number.
    """
    standard = chunk_document(pages, config)
    if standard:
        return RechunkResult(chunks=standard, used_short_text_fallback=False)

    fallback_config = config.model_copy(update={"min_tokens": 1})
    fallback = chunk_document(pages, fallback_config)
    return RechunkResult(chunks=fallback, used_short_text_fallback=bool(fallback))


async def rescue_low_text_document(
    pdf_bytes: bytes,
    mime_type: str,
    pages: list[ParsedPage],
    chunks: list[SemanticChunk],
    engines: dict[str, OcrEngine],
    engine: Optional[str] = None,
    timeout_s: float = DEFAULT_OCR_TIMEOUT_SECONDS,
    config: ChunkerConfig = DEFAULT_CHUNKER_CONFIG,
) -> OcrRescueOutcome:
    """Run OCR rescue if the document qualifies.

    Args:
        pdf_bytes: Source file bytes.
        mime_type: Source MIME type; only PDFs are rescued.
        pages: Parsed pages.
        chunks: Chunks from the first chunking pass.
        engines: OCR engines keyed by id.
        engine: Requested engine id.
        timeout_s: Per-attempt OCR timeout.
        config: Chunker config for the standard rechunk pass.

    Returns:
        OcrRescueOutcome; ``pages``/``chunks`` are the inputs unless the
        rescue was applied.
    """
    diagnostics = OcrRescueDiagnostics(chunks_before=len(chunks), chunks_after=len(chunks))
    unchanged = OcrRescueOutcome(pages=pages, chunks=chunks, diagnostics=diagnostics)

    if not should_trigger_ocr_rescue(mime_type, len(chunks)):
        return unchanged

    diagnostics.triggered = True
    candidate_pages = resolve_ocr_candidate_pages(pages)
    diagnostics.candidate_pages = candidate_pages
    if not candidate_pages:
        diagnostics.warnings.append("ocr_rescue_no_candidate_pages")
        return unchanged

    logger.info(
        "OCR rescue triggered: %d chunk(s), candidate pages %s",
        len(chunks),
        candidate_pages,
    )

    provider_result = await run_ocr_provider(
        engines, engine, pdf_bytes, candidate_pages, timeout_s
    )
    diagnostics.engine = provider_result.engine
    diagnostics.pages_processed = provider_result.pages_processed
    diagnostics.latency_ms = provider_result.latency_ms
    diagnostics.warnings.extend(provider_result.warnings)

    if provider_result.warnings:
        return unchanged

    if not any(text.strip() for text in provider_result.ocr_by_page.values()):
        diagnostics.warnings.append("ocr_rescue_empty_text")
        return unchanged

    merged_pages = merge_ocr_text_into_pages(pages, provider_result.ocr_by_page)
    rechunked = rechunk_pages_after_ocr(merged_pages, config)
    diagnostics.used_short_text_fallback = rechunked.used_short_text_fallback

    if len(rechunked.chunks) <= len(chunks):
        diagnostics.warnings.append("ocr_rescue_no_chunk_gain")
        logger.warning(
            "OCR rescue produced no chunk gain (%d -> %d)",
            len(chunks),
            len(rechunked.chunks),
        )
        return unchanged

    diagnostics.applied = True
    diagnostics.chunks_after = len(rechunked.chunks)
    logger.info("OCR rescue applied: %d -> %d chunks", len(chunks), len(rechunked.chunks))
    return OcrRescueOutcome(pages=merged_pages, chunks=rechunked.chunks, diagnostics=diagnostics)
