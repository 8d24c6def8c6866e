"""Parse Stage - Extract positioned text from PDF and plain-text bytes.

This is the first stage of ingestion. Uses PyMuPDF (fitz) to walk each
page's text spans and records every span as a ``TextBlock`` with a bounding
box normalized to [0, 1] and a top-left origin.
"""

import hashlib
import logging
import math

import fitz  # PyMuPDF

from docrag.errors import UnsupportedFormatError
from docrag.models import (
    BoundingBox,
    DocumentMetadata,
    ParsedDocument,
    ParsedPage,
    TextBlock,
)

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
TEXT_MIME_TYPES = {"text/plain", "text/markdown"}

# US Letter in points, used for the synthetic page of text files
TEXT_PAGE_WIDTH = 612.0
TEXT_PAGE_HEIGHT = 792.0

# Average glyph width as a fraction of font size, for spans without a width
GLYPH_WIDTH_FACTOR = 0.6


def compute_content_hash(data: bytes) -> str:
    """Compute SHA-256 hash of file bytes for deduplication."""
    return hashlib.sha256(data).hexdigest()


def normalize_bbox(
    x: float,
    y: float,
    width: float,
    height: float,
    page_width: float,
    page_height: float,
) -> BoundingBox:
    """Normalize a bottom-left-origin box in points to a top-left [0, 1] box.

    Args:
        x: Left edge in points.
        y: Baseline (bottom edge) in points, measured from the page bottom.
        width: Width in points.
        height: Height in points.
        page_width: Page width in points.
        page_height: Page height in points.

    Returns:
        Box clamped so that ``x + width <= 1`` and ``y + height <= 1``.
    """
    norm_x = max(0.0, min(1.0, x / page_width))
    norm_width = max(0.0, min(1.0 - norm_x, width / page_width))

    top_y = y + height
    norm_y = max(0.0, min(1.0, 1.0 - top_y / page_height))
    norm_height = max(0.0, min(1.0 - norm_y, height / page_height))

    return BoundingBox(x=norm_x, y=norm_y, width=norm_width, height=norm_height)


def extract_pdf_metadata(pdf_doc: fitz.Document) -> DocumentMetadata:
    """Extract metadata from PDF document."""
    metadata = pdf_doc.metadata or {}

    return DocumentMetadata(
        title=metadata.get("title") or None,
        author=metadata.get("author") or None,
        subject=metadata.get("subject") or None,
        creator=metadata.get("creator") or None,
    )


def _span_block(span: dict, page_number: int, page_width: float, page_height: float):
    """Convert one PyMuPDF span to a TextBlock, or None if unusable."""
    text = span.get("text", "")
    if not text.strip():
        return None

    x0, y0, x1, y1 = span.get("bbox", (0.0, 0.0, 0.0, 0.0))
    font_size = span.get("size", 0.0)
    if not all(math.isfinite(v) for v in (x0, y0, x1, y1, font_size)):
        logger.debug("Skipping span with non-finite geometry on page %d", page_number)
        return None

    width = (x1 - x0) or len(text) * font_size * GLYPH_WIDTH_FACTOR
    height = (y1 - y0) or font_size
    if not math.isfinite(height) or height <= 0:
        return None

    # PyMuPDF reports top-left coordinates; flip to a bottom-left baseline
    baseline_y = page_height - y1

    return TextBlock(
        text=text,
        page=page_number,
        bbox=normalize_bbox(x0, baseline_y, width, height, page_width, page_height),
    )


def extract_page_content(page: fitz.Page, page_number: int) -> ParsedPage:
    """Extract text blocks with positions from a single PDF page.

    Args:
        page: PyMuPDF page.
        page_number: 1-indexed page number.

    Returns:
        ParsedPage whose ``full_text`` is the space-joined span texts.
    """
    page_width = float(page.rect.width)
    page_height = float(page.rect.height)

    text_blocks: list[TextBlock] = []
    text_parts: list[str] = []

    content = page.get_text("dict")
    for block in content.get("blocks", []):
        if block.get("type", 0) != 0:
            continue  # image block
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text_block = _span_block(span, page_number, page_width, page_height)
                if text_block is None:
                    continue
                text_blocks.append(text_block)
                text_parts.append(text_block.text)

    return ParsedPage(
        page_number=page_number,
        width=page_width,
        height=page_height,
        text_blocks=text_blocks,
        full_text=" ".join(text_parts),
    )


def parse_pdf(data: bytes) -> ParsedDocument:
    """Parse PDF bytes into pages of positioned text."""
    pdf_doc = fitz.open(stream=data, filetype="pdf")
    try:
        pages = [
            extract_page_content(pdf_doc[index], index + 1)
            for index in range(pdf_doc.page_count)
        ]
        return ParsedDocument(
            page_count=pdf_doc.page_count,
            pages=pages,
            metadata=extract_pdf_metadata(pdf_doc),
        )
    finally:
        pdf_doc.close()


def parse_text(data: bytes) -> ParsedDocument:
    """Parse a plain-text file into one synthetic page.

    Each non-blank line becomes a full-width block whose vertical position
    is its index over the total line count.
    """
    text = data.decode("utf-8", errors="replace")
    lines = text.split("\n")
    line_count = max(len(lines), 1)

    text_blocks = [
        TextBlock(
            text=line,
            page=1,
            bbox=BoundingBox(
                x=0.0,
                y=index / line_count,
                width=1.0,
                height=1.0 / line_count,
            ),
        )
        for index, line in enumerate(line for line in lines if line.strip())
    ]

    page = ParsedPage(
        page_number=1,
        width=TEXT_PAGE_WIDTH,
        height=TEXT_PAGE_HEIGHT,
        text_blocks=text_blocks,
        full_text=text,
    )
    return ParsedDocument(page_count=1, pages=[page])


def parse_document(data: bytes, mime_type: str) -> ParsedDocument:
    """Parse document bytes according to their MIME type.

    Raises:
        UnsupportedFormatError: If no parser handles ``mime_type``.
    """
    if mime_type == PDF_MIME_TYPE:
        return parse_pdf(data)
    if mime_type in TEXT_MIME_TYPES:
        return parse_text(data)
    raise UnsupportedFormatError(mime_type)
