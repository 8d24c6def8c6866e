"""OCR Stage - Extract text for PDF pages whose text layer is missing.

Two interchangeable engines implement ``extract_text(pdf_bytes, pages,
timeout_s) -> {page: text}``:

- ``GeminiOcrEngine``: one vision-model request covering all pages, with a
  strict JSON response contract and a single retry
- ``TesseractOcrEngine``: renders each page with PyMuPDF and recognizes it
  with Tesseract, capped at a few pages

Engine selection is explicit per call; there is no automatic failover.
"""

import asyncio
import logging
import time
from typing import Optional, Protocol

import fitz  # PyMuPDF
import httpx
import pytesseract
from PIL import Image
from pydantic import BaseModel, Field

from docrag.errors import (
    OcrError,
    OcrMissingCredentialError,
    OcrParseError,
    OcrProviderUnavailableError,
    OcrTimeoutError,
    ProviderError,
)
from docrag.providers import GeminiClient, parse_json_object

logger = logging.getLogger(__name__)

OCR_ENGINES = ("gemini", "tesseract")
DEFAULT_OCR_ENGINE = "gemini"
DEFAULT_OCR_TIMEOUT_SECONDS = 60.0

TESSERACT_PAGE_CAP = 6
TESSERACT_RENDER_SCALE = 2.0

WARNING_BY_CODE = {
    OcrTimeoutError.code: "ocr_rescue_timeout",
    OcrMissingCredentialError.code: "ocr_rescue_missing_api_key",
    OcrProviderUnavailableError.code: "ocr_rescue_tesseract_unavailable",
}


class OcrEngine(Protocol):
    async def extract_text(
        self, pdf_bytes: bytes, pages: list[int], timeout_s: float
    ) -> dict[int, str]:
        ...


def resolve_ocr_engine(value: Optional[str]) -> str:
    """Normalize an engine id; unknown values fall back to Gemini."""
    if not isinstance(value, str):
        return DEFAULT_OCR_ENGINE
    normalized = value.strip().lower()
    return normalized if normalized in OCR_ENGINES else DEFAULT_OCR_ENGINE


def normalize_pages(pages: list[int]) -> list[int]:
    """Unique positive page numbers, ascending."""
    return sorted({p for p in pages if isinstance(p, int) and p > 0})


def has_any_text(ocr_by_page: dict[int, str]) -> bool:
    return any(text.strip() for text in ocr_by_page.values())


def build_ocr_prompt(pages: list[int]) -> str:
    return "\n".join([
        "You are an OCR assistant for PDF pages.",
        'Return strict JSON only in this exact shape: {"pages":[{"page":1,"text":"..."},{"page":2,"text":"..."}]}.',
        f"Extract text for these page numbers only: {', '.join(str(p) for p in pages)}.",
        "Preserve diacritics exactly as written.",
        "Extract phone numbers exactly as written; do not normalize or alter digits, separators, or spacing.",
        "If a page has no readable text, return empty text.",
        "Do not include markdown code fences.",
    ])


def parse_ocr_response(raw_text: str) -> dict[int, str]:
    """Parse the ``{"pages": [{"page": n, "text": ...}]}`` contract.

    Raises:
        OcrParseError: If no JSON object can be extracted.
    """
    parsed = parse_json_object(raw_text)
    if parsed is None:
        raise OcrParseError("OCR response did not contain a JSON object")

    ocr_by_page: dict[int, str] = {}
    for row in parsed.get("pages") or []:
        if not isinstance(row, dict):
            continue
        page = row.get("page")
        if not isinstance(page, int) or isinstance(page, bool) or page <= 0:
            continue
        text = row.get("text")
        ocr_by_page[page] = text if isinstance(text, str) else ""
    return ocr_by_page


class GeminiOcrEngine:
    """
    Vision-model OCR over the whole PDF in a single request.

    A timeout or parse error on the first attempt is retried once, and so is
    a first attempt that returns no text at all. A missing API key fails
    immediately.
    """

    def __init__(self, client: GeminiClient, model: str = "gemini-2.5-flash"):
        self.client = client
        self.model = model

    async def _attempt(self, prompt: str, pdf_bytes: bytes, timeout_s: float) -> dict[int, str]:
        try:
            raw_text = await asyncio.wait_for(
                self.client.generate_with_document(self.model, prompt, pdf_bytes),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise OcrTimeoutError(f"OCR timed out after {timeout_s}s") from e
        except ProviderError as e:
            if isinstance(e.__cause__, httpx.TimeoutException):
                raise OcrTimeoutError(str(e)) from e
            raise OcrError(str(e)) from e

        return parse_ocr_response(raw_text)

    async def extract_text(
        self,
        pdf_bytes: bytes,
        pages: list[int],
        timeout_s: float = DEFAULT_OCR_TIMEOUT_SECONDS,
    ) -> dict[int, str]:
        selected = normalize_pages(pages)
        if not selected:
            return {}
        if not self.client.is_configured:
            raise OcrMissingCredentialError("Google API key not configured")

        prompt = build_ocr_prompt(selected)

        try:
            first = await self._attempt(prompt, pdf_bytes, timeout_s)
        except (OcrTimeoutError, OcrParseError) as e:
            logger.warning("Gemini OCR attempt failed (%s), retrying once", e.code)
            return await self._attempt(prompt, pdf_bytes, timeout_s)

        if has_any_text(first):
            return first

        logger.info("Gemini OCR returned no text for pages %s, retrying once", selected)
        return await self._attempt(prompt, pdf_bytes, timeout_s)


class TesseractOCR:
    """OCR engine using Tesseract on rendered page images."""

    def __init__(
        self,
        language: str = "eng",
        psm: int = 3,
        oem: int = 3,
        config: Optional[str] = None,
    ):
        """Initialize Tesseract OCR.

        Args:
            language: Tesseract language code(s), e.g., 'eng', 'eng+ces'.
            psm: Page segmentation mode (3 = fully automatic, whole page).
            oem: OCR Engine mode (3 = default, based on what's available).
            config: Additional Tesseract config string.
        """
        self.language = language
        self.psm = psm
        self.oem = oem
        self.config = config or ""

    def _build_config(self) -> str:
        """Build Tesseract configuration string."""
        config_parts = [
            f"--psm {self.psm}",
            f"--oem {self.oem}",
        ]
        if self.config:
            config_parts.append(self.config)
        return " ".join(config_parts)

    def extract_text(self, image: Image.Image) -> str:
        """Extract plain text from a page image.

        Args:
            image: Rendered page as a PIL image.

        Returns:
            Extracted text string.
        """
        text = pytesseract.image_to_string(
            image,
            lang=self.language,
            config=self._build_config(),
        )
        return text.strip()


def render_page_image(pdf_doc: fitz.Document, page_number: int, scale: float) -> Image.Image:
    """Render a 1-indexed PDF page to an RGB PIL image."""
    page = pdf_doc[page_number - 1]
    pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    return Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)


class TesseractOcrEngine:
    """Local OCR: render pages with PyMuPDF, recognize with Tesseract."""

    def __init__(
        self,
        ocr: Optional[TesseractOCR] = None,
        enabled: bool = True,
        page_cap: int = TESSERACT_PAGE_CAP,
        scale: float = TESSERACT_RENDER_SCALE,
    ):
        self.ocr = ocr or TesseractOCR()
        self.enabled = enabled
        self.page_cap = page_cap
        self.scale = scale

    def candidate_pages(self, pages: list[int]) -> list[int]:
        return normalize_pages(pages)[: self.page_cap]

    def _recognize(self, pdf_bytes: bytes, pages: list[int]) -> dict[int, str]:
        try:
            pdf_doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except RuntimeError as e:
            raise OcrProviderUnavailableError(f"Cannot open PDF for rendering: {e}") from e

        ocr_by_page: dict[int, str] = {}
        try:
            for page_number in pages:
                if page_number > pdf_doc.page_count:
                    continue
                image = render_page_image(pdf_doc, page_number, self.scale)
                ocr_by_page[page_number] = self.ocr.extract_text(image)
        except pytesseract.TesseractNotFoundError as e:
            raise OcrProviderUnavailableError("Tesseract binary not found") from e
        finally:
            pdf_doc.close()

        return ocr_by_page

    async def extract_text(
        self,
        pdf_bytes: bytes,
        pages: list[int],
        timeout_s: float = DEFAULT_OCR_TIMEOUT_SECONDS,
    ) -> dict[int, str]:
        selected = self.candidate_pages(pages)
        if not selected:
            return {}
        if not self.enabled:
            raise OcrProviderUnavailableError("Tesseract OCR disabled")

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._recognize, pdf_bytes, selected),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise OcrTimeoutError(f"Tesseract OCR timed out after {timeout_s}s") from e


class OcrProviderResult(BaseModel):
    """Outcome of one OCR provider run; failures become warnings."""

    ocr_by_page: dict[int, str] = Field(default_factory=dict)
    engine: str
    engine_used: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    latency_ms: float = 0.0
    pages_processed: int = 0


def ocr_failure_warning(error: Exception) -> str:
    code = error.code if isinstance(error, OcrError) else OcrError.code
    return WARNING_BY_CODE.get(code, "ocr_rescue_error")


async def run_ocr_provider(
    engines: dict[str, OcrEngine],
    engine: Optional[str],
    pdf_bytes: bytes,
    pages: list[int],
    timeout_s: float = DEFAULT_OCR_TIMEOUT_SECONDS,
) -> OcrProviderResult:
    """Run the selected OCR engine and absorb its failures.

    Args:
        engines: Available engines keyed by id ('gemini', 'tesseract').
        engine: Requested engine id.
        pdf_bytes: Source PDF.
        pages: Candidate page numbers.
        timeout_s: Per-attempt timeout.

    Returns:
        OcrProviderResult; on failure ``ocr_by_page`` is empty and
        ``warnings`` holds an ``ocr_rescue_*`` code.
    """
    engine_id = resolve_ocr_engine(engine)
    start = time.perf_counter()
    selected = engines.get(engine_id)

    if isinstance(selected, TesseractOcrEngine):
        pages_processed = len(selected.candidate_pages(pages))
    else:
        pages_processed = len(normalize_pages(pages))

    def elapsed_ms() -> float:
        return (time.perf_counter() - start) * 1000

    if selected is None:
        logger.warning("OCR engine '%s' is not available", engine_id)
        return OcrProviderResult(
            engine=engine_id,
            warnings=["ocr_rescue_error"],
            latency_ms=elapsed_ms(),
            pages_processed=0,
        )

    try:
        ocr_by_page = await selected.extract_text(pdf_bytes, pages, timeout_s)
    except OcrError as e:
        logger.warning("OCR engine '%s' failed: %s", engine_id, e)
        return OcrProviderResult(
            engine=engine_id,
            engine_used=engine_id,
            warnings=[ocr_failure_warning(e)],
            latency_ms=elapsed_ms(),
            pages_processed=pages_processed,
        )

    return OcrProviderResult(
        ocr_by_page=ocr_by_page,
        engine=engine_id,
        engine_used=engine_id,
        latency_ms=elapsed_ms(),
        pages_processed=pages_processed,
    )
