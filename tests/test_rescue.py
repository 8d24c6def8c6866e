"""Tests for OCR rescue."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from docrag.pipeline.stage_rescue import (
    merge_ocr_text_into_pages,
    rechunk_pages_after_ocr,
    rescue_low_text_document,
    resolve_ocr_candidate_pages,
    should_trigger_ocr_rescue,
)

PDF = "application/pdf"
SCANNED_TEXT = (
    "Emergency contacts for the plant, updated in March 2024, with the shift lead on duty "
    "reachable at +420 777 123 456 and the backup phone at +420 777 654 321, "
    "plus the fire brigade, the security desk and the facility manager listed on page 2 "
    "of the handbook, which every new employee signs during onboarding week"
)


def ocr_engine(result):
    engine = MagicMock()
    engine.extract_text = AsyncMock(return_value=result)
    return engine


class TestTrigger:
    """Tests for rescue eligibility."""

    def test_only_low_chunk_pdfs(self):
        assert should_trigger_ocr_rescue(PDF, 2)
        assert not should_trigger_ocr_rescue(PDF, 3)
        assert not should_trigger_ocr_rescue("text/plain", 0)

    def test_candidate_pages_are_low_text_and_capped(self, make_page):
        """Pages under 120 chars are candidates, first 20 only."""
        pages = [make_page("", page_number=n) for n in range(25, 0, -1)]
        pages.append(make_page("x" * 200, page_number=26))

        assert resolve_ocr_candidate_pages(pages) == list(range(1, 21))


class TestMergeAndRechunk:
    """Tests for text merging and the short-text fallback."""

    def test_ocr_text_is_appended(self, make_page):
        """Existing text stays first."""
        pages = [make_page("Header text", page_number=1), make_page("", page_number=2)]
        merged = merge_ocr_text_into_pages(pages, {1: " scanned ", 2: "only ocr", 3: "ignored"})

        assert merged[0].full_text == "Header text\nscanned"
        assert merged[1].full_text == "only ocr"

    def test_short_text_fallback(self, make_page):
        """A short but real page survives with min_tokens=1."""
        page = make_page("Jana Novak, +420 777 123 456")
        result = rechunk_pages_after_ocr([page])

        assert len(result.chunks) == 1
        assert result.used_short_text_fallback


class TestRescueLowTextDocument:
    """Tests for the full rescue flow."""

    @pytest.mark.asyncio
    async def test_applied_when_chunks_increase(self, make_page):
        """OCR text on a blank scan yields chunks and diagnostics."""
        pages = [make_page("", page_number=1)]
        engine = ocr_engine({1: SCANNED_TEXT})

        outcome = await rescue_low_text_document(b"%PDF", PDF, pages, [], {"gemini": engine})

        assert outcome.diagnostics.triggered
        assert outcome.diagnostics.applied
        assert outcome.diagnostics.candidate_pages == [1]
        assert outcome.diagnostics.chunks_after == len(outcome.chunks) == 1
        assert outcome.pages[0].full_text == SCANNED_TEXT

    @pytest.mark.asyncio
    async def test_empty_text_is_not_applied(self, make_page):
        pages = [make_page("", page_number=1)]
        outcome = await rescue_low_text_document(
            b"%PDF", PDF, pages, [], {"gemini": ocr_engine({1: "   "})}
        )

        assert not outcome.diagnostics.applied
        assert outcome.diagnostics.warnings == ["ocr_rescue_empty_text"]
        assert outcome.pages is pages

    @pytest.mark.asyncio
    async def test_not_triggered_for_text(self, make_page):
        """Non-PDF input is returned untouched without calling OCR."""
        engine = ocr_engine({})
        outcome = await rescue_low_text_document(
            b"x", "text/plain", [make_page("")], [], {"gemini": engine}
        )

        assert not outcome.diagnostics.triggered
        engine.extract_text.assert_not_awaited()
