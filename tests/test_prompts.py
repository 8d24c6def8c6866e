"""Tests for prompt building and audit parsing."""

from uuid import uuid4

from docrag.models import SourceChunk
from docrag.rag import build_context, message
from docrag.rag.prompts import (
    CONTEXT_SEPARATOR,
    format_source,
    generator_user_prompt,
    parse_audit,
)


def source(citation_id, content, filename="guide.pdf", page=1):
    return SourceChunk(
        citation_id=citation_id,
        chunk_id=uuid4(),
        document_id=uuid4(),
        content=content,
        page_number=page,
        filename=filename,
    )


class TestBuildContext:
    """Tests for the context budget."""

    def test_format(self):
        assert format_source(source("2", "Body", filename=None, page=4)) == "[2] (Unknown, p.4)\nBody"

    def test_whole_sources_within_budget(self):
        """Sources are added whole until the next would exceed the budget."""
        sources = [source("1", "a" * 40), source("2", "b" * 40), source("3", "c" * 40)]
        one = len(format_source(sources[0]))
        budget = 2 * one + len(CONTEXT_SEPARATOR)

        context = build_context(sources, budget)

        assert context == CONTEXT_SEPARATOR.join(format_source(s) for s in sources[:2])

    def test_first_source_always_included(self):
        context = build_context([source("1", "x" * 500), source("2", "y")], char_budget=10)
        assert context == format_source(source("1", "x" * 500))

    def test_empty(self):
        assert build_context([], 1000) == ""


class TestMessages:
    def test_localized(self):
        assert message("not_found", "cs") == "Tuto informaci v dokumentaci nemám."
        assert message("degraded", "de") == message("degraded", "en")

    def test_user_prompt_language(self):
        assert generator_user_prompt("Why?", "ctx", "cs").endswith("OTÁZKA: Why?")
        assert generator_user_prompt("Why?", "ctx").startswith("SOURCES:\nctx")


class TestParseAudit:
    """Tests for auditor payload parsing."""

    def test_full_payload(self):
        audit = parse_audit(
            {
                "verified": True,
                "confidence": 0.91,
                "assessment": "All claims cited",
                "verifiedClaims": ["a"],
                "removedClaims": [],
                "correctedResponse": "Answer [1].",
            },
            draft="Answer [1].",
        )

        assert audit.verified
        assert audit.confidence == 0.91
        assert audit.verified_claims == ["a"]

    def test_lenient_values(self):
        """Out-of-range confidence is clamped; only a literal true verifies."""
        audit = parse_audit({"verified": "true", "confidence": 1.7, "correctedResponse": "  "}, draft="draft")

        assert not audit.verified
        assert audit.confidence == 1.0
        assert audit.corrected_response == "draft"

    def test_bad_confidence(self):
        assert parse_audit({"confidence": "high"}, draft="d").confidence == 0.0
