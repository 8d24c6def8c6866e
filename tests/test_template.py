"""Tests for template detection and the profile builder."""

import json

import pytest

from docrag.models import (
    BoundingBox,
    DetectionMode,
    ParsedDocument,
    SemanticChunk,
    TemplateAnchor,
    TemplateProfile,
)
from docrag.pipeline.stage_template import (
    TemplateDetector,
    build_page_evidence,
    build_template_profile,
    compute_page_visual_hash,
    compute_sampled_page_numbers,
    evaluate_profile,
    load_template_profiles,
    normalize_profile,
    normalize_text,
)

PDF = "application/pdf"
HEADER_BOX = BoundingBox(x=0.1, y=0.02, width=0.5, height=0.03)
BODY_TEXT = "Revenue grew 12% in the third quarter, driven by 3 new regional contracts"

PROFILE = {
    "id": "acme",
    "name": "ACME report",
    "matchThreshold": 0.5,
    "anchors": [
        {"text": "ACME Corporation", "page": 1, "region": HEADER_BOX.model_dump()},
        {"text": "   "},
        "not an anchor",
    ],
    "boilerplatePatterns": ["Confidential, do not distribute", 7],
}


@pytest.fixture
def report_page(make_block, make_page):
    blocks = [
        make_block("ACME Corporation Quarterly Report", x=0.1, y=0.02, width=0.5, height=0.03),
        make_block(BODY_TEXT, x=0.1, y=0.2, width=0.8),
    ]
    return make_page("ACME Corporation Quarterly Report\n" + BODY_TEXT, blocks=blocks)


@pytest.fixture
def report(report_page):
    return ParsedDocument(page_count=1, pages=[report_page])


def chunk(text, index, bbox, page=1):
    return SemanticChunk(text=text, page=page, bbox=bbox, index=index, token_count=10)


class TestNormalization:
    """Tests for text normalization and sampling."""

    def test_normalize_text_strips_accents(self):
        assert normalize_text("Žluťoučký  KŮŇ!") == "zlutoucky kun"

    def test_sampled_pages(self):
        """Sample 10% of pages, at least 3 and at most 12."""
        assert compute_sampled_page_numbers(0) == []
        assert compute_sampled_page_numbers(2) == [1, 2]
        assert compute_sampled_page_numbers(50) == [1, 2, 3, 4, 5]
        assert len(compute_sampled_page_numbers(500)) == 12

    def test_visual_hash_ignores_block_order(self, make_block, make_page):
        blocks = [make_block("Header", y=0.1), make_block("Footer", y=0.9)]
        forward = make_page("Header\nFooter", blocks=blocks)
        backward = make_page("Header\nFooter", blocks=blocks[::-1])

        assert compute_page_visual_hash(forward) == compute_page_visual_hash(backward)


class TestNormalizeProfile:
    """Tests for profile validation."""

    def test_unusable_entries_dropped(self):
        """Blank anchors and non-string patterns are removed."""
        profile = normalize_profile(PROFILE)

        assert profile.id == "acme"
        assert profile.threshold == 0.5
        assert [a.text for a in profile.anchors] == ["ACME Corporation"]
        assert profile.boilerplate_patterns == ["Confidential, do not distribute"]

    def test_missing_name_rejected(self):
        assert normalize_profile({"id": "x"}) is None

    def test_directory_loading(self, tmp_path):
        """Invalid files are skipped with a warning."""
        (tmp_path / "acme.json").write_text(json.dumps(PROFILE), encoding="utf-8")
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

        loaded = load_template_profiles(tmp_path)

        assert [p.id for p in loaded.profiles] == ["acme"]
        assert loaded.warnings == ["invalid_profile_file:broken.json"]

    def test_missing_directory(self, tmp_path):
        assert load_template_profiles(tmp_path / "nope").warnings == ["profile_missing"]


class TestEvaluateProfile:
    """Tests for profile scoring."""

    def test_built_profile_scores_one_on_its_source(self, report):
        """A profile built from a document matches that document exactly."""
        profile = build_template_profile(report, "acme")
        evidence = [build_page_evidence(p) for p in report.pages]

        assert evaluate_profile(profile, evidence) == pytest.approx(1.0)

    def test_anchor_outside_region_not_counted(self, report):
        """Anchor text elsewhere on the page does not count when a region is set."""
        profile = TemplateProfile(
            id="acme",
            name="ACME",
            anchors=[
                TemplateAnchor(
                    text="ACME Corporation",
                    page=1,
                    region=BoundingBox(x=0.1, y=0.9, width=0.5, height=0.05),
                )
            ],
        )
        evidence = [build_page_evidence(p) for p in report.pages]

        assert evaluate_profile(profile, evidence) == 0.0

    def test_token_hash_gets_half_credit(self, report, make_block, make_page):
        """Same text in a different layout scores half the visual weight."""
        profile = build_template_profile(report, "acme")
        profile = profile.model_copy(update={"anchors": []})
        moved = make_page(
            "",
            blocks=[
                make_block("ACME Corporation Quarterly Report", y=0.5),
                make_block(BODY_TEXT, y=0.6),
            ],
        )

        assert evaluate_profile(profile, [build_page_evidence(moved)]) == pytest.approx(0.5)


class TestTemplateDetector:
    """Tests for TemplateDetector.detect."""

    @pytest.mark.asyncio
    async def test_boilerplate_flagged(self, tmp_path, report):
        """Anchors in place and pattern hits are flagged, body text is not."""
        (tmp_path / "acme.json").write_text(json.dumps(PROFILE), encoding="utf-8")
        detector = TemplateDetector(tmp_path, enabled=True)
        chunks = [
            chunk("ACME Corporation Quarterly Report", 0, HEADER_BOX),
            chunk(BODY_TEXT, 1, BoundingBox(x=0.1, y=0.2, width=0.8, height=0.02)),
            chunk("Confidential, do not distribute this page", 2, BoundingBox(x=0.1, y=0.95, width=0.8, height=0.02)),
        ]

        result = await detector.detect(b"%PDF", PDF, report, chunks)

        assert result.boilerplate_chunk_indexes == {0, 2}
        assert result.diagnostics.matched
        assert result.diagnostics.profile_id == "acme"
        assert result.diagnostics.detection_mode == DetectionMode.TEXT
        assert result.diagnostics.boilerplate_chunks == 2

    @pytest.mark.asyncio
    async def test_disabled_is_noop(self, tmp_path, report):
        detector = TemplateDetector(tmp_path, enabled=False)
        result = await detector.detect(b"%PDF", PDF, report, [])

        assert not result.diagnostics.matched
        assert result.boilerplate_chunk_indexes == set()

    @pytest.mark.asyncio
    async def test_override_not_found(self, tmp_path, report):
        (tmp_path / "acme.json").write_text(json.dumps(PROFILE), encoding="utf-8")
        detector = TemplateDetector(tmp_path, enabled=True)

        result = await detector.detect(b"%PDF", PDF, report, [], profile_id="other")

        assert "profile_override_not_found" in result.diagnostics.warnings
        assert not result.diagnostics.matched


class TestBuildTemplateProfile:
    """Tests for the profile builder."""

    def test_profile_contents(self, report):
        """Anchors, patterns and fingerprints come from the sample."""
        profile = build_template_profile(report, "acme", threshold=2.0, metadata={"source": "a.pdf"})

        assert profile.name == "Template acme"
        assert profile.threshold == 0.95
        assert [fp.page for fp in profile.sampled_pages] == [1]
        assert "acme corporation quarterly report" in profile.boilerplate_patterns
        assert profile.metadata["source"] == "a.pdf"
        assert profile.metadata["pageCount"] == 1

    def test_round_trips_through_json(self, report):
        """A written profile loads back with the same id and fingerprints."""
        profile = build_template_profile(report, "acme")
        raw = json.loads(profile.model_dump_json(by_alias=True, exclude_none=True))
        loaded = normalize_profile(raw)

        assert loaded.id == "acme"
        assert loaded.sampled_pages == profile.sampled_pages
