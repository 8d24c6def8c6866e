"""Template Stage - Detect recurring document templates and flag boilerplate.

Disabled by default and PDF-only. Evidence is collected from the first few
pages: per-page text, a layout fingerprint (visual hash) and a token
fingerprint (token hash). Each registered profile is scored against that
evidence; when the best profile clears its threshold, chunks that contain
its boilerplate patterns or its anchors (in place) are flagged so they are
stored but never embedded, indexed or mined.

Profiles are JSON files in ``template_profile_dir``: either a single profile
or a registry ``{"defaultProfileId": ..., "profiles": [...]}``.
"""

import hashlib
import json
import logging
import math
import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from docrag.errors import OcrError, OcrTimeoutError, TemplateProfileInvalidError
from docrag.models import (
    BoundingBox,
    DetectionMode,
    ParsedDocument,
    ParsedPage,
    SemanticChunk,
    TemplateAnchor,
    TemplateDetectionResult,
    TemplateDiagnostics,
    TemplatePageFingerprint,
    TemplateProfile,
    TextBlock,
)

from .stage_ocr import OcrEngine
from .stage_parse import PDF_MIME_TYPE

logger = logging.getLogger(__name__)

MAX_SAMPLED_PAGES = 12
MIN_SAMPLED_PAGES = 3
SAMPLE_PERCENT = 0.10

LOW_EVIDENCE_TEXT_LENGTH = 50
TOKEN_HASH_TOKENS = 160
SNIPPET_LENGTH = 32

ANCHOR_WEIGHT = 0.6
VISUAL_WEIGHT = 0.4
TOKEN_HASH_CREDIT = 0.5
ANCHOR_REGION_MIN_OVERLAP = 0.15
BOILERPLATE_REGION_MIN_OVERLAP = 0.2

# Profile builder
BUILDER_MIN_ANCHOR_LENGTH = 6
BUILDER_MAX_ANCHOR_LENGTH = 140
BUILDER_MAX_ANCHORS = 12
BUILDER_MAX_PATTERNS = 14
BUILDER_DEFAULT_THRESHOLD = 0.65

NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(value: str) -> str:
    """Lowercase, strip accents, collapse non-alphanumerics to single spaces."""
    decomposed = unicodedata.normalize("NFD", value.lower())
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return NON_ALNUM_RE.sub(" ", stripped).strip()


def tokenize(value: str) -> list[str]:
    return [token for token in normalize_text(value).split() if len(token) >= 3]


def stable_hash(parts: list[str]) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:24]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def compute_sampled_page_numbers(page_count: int) -> list[int]:
    """First ``min(12, max(3, ceil(page_count * 0.10)))`` pages, bounded by page_count."""
    if page_count <= 0:
        return []
    desired = min(MAX_SAMPLED_PAGES, max(MIN_SAMPLED_PAGES, math.ceil(page_count * SAMPLE_PERCENT)))
    return list(range(1, min(page_count, desired) + 1))


def compute_page_visual_hash(page: ParsedPage) -> str:
    """Layout fingerprint of a page, independent of block order."""
    if not page.text_blocks:
        return stable_hash([
            f"empty:{_round_half_up(page.width)}x{_round_half_up(page.height)}",
            f"page:{page.page_number}",
        ])

    packed = []
    for block in page.text_blocks:
        if not block.text.strip():
            continue
        box = block.bbox
        packed.append(
            f"{_round_half_up(box.x * 100)},{_round_half_up(box.y * 100)},"
            f"{_round_half_up(box.width * 100)},{_round_half_up(box.height * 100)}:"
            f"{normalize_text(block.text)[:SNIPPET_LENGTH]}"
        )
    return stable_hash(sorted(packed))


def compute_text_token_hash(text: str) -> str:
    return stable_hash(tokenize(text)[:TOKEN_HASH_TOKENS])


# =============================================================================
# Profile loading
# =============================================================================


@dataclass
class LoadedProfiles:
    profiles: list[TemplateProfile] = field(default_factory=list)
    default_profile_id: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def _is_finite_box(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    try:
        return all(math.isfinite(float(value[key])) for key in ("x", "y", "width", "height"))
    except (KeyError, TypeError, ValueError):
        return False


def _clean_anchor(raw: Any) -> Optional[dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    text = raw.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    page = raw.get("page")
    weight = raw.get("weight")
    return {
        "text": text,
        "page": page if isinstance(page, int) and not isinstance(page, bool) else None,
        "region": raw.get("region") if _is_finite_box(raw.get("region")) else None,
        "weight": weight if isinstance(weight, (int, float)) and math.isfinite(weight) else None,
    }


def _clean_fingerprint(raw: Any) -> bool:
    if not isinstance(raw, dict):
        return False
    page = raw.get("page")
    visual_hash = raw.get("visualHash", raw.get("visual_hash"))
    return (
        isinstance(page, int)
        and not isinstance(page, bool)
        and page > 0
        and isinstance(visual_hash, str)
        and len(visual_hash) > 0
    )


def normalize_profile(raw: Any) -> Optional[TemplateProfile]:
    """Validate a raw profile dict, dropping unusable anchors and fingerprints.

    Returns:
        TemplateProfile, or None if the id or name is missing.
    """
    if not isinstance(raw, dict):
        return None

    data = dict(raw)
    anchors = raw.get("anchors")
    data["anchors"] = [a for a in map(_clean_anchor, anchors) if a] if isinstance(anchors, list) else []

    sampled_key = "sampledPages" if "sampledPages" in raw else "sampled_pages"
    sampled = raw.get(sampled_key)
    data.pop("sampled_pages", None)
    data["sampledPages"] = [p for p in sampled if _clean_fingerprint(p)] if isinstance(sampled, list) else []

    patterns_key = "boilerplatePatterns" if "boilerplatePatterns" in raw else "boilerplate_patterns"
    patterns = raw.get(patterns_key)
    data.pop("boilerplate_patterns", None)
    data["boilerplatePatterns"] = (
        [p for p in patterns if isinstance(p, str)] if isinstance(patterns, list) else []
    )

    if not isinstance(data.get("metadata"), dict):
        data.pop("metadata", None)
    if not isinstance(data.get("version"), int):
        data.pop("version", None)
    for key in ("matchThreshold", "match_threshold"):
        if key in data and not isinstance(data[key], (int, float)):
            data.pop(key)

    try:
        return TemplateProfile.model_validate(data)
    except ValidationError:
        return None


def load_profiles_from_file(path: Path) -> LoadedProfiles:
    """Load one profile file (single profile or registry).

    Raises:
        TemplateProfileInvalidError: If the file cannot be read or is not JSON.
    """
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TemplateProfileInvalidError(str(path), str(e)) from e

    if isinstance(parsed, dict) and isinstance(parsed.get("profiles"), list):
        profiles = [p for p in map(normalize_profile, parsed["profiles"]) if p]
        default_id = parsed.get("defaultProfileId")
        return LoadedProfiles(
            profiles=profiles,
            default_profile_id=default_id if isinstance(default_id, str) else None,
        )

    single = normalize_profile(parsed)
    if single is None:
        return LoadedProfiles(warnings=[f"invalid_profile_file:{path.name}"])
    return LoadedProfiles(profiles=[single])


def load_template_profiles(profile_dir: str | Path) -> LoadedProfiles:
    """Load every ``*.json`` profile in ``profile_dir``.

    Invalid files are skipped with an ``invalid_profile_file:<name>`` warning;
    a missing or empty directory yields ``profile_missing``.
    """
    directory = Path(profile_dir)
    try:
        files = sorted(
            p for p in directory.iterdir() if p.is_file() and p.name.lower().endswith(".json")
        )
    except FileNotFoundError:
        return LoadedProfiles(warnings=["profile_missing"])
    except OSError as e:
        logger.warning("Failed loading template profiles from %s: %s", directory, e)
        return LoadedProfiles(warnings=["profile_load_error"])

    if not files:
        return LoadedProfiles(warnings=["profile_missing"])

    result = LoadedProfiles()
    for path in files:
        try:
            loaded = load_profiles_from_file(path)
        except TemplateProfileInvalidError as e:
            logger.warning("Skipping template profile: %s", e)
            result.warnings.append(f"invalid_profile_file:{path.name}")
            continue
        result.profiles.extend(loaded.profiles)
        result.warnings.extend(loaded.warnings)
        if result.default_profile_id is None and loaded.default_profile_id:
            result.default_profile_id = loaded.default_profile_id

    return result


# =============================================================================
# Evidence and scoring
# =============================================================================


@dataclass
class PageEvidence:
    page: int
    text: str
    normalized_text: str
    has_text_layer: bool
    has_ocr_text: bool
    visual_hash: str
    token_hash: str
    blocks: list[TextBlock]


def build_page_evidence(
    page: ParsedPage,
    ocr_text: str = "",
) -> PageEvidence:
    text_layer = " ".join(t for t in (b.text.strip() for b in page.text_blocks) if t)
    ocr_text = ocr_text.strip()
    merged = " ".join(part for part in (text_layer, ocr_text) if part).strip()
    return PageEvidence(
        page=page.page_number,
        text=merged,
        normalized_text=normalize_text(merged),
        has_text_layer=len(text_layer) >= LOW_EVIDENCE_TEXT_LENGTH,
        has_ocr_text=bool(ocr_text),
        visual_hash=compute_page_visual_hash(page),
        token_hash=compute_text_token_hash(merged),
        blocks=list(page.text_blocks),
    )


def resolve_detection_mode(evidence: list[PageEvidence]) -> DetectionMode:
    has_text = any(row.has_text_layer for row in evidence)
    has_ocr = any(row.has_ocr_text for row in evidence)
    if has_text and has_ocr:
        return DetectionMode.HYBRID
    if has_ocr:
        return DetectionMode.OCR
    if has_text:
        return DetectionMode.TEXT
    return DetectionMode.NONE


def _anchor_found(anchor: TemplateAnchor, evidence: list[PageEvidence]) -> bool:
    normalized_anchor = normalize_text(anchor.text)
    if not normalized_anchor:
        return False

    candidates = [row for row in evidence if row.page == anchor.page] if anchor.page else evidence
    for row in candidates:
        if normalized_anchor not in row.normalized_text:
            continue
        if anchor.region is None or not row.blocks:
            return True
        if any(
            normalized_anchor in normalize_text(block.text)
            and block.bbox.overlap_ratio(anchor.region) >= ANCHOR_REGION_MIN_OVERLAP
            for block in row.blocks
        ):
            return True
    return False


def evaluate_profile(profile: TemplateProfile, evidence: list[PageEvidence]) -> float:
    """Score a profile against page evidence.

    Returns:
        ``0.6 * anchor_score + 0.4 * visual_score``, or whichever side is
        available when the profile has no anchors or no sampled pages
        overlapping the evidence.
    """
    if not evidence:
        return 0.0

    evidence_by_page = {row.page: row for row in evidence}

    visual_score = 0.0
    visual_weight = 0
    for fingerprint in profile.sampled_pages:
        target = evidence_by_page.get(fingerprint.page)
        if target is None:
            continue
        visual_weight += 1
        if target.visual_hash == fingerprint.visual_hash:
            visual_score += 1.0
        elif fingerprint.token_hash and target.token_hash == fingerprint.token_hash:
            visual_score += TOKEN_HASH_CREDIT

    anchor_score = 0.0
    anchor_weight = 0.0
    for anchor in profile.anchors:
        weight = anchor.weight if anchor.weight is not None else 1.0
        anchor_weight += weight
        if _anchor_found(anchor, evidence):
            anchor_score += weight

    resolved_visual = visual_score / visual_weight if visual_weight > 0 else 0.0
    resolved_anchor = anchor_score / anchor_weight if anchor_weight > 0 else 0.0

    if visual_weight == 0 and anchor_weight == 0:
        return 0.0
    if visual_weight == 0:
        return resolved_anchor
    if anchor_weight == 0:
        return resolved_visual
    return resolved_anchor * ANCHOR_WEIGHT + resolved_visual * VISUAL_WEIGHT


def resolve_target_profiles(
    profiles: list[TemplateProfile],
    profile_override: Optional[str],
    default_profile_id: Optional[str],
) -> list[TemplateProfile]:
    """Candidate profiles in scoring order; an override restricts to one."""
    if profile_override:
        return [p for p in profiles if p.id == profile_override][:1]

    if default_profile_id:
        default = next((p for p in profiles if p.id == default_profile_id), None)
        if default is not None:
            return [default] + [p for p in profiles if p.id != default.id]

    return list(profiles)


def classify_boilerplate_chunks(
    chunks: list[SemanticChunk],
    profile: Optional[TemplateProfile],
    matched: bool,
) -> set[int]:
    """Indexes (positions in ``chunks``) of chunks that are template boilerplate."""
    if profile is None or not matched:
        return set()

    patterns = [p for p in (normalize_text(p) for p in profile.boilerplate_patterns) if p]
    boilerplate: set[int] = set()

    for position, chunk in enumerate(chunks):
        normalized_chunk = normalize_text(chunk.text)
        if not normalized_chunk:
            continue

        if any(pattern in normalized_chunk for pattern in patterns):
            boilerplate.add(position)
            continue

        for anchor in profile.anchors:
            normalized_anchor = normalize_text(anchor.text)
            if not normalized_anchor or normalized_anchor not in normalized_chunk:
                continue
            if anchor.page and chunk.page != anchor.page:
                continue
            if anchor.region is None or chunk.bbox.overlap_ratio(anchor.region) >= BOILERPLATE_REGION_MIN_OVERLAP:
                boilerplate.add(position)
                break

    return boilerplate


class TemplateDetector:
    """
    Matches documents against template profiles on disk.

    Profiles are re-read on every call so new profile files take effect
    without a restart.
    """

    def __init__(
        self,
        profile_dir: str | Path,
        enabled: bool = False,
        ocr_fallback_enabled: bool = False,
        ocr_engine: Optional[OcrEngine] = None,
        ocr_timeout_s: float = 20.0,
    ):
        self.profile_dir = Path(profile_dir)
        self.enabled = enabled
        self.ocr_fallback_enabled = ocr_fallback_enabled
        self.ocr_engine = ocr_engine
        self.ocr_timeout_s = ocr_timeout_s

    async def _collect_evidence(
        self,
        pdf_bytes: bytes,
        document: ParsedDocument,
    ) -> tuple[list[PageEvidence], list[str]]:
        warnings: list[str] = []
        pages_by_number = {page.page_number: page for page in document.pages}
        sampled = [
            pages_by_number[n]
            for n in compute_sampled_page_numbers(document.page_count)
            if n in pages_by_number
        ]

        needs_ocr = [p.page_number for p in sampled if p.text_length < LOW_EVIDENCE_TEXT_LENGTH]
        ocr_by_page: dict[int, str] = {}

        if needs_ocr and self.ocr_fallback_enabled and self.ocr_engine is not None:
            try:
                ocr_by_page = await self.ocr_engine.extract_text(pdf_bytes, needs_ocr, self.ocr_timeout_s)
            except OcrTimeoutError:
                logger.warning("Template OCR fallback timed out for pages %s", needs_ocr)
                warnings.append("ocr_timeout")
            except OcrError as e:
                logger.warning("Template OCR fallback failed: %s", e)
                warnings.append("ocr_error")
        elif needs_ocr:
            warnings.append("ocr_disabled")

        evidence = [build_page_evidence(p, ocr_by_page.get(p.page_number, "")) for p in sampled]
        return evidence, warnings

    async def detect(
        self,
        pdf_bytes: bytes,
        mime_type: str,
        document: ParsedDocument,
        chunks: list[SemanticChunk],
        profile_id: Optional[str] = None,
    ) -> TemplateDetectionResult:
        """Detect a template and classify boilerplate chunks.

        Args:
            pdf_bytes: Source file bytes (used only for OCR fallback).
            mime_type: Source MIME type.
            document: Parsed document.
            chunks: Chunks to classify.
            profile_id: Restrict matching to this profile id.

        Returns:
            TemplateDetectionResult; a no-op result when disabled or not a PDF.
        """
        if mime_type != PDF_MIME_TYPE or not self.enabled:
            return TemplateDetectionResult()

        loaded = load_template_profiles(self.profile_dir)
        warnings = list(loaded.warnings)
        candidates = resolve_target_profiles(loaded.profiles, profile_id, loaded.default_profile_id)

        if profile_id and not candidates:
            warnings.append("profile_override_not_found")
        if not candidates:
            return TemplateDetectionResult(diagnostics=TemplateDiagnostics(warnings=warnings))

        evidence, evidence_warnings = await self._collect_evidence(pdf_bytes, document)
        warnings.extend(evidence_warnings)
        detection_mode = resolve_detection_mode(evidence)

        best_profile: Optional[TemplateProfile] = None
        best_score = -1.0
        for profile in candidates:
            score = evaluate_profile(profile, evidence)
            if score > best_score:
                best_score = score
                best_profile = profile

        matched = best_score >= best_profile.threshold
        if not matched:
            warnings.append("low_confidence")

        boilerplate = classify_boilerplate_chunks(chunks, best_profile, matched)
        diagnostics = TemplateDiagnostics(
            profile_id=best_profile.id if matched else None,
            matched=matched,
            match_score=round(best_score, 4),
            detection_mode=detection_mode,
            boilerplate_chunks=len(boilerplate),
            warnings=warnings,
        )

        logger.info(
            "Template detection: matched=%s score=%.4f profile=%s mode=%s filtered=%d",
            matched,
            best_score,
            diagnostics.profile_id or "none",
            detection_mode.value,
            len(boilerplate),
        )
        return TemplateDetectionResult(diagnostics=diagnostics, boilerplate_chunk_indexes=boilerplate)


# =============================================================================
# Profile builder
# =============================================================================


def collect_anchor_candidates(pages: list[ParsedPage]) -> list[TemplateAnchor]:
    """Rank recurring, mid-length text blocks as template anchors."""
    first_seen: dict[str, tuple[str, int, BoundingBox]] = {}
    counts: dict[str, int] = {}

    for page in pages:
        for block in page.text_blocks:
            text = WHITESPACE_RE.sub(" ", block.text).strip()
            if not BUILDER_MIN_ANCHOR_LENGTH <= len(text) <= BUILDER_MAX_ANCHOR_LENGTH:
                continue
            normalized = normalize_text(text)
            if len(normalized) < BUILDER_MIN_ANCHOR_LENGTH or normalized.isdigit():
                continue
            if normalized not in first_seen:
                first_seen[normalized] = (text, page.page_number, block.bbox)
                counts[normalized] = 0
            counts[normalized] += 1

    def score(key: str) -> float:
        return counts[key] * 2 + min(len(first_seen[key][0]) / 50, 1.0)

    ranked = sorted(first_seen, key=score, reverse=True)[:BUILDER_MAX_ANCHORS]
    return [
        TemplateAnchor(
            text=first_seen[key][0],
            page=first_seen[key][1],
            region=first_seen[key][2],
            weight=min(1.5, 0.8 + counts[key] * 0.2),
        )
        for key in ranked
    ]


def build_template_profile(
    document: ParsedDocument,
    profile_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    threshold: float = BUILDER_DEFAULT_THRESHOLD,
    metadata: Optional[dict[str, Any]] = None,
) -> TemplateProfile:
    """Build a profile from a representative document of a template.

    Args:
        document: Parsed sample document.
        profile_id: Profile id.
        name: Display name (defaults to ``"Template <id>"``).
        description: Optional description.
        threshold: Match threshold, clamped to [0.4, 0.95].
        metadata: Extra metadata merged into the profile metadata.

    Returns:
        TemplateProfile ready to be written as JSON.
    """
    if not math.isfinite(threshold):
        threshold = BUILDER_DEFAULT_THRESHOLD
    threshold = max(0.4, min(0.95, threshold))

    pages_by_number = {page.page_number: page for page in document.pages}
    sampled_numbers = compute_sampled_page_numbers(document.page_count)
    fingerprints = [
        TemplatePageFingerprint(
            page=number,
            visual_hash=compute_page_visual_hash(pages_by_number[number]),
            token_hash=compute_text_token_hash(
                " ".join(block.text for block in pages_by_number[number].text_blocks)
            ),
        )
        for number in sampled_numbers
        if number in pages_by_number
    ]

    anchors = collect_anchor_candidates(document.pages)
    patterns = [
        p for p in (normalize_text(a.text) for a in anchors) if len(p) >= BUILDER_MIN_ANCHOR_LENGTH
    ][:BUILDER_MAX_PATTERNS]

    profile_metadata = {"pageCount": document.page_count, "sampledPages": len(sampled_numbers)}
    profile_metadata.update(metadata or {})

    return TemplateProfile(
        id=profile_id,
        name=name or f"Template {profile_id}",
        description=description,
        match_threshold=threshold,
        anchors=anchors,
        boilerplate_patterns=patterns,
        sampled_pages=fingerprints,
        metadata=profile_metadata,
    )
