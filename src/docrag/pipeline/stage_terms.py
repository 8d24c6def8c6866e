"""Terms Stage - Mine candidate internal terms from document text.

Two signals:
- explicit alias phrasing ("aka X", "we call it X", "říkáme tomu X")
- frequent one- and two-word n-grams

Candidates go to a review queue; approved ones become concept aliases used
by the graph-aware answer engine.
"""

import re
import unicodedata

from docrag.models import TermCandidateInput

PATTERN_CONFIDENCE = 0.65
NGRAM_MIN_COUNT = 3
NGRAM_MIN_WORD_LENGTH = 3
NGRAM_MAX_WORD_LENGTH = 30
NGRAM_LIMIT = 100
CONTEXT_LIMIT = 500

TERM_STRIP_RE = re.compile(r"[^\w\s:-]")
WHITESPACE_RE = re.compile(r"\s+")

ALIAS_PATTERNS = (
    re.compile(r"(?:říkáme tomu|interně tomu říkáme)\s+[\"“]?([^\"\n”]{2,80})[\"”]?", re.IGNORECASE),
    re.compile(r"(?:we call it|internally called)\s+[\"“]?([^\"\n”]{2,80})[\"”]?", re.IGNORECASE),
    re.compile(r"(?:\baka\b|a\.k\.a\.|=)\s+([A-Za-z0-9_\- :]{2,80})", re.IGNORECASE),
)


def normalize_term(term: str) -> str:
    """NFKC, lowercase, punctuation to spaces, single-spaced."""
    value = unicodedata.normalize("NFKC", term).lower().strip()
    value = TERM_STRIP_RE.sub(" ", value)
    return WHITESPACE_RE.sub(" ", value).strip()


def extract_pattern_terms(text: str) -> list[TermCandidateInput]:
    candidates = []
    for line in text.replace("\r", "").split("\n"):
        for pattern in ALIAS_PATTERNS:
            match = pattern.search(line)
            if not match:
                continue
            original = match.group(1).strip()
            normalized = normalize_term(original)
            if not normalized:
                continue
            candidates.append(
                TermCandidateInput(
                    term_original=original,
                    term_normalized=normalized,
                    context=line.strip()[:CONTEXT_LIMIT],
                    confidence=PATTERN_CONFIDENCE,
                )
            )
    return candidates


def extract_ngram_terms(text: str) -> list[TermCandidateInput]:
    words = [
        w
        for w in normalize_term(text).split(" ")
        if NGRAM_MIN_WORD_LENGTH <= len(w) <= NGRAM_MAX_WORD_LENGTH
    ]

    counts: dict[str, int] = {}
    for i, word in enumerate(words):
        counts[word] = counts.get(word, 0) + 1
        if i + 1 < len(words):
            bigram = f"{word} {words[i + 1]}"
            counts[bigram] = counts.get(bigram, 0) + 1

    candidates = [
        TermCandidateInput(
            term_original=term,
            term_normalized=term,
            confidence=min(0.6, 0.2 + count * 0.05),
        )
        for term, count in counts.items()
        if count >= NGRAM_MIN_COUNT
    ]
    return candidates[:NGRAM_LIMIT]


def dedupe_candidates(candidates: list[TermCandidateInput]) -> list[TermCandidateInput]:
    """Merge by normalized term, keeping the highest confidence and first context."""
    merged: dict[str, TermCandidateInput] = {}
    for candidate in candidates:
        existing = merged.get(candidate.term_normalized)
        if existing is None:
            merged[candidate.term_normalized] = candidate
            continue
        merged[candidate.term_normalized] = existing.model_copy(
            update={
                "confidence": max(existing.confidence, candidate.confidence),
                "context": existing.context or candidate.context,
            }
        )
    return list(merged.values())


def mine_terms(text: str) -> list[TermCandidateInput]:
    return dedupe_candidates(extract_pattern_terms(text) + extract_ngram_terms(text))
