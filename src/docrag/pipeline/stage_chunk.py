"""Chunk Stage - Split parsed pages into header-aware, token-budgeted chunks.

Rules:
- Markdown headers (``#`` .. ``######``) and short capitalized title lines
  start a new section; the live header chain becomes the chunk breadcrumb
- Page transitions always flush, so chunks never span pages
- Oversized sections split by paragraph, then sentence, then word, with an
  overlap prefix carried into each following piece
- Sections below ``min_tokens`` are dropped
"""

import math
import re
from dataclasses import dataclass
from typing import Optional

from docrag.models import (
    ChunkerConfig,
    ParsedPage,
    SemanticChunk,
    TextBlock,
    merge_bounding_boxes,
)

DEFAULT_CHUNKER_CONFIG = ChunkerConfig()

# Calibrated for inflected languages where words split into several tokens
TOKENS_PER_WORD = 1.5

MAX_TITLE_LINE_LENGTH = 80

MARKDOWN_HEADER_RE = re.compile(r"^(#{1,6})\s+(.+)$")
TITLE_LINE_RE = re.compile(
    r"^(\d+\.?\s+)?"
    r"([A-ZÀ-ÖØ-ÞĚŠČŘŽÝÁÍÉŮÚ][A-Za-zÀ-ÖØ-öø-ÿěščřžýáíéůúťďň\s]+)"
    r"[:.]?\s*$"
)
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class HeaderInfo:
    level: int
    text: str
    raw: str


def estimate_token_count(text: str) -> int:
    """Estimate tokens as ``ceil(word_count * 1.5)``."""
    words = [w for w in WHITESPACE_RE.split(text) if w]
    return math.ceil(len(words) * TOKENS_PER_WORD)


def detect_header(line: str) -> Optional[HeaderInfo]:
    """Return header info if the line is a markdown or title-style header."""
    match = MARKDOWN_HEADER_RE.match(line)
    if match:
        return HeaderInfo(level=len(match.group(1)), text=match.group(2).strip(), raw=line)

    if len(line) < MAX_TITLE_LINE_LENGTH and TITLE_LINE_RE.match(line):
        stripped = line.strip()
        return HeaderInfo(level=2, text=stripped, raw=f"## {stripped}")

    return None


def build_header_hierarchy(header_stack: list[HeaderInfo]) -> str:
    """Breadcrumb such as ``'# Guide > ## Setup'``."""
    return " > ".join(f"{'#' * h.level} {h.text}" for h in header_stack)


def split_into_paragraphs(text: str) -> list[str]:
    paragraphs = re.split(r"\n\n+", text)
    if len(paragraphs) == 1:
        paragraphs = [p for p in text.split("\n") if p.strip()]
    return [p for p in paragraphs if p.strip()]


def _overlap_prefix(chunk: str, max_tokens: int, overlap_percent: float) -> str:
    """Trailing words of ``chunk`` worth ``overlap_percent * max_tokens`` tokens."""
    overlap_tokens = math.floor(max_tokens * overlap_percent)
    words_to_keep = math.floor(overlap_tokens / TOKENS_PER_WORD)
    if words_to_keep <= 0:
        return ""
    words = WHITESPACE_RE.split(chunk)
    return " ".join(words[-words_to_keep:])


def _fit_prefix(prefix: str, next_text: str, max_tokens: int) -> str:
    """Drop leading words of ``prefix`` until prefix plus ``next_text`` fits ``max_tokens``."""
    words = [w for w in WHITESPACE_RE.split(prefix) if w]
    room = max_tokens - estimate_token_count(next_text)
    keep = min(len(words), max(0, math.floor(room / TOKENS_PER_WORD)))
    return " ".join(words[len(words) - keep:]) if keep else ""


def _join(prefix: str, separator: str, text: str) -> str:
    return f"{prefix}{separator}{text}" if prefix else text


def split_long_segment(text: str, max_tokens: int, overlap_percent: float) -> list[str]:
    """Split an oversized segment into overlapping pieces.

    Splits on paragraphs first; a paragraph over budget is split on sentence
    boundaries, and a sentence over budget is split on words.

    Args:
        text: Segment text.
        max_tokens: Token budget per piece.
        overlap_percent: Fraction of the budget repeated at each split.

    Returns:
        Stripped, non-empty pieces in document order.
    """
    chunks: list[str] = []
    current = ""
    current_tokens = 0

    def flush_with_overlap(next_text: str, separator: str) -> None:
        nonlocal current, current_tokens
        chunks.append(current.strip())
        prefix = _overlap_prefix(current, max_tokens, overlap_percent)
        current = _join(_fit_prefix(prefix, next_text, max_tokens), separator, next_text)
        current_tokens = estimate_token_count(current)

    def append(next_text: str, tokens: int, separator: str) -> None:
        nonlocal current, current_tokens
        current = f"{current}{separator}{next_text}" if current else next_text
        current_tokens += tokens

    for paragraph in split_into_paragraphs(text):
        paragraph_tokens = estimate_token_count(paragraph)

        if paragraph_tokens <= max_tokens:
            if current_tokens + paragraph_tokens > max_tokens and current.strip():
                flush_with_overlap(paragraph, "\n\n")
            else:
                append(paragraph, paragraph_tokens, "\n\n")
            continue

        if current.strip():
            chunks.append(current.strip())
        current = ""
        current_tokens = 0

        for sentence in SENTENCE_SPLIT_RE.split(paragraph):
            sentence_tokens = estimate_token_count(sentence)

            if sentence_tokens > max_tokens:
                if current.strip():
                    chunks.append(current.strip())
                    current = ""
                    current_tokens = 0

                for word in WHITESPACE_RE.split(sentence):
                    word_tokens = estimate_token_count(word)
                    if current_tokens + word_tokens > max_tokens and current.strip():
                        flush_with_overlap(word, " ")
                    else:
                        append(word, word_tokens, " ")
                continue

            if current_tokens + sentence_tokens > max_tokens and current.strip():
                flush_with_overlap(sentence, " ")
            else:
                append(sentence, sentence_tokens, " ")

    if current.strip():
        chunks.append(current.strip())

    return chunks


def find_blocks_for_segment(segment: str, blocks: list[TextBlock]) -> list[TextBlock]:
    """Blocks sharing a word longer than 3 chars with the segment, or contained in it."""
    segment_words = {w for w in WHITESPACE_RE.split(segment.lower()) if len(w) > 3}

    matching = []
    for block in blocks:
        block_words = WHITESPACE_RE.split(block.text.lower())
        has_word = any(len(w) > 3 and w in segment_words for w in block_words)
        if has_word or block.text in segment:
            matching.append(block)
    return matching


class SemanticChunker:
    """Groups page text into semantic chunks with merged geometry."""

    def __init__(self, config: Optional[ChunkerConfig] = None):
        self.config = config or DEFAULT_CHUNKER_CONFIG

    def chunk(self, pages: list[ParsedPage]) -> list[SemanticChunk]:
        """Chunk a document.

        Args:
            pages: Parsed pages in page order.

        Returns:
            Chunks with sequential ``index`` values starting at 0.
        """
        chunks: list[SemanticChunk] = []
        header_stack: list[HeaderInfo] = []

        for page in pages:
            segment = ""
            for line in page.full_text.split("\n"):
                header = detect_header(line)
                if header:
                    self._flush(segment, page, header_stack, chunks)
                    while header_stack and header_stack[-1].level >= header.level:
                        header_stack.pop()
                    header_stack.append(header)
                    segment = line
                elif line.strip():
                    segment = f"{segment}\n{line}" if segment else line

            self._flush(segment, page, header_stack, chunks)

        return chunks

    def _flush(
        self,
        segment: str,
        page: ParsedPage,
        header_stack: list[HeaderInfo],
        chunks: list[SemanticChunk],
    ) -> None:
        if not segment.strip():
            return

        max_tokens = self.config.max_tokens
        token_count = estimate_token_count(segment)
        if token_count <= max_tokens:
            pieces = [segment.strip()]
        else:
            pieces = split_long_segment(segment, max_tokens, self.config.overlap_percent)

        breadcrumb = build_header_hierarchy(header_stack)
        for piece in pieces:
            piece_tokens = estimate_token_count(piece)
            if piece_tokens < self.config.min_tokens:
                continue

            matching = find_blocks_for_segment(piece, page.text_blocks)
            chunks.append(
                SemanticChunk(
                    text=piece,
                    page=page.page_number,
                    bbox=merge_bounding_boxes(b.bbox for b in matching),
                    parent_header=breadcrumb,
                    index=len(chunks),
                    token_count=piece_tokens,
                    source_blocks=matching,
                )
            )


def chunk_document(
    pages: list[ParsedPage],
    config: ChunkerConfig = DEFAULT_CHUNKER_CONFIG,
) -> list[SemanticChunk]:
    """Convenience wrapper around ``SemanticChunker``."""
    return SemanticChunker(config).chunk(pages)
