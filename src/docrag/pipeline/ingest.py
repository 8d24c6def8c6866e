"""Ingestion pipeline - bytes in, searchable chunks out.

Stage order:
1. stage_parse - text blocks with normalized geometry
2. stage_chunk - header-aware, token-bounded chunks
3. stage_rescue - OCR for PDFs that chunked into almost nothing
4. stage_template - flag recurring letterhead/footer chunks as boilerplate
5. stage_embed - vectors for non-boilerplate chunks
6. stage_terms - mine internal terms (optional)
7. storage - document row, chunks and status in one transaction

A file this owner already stored (same content hash) returns the existing
document id before any embedding calls are made.

Only unsupported input and storage failures reach the caller; every other
stage records warnings in the returned diagnostics.
"""

import asyncio
import logging
import time
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from docrag.errors import StorageError
from docrag.models import (
    ChunkerConfig,
    IngestDiagnostics,
    IngestOptions,
    IngestResult,
    IngestStats,
    ParsedDocument,
    ProcessingStatus,
    SemanticChunk,
)
from docrag.storage import (
    ChunkRepository,
    DocumentRepository,
    TermCandidateRepository,
    get_session,
)
from docrag.storage.stores import SessionScope

from .stage_chunk import DEFAULT_CHUNKER_CONFIG, chunk_document
from .stage_embed import Embedder
from .stage_ocr import DEFAULT_OCR_ENGINE, DEFAULT_OCR_TIMEOUT_SECONDS, OcrEngine
from .stage_parse import compute_content_hash, parse_document
from .stage_rescue import rescue_low_text_document
from .stage_template import TemplateDetector
from .stage_terms import mine_terms

logger = logging.getLogger(__name__)

CHUNK_INSERT_BATCH_SIZE = 100


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def collect_warnings(diagnostics: IngestDiagnostics) -> list[str]:
    """Stage warnings in stage order, without repeats."""
    warnings = [*diagnostics.ocr_rescue.warnings, *diagnostics.template.warnings]
    return list(dict.fromkeys(warnings))


def mark_boilerplate(chunks: list[SemanticChunk], positions: set[int]) -> list[SemanticChunk]:
    return [
        chunk.model_copy(update={"is_boilerplate": True}) if i in positions else chunk
        for i, chunk in enumerate(chunks)
    ]


class IngestionPipeline:
    """Runs one file through parse, chunk, rescue, template, embed and store."""

    def __init__(
        self,
        embedder: Embedder,
        template_detector: Optional[TemplateDetector] = None,
        ocr_engines: Optional[dict[str, OcrEngine]] = None,
        chunker_config: ChunkerConfig = DEFAULT_CHUNKER_CONFIG,
        ocr_rescue_enabled: bool = True,
        ocr_engine: str = DEFAULT_OCR_ENGINE,
        ocr_timeout_s: float = DEFAULT_OCR_TIMEOUT_SECONDS,
        term_mining_enabled: bool = False,
        session_scope: SessionScope = get_session,
    ):
        self.embedder = embedder
        self.template_detector = template_detector
        self.ocr_engines = ocr_engines or {}
        self.chunker_config = chunker_config
        self.ocr_rescue_enabled = ocr_rescue_enabled
        self.ocr_engine = ocr_engine
        self.ocr_timeout_s = ocr_timeout_s
        self.term_mining_enabled = term_mining_enabled
        self.session_scope = session_scope

    async def ingest(
        self,
        data: bytes,
        mime_type: str,
        filename: str,
        options: IngestOptions,
    ) -> IngestResult:
        """Ingest one file.

        Args:
            data: Raw file bytes.
            mime_type: MIME type of ``data``.
            filename: Original filename, shown in citations.
            options: Owner, access level and skip flags.

        Returns:
            IngestResult with status 'completed', 'duplicate' or 'skipped'.

        Raises:
            UnsupportedFormatError: No parser for ``mime_type``.
            StorageError: The storage transaction failed and was rolled back.
        """
        total_start = time.perf_counter()
        stats = IngestStats()
        diagnostics = IngestDiagnostics()

        # Stage 1: parse
        start = time.perf_counter()
        document = await asyncio.to_thread(parse_document, data, mime_type)
        stats.parse_time_ms = _elapsed_ms(start)
        stats.page_count = document.page_count
        stats.total_text_blocks = sum(len(p.text_blocks) for p in document.pages)

        # Stage 2: chunk
        start = time.perf_counter()
        chunks = chunk_document(document.pages, self.chunker_config)
        stats.chunk_time_ms = _elapsed_ms(start)

        # Stage 3: OCR rescue
        if self.ocr_rescue_enabled:
            start = time.perf_counter()
            rescue = await rescue_low_text_document(
                data,
                mime_type,
                document.pages,
                chunks,
                self.ocr_engines,
                engine=self.ocr_engine,
                timeout_s=self.ocr_timeout_s,
                config=self.chunker_config,
            )
            stats.ocr_time_ms = _elapsed_ms(start)
            diagnostics.ocr_rescue = rescue.diagnostics
            if rescue.diagnostics.applied:
                document = ParsedDocument(
                    page_count=document.page_count,
                    pages=rescue.pages,
                    metadata=document.metadata,
                )
                chunks = rescue.chunks

        # Stage 4: template boilerplate
        if self.template_detector is not None:
            start = time.perf_counter()
            detection = await self.template_detector.detect(
                data, mime_type, document, chunks, options.template_profile_id
            )
            stats.template_time_ms = _elapsed_ms(start)
            diagnostics.template = detection.diagnostics
            chunks = mark_boilerplate(chunks, detection.boilerplate_chunk_indexes)

        stats.chunk_count = len(chunks)
        stats.boilerplate_chunk_count = sum(1 for c in chunks if c.is_boilerplate)
        diagnostics.warnings = collect_warnings(diagnostics)

        if not options.skip_storage:
            existing_id = await self._find_duplicate(data, filename, options)
            if existing_id is not None:
                stats.total_time_ms = _elapsed_ms(total_start)
                return IngestResult(
                    document_id=existing_id,
                    status="duplicate",
                    duplicate=True,
                    diagnostics=diagnostics,
                    stats=stats,
                )

        # Stage 5: embed
        if not options.skip_embedding:
            start = time.perf_counter()
            chunks = await self._embed_chunks(chunks, stats)
            stats.embed_time_ms = _elapsed_ms(start)

        if options.skip_storage:
            stats.total_time_ms = _elapsed_ms(total_start)
            return IngestResult(status="skipped", diagnostics=diagnostics, stats=stats)

        # Stage 6: store
        start = time.perf_counter()
        result = await self._store(data, mime_type, filename, options, document, chunks, diagnostics)
        stats.store_time_ms = _elapsed_ms(start)
        stats.total_time_ms = _elapsed_ms(total_start)
        result.stats = stats

        logger.info(
            "Ingested %s: status=%s pages=%d chunks=%d boilerplate=%d ocr_rescue=%s (%.0f ms)",
            filename,
            result.status,
            stats.page_count,
            stats.chunk_count,
            stats.boilerplate_chunk_count,
            diagnostics.ocr_rescue.applied,
            stats.total_time_ms,
        )
        return result

    async def _embed_chunks(
        self, chunks: list[SemanticChunk], stats: IngestStats
    ) -> list[SemanticChunk]:
        """Attach embeddings to non-boilerplate chunks."""
        positions = [i for i, c in enumerate(chunks) if not c.is_boilerplate]
        if not positions:
            return chunks

        batch = await self.embedder.embed_texts([chunks[i].text for i in positions])
        stats.total_tokens = batch.total_tokens
        stats.embedding_api_calls = batch.api_calls

        embedded = list(chunks)
        for position, vector in zip(positions, batch.embeddings):
            embedded[position] = chunks[position].model_copy(update={"embedding": vector})
        return embedded

    async def _find_duplicate(
        self, data: bytes, filename: str, options: IngestOptions
    ) -> Optional[UUID]:
        """Id of this owner's document with the same content hash, if any."""
        try:
            async with self.session_scope() as session:
                existing = await DocumentRepository(session).get_by_owner_hash(
                    options.owner_id, compute_content_hash(data)
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to check {filename} for duplicates: {e}") from e
        if existing is None:
            return None
        logger.info("Duplicate of document %s, skipping embedding and storage", existing.id)
        return existing.id

    async def _store(
        self,
        data: bytes,
        mime_type: str,
        filename: str,
        options: IngestOptions,
        document: ParsedDocument,
        chunks: list[SemanticChunk],
        diagnostics: IngestDiagnostics,
    ) -> IngestResult:
        file_hash = compute_content_hash(data)
        try:
            async with self.session_scope() as session:
                doc_repo = DocumentRepository(session)
                existing = await doc_repo.get_by_owner_hash(options.owner_id, file_hash)
                if existing is not None:
                    logger.info("Duplicate of document %s, skipping storage", existing.id)
                    return IngestResult(
                        document_id=existing.id,
                        status="duplicate",
                        duplicate=True,
                        diagnostics=diagnostics,
                    )

                doc = await doc_repo.create(
                    owner_id=options.owner_id,
                    filename=filename,
                    file_hash=file_hash,
                    mime_type=mime_type,
                    file_size=len(data),
                    page_count=document.page_count,
                    metadata=document.metadata,
                    access_level=options.access_level,
                )
                await doc_repo.apply_diagnostics(doc, diagnostics)

                chunk_repo = ChunkRepository(session)
                for offset in range(0, len(chunks), CHUNK_INSERT_BATCH_SIZE):
                    await chunk_repo.create_batch(
                        doc.id,
                        chunks[offset:offset + CHUNK_INSERT_BATCH_SIZE],
                        options.access_level,
                    )

                if self.term_mining_enabled:
                    candidates = mine_terms(
                        "\n".join(c.text for c in chunks if not c.is_boilerplate)
                    )
                    await TermCandidateRepository(session).upsert_candidates(doc.id, candidates)

                await doc_repo.update_status(doc.id, ProcessingStatus.COMPLETED)
                return IngestResult(document_id=doc.id, status="completed", diagnostics=diagnostics)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to store {filename}: {e}") from e
