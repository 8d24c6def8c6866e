"""Repository layer for database CRUD operations."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from docrag.models import (
    AccessLevel,
    AliasMatch,
    BoundingBox,
    Citation,
    DefinitionMatch,
    DocumentMetadata,
    IngestDiagnostics,
    ProcessingStatus,
    RelationMatch,
    SearchResult,
    SemanticChunk,
    TermCandidateInput,
)
from docrag.pipeline.highlight import highlight_boxes_for_chunk, highlight_text_for_chunk
from docrag.pipeline.stage_embed import is_zero_vector
from docrag.pipeline.stage_parse import compute_content_hash
from docrag.pipeline.stage_terms import normalize_term

from .orm_models import (
    AuditLogORM,
    ChatORM,
    ChunkORM,
    ConceptAliasORM,
    ConceptDefinitionVersionORM,
    ConceptORM,
    ConceptRelationshipORM,
    DefinitionReviewORM,
    DocumentORM,
    MessageORM,
    SemanticCacheORM,
    TermCandidateORM,
)

FTS_CONFIG = "simple"
MIN_MINED_TERM_CONFIDENCE = 0.3
DEFAULT_DEFINITION_CONFIDENCE = 0.7


def chunk_to_search_result(
    chunk: ChunkORM,
    filename: Optional[str] = None,
    vector_score: float = 0.0,
    text_score: float = 0.0,
) -> SearchResult:
    """Convert a chunk row into a SearchResult (combined score left at 0)."""
    return SearchResult(
        chunk_id=chunk.id,
        document_id=chunk.document_id,
        content=chunk.content,
        page_number=chunk.page_number,
        bounding_box=BoundingBox.model_validate(chunk.bounding_box) if chunk.bounding_box else None,
        highlight_boxes=[BoundingBox.model_validate(b) for b in chunk.highlight_boxes or []],
        highlight_text=chunk.highlight_text,
        parent_header=chunk.parent_header,
        chunk_index=chunk.chunk_index,
        filename=filename,
        vector_score=float(vector_score or 0.0),
        text_score=float(text_score or 0.0),
    )


def _scope_values(row) -> dict:
    return {
        "team": row.team,
        "product": row.product,
        "region": row.region,
        "process": row.process,
        "role": row.role,
        "valid_from": row.valid_from,
        "valid_to": row.valid_to,
    }


class DocumentRepository:
    """Repository for Document operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        owner_id: str,
        filename: str,
        file_hash: str,
        mime_type: str,
        file_size: int,
        page_count: int,
        metadata: Optional[DocumentMetadata] = None,
        access_level: AccessLevel = AccessLevel.PRIVATE,
    ) -> DocumentORM:
        """Create a new document record in the processing state."""
        orm_doc = DocumentORM(
            owner_id=owner_id,
            filename=filename,
            file_hash=file_hash,
            mime_type=mime_type,
            file_size=file_size,
            page_count=page_count,
            metadata_json=metadata.model_dump() if metadata else None,
            access_level=AccessLevel(access_level).value,
            processing_status=ProcessingStatus.PROCESSING,
        )
        self.session.add(orm_doc)
        await self.session.flush()
        return orm_doc

    async def get_by_id(self, doc_id: UUID) -> Optional[DocumentORM]:
        """Get document by ID."""
        result = await self.session.execute(
            select(DocumentORM).where(DocumentORM.id == doc_id)
        )
        return result.scalar_one_or_none()

    async def get_by_owner_hash(self, owner_id: str, file_hash: str) -> Optional[DocumentORM]:
        """Get document by owner and file hash (deduplication)."""
        result = await self.session.execute(
            select(DocumentORM)
            .where(DocumentORM.owner_id == owner_id)
            .where(DocumentORM.file_hash == file_hash)
        )
        return result.scalar_one_or_none()

    async def apply_diagnostics(self, doc: DocumentORM, diagnostics: IngestDiagnostics) -> None:
        """Copy template and OCR rescue diagnostics onto the document row."""
        template = diagnostics.template
        doc.template_profile_id = template.profile_id
        doc.template_matched = template.matched
        doc.template_match_score = template.match_score
        doc.template_boilerplate_chunks = template.boilerplate_chunks
        doc.template_detection_mode = template.detection_mode.value
        doc.template_warnings = template.warnings or None

        rescue = diagnostics.ocr_rescue
        doc.ocr_rescue_applied = rescue.applied
        doc.ocr_rescue_engine = rescue.engine
        doc.ocr_rescue_warnings = rescue.warnings or None
        await self.session.flush()

    async def update_status(
        self, doc_id: UUID, status: ProcessingStatus, error: Optional[str] = None
    ) -> None:
        """Update document processing status."""
        doc = await self.get_by_id(doc_id)
        if doc:
            doc.processing_status = status
            doc.processing_error = error
            await self.session.flush()

    async def list_recent(self, limit: int = 20) -> Sequence[DocumentORM]:
        result = await self.session.execute(
            select(DocumentORM).order_by(DocumentORM.created_at.desc()).limit(limit)
        )
        return result.scalars().all()

    async def count_all(self) -> int:
        """Count total documents."""
        result = await self.session.execute(
            select(func.count()).select_from(DocumentORM)
        )
        return result.scalar_one()


class ChunkRepository:
    """Repository for Chunk operations (retrieval layer)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_batch(
        self,
        document_id: UUID,
        chunks: list[SemanticChunk],
        access_level: AccessLevel = AccessLevel.PRIVATE,
    ) -> list[ChunkORM]:
        """Batch create chunks.

        Boilerplate chunks are stored without an embedding or full-text
        vector, which keeps them out of both search paths. Chunks whose
        embedding failed (zero vector) are stored with a NULL embedding,
        which keeps them out of vector search.
        """
        orm_chunks = [
            ChunkORM(
                document_id=document_id,
                content=c.text,
                content_hash=compute_content_hash(c.text.encode("utf-8")),
                embedding=None if c.is_boilerplate or is_zero_vector(c.embedding) else c.embedding,
                fts_vector=None if c.is_boilerplate else func.to_tsvector(FTS_CONFIG, c.text),
                page_number=c.page,
                bounding_box=c.bbox.model_dump(),
                highlight_boxes=[b.model_dump() for b in highlight_boxes_for_chunk(c)] or None,
                highlight_text=highlight_text_for_chunk(c) or None,
                parent_header=c.parent_header or None,
                chunk_index=c.index,
                token_count=c.token_count,
                is_template_boilerplate=c.is_boilerplate,
                access_level=AccessLevel(access_level).value,
            )
            for c in chunks
        ]
        self.session.add_all(orm_chunks)
        await self.session.flush()
        return orm_chunks

    def _searchable(self, stmt, owner_id: Optional[str]):
        stmt = (
            stmt.where(ChunkORM.is_template_boilerplate.is_(False))
            .where(DocumentORM.processing_status == ProcessingStatus.COMPLETED)
        )
        if owner_id:
            stmt = stmt.where(
                or_(
                    DocumentORM.access_level == AccessLevel.PUBLIC.value,
                    DocumentORM.owner_id == owner_id,
                )
            )
        return stmt

    async def search_candidates(
        self,
        query: str,
        embedding: list[float],
        candidate_limit: int,
        owner_id: Optional[str] = None,
    ) -> list[SearchResult]:
        """Vector nearest neighbours with their lexical rank left-joined.

        Args:
            query: Raw query text for the full-text rank.
            embedding: Query embedding.
            candidate_limit: Size of the vector candidate window.
            owner_id: Restrict to public documents plus this owner's.

        Returns:
            Candidates with ``vector_score`` (1 - cosine distance) and
            ``text_score`` (0 when the chunk has no lexical match). Chunks
            that match lexically but fall outside the window are absent.
        """
        distance = ChunkORM.embedding.cosine_distance(embedding)
        vector_search = self._searchable(
            select(ChunkORM.id.label("id"), (1 - distance).label("vector_score"))
            .join(DocumentORM, DocumentORM.id == ChunkORM.document_id)
            .where(ChunkORM.embedding.is_not(None)),
            owner_id,
        ).order_by(distance).limit(candidate_limit).cte("vector_search")

        tsquery = func.plainto_tsquery(FTS_CONFIG, query)
        text_search = self._searchable(
            select(
                ChunkORM.id.label("id"),
                func.ts_rank_cd(ChunkORM.fts_vector, tsquery).label("text_score"),
            )
            .join(DocumentORM, DocumentORM.id == ChunkORM.document_id)
            .where(ChunkORM.fts_vector.op("@@")(tsquery)),
            owner_id,
        ).cte("text_search")

        result = await self.session.execute(
            select(
                ChunkORM,
                DocumentORM.filename,
                vector_search.c.vector_score,
                func.coalesce(text_search.c.text_score, 0.0),
            )
            .join(vector_search, vector_search.c.id == ChunkORM.id)
            .join(DocumentORM, DocumentORM.id == ChunkORM.document_id)
            .outerjoin(text_search, text_search.c.id == ChunkORM.id)
        )
        return [
            chunk_to_search_result(chunk, filename, vector_score, text_score)
            for chunk, filename, vector_score, text_score in result.all()
        ]

    async def get_chunks_by_ids(self, chunk_ids: list[UUID]) -> list[SearchResult]:
        """Fetch chunks joined to their document filename, in input order."""
        if not chunk_ids:
            return []
        result = await self.session.execute(
            select(ChunkORM, DocumentORM.filename)
            .join(DocumentORM, DocumentORM.id == ChunkORM.document_id)
            .where(ChunkORM.id.in_(chunk_ids))
        )
        by_id = {chunk.id: chunk_to_search_result(chunk, filename) for chunk, filename in result.all()}
        return [by_id[chunk_id] for chunk_id in chunk_ids if chunk_id in by_id]

    async def has_searchable_chunks(self, owner_id: Optional[str] = None) -> bool:
        """Whether any indexed chunk is visible to the caller."""
        result = await self.session.execute(
            self._searchable(
                select(ChunkORM.id)
                .join(DocumentORM, DocumentORM.id == ChunkORM.document_id)
                .where(ChunkORM.embedding.is_not(None)),
                owner_id,
            ).limit(1)
        )
        return result.first() is not None


class CacheRepository:
    """Repository for the durable cache tier."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_valid_by_hash(self, query_hash: str, now: datetime) -> Optional[SemanticCacheORM]:
        result = await self.session.execute(
            select(SemanticCacheORM)
            .where(SemanticCacheORM.query_hash == query_hash)
            .where(SemanticCacheORM.expires_at > now)
        )
        return result.scalar_one_or_none()

    async def nearest(
        self, embedding: list[float], now: datetime
    ) -> Optional[tuple[SemanticCacheORM, float]]:
        """Closest non-expired entry and its cosine similarity."""
        distance = SemanticCacheORM.query_embedding.cosine_distance(embedding)
        result = await self.session.execute(
            select(SemanticCacheORM, (1 - distance).label("similarity"))
            .where(SemanticCacheORM.query_embedding.is_not(None))
            .where(SemanticCacheORM.expires_at > now)
            .order_by(distance)
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        return row[0], float(row[1])

    async def increment_hit_count(self, entry_id: UUID) -> None:
        await self.session.execute(
            update(SemanticCacheORM)
            .where(SemanticCacheORM.id == entry_id)
            .values(hit_count=SemanticCacheORM.hit_count + 1)
        )

    async def upsert(
        self,
        query_text: str,
        query_hash: str,
        query_embedding: Optional[list[float]],
        answer_text: str,
        citations: list[Citation],
        confidence: float,
        chunk_ids: list[UUID],
        expires_at: datetime,
    ) -> SemanticCacheORM:
        """Insert or overwrite the entry for ``query_hash`` (last write wins)."""
        values = {
            "query_text": query_text,
            "query_hash": query_hash,
            "query_embedding": query_embedding,
            "answer_text": answer_text,
            "citations": [c.model_dump(mode="json") for c in citations],
            "confidence": confidence,
            "chunk_ids": chunk_ids,
            "expires_at": expires_at,
        }
        stmt = insert(SemanticCacheORM).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SemanticCacheORM.query_hash],
            set_={key: stmt.excluded[key] for key in values if key != "query_hash"},
        ).returning(SemanticCacheORM)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(SemanticCacheORM)
            .where(SemanticCacheORM.expires_at < now)
            .returning(SemanticCacheORM.id)
        )
        return len(result.all())

    async def stats(self, now: datetime) -> tuple[int, int, float]:
        """(entries, total hits, average confidence) over non-expired rows."""
        result = await self.session.execute(
            select(
                func.count(SemanticCacheORM.id),
                func.coalesce(func.sum(SemanticCacheORM.hit_count), 0),
                func.coalesce(func.avg(SemanticCacheORM.confidence), 0.0),
            ).where(SemanticCacheORM.expires_at > now)
        )
        count, hits, avg_confidence = result.one()
        return int(count), int(hits), float(avg_confidence)


class ConversationRepository:
    """Repository for chats, messages and the answer audit log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create_chat(
        self, owner_id: str, chat_id: Optional[UUID] = None, title: Optional[str] = None
    ) -> ChatORM:
        if chat_id is not None:
            result = await self.session.execute(
                select(ChatORM).where(ChatORM.id == chat_id).where(ChatORM.owner_id == owner_id)
            )
            chat = result.scalar_one_or_none()
            if chat:
                return chat

        chat = ChatORM(owner_id=owner_id, title=(title or "New Chat")[:256])
        if chat_id is not None:
            chat.id = chat_id
        self.session.add(chat)
        await self.session.flush()
        return chat

    async def add_message(
        self, chat_id: UUID, role: str, content: str, sources: Optional[list] = None
    ) -> MessageORM:
        message = MessageORM(chat_id=chat_id, role=role, content=content, sources=sources)
        self.session.add(message)
        await self.session.flush()
        return message

    async def add_audit_log(self, **values) -> AuditLogORM:
        entry = AuditLogORM(**values)
        self.session.add(entry)
        await self.session.flush()
        return entry


@dataclass
class ApprovalResult:
    concept_id: UUID
    definition_version_id: UUID
    alias_id: UUID


class ConceptRepository:
    """Repository for the concept graph and the term review workflow."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_aliases(self, terms: list[str]) -> list[AliasMatch]:
        """Active aliases of approved concepts whose normalized form is in ``terms``."""
        if not terms:
            return []
        result = await self.session.execute(
            select(ConceptAliasORM, ConceptORM)
            .join(ConceptORM, ConceptORM.id == ConceptAliasORM.concept_id)
            .where(ConceptAliasORM.alias_normalized.in_(terms))
            .where(ConceptAliasORM.status == "active")
            .where(ConceptORM.status == "approved")
        )
        return [
            AliasMatch(
                alias=alias.alias,
                alias_normalized=alias.alias_normalized,
                confidence=alias.confidence,
                concept_id=concept.id,
                concept_key=concept.key,
                concept_label=concept.label,
                criticality=concept.criticality,
                **_scope_values(alias),
            )
            for alias, concept in result.all()
        ]

    async def find_definitions(self, concept_ids: list[UUID]) -> list[DefinitionMatch]:
        """Approved definitions, best first (confidence, then newest validity)."""
        if not concept_ids:
            return []
        result = await self.session.execute(
            select(ConceptDefinitionVersionORM)
            .where(ConceptDefinitionVersionORM.concept_id.in_(concept_ids))
            .where(ConceptDefinitionVersionORM.status == "approved")
            .order_by(
                ConceptDefinitionVersionORM.confidence.desc(),
                ConceptDefinitionVersionORM.valid_from.desc(),
            )
        )
        return [
            DefinitionMatch(
                id=row.id,
                concept_id=row.concept_id,
                definition=row.definition,
                confidence=row.confidence,
                **_scope_values(row),
            )
            for row in result.scalars().all()
        ]

    async def find_relationships(self, concept_ids: list[UUID]) -> list[RelationMatch]:
        """Approved outgoing edges of the given concepts."""
        if not concept_ids:
            return []
        from_concept = aliased(ConceptORM)
        to_concept = aliased(ConceptORM)
        result = await self.session.execute(
            select(ConceptRelationshipORM, from_concept.key, to_concept.key)
            .join(from_concept, from_concept.id == ConceptRelationshipORM.from_concept_id)
            .join(to_concept, to_concept.id == ConceptRelationshipORM.to_concept_id)
            .where(ConceptRelationshipORM.from_concept_id.in_(concept_ids))
            .where(ConceptRelationshipORM.status == "approved")
        )
        return [
            RelationMatch(
                from_concept_id=row.from_concept_id,
                to_concept_id=row.to_concept_id,
                from_key=from_key,
                to_key=to_key,
                relation_type=row.relation_type,
                **_scope_values(row),
            )
            for row, from_key, to_key in result.all()
        ]

    async def list_term_candidates(
        self, status: str = "pending", limit: int = 50
    ) -> Sequence[TermCandidateORM]:
        result = await self.session.execute(
            select(TermCandidateORM)
            .where(TermCandidateORM.status == status)
            .order_by(TermCandidateORM.detected_at.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def _get_candidate(self, candidate_id: UUID) -> Optional[TermCandidateORM]:
        result = await self.session.execute(
            select(TermCandidateORM).where(TermCandidateORM.id == candidate_id)
        )
        return result.scalar_one_or_none()

    async def approve_term_candidate(
        self,
        candidate_id: UUID,
        concept_key: str,
        definition: str,
        reviewer_id: Optional[str] = None,
        label: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> Optional[ApprovalResult]:
        """Promote a candidate to a concept definition and alias.

        Creates the concept when ``concept_key`` is new, appends the next
        definition version, and adds an alias for the candidate's term in
        the candidate's scope unless one exists.

        Returns:
            ApprovalResult, or None if the candidate does not exist.
        """
        candidate = await self._get_candidate(candidate_id)
        if candidate is None:
            return None

        key = concept_key.strip().upper()
        result = await self.session.execute(select(ConceptORM).where(ConceptORM.key == key))
        concept = result.scalar_one_or_none()
        if concept is None:
            concept = ConceptORM(
                key=key,
                label=label or candidate.term_original,
                status="approved",
                criticality="normal",
            )
            self.session.add(concept)
            await self.session.flush()

        result = await self.session.execute(
            select(func.coalesce(func.max(ConceptDefinitionVersionORM.version), 0))
            .where(ConceptDefinitionVersionORM.concept_id == concept.id)
        )
        scope = {
            "team": candidate.team,
            "product": candidate.product,
            "region": candidate.region,
            "process": candidate.process,
            "role": candidate.role,
        }
        version = ConceptDefinitionVersionORM(
            concept_id=concept.id,
            version=result.scalar_one() + 1,
            definition=definition,
            status="approved",
            confidence=confidence if confidence is not None else (
                candidate.confidence or DEFAULT_DEFINITION_CONFIDENCE
            ),
            source_of_truth_doc_id=candidate.document_id,
            **scope,
        )
        self.session.add(version)

        alias_normalized = normalize_term(candidate.term_original)
        result = await self.session.execute(
            select(ConceptAliasORM)
            .where(ConceptAliasORM.concept_id == concept.id)
            .where(ConceptAliasORM.alias_normalized == alias_normalized)
        )
        alias = result.scalars().first()
        if alias is None:
            alias = ConceptAliasORM(
                concept_id=concept.id,
                alias=candidate.term_original,
                alias_normalized=alias_normalized,
                status="active",
                confidence=version.confidence,
                **scope,
            )
            self.session.add(alias)

        candidate.status = "approved"
        candidate.reviewed_at = func.now()
        candidate.reviewed_by = reviewer_id
        candidate.candidate_concept_key = key
        await self.session.flush()

        self.session.add(
            DefinitionReviewORM(
                candidate_id=candidate.id,
                concept_id=concept.id,
                definition_version_id=version.id,
                reviewer_id=reviewer_id,
                decision="approved",
                notes="Approved via review workflow",
            )
        )
        await self.session.flush()
        return ApprovalResult(
            concept_id=concept.id,
            definition_version_id=version.id,
            alias_id=alias.id,
        )

    async def reject_term_candidate(
        self, candidate_id: UUID, reviewer_id: Optional[str] = None
    ) -> bool:
        candidate = await self._get_candidate(candidate_id)
        if candidate is None:
            return False

        candidate.status = "rejected"
        candidate.reviewed_at = func.now()
        candidate.reviewed_by = reviewer_id
        self.session.add(
            DefinitionReviewORM(
                candidate_id=candidate.id,
                reviewer_id=reviewer_id,
                decision="rejected",
                notes="Rejected via review workflow",
            )
        )
        await self.session.flush()
        return True


class TermCandidateRepository:
    """Repository for mined term candidates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert_candidates(
        self,
        document_id: UUID,
        candidates: list[TermCandidateInput],
        source_type: str = "document",
    ) -> int:
        """Insert new candidates; bump frequency of ones already seen for the document."""
        if not candidates:
            return 0

        result = await self.session.execute(
            select(TermCandidateORM)
            .where(TermCandidateORM.document_id == document_id)
            .where(
                TermCandidateORM.term_normalized.in_([c.term_normalized for c in candidates])
            )
        )
        existing = {row.term_normalized: row for row in result.scalars().all()}

        for candidate in candidates:
            row = existing.get(candidate.term_normalized)
            if row is not None:
                row.frequency += 1
                row.confidence = max(candidate.confidence, MIN_MINED_TERM_CONFIDENCE)
                continue
            row = TermCandidateORM(
                term_original=candidate.term_original,
                term_normalized=candidate.term_normalized,
                contexts=[candidate.context] if candidate.context else [],
                frequency=1,
                source_type=source_type,
                document_id=document_id,
                confidence=candidate.confidence,
                status="pending",
            )
            self.session.add(row)
            existing[candidate.term_normalized] = row

        await self.session.flush()
        return len(candidates)
