"""SQLAlchemy ORM models for docrag.

These models define the database schema for documents, retrievable chunks,
the durable cache tier, conversations and the concept graph.
Uses PostgreSQL with pgvector for embedding storage and tsvector for
full-text search.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TSVECTOR, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docrag.models.base import ProcessingStatus

from .database import Base

EMBEDDING_DIMENSIONS = 768


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class ScopeColumns:
    """Organizational scope columns shared by concept-graph tables.

    A NULL column matches any value of that scope dimension.
    """

    team: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    product: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    process: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)


class DocumentORM(Base):
    """Document table - one row per ingested file per owner."""

    __tablename__ = "documents"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)

    # Source file info
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    access_level: Mapped[str] = mapped_column(String(32), default="private")

    # Processing state
    processing_status: Mapped[str] = mapped_column(
        Enum(ProcessingStatus, values_callable=_enum_values),
        default=ProcessingStatus.PENDING,
    )
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Template detection
    template_profile_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    template_matched: Mapped[bool] = mapped_column(Boolean, default=False)
    template_match_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    template_boilerplate_chunks: Mapped[int] = mapped_column(Integer, default=0)
    template_detection_mode: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    template_warnings: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    # OCR rescue
    ocr_rescue_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    ocr_rescue_engine: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    ocr_rescue_warnings: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    chunks: Mapped[list["ChunkORM"]] = relationship(
        back_populates="document", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "file_hash", name="uq_documents_owner_file_hash"),
        Index("ix_documents_owner_id", "owner_id"),
        Index("ix_documents_processing_status", "processing_status"),
    )


class ChunkORM(Base):
    """Chunk table - unit of retrieval with embedding and full-text vector."""

    __tablename__ = "chunks"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    document_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE")
    )

    # Content
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # NULL for template boilerplate, which is stored but never searchable
    embedding: Mapped[Optional[list[float]]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS), nullable=True
    )
    fts_vector: Mapped[Optional[str]] = mapped_column(TSVECTOR, nullable=True)

    # Citation geometry
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    bounding_box: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    highlight_boxes: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    highlight_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_header: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    token_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_template_boilerplate: Mapped[bool] = mapped_column(Boolean, default=False)
    access_level: Mapped[str] = mapped_column(String(32), default="private")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    document: Mapped["DocumentORM"] = relationship(back_populates="chunks")

    __table_args__ = (
        Index("ix_chunks_document_id", "document_id"),
        Index("ix_chunks_fts_vector", "fts_vector", postgresql_using="gin"),
        Index(
            "ix_chunks_embedding",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


class SemanticCacheORM(Base):
    """Durable cache tier - verified answers keyed by normalized query hash."""

    __tablename__ = "semantic_cache"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    query_text: Mapped[str] = mapped_column(Text, nullable=False)
    query_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    query_embedding: Mapped[Optional[list[float]]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS), nullable=True
    )

    answer_text: Mapped[str] = mapped_column(Text, nullable=False)
    citations: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    chunk_ids: Mapped[Optional[list[UUID]]] = mapped_column(
        ARRAY(PG_UUID(as_uuid=True)), nullable=True
    )

    hit_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_semantic_cache_expires_at", "expires_at"),
    )


class ChatORM(Base):
    """Chat table - a conversation owned by one caller."""

    __tablename__ = "chats"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(256), default="New Chat")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    messages: Mapped[list["MessageORM"]] = relationship(
        back_populates="chat", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_chats_owner_id", "owner_id"),
    )


class MessageORM(Base):
    """Message table - one user or assistant turn."""

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    chat_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("chats.id", ondelete="CASCADE")
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sources: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    chat: Mapped["ChatORM"] = relationship(back_populates="messages")

    __table_args__ = (
        Index("ix_messages_chat_id", "chat_id"),
    )


class AuditLogORM(Base):
    """Audit log table - one row per answered question."""

    __tablename__ = "audit_logs"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    owner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    chat_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("chats.id", ondelete="SET NULL"), nullable=True
    )

    query: Mapped[str] = mapped_column(Text, nullable=False)
    retrieved_chunk_ids: Mapped[Optional[list[UUID]]] = mapped_column(
        ARRAY(PG_UUID(as_uuid=True)), nullable=True
    )
    draft_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    final_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    citations: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    degraded: Mapped[bool] = mapped_column(Boolean, default=False)
    cached: Mapped[bool] = mapped_column(Boolean, default=False)
    engine: Mapped[str] = mapped_column(String(16), default="compat")
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    latency_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class ConceptORM(Base):
    """Concept table - an internal meaning that aliases resolve to."""

    __tablename__ = "concepts"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    label: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="draft")
    criticality: Mapped[str] = mapped_column(String(32), default="normal")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    aliases: Mapped[list["ConceptAliasORM"]] = relationship(
        back_populates="concept", cascade="all, delete-orphan"
    )
    definitions: Mapped[list["ConceptDefinitionVersionORM"]] = relationship(
        back_populates="concept", cascade="all, delete-orphan"
    )


class ConceptAliasORM(ScopeColumns, Base):
    """Concept alias table - surface terms that mean a concept in a scope."""

    __tablename__ = "concept_aliases"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    concept_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("concepts.id", ondelete="CASCADE")
    )
    alias: Mapped[str] = mapped_column(String(256), nullable=False)
    alias_normalized: Mapped[str] = mapped_column(String(256), nullable=False)
    language: Mapped[str] = mapped_column(String(16), default="en")
    status: Mapped[str] = mapped_column(String(32), default="active")
    confidence: Mapped[float] = mapped_column(Float, default=1.0)

    valid_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    valid_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    concept: Mapped["ConceptORM"] = relationship(back_populates="aliases")

    __table_args__ = (
        Index("ix_concept_aliases_alias_normalized", "alias_normalized"),
        Index("ix_concept_aliases_concept_id", "concept_id"),
    )


class ConceptDefinitionVersionORM(ScopeColumns, Base):
    """Versioned, scoped definition of a concept."""

    __tablename__ = "concept_definition_versions"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    concept_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("concepts.id", ondelete="CASCADE")
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    definition: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="draft")
    confidence: Mapped[float] = mapped_column(Float, default=0.7)
    source_of_truth_doc_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True
    )

    valid_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    valid_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    concept: Mapped["ConceptORM"] = relationship(back_populates="definitions")

    __table_args__ = (
        UniqueConstraint("concept_id", "version", name="uq_concept_definition_versions_concept_version"),
    )


class ConceptRelationshipORM(ScopeColumns, Base):
    """Directed, typed edge between two concepts."""

    __tablename__ = "concept_relationships"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    from_concept_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("concepts.id", ondelete="CASCADE")
    )
    to_concept_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("concepts.id", ondelete="CASCADE")
    )
    relation_type: Mapped[str] = mapped_column(String(32), nullable=False)
    weight: Mapped[float] = mapped_column(Float, default=1.0)
    status: Mapped[str] = mapped_column(String(32), default="draft")
    confidence: Mapped[float] = mapped_column(Float, default=0.7)

    valid_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    valid_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_concept_relationships_from_concept_id", "from_concept_id"),
    )


class TermCandidateORM(ScopeColumns, Base):
    """Mined term awaiting review."""

    __tablename__ = "term_candidates"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    term_original: Mapped[str] = mapped_column(String(256), nullable=False)
    term_normalized: Mapped[str] = mapped_column(String(256), nullable=False)
    contexts: Mapped[list] = mapped_column(JSONB, default=list)
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    source_type: Mapped[str] = mapped_column(String(64), default="document")
    document_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True
    )
    candidate_concept_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    suggested_definition: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, default=0.3)
    status: Mapped[str] = mapped_column(String(32), default="pending")

    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_term_candidates_term_normalized", "term_normalized"),
        Index("ix_term_candidates_status", "status"),
    )


class DefinitionReviewORM(Base):
    """Review decision on a term candidate."""

    __tablename__ = "definition_reviews"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    candidate_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("term_candidates.id", ondelete="SET NULL"), nullable=True
    )
    concept_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("concepts.id", ondelete="SET NULL"), nullable=True
    )
    definition_version_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("concept_definition_versions.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    decision: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
