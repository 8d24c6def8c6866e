"""Initial schema with all tables and pgvector support.

Revision ID: 001
Revises: None
Create Date: 2026-03-01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 768


def _scope_columns() -> list[sa.Column]:
    return [
        sa.Column("team", sa.String(128), nullable=True),
        sa.Column("product", sa.String(128), nullable=True),
        sa.Column("region", sa.String(128), nullable=True),
        sa.Column("process", sa.String(128), nullable=True),
        sa.Column("role", sa.String(128), nullable=True),
    ]


def _validity_columns() -> list[sa.Column]:
    return [
        sa.Column("valid_from", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create initial database schema."""
    # Enable required extensions
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Create enum types
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE processingstatus AS ENUM (
                'pending', 'processing', 'completed', 'failed'
            );
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Create documents table
    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("filename", sa.String(512), nullable=False),
        sa.Column("file_hash", sa.String(64), nullable=False),
        sa.Column("mime_type", sa.String(128), nullable=False),
        sa.Column("file_size", sa.Integer, server_default="0"),
        sa.Column("page_count", sa.Integer, nullable=True),
        sa.Column("metadata_json", postgresql.JSONB, nullable=True),
        sa.Column("access_level", sa.String(32), server_default="private"),
        sa.Column(
            "processing_status",
            postgresql.ENUM("pending", "processing", "completed", "failed",
                          name="processingstatus", create_type=False),
            server_default="pending",
        ),
        sa.Column("processing_error", sa.Text, nullable=True),
        sa.Column("template_profile_id", sa.String(128), nullable=True),
        sa.Column("template_matched", sa.Boolean, server_default="false"),
        sa.Column("template_match_score", sa.Float, nullable=True),
        sa.Column("template_boilerplate_chunks", sa.Integer, server_default="0"),
        sa.Column("template_detection_mode", sa.String(32), nullable=True),
        sa.Column("template_warnings", postgresql.JSONB, nullable=True),
        sa.Column("ocr_rescue_applied", sa.Boolean, server_default="false"),
        sa.Column("ocr_rescue_engine", sa.String(32), nullable=True),
        sa.Column("ocr_rescue_warnings", postgresql.JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("owner_id", "file_hash", name="uq_documents_owner_file_hash"),
    )
    op.create_index("ix_documents_owner_id", "documents", ["owner_id"])
    op.create_index("ix_documents_processing_status", "documents", ["processing_status"])

    # Create chunks table
    op.create_table(
        "chunks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("fts_vector", postgresql.TSVECTOR, nullable=True),
        sa.Column("page_number", sa.Integer, nullable=False),
        sa.Column("bounding_box", postgresql.JSONB, nullable=True),
        sa.Column("highlight_boxes", postgresql.JSONB, nullable=True),
        sa.Column("highlight_text", sa.Text, nullable=True),
        sa.Column("parent_header", sa.String(512), nullable=True),
        sa.Column("chunk_index", sa.Integer, nullable=False),
        sa.Column("token_count", sa.Integer, nullable=True),
        sa.Column("is_template_boilerplate", sa.Boolean, server_default="false"),
        sa.Column("access_level", sa.String(32), server_default="private"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_chunks_document_id", "chunks", ["document_id"])

    # Create vector similarity index (HNSW)
    op.execute("""
        CREATE INDEX ix_chunks_embedding ON chunks
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
    """)

    # Create full-text search index
    op.execute("""
        CREATE INDEX ix_chunks_fts_vector ON chunks
        USING gin (fts_vector)
    """)

    # Create semantic cache table
    op.create_table(
        "semantic_cache",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("query_text", sa.Text, nullable=False),
        sa.Column("query_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("query_embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("answer_text", sa.Text, nullable=False),
        sa.Column("citations", postgresql.JSONB, nullable=True),
        sa.Column("confidence", sa.Float, server_default="0"),
        sa.Column("chunk_ids", postgresql.ARRAY(postgresql.UUID(as_uuid=True)), nullable=True),
        sa.Column("hit_count", sa.Integer, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_semantic_cache_expires_at", "semantic_cache", ["expires_at"])
    op.execute("""
        CREATE INDEX ix_semantic_cache_query_embedding ON semantic_cache
        USING hnsw (query_embedding vector_cosine_ops)
    """)

    # Create conversation tables
    op.create_table(
        "chats",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("title", sa.String(256), server_default="New Chat"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_chats_owner_id", "chats", ["owner_id"])

    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "chat_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("sources", postgresql.JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_messages_chat_id", "messages", ["chat_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(128), nullable=True),
        sa.Column(
            "chat_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chats.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("query", sa.Text, nullable=False),
        sa.Column("retrieved_chunk_ids", postgresql.ARRAY(postgresql.UUID(as_uuid=True)), nullable=True),
        sa.Column("draft_response", sa.Text, nullable=True),
        sa.Column("final_response", sa.Text, nullable=True),
        sa.Column("citations", postgresql.JSONB, nullable=True),
        sa.Column("confidence_score", sa.Float, nullable=True),
        sa.Column("verified", sa.Boolean, server_default="false"),
        sa.Column("degraded", sa.Boolean, server_default="false"),
        sa.Column("cached", sa.Boolean, server_default="false"),
        sa.Column("engine", sa.String(16), server_default="compat"),
        sa.Column("error_code", sa.String(64), nullable=True),
        sa.Column("model_used", sa.String(64), nullable=True),
        sa.Column("latency_ms", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create concept graph tables
    op.create_table(
        "concepts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False, unique=True),
        sa.Column("label", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status", sa.String(32), server_default="draft"),
        sa.Column("criticality", sa.String(32), server_default="normal"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "concept_aliases",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "concept_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("concepts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("alias", sa.String(256), nullable=False),
        sa.Column("alias_normalized", sa.String(256), nullable=False),
        sa.Column("language", sa.String(16), server_default="en"),
        sa.Column("status", sa.String(32), server_default="active"),
        sa.Column("confidence", sa.Float, server_default="1.0"),
        *_scope_columns(),
        *_validity_columns(),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_concept_aliases_alias_normalized", "concept_aliases", ["alias_normalized"])
    op.create_index("ix_concept_aliases_concept_id", "concept_aliases", ["concept_id"])

    op.create_table(
        "concept_definition_versions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "concept_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("concepts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("definition", sa.Text, nullable=False),
        sa.Column("status", sa.String(32), server_default="draft"),
        sa.Column("confidence", sa.Float, server_default="0.7"),
        sa.Column(
            "source_of_truth_doc_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("documents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_scope_columns(),
        *_validity_columns(),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "concept_id", "version", name="uq_concept_definition_versions_concept_version"
        ),
    )

    op.create_table(
        "concept_relationships",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "from_concept_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("concepts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "to_concept_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("concepts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("relation_type", sa.String(32), nullable=False),
        sa.Column("weight", sa.Float, server_default="1.0"),
        sa.Column("status", sa.String(32), server_default="draft"),
        sa.Column("confidence", sa.Float, server_default="0.7"),
        *_scope_columns(),
        *_validity_columns(),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_concept_relationships_from_concept_id", "concept_relationships", ["from_concept_id"]
    )

    # Create term review tables
    op.create_table(
        "term_candidates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("term_original", sa.String(256), nullable=False),
        sa.Column("term_normalized", sa.String(256), nullable=False),
        sa.Column("contexts", postgresql.JSONB, server_default="[]"),
        sa.Column("frequency", sa.Integer, server_default="1"),
        sa.Column("source_type", sa.String(64), server_default="document"),
        sa.Column(
            "document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("documents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("candidate_concept_key", sa.String(128), nullable=True),
        sa.Column("suggested_definition", sa.Text, nullable=True),
        sa.Column("confidence", sa.Float, server_default="0.3"),
        sa.Column("status", sa.String(32), server_default="pending"),
        *_scope_columns(),
        sa.Column("detected_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(128), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_term_candidates_term_normalized", "term_candidates", ["term_normalized"])
    op.create_index("ix_term_candidates_status", "term_candidates", ["status"])

    op.create_table(
        "definition_reviews",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "candidate_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("term_candidates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "concept_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("concepts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "definition_version_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("concept_definition_versions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reviewer_id", sa.String(128), nullable=True),
        sa.Column("decision", sa.String(32), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order of creation
    op.drop_table("definition_reviews")
    op.drop_table("term_candidates")
    op.drop_table("concept_relationships")
    op.drop_table("concept_definition_versions")
    op.drop_table("concept_aliases")
    op.drop_table("concepts")
    op.drop_table("audit_logs")
    op.drop_table("messages")
    op.drop_table("chats")
    op.drop_table("semantic_cache")
    op.drop_table("chunks")
    op.drop_table("documents")
    op.execute("DROP TYPE IF EXISTS processingstatus")
