"""Storage layer for docrag.

Provides database access via SQLAlchemy with PostgreSQL + pgvector.
"""

from .database import (
    Base,
    async_session_factory,
    close_db,
    engine,
    get_session,
    init_db,
)
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
from .repositories import (
    ApprovalResult,
    CacheRepository,
    ChunkRepository,
    ConceptRepository,
    ConversationRepository,
    DocumentRepository,
    TermCandidateRepository,
    chunk_to_search_result,
)
from .stores import (
    PostgresChunkStore,
    PostgresConceptStore,
    PostgresConversationStore,
)

__all__ = [
    # Database
    "Base",
    "engine",
    "async_session_factory",
    "get_session",
    "init_db",
    "close_db",
    # ORM Models
    "DocumentORM",
    "ChunkORM",
    "SemanticCacheORM",
    "ChatORM",
    "MessageORM",
    "AuditLogORM",
    "ConceptORM",
    "ConceptAliasORM",
    "ConceptDefinitionVersionORM",
    "ConceptRelationshipORM",
    "TermCandidateORM",
    "DefinitionReviewORM",
    # Repositories
    "ApprovalResult",
    "DocumentRepository",
    "ChunkRepository",
    "CacheRepository",
    "ConversationRepository",
    "ConceptRepository",
    "TermCandidateRepository",
    "chunk_to_search_result",
    # Stores
    "PostgresChunkStore",
    "PostgresConceptStore",
    "PostgresConversationStore",
]
