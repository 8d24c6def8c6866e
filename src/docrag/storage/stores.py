"""Session-scoped stores over the repositories.

Each call opens its own transaction through ``session_scope`` (default
``get_session``), so collaborators such as the retriever, the query flow and
the orchestrator can be handed a store without managing sessions.
"""

from typing import Any, AsyncContextManager, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from docrag.models import (
    AliasMatch,
    DefinitionMatch,
    RelationMatch,
    SearchResult,
)

from .database import get_session
from .repositories import ChunkRepository, ConceptRepository, ConversationRepository

SessionScope = Callable[[], AsyncContextManager[AsyncSession]]


class PostgresChunkStore:
    """Read side of the chunk table used by hybrid retrieval."""

    def __init__(self, session_scope: SessionScope = get_session):
        self.session_scope = session_scope

    async def search_candidates(
        self,
        query: str,
        embedding: list[float],
        candidate_limit: int,
        owner_id: Optional[str] = None,
    ) -> list[SearchResult]:
        async with self.session_scope() as session:
            return await ChunkRepository(session).search_candidates(
                query, embedding, candidate_limit, owner_id
            )

    async def get_chunks_by_ids(self, chunk_ids: list[UUID]) -> list[SearchResult]:
        async with self.session_scope() as session:
            return await ChunkRepository(session).get_chunks_by_ids(chunk_ids)

    async def has_searchable_chunks(self, owner_id: Optional[str] = None) -> bool:
        async with self.session_scope() as session:
            return await ChunkRepository(session).has_searchable_chunks(owner_id)


class PostgresConceptStore:
    """Concept graph lookups for the graph-aware engine."""

    def __init__(self, session_scope: SessionScope = get_session):
        self.session_scope = session_scope

    async def find_aliases(self, terms: list[str]) -> list[AliasMatch]:
        async with self.session_scope() as session:
            return await ConceptRepository(session).find_aliases(terms)

    async def find_definitions(self, concept_ids: list[UUID]) -> list[DefinitionMatch]:
        async with self.session_scope() as session:
            return await ConceptRepository(session).find_definitions(concept_ids)

    async def find_relationships(self, concept_ids: list[UUID]) -> list[RelationMatch]:
        async with self.session_scope() as session:
            return await ConceptRepository(session).find_relationships(concept_ids)


class PostgresConversationStore:
    """Persists chat turns and audit log rows."""

    def __init__(self, session_scope: SessionScope = get_session):
        self.session_scope = session_scope

    async def save_turn(
        self,
        owner_id: str,
        chat_id: Optional[UUID],
        role: str,
        content: str,
        sources: Optional[list[dict[str, Any]]] = None,
    ) -> UUID:
        """Append a message, creating the chat if needed. Returns the chat id."""
        async with self.session_scope() as session:
            repo = ConversationRepository(session)
            chat = await repo.get_or_create_chat(
                owner_id, chat_id, title=content[:80] if role == "user" else None
            )
            await repo.add_message(chat.id, role, content, sources)
            return chat.id

    async def save_audit_log(self, **values: Any) -> None:
        async with self.session_scope() as session:
            await ConversationRepository(session).add_audit_log(**values)
