"""Pytest configuration and fixtures."""

from uuid import UUID, uuid4

import pytest

from docrag.models import BoundingBox, ParsedPage, SearchResult, TextBlock
from docrag.pipeline import Embedder


class StaticEmbeddingProvider:
    """Embedding provider returning a fixed vector per text."""

    def __init__(self, vectors=None, default=None, dimensions=4):
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0] + [0.0] * (dimensions - 1)
        self.calls = []

    @property
    def is_configured(self) -> bool:
        return True

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return self.vectors.get(text, self.default)


class FakeChunkStore:
    """In-memory chunk store for retrieval and orchestrator tests."""

    def __init__(self, candidates=None, searchable=True):
        self.candidates = candidates or []
        self.searchable = searchable
        self.search_calls = []

    async def search_candidates(self, query, embedding, candidate_limit, owner_id=None):
        self.search_calls.append((query, candidate_limit, owner_id))
        return list(self.candidates[:candidate_limit])

    async def get_chunks_by_ids(self, chunk_ids):
        by_id = {c.chunk_id: c for c in self.candidates}
        return [by_id[i] for i in chunk_ids if i in by_id]

    async def has_searchable_chunks(self, owner_id=None):
        return self.searchable


class FakeConceptStore:
    """In-memory concept graph."""

    def __init__(self, aliases=None, definitions=None, relations=None):
        self.aliases = aliases or []
        self.definitions = definitions or []
        self.relations = relations or []
        self.alias_queries = []

    async def find_aliases(self, terms):
        self.alias_queries.append(list(terms))
        return [a for a in self.aliases if a.alias_normalized in terms]

    async def find_definitions(self, concept_ids):
        return [d for d in self.definitions if d.concept_id in concept_ids]

    async def find_relationships(self, concept_ids):
        return [r for r in self.relations if r.from_concept_id in concept_ids]


class FakeConversationStore:
    """Records chat turns and audit rows."""

    def __init__(self):
        self.chat_id: UUID = uuid4()
        self.turns = []
        self.audit_logs = []

    async def save_turn(self, owner_id, chat_id, role, content, sources=None):
        self.turns.append({"owner_id": owner_id, "role": role, "content": content, "sources": sources})
        return self.chat_id

    async def save_audit_log(self, **values):
        self.audit_logs.append(values)


@pytest.fixture
def make_block():
    """Factory for text blocks."""

    def _make(text, page=1, x=0.1, y=0.1, width=0.5, height=0.02):
        return TextBlock(text=text, page=page, bbox=BoundingBox(x=x, y=y, width=width, height=height))

    return _make


@pytest.fixture
def make_page(make_block):
    """Factory for a page whose blocks are its non-blank lines."""

    def _make(text, page_number=1, blocks=None):
        if blocks is None:
            lines = [line for line in text.split("\n") if line.strip()]
            blocks = [
                make_block(line, page=page_number, y=0.05 + i * 0.03)
                for i, line in enumerate(lines)
            ]
        return ParsedPage(
            page_number=page_number,
            width=612.0,
            height=792.0,
            text_blocks=blocks,
            full_text=text,
        )

    return _make


@pytest.fixture
def make_result():
    """Factory for search results."""

    def _make(content="Chunk content", vector_score=0.9, text_score=0.0, page=1, **kwargs):
        values = {
            "chunk_id": uuid4(),
            "document_id": uuid4(),
            "content": content,
            "page_number": page,
            "bounding_box": BoundingBox(x=0.1, y=0.1, width=0.5, height=0.05),
            "filename": "guide.pdf",
            "vector_score": vector_score,
            "text_score": text_score,
        }
        values.update(kwargs)
        return SearchResult(**values)

    return _make


@pytest.fixture
def embedding_provider():
    return StaticEmbeddingProvider()


@pytest.fixture
def embedder(embedding_provider):
    return Embedder(embedding_provider, batch_size=4, batch_delay_ms=0, dimensions=4)


@pytest.fixture
def chunk_store():
    return FakeChunkStore()


@pytest.fixture
def concept_store():
    return FakeConceptStore()


@pytest.fixture
def conversation_store():
    return FakeConversationStore()


@pytest.fixture
def pdf_bytes():
    """One-page PDF with a real text layer."""
    import fitz

    doc = fitz.open()
    page = doc.new_page()
    lines = [
        "Release Process",
        "Every release passes the release gate before deployment to production.",
        "The release gate checks automated tests, security scans and change approvals.",
        "A failed gate blocks the deployment until the owning team resolves the findings.",
        "Emergency fixes follow the same gate with an expedited approval from the duty lead.",
    ]
    for i, line in enumerate(lines):
        page.insert_text((72, 72 + i * 18), line, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def make_embedding_provider():
    """Factory for static embedding providers."""
    return StaticEmbeddingProvider
