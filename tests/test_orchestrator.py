"""Tests for the RAG orchestrator."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from docrag.cache import InMemoryCacheStore, SemanticCache
from docrag.errors import ProviderError
from docrag.models import (
    AliasMatch,
    AmbiguityPolicy,
    Citation,
    EngineId,
    RAGConfig,
    RAGState,
)
from docrag.rag import KILL_SWITCH, UNEXPECTED, UPSTREAM_TRANSIENT, QueryFlow, RAGOrchestrator, message
from docrag.retrieval import HybridSearcher, Reranker

QUERY = "What does the release gate check?"
DRAFT = "The release gate checks automated tests [1]."


def text_model(*responses):
    model = MagicMock()
    model.is_configured = True
    model.generate = AsyncMock(side_effect=list(responses))
    return model


def audit_json(verified=True, confidence=0.92, removed=None, corrected=DRAFT):
    return json.dumps({
        "verified": verified,
        "confidence": confidence,
        "assessment": "checked",
        "verifiedClaims": ["The release gate checks automated tests"],
        "removedClaims": removed or [],
        "correctedResponse": corrected,
    })


def transient_error():
    return ProviderError.from_status("gemini", 503, "overloaded")


@pytest.fixture
def corpus(chunk_store, make_result):
    chunk_store.candidates = [
        make_result(content="The release gate checks automated tests.", vector_score=0.9),
        make_result(content="Security scans run nightly.", vector_score=0.6, page=2),
    ]
    return chunk_store


@pytest.fixture
def make_orchestrator(embedder, corpus, conversation_store):
    def _make(generator=None, auditor=None, **kwargs):
        kwargs.setdefault("conversation_store", conversation_store)
        kwargs.setdefault("sleep", AsyncMock())
        return RAGOrchestrator(
            HybridSearcher(embedder, corpus),
            Reranker(None),
            generator or text_model(DRAFT),
            auditor=auditor,
            **kwargs,
        )

    return _make


class TestVerifiedAnswer:
    """Tests for the main path."""

    @pytest.mark.asyncio
    async def test_verified_answer_is_cached(self, make_orchestrator, embedder):
        cache = SemanticCache(InMemoryCacheStore(), embedder=embedder)
        orchestrator = make_orchestrator(auditor=text_model(audit_json()), cache=cache)

        response = await orchestrator.answer(QUERY)

        assert response.verified
        assert response.confidence == 0.92
        assert response.response == DRAFT
        assert [s.citation_id for s in response.sources] == ["1", "2"]
        assert response.state_trace == [
            RAGState.CACHE_CHECK,
            RAGState.RETRIEVE,
            RAGState.GENERATE,
            RAGState.AUDIT,
            RAGState.CACHE_STORE,
            RAGState.RESPOND,
        ]
        assert (await cache.lookup(QUERY)).answer_text == DRAFT

    @pytest.mark.asyncio
    async def test_below_threshold_not_verified_or_cached(self, make_orchestrator, embedder):
        cache = SemanticCache(InMemoryCacheStore(), embedder=embedder)
        orchestrator = make_orchestrator(auditor=text_model(audit_json(confidence=0.8)), cache=cache)

        response = await orchestrator.answer(QUERY)

        assert not response.verified
        assert RAGState.CACHE_STORE not in response.state_trace
        assert await cache.lookup(QUERY) is None

    @pytest.mark.asyncio
    async def test_removed_claims_use_corrected_response(self, make_orchestrator):
        auditor = text_model(audit_json(removed=["Scans run hourly"], corrected="Corrected [1]."))

        response = await make_orchestrator(auditor=auditor).answer(QUERY)

        assert response.response == "Corrected [1]."
        assert response.verification.removed_claims == ["Scans run hourly"]

    @pytest.mark.asyncio
    async def test_generator_receives_sources_and_question(self, make_orchestrator):
        generator = text_model(DRAFT)

        await make_orchestrator(generator=generator).answer(QUERY, RAGConfig(generator_model="m1"))

        system_prompt, user_prompt = generator.generate.await_args.args
        assert "[1] (guide.pdf, p.1)" in user_prompt
        assert user_prompt.endswith(f"QUESTION: {QUERY}")
        assert generator.generate.await_args.kwargs == {"temperature": 0.0, "model": "m1"}

    @pytest.mark.asyncio
    async def test_auditor_failure_leaves_answer_unverified(self, make_orchestrator):
        auditor = MagicMock()
        auditor.is_configured = True
        auditor.generate = AsyncMock(side_effect=RuntimeError("auditor down"))

        response = await make_orchestrator(auditor=auditor).answer(QUERY)

        assert not response.verified
        assert not response.degraded
        assert response.verification.assessment == "Verification failed"

    @pytest.mark.asyncio
    async def test_skip_verification(self, make_orchestrator):
        auditor = text_model(audit_json())

        response = await make_orchestrator(auditor=auditor).answer(
            QUERY, RAGConfig(skip_verification=True, confidence_threshold=0.5)
        )

        assert response.verified
        assert response.verification.skipped
        auditor.generate.assert_not_awaited()


class TestNoSources:
    """Tests for empty retrieval."""

    @pytest.mark.asyncio
    async def test_empty_corpus(self, make_orchestrator, corpus):
        corpus.candidates = []
        corpus.searchable = False
        generator = text_model()

        response = await make_orchestrator(generator=generator).answer(QUERY)

        assert response.response == message("empty_corpus")
        assert response.verified
        assert response.confidence == 1.0
        generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_relevant(self, make_orchestrator, corpus):
        """A populated corpus without matches answers not-found without calling models."""
        corpus.candidates = []
        generator = text_model()

        response = await make_orchestrator(generator=generator, language="cs").answer(QUERY)

        assert response.response == message("not_found", "cs")
        assert not response.verified
        assert response.sources == []
        generator.generate.assert_not_awaited()


class TestRetryAndDegraded:
    """Tests for retry and the degraded path."""

    @pytest.mark.asyncio
    async def test_two_transient_failures_degrade(self, make_orchestrator, conversation_store):
        generator = text_model(transient_error(), transient_error())
        sleep = AsyncMock()
        orchestrator = make_orchestrator(generator=generator, sleep=sleep)

        response = await orchestrator.answer(QUERY)

        assert response.degraded
        assert response.error_code == UPSTREAM_TRANSIENT
        assert response.response == message("degraded")
        assert response.state_trace[-1] == RAGState.DEGRADED
        assert generator.generate.await_count == 2
        sleep.assert_awaited_once()
        assert [t["role"] for t in conversation_store.turns] == ["user", "assistant"]
        assert conversation_store.turns[1]["sources"] == []

    @pytest.mark.asyncio
    async def test_retry_recovers(self, make_orchestrator):
        generator = text_model(transient_error(), DRAFT)

        response = await make_orchestrator(generator=generator).answer(QUERY)

        assert not response.degraded
        assert response.response == DRAFT
        assert response.stats.attempts == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, make_orchestrator):
        generator = text_model(ProviderError.from_status("gemini", 400, "bad request"))
        sleep = AsyncMock()

        response = await make_orchestrator(generator=generator, sleep=sleep).answer(QUERY)

        assert response.error_code == UNEXPECTED
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retrieval_failure_degrades(self, make_orchestrator, corpus):
        corpus.search_candidates = AsyncMock(side_effect=RuntimeError("connection refused"))

        response = await make_orchestrator().answer(QUERY)

        assert response.degraded
        assert response.error_code == "CHAT_DB_TRANSIENT"

    @pytest.mark.asyncio
    async def test_kill_switch(self, make_orchestrator, corpus, conversation_store):
        generator = text_model(DRAFT)

        response = await make_orchestrator(generator=generator, kill_switch=True).answer(QUERY)

        assert response.degraded
        assert response.error_code == KILL_SWITCH
        assert response.state_trace == [RAGState.DEGRADED]
        assert corpus.search_calls == []
        generator.generate.assert_not_awaited()
        assert conversation_store.audit_logs[0]["degraded"] is True

    def test_backoff_grows(self, make_orchestrator):
        orchestrator = make_orchestrator(retry_base_delay=0.5)

        assert 0.5 <= orchestrator.backoff_delay(0) <= 1.0
        assert 1.0 <= orchestrator.backoff_delay(1) <= 1.5


class TestCacheHit:
    """Tests for serving cached answers."""

    @pytest.mark.asyncio
    async def test_sources_rehydrated_from_chunks(self, make_orchestrator, embedder, corpus):
        """Cached citations resolve to current chunks; missing chunks are skipped."""
        cache = SemanticCache(InMemoryCacheStore(), embedder=embedder)
        live = corpus.candidates[0]
        gone = uuid4()
        await cache.store(
            QUERY,
            "Cached answer [1][2].",
            [
                Citation(id="1", chunk_id=live.chunk_id, page=1, confidence=0.9),
                Citation(id="2", chunk_id=gone, page=3, confidence=0.8),
            ],
            0.93,
            [live.chunk_id, gone],
        )
        generator = text_model()

        response = await make_orchestrator(generator=generator, cache=cache).answer(QUERY)

        assert response.cached
        assert response.verified
        assert response.response == "Cached answer [1][2]."
        assert [s.chunk_id for s in response.sources] == [live.chunk_id]
        assert response.sources[0].content == live.content
        assert response.state_trace == [RAGState.CACHE_CHECK, RAGState.RESPOND]
        generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_chunk_fetch_failure_serves_cached_text(self, make_orchestrator, embedder, corpus):
        """The cached answer is still returned when its chunks cannot be loaded."""
        cache = SemanticCache(InMemoryCacheStore(), embedder=embedder)
        live = corpus.candidates[0]
        await cache.store(
            QUERY,
            "Cached answer [1].",
            [Citation(id="1", chunk_id=live.chunk_id, page=1, confidence=0.9)],
            0.93,
            [live.chunk_id],
        )
        corpus.get_chunks_by_ids = AsyncMock(side_effect=RuntimeError("db down"))

        response = await make_orchestrator(cache=cache).answer(QUERY)

        assert response.cached
        assert not response.degraded
        assert response.response == "Cached answer [1]."
        assert response.sources == []


class TestPersistence:
    """Tests for chat and audit persistence."""

    @pytest.mark.asyncio
    async def test_audit_log(self, make_orchestrator, conversation_store):
        response = await make_orchestrator(auditor=text_model(audit_json())).answer(
            QUERY, owner_id="alice"
        )

        assert response.chat_id == conversation_store.chat_id
        log = conversation_store.audit_logs[0]
        assert log["owner_id"] == "alice"
        assert log["verified"] is True
        assert log["engine"] == "compat"
        assert log["citations"][0]["id"] == "1"
        assert len(log["retrieved_chunk_ids"]) == 2

    @pytest.mark.asyncio
    async def test_store_failure_does_not_break_answer(self, make_orchestrator):
        store = MagicMock()
        store.save_turn = AsyncMock(side_effect=RuntimeError("db down"))
        store.save_audit_log = AsyncMock(side_effect=RuntimeError("db down"))

        response = await make_orchestrator(conversation_store=store).answer(QUERY)

        assert response.response == DRAFT
        assert response.chat_id is None


class TestGraphEngine:
    """Tests for graph engine routing."""

    @pytest.mark.asyncio
    async def test_strict_ambiguity_short_circuits(self, make_orchestrator, concept_store, corpus):
        since = datetime(2025, 1, 1, tzinfo=timezone.utc)
        concept_store.aliases = [
            AliasMatch(
                alias="release gate", alias_normalized="release gate", concept_id=uuid4(),
                concept_key=key, concept_label=key, valid_from=since,
            )
            for key in ("RELEASE_GATE", "QUALITY_GATE")
        ]
        orchestrator = make_orchestrator(query_flow=QueryFlow(concept_store), graph_enabled=True)
        config = RAGConfig(engine=EngineId.GRAPH, ambiguity_policy=AmbiguityPolicy.STRICT)

        response = await orchestrator.answer(QUERY, config)

        assert response.engine == EngineId.GRAPH
        assert response.response.startswith(message("needs_verification"))
        assert response.state_trace == [RAGState.RESPOND]
        assert corpus.search_calls == []

    @pytest.mark.asyncio
    async def test_graph_disabled_falls_back_to_compat(self, make_orchestrator, concept_store):
        orchestrator = make_orchestrator(query_flow=QueryFlow(concept_store), graph_enabled=False)

        response = await orchestrator.answer(QUERY, RAGConfig(engine=EngineId.GRAPH))

        assert response.engine == EngineId.COMPAT
