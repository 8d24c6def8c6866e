"""Tests for the graph query flow and answer engines."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from docrag.models import (
    AliasMatch,
    AmbiguityPolicy,
    ConceptCriticality,
    ContextScope,
    DefinitionMatch,
    EngineId,
    RAGConfig,
    RelationMatch,
)
from docrag.rag import (
    CompatEngine,
    GraphEngine,
    LlmTermClassifier,
    QueryFlow,
    make_candidate_terms,
    message,
    resolve_engine,
    scope_matches,
    temporal_matches,
)

SINCE = datetime(2025, 1, 1, tzinfo=timezone.utc)
AS_OF = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

GREEN_ID = uuid4()
GATE_ID = uuid4()
LIGHT_ID = uuid4()


def alias(text, concept_id, key, **kwargs):
    values = {
        "alias": text,
        "alias_normalized": text.lower(),
        "concept_id": concept_id,
        "concept_key": key,
        "concept_label": key.title(),
        "valid_from": SINCE,
    }
    values.update(kwargs)
    return AliasMatch(**values)


def definition(concept_id, text, **kwargs):
    return DefinitionMatch(id=uuid4(), concept_id=concept_id, definition=text, valid_from=SINCE, **kwargs)


@pytest.fixture
def graph_store(concept_store):
    concept_store.aliases = [
        alias("green status", GREEN_ID, "GREEN_STATUS"),
        alias("release gate", GATE_ID, "RELEASE_GATE", criticality=ConceptCriticality.CRITICAL),
    ]
    concept_store.definitions = [
        definition(GREEN_ID, "All release checks passed", team="release"),
        definition(GREEN_ID, "Ops dashboard shows no alerts", team="ops"),
    ]
    concept_store.relations = [
        RelationMatch(
            from_concept_id=GATE_ID,
            to_concept_id=GREEN_ID,
            from_key="RELEASE_GATE",
            to_key="GREEN_STATUS",
            relation_type="requires",
            valid_from=SINCE,
        )
    ]
    return concept_store


class TestCandidateTerms:
    """Tests for n-gram candidates."""

    def test_ngrams_and_uppercase(self):
        terms = make_candidate_terms("Je to GREEN status pro release gate?")

        assert "green" in terms
        assert "green status" in terms
        assert "release gate" in terms
        assert "pro release gate" in terms
        assert len(terms) == len(set(terms))

    def test_single_characters_dropped(self):
        assert make_candidate_terms("a b") == ["a b"]


class TestScopeAndTime:
    """Tests for scope and validity filters."""

    def test_scope(self):
        row = alias("green", GREEN_ID, "GREEN_STATUS", team="release")

        assert scope_matches(row, None)
        assert scope_matches(row, ContextScope(region="eu"))
        assert scope_matches(row, ContextScope(team="release"))
        assert not scope_matches(row, ContextScope(team="ops"))

    def test_validity_window(self):
        assert temporal_matches(SINCE, None, AS_OF)
        assert not temporal_matches(AS_OF, None, SINCE)
        assert not temporal_matches(SINCE, AS_OF, AS_OF)


class TestQueryFlow:
    """Tests for QueryFlow.run."""

    @pytest.mark.asyncio
    async def test_scoped_definition_and_rewrite(self, graph_store):
        """The definition matching the scope is used in the rewrite."""
        flow = QueryFlow(graph_store)

        result = await flow.run(
            "Is the green status set?",
            context_scope=ContextScope(team="release"),
            as_of=AS_OF,
            graph_enabled=True,
        )

        resolved = result.interpretation.resolved_concepts
        assert [c.concept_key for c in resolved] == ["GREEN_STATUS"]
        assert resolved[0].definition == "All release checks passed"
        lines = result.expanded_query.split("\n")
        assert lines[:3] == ["Is the green status set?", "", "[INTERNAL_MEANING]"]
        assert 'Scope: {"team":"release"}' in lines
        assert "EffectiveAt: 2026-01-05T09:00:00+00:00" in lines
        assert "- GREEN_STATUS: All release checks passed" in lines
        assert result.strict_failure_message is None

    @pytest.mark.asyncio
    async def test_relationships_appended(self, graph_store):
        flow = QueryFlow(graph_store)

        result = await flow.run("When does the release gate open?", as_of=AS_OF, graph_enabled=True)

        assert "- RELEASE_GATE: (definition missing)" in result.expanded_query
        assert result.expanded_query.endswith("[GRAPH_RELATIONSHIPS]\n- RELEASE_GATE requires GREEN_STATUS")

    @pytest.mark.asyncio
    async def test_without_graph_query_unchanged(self, graph_store):
        result = await QueryFlow(graph_store).run("Is the green status set?", as_of=AS_OF)

        assert result.expanded_query == "Is the green status set?"
        assert result.interpretation.detected_terms == ["green status"]

    @pytest.mark.asyncio
    async def test_expired_alias_unresolved(self, graph_store):
        graph_store.aliases = [alias("green status", GREEN_ID, "GREEN_STATUS", valid_to=SINCE)]

        result = await QueryFlow(graph_store).run("green status", as_of=AS_OF)

        assert result.interpretation.resolved_concepts == []
        assert "green status" in result.unsupported_terms

    @pytest.mark.asyncio
    async def test_strict_ambiguity_refuses(self, graph_store):
        """One term mapping to two concepts refuses under the strict policy."""
        graph_store.aliases.append(alias("green status", LIGHT_ID, "TRAFFIC_LIGHT"))

        result = await QueryFlow(graph_store).run(
            "green status?", as_of=AS_OF, ambiguity_policy=AmbiguityPolicy.STRICT
        )

        assert result.ambiguities[0].candidate_concepts == ["GREEN_STATUS", "TRAFFIC_LIGHT"]
        assert result.strict_failure_message.startswith(message("needs_verification"))
        assert "manual clarification" in result.strict_failure_message

    @pytest.mark.asyncio
    async def test_show_both_does_not_refuse(self, graph_store):
        graph_store.aliases.append(alias("green status", LIGHT_ID, "TRAFFIC_LIGHT"))

        result = await QueryFlow(graph_store).run("green status?", as_of=AS_OF)

        assert len(result.ambiguities) == 1
        assert result.strict_failure_message is None

    @pytest.mark.asyncio
    async def test_strict_grounding_missing_definition(self, graph_store):
        """A critical concept without a definition needs verification."""
        flow = QueryFlow(graph_store, language="cs")

        result = await flow.run("release gate", as_of=AS_OF, strict_grounding=True)

        assert result.strict_failure_message.startswith(message("needs_verification", "cs"))
        assert "critical concepts: RELEASE_GATE" in result.strict_failure_message

    @pytest.mark.asyncio
    async def test_classifier_fallback(self, graph_store):
        """Classifier terms are tried only when nothing resolved and rewrite is on."""
        graph_store.aliases.append(alias("ship window", GATE_ID, "RELEASE_GATE"))
        classifier = MagicMock()
        classifier.classify = AsyncMock(return_value=["ship window"])
        flow = QueryFlow(graph_store, term_classifier=classifier)

        off = await flow.run("Can we deploy now?", as_of=AS_OF)
        on = await flow.run("Can we deploy now?", as_of=AS_OF, rewrite_enabled=True)

        assert off.interpretation.resolved_concepts == []
        assert [c.concept_key for c in on.interpretation.resolved_concepts] == ["RELEASE_GATE"]
        classifier.classify.assert_awaited_once()


class TestLlmTermClassifier:
    """Tests for the fallback classifier."""

    @pytest.mark.asyncio
    async def test_terms_normalized(self):
        client = MagicMock()
        client.is_configured = True
        client.generate_content = AsyncMock(return_value='{"terms": ["Blue Lane", "", 5, "blue  lane"]}')

        assert await LlmTermClassifier(client).classify("q") == ["blue lane"]

    @pytest.mark.asyncio
    async def test_failure_is_empty(self):
        client = MagicMock()
        client.is_configured = True
        client.generate_content = AsyncMock(side_effect=RuntimeError("down"))

        assert await LlmTermClassifier(client).classify("q") == []

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        client = MagicMock()
        client.is_configured = False

        assert await LlmTermClassifier(client).classify("q") == []


class TestEngines:
    """Tests for engine planning."""

    @pytest.mark.asyncio
    async def test_compat_passes_through(self):
        plan = await CompatEngine().plan("q", RAGConfig())

        assert plan.retrieval_query == plan.prompt_query == "q"
        assert plan.cacheable

    @pytest.mark.asyncio
    async def test_graph_rewrite_bypasses_cache(self, graph_store):
        engine = GraphEngine(QueryFlow(graph_store))

        plan = await engine.plan("Is the green status set?", RAGConfig(as_of=AS_OF))

        assert plan.engine == EngineId.GRAPH
        assert "[INTERNAL_MEANING]" in plan.retrieval_query
        assert plan.prompt_query == plan.retrieval_query
        assert not plan.cacheable

    @pytest.mark.asyncio
    async def test_graph_without_terms_is_cacheable(self, graph_store):
        plan = await GraphEngine(QueryFlow(graph_store)).plan("Who is on call?", RAGConfig())

        assert plan.retrieval_query == "Who is on call?"
        assert plan.cacheable

    def test_resolve_engine(self, graph_store):
        compat = CompatEngine()
        graph = GraphEngine(QueryFlow(graph_store))

        assert resolve_engine(EngineId.GRAPH, True, compat, graph) is graph
        assert resolve_engine(EngineId.GRAPH, False, compat, graph) is compat
        assert resolve_engine(EngineId.COMPAT, True, compat, graph) is compat
        assert resolve_engine(EngineId.GRAPH, True, compat, None) is compat
