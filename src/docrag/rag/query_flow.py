"""Query flow for the graph-aware engine.

Resolves internal terms in a question against the concept graph:
candidate n-grams -> scoped, time-valid aliases -> best definitions ->
ambiguity and strict-grounding checks -> optional rewrite with the resolved
meanings and concept relationships appended.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import UUID

from docrag.models import (
    AliasMatch,
    Ambiguity,
    AmbiguityPolicy,
    ConceptCriticality,
    ContextScope,
    DefinitionMatch,
    QueryFlowResult,
    QueryInterpretation,
    RelationMatch,
    ResolvedConcept,
    ScopedRow,
)
from docrag.pipeline.stage_terms import normalize_term
from docrag.providers.base import parse_json_object

from .prompts import message

logger = logging.getLogger(__name__)

UPPERCASE_TERM_RE = re.compile(r"\b[A-Z][A-Z0-9_:-]{2,}\b")
SCOPE_FIELDS = ("team", "product", "region", "process", "role")
CLASSIFIER_MODEL = "gemini-2.5-flash"
CLASSIFIER_MAX_TERMS = 5

STRICT_AMBIGUITY_REASON = "Ambiguous internal term detected under strict policy."
AMBIGUITY_REASON = "Term maps to multiple concepts depending on scope/time."


class ConceptStore(Protocol):
    async def find_aliases(self, terms: list[str]) -> list[AliasMatch]:
        ...

    async def find_definitions(self, concept_ids: list[UUID]) -> list[DefinitionMatch]:
        ...

    async def find_relationships(self, concept_ids: list[UUID]) -> list[RelationMatch]:
        ...


class TermClassifier(Protocol):
    async def classify(self, query: str) -> list[str]:
        ...


def _dedupe(items):
    return list(dict.fromkeys(items))


def make_candidate_terms(query: str) -> list[str]:
    """Normalized 1-, 2- and 3-grams plus raw uppercase tokens like ``GREEN``."""
    words = normalize_term(query).split()
    out: list[str] = []
    for i, word in enumerate(words):
        out.append(word)
        if i + 1 < len(words):
            out.append(f"{word} {words[i + 1]}")
        if i + 2 < len(words):
            out.append(f"{word} {words[i + 1]} {words[i + 2]}")

    for term in UPPERCASE_TERM_RE.findall(query):
        out.append(normalize_term(term))

    return [term for term in _dedupe(out) if len(term) > 1]


def scope_matches(row: ScopedRow, context_scope: Optional[ContextScope]) -> bool:
    """A row matches unless a field is set on both sides with different values."""
    if context_scope is None:
        return True
    for name in SCOPE_FIELDS:
        row_value = getattr(row, name)
        context_value = getattr(context_scope, name)
        if row_value and context_value and row_value != context_value:
            return False
    return True


def temporal_matches(
    valid_from: datetime, valid_to: Optional[datetime], effective_at: datetime
) -> bool:
    if valid_from > effective_at:
        return False
    if valid_to is not None and valid_to <= effective_at:
        return False
    return True


def _applies(row: ScopedRow, context_scope: Optional[ContextScope], effective_at: datetime) -> bool:
    return scope_matches(row, context_scope) and temporal_matches(
        row.valid_from, row.valid_to, effective_at
    )


def build_ambiguities(
    resolved: list[ResolvedConcept], policy: AmbiguityPolicy
) -> list[Ambiguity]:
    """One ambiguity per term that resolved to more than one concept."""
    grouped: dict[str, list[str]] = {}
    for item in resolved:
        keys = grouped.setdefault(item.alias_normalized, [])
        if item.concept_key not in keys:
            keys.append(item.concept_key)

    reason = STRICT_AMBIGUITY_REASON if policy == AmbiguityPolicy.STRICT else AMBIGUITY_REASON
    return [
        Ambiguity(term=term, candidate_concepts=keys, reason=reason)
        for term, keys in grouped.items()
        if len(keys) > 1
    ]


def build_internal_rewrite(
    query: str,
    resolved: list[ResolvedConcept],
    context_scope: Optional[ContextScope],
    effective_at: datetime,
) -> str:
    if not resolved:
        return query

    lines = [query, "", "[INTERNAL_MEANING]"]
    if context_scope is not None and not context_scope.is_empty():
        lines.append(f"Scope: {context_scope.model_dump_json(exclude_none=True)}")
    lines.append(f"EffectiveAt: {effective_at.isoformat()}")
    lines.append("Resolved concepts:")
    for concept in resolved:
        definition = concept.definition or "(definition missing)"
        lines.append(f"- {concept.concept_key}: {definition}")
    return "\n".join(lines)


def build_interpretation(
    expanded_query: str, resolved: list[ResolvedConcept]
) -> QueryInterpretation:
    return QueryInterpretation(
        detected_terms=_dedupe(item.alias_normalized for item in resolved),
        resolved_concepts=resolved,
        definition_version_ids=_dedupe(
            item.definition_version_id for item in resolved if item.definition_version_id
        ),
        rewritten_query=expanded_query,
    )


class LlmTermClassifier:
    """Asks a small model to pick out internal slang when nothing resolved."""

    def __init__(self, client, model: str = CLASSIFIER_MODEL):
        self.client = client
        self.model = model

    async def classify(self, query: str) -> list[str]:
        if not self.client.is_configured:
            return []

        prompt = "\n".join(
            [
                f"Extract up to {CLASSIFIER_MAX_TERMS} short internal slang terms from the query.",
                'Return JSON only in format: {"terms":["..."]}.',
                f"Query: {query}",
            ]
        )
        try:
            text = await self.client.generate_content(
                self.model, [{"text": prompt}], temperature=0.0
            )
        except Exception as e:
            logger.warning("Fallback term classifier failed: %s", e)
            return []

        payload = parse_json_object(text) or {}
        terms = payload.get("terms")
        if not isinstance(terms, list):
            return []
        normalized = (normalize_term(t) for t in terms if isinstance(t, str))
        return _dedupe(t for t in normalized if t)


@dataclass
class _Resolution:
    resolved: list[ResolvedConcept] = field(default_factory=list)
    unresolved_terms: list[str] = field(default_factory=list)


class QueryFlow:
    """Resolve a question's internal terminology against the concept graph."""

    def __init__(
        self,
        concept_store: ConceptStore,
        term_classifier: Optional[TermClassifier] = None,
        language: str = "en",
    ):
        self.concept_store = concept_store
        self.term_classifier = term_classifier
        self.language = language

    async def _resolve(
        self,
        candidate_terms: list[str],
        context_scope: Optional[ContextScope],
        effective_at: datetime,
    ) -> _Resolution:
        if not candidate_terms:
            return _Resolution()

        aliases = [
            row
            for row in await self.concept_store.find_aliases(candidate_terms)
            if _applies(row, context_scope, effective_at)
        ]
        if not aliases:
            return _Resolution(unresolved_terms=list(candidate_terms))

        concept_ids = _dedupe(row.concept_id for row in aliases)
        # Rows arrive ordered by confidence then recency; first applicable wins.
        best_definition: dict[UUID, DefinitionMatch] = {}
        for row in await self.concept_store.find_definitions(concept_ids):
            if row.concept_id in best_definition:
                continue
            if _applies(row, context_scope, effective_at):
                best_definition[row.concept_id] = row

        resolved: dict[str, ResolvedConcept] = {}
        for alias in aliases:
            key = f"{alias.alias_normalized}:{alias.concept_id}"
            if key in resolved:
                continue
            definition = best_definition.get(alias.concept_id)
            resolved[key] = ResolvedConcept(
                concept_id=alias.concept_id,
                concept_key=alias.concept_key,
                concept_label=alias.concept_label,
                alias=alias.alias,
                alias_normalized=alias.alias_normalized,
                definition_version_id=definition.id if definition else None,
                definition=definition.definition if definition else None,
                confidence=definition.confidence if definition else alias.confidence,
                criticality=alias.criticality,
            )

        matched = {row.alias_normalized for row in aliases}
        return _Resolution(
            resolved=list(resolved.values()),
            unresolved_terms=[term for term in candidate_terms if term not in matched],
        )

    async def _graph_hints(
        self,
        resolved: list[ResolvedConcept],
        context_scope: Optional[ContextScope],
        effective_at: datetime,
    ) -> list[str]:
        if not resolved:
            return []
        concept_ids = _dedupe(item.concept_id for item in resolved)
        relations = await self.concept_store.find_relationships(concept_ids)
        return [
            f"{row.from_key} {row.relation_type} {row.to_key}"
            for row in relations
            if _applies(row, context_scope, effective_at)
        ]

    async def run(
        self,
        query: str,
        context_scope: Optional[ContextScope] = None,
        as_of: Optional[datetime] = None,
        ambiguity_policy: AmbiguityPolicy = AmbiguityPolicy.SHOW_BOTH,
        rewrite_enabled: bool = False,
        graph_enabled: bool = False,
        strict_grounding: bool = False,
    ) -> QueryFlowResult:
        """Interpret ``query`` and build the expanded retrieval query.

        Args:
            query: The user's question.
            context_scope: Organizational scope; unset fields match anything.
            as_of: Effective time for validity windows (default now).
            ambiguity_policy: ``strict`` turns ambiguities into a refusal.
            rewrite_enabled: Allow the LLM fallback classifier.
            graph_enabled: Append resolved meanings and relationships.
            strict_grounding: Refuse when a critical concept lacks a definition.
        """
        start = time.perf_counter()
        effective_at = as_of or datetime.now(timezone.utc)

        candidate_terms = make_candidate_terms(query)
        resolution = await self._resolve(candidate_terms, context_scope, effective_at)

        if not resolution.resolved and rewrite_enabled and self.term_classifier is not None:
            fallback_terms = await self.term_classifier.classify(query)
            if fallback_terms:
                candidate_terms = _dedupe(candidate_terms + fallback_terms)
                resolution = await self._resolve(candidate_terms, context_scope, effective_at)

        ambiguities = build_ambiguities(resolution.resolved, ambiguity_policy)
        interpretation_time_ms = (time.perf_counter() - start) * 1000

        reasons = []
        if ambiguity_policy == AmbiguityPolicy.STRICT and ambiguities:
            reasons.append("Ambiguous internal terminology requires manual clarification.")
        if strict_grounding:
            missing = [
                item.concept_key
                for item in resolution.resolved
                if item.criticality == ConceptCriticality.CRITICAL and not item.definition_version_id
            ]
            if missing:
                reasons.append(
                    f"Missing approved definition for critical concepts: {', '.join(missing)}"
                )

        expanded_query = query
        graph_start = time.perf_counter()
        if graph_enabled:
            expanded_query = build_internal_rewrite(
                query, resolution.resolved, context_scope, effective_at
            )
            hints = await self._graph_hints(resolution.resolved, context_scope, effective_at)
            if hints:
                expanded_query += "\n\n[GRAPH_RELATIONSHIPS]\n" + "\n".join(f"- {h}" for h in hints)
        graph_expansion_time_ms = (time.perf_counter() - graph_start) * 1000

        strict_failure_message = None
        if reasons:
            strict_failure_message = "\n".join(
                [message("needs_verification", self.language)] + [f"- {r}" for r in reasons]
            )
            logger.info("Query needs verification: %s", "; ".join(reasons))

        return QueryFlowResult(
            expanded_query=expanded_query,
            interpretation=build_interpretation(expanded_query, resolution.resolved),
            ambiguities=ambiguities,
            unsupported_terms=resolution.unresolved_terms,
            strict_failure_message=strict_failure_message,
            interpretation_time_ms=interpretation_time_ms,
            graph_expansion_time_ms=graph_expansion_time_ms,
        )
