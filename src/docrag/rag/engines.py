"""Answer engines.

An engine turns the user's question into an ``EnginePlan`` before the shared
retrieve/generate/audit machinery runs. ``compat`` passes the question
through; ``graph`` resolves internal terminology first and may refuse with a
needs-verification message.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from docrag.models import EngineId, QueryInterpretation, RAGConfig

from .query_flow import QueryFlow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnginePlan:
    engine: EngineId
    retrieval_query: str
    prompt_query: str
    short_circuit: Optional[str] = None
    interpretation: Optional[QueryInterpretation] = None
    cacheable: bool = True


class AnswerEngine(Protocol):
    engine_id: EngineId

    async def plan(self, query: str, config: RAGConfig) -> EnginePlan:
        ...


class CompatEngine:
    engine_id = EngineId.COMPAT

    async def plan(self, query: str, config: RAGConfig) -> EnginePlan:
        return EnginePlan(engine=self.engine_id, retrieval_query=query, prompt_query=query)


class GraphEngine:
    """Graph-aware engine backed by the concept query flow."""

    engine_id = EngineId.GRAPH

    def __init__(
        self,
        query_flow: QueryFlow,
        rewrite_enabled: bool = False,
        strict_grounding: bool = False,
    ):
        self.query_flow = query_flow
        self.rewrite_enabled = rewrite_enabled
        self.strict_grounding = strict_grounding

    async def plan(self, query: str, config: RAGConfig) -> EnginePlan:
        flow = await self.query_flow.run(
            query,
            context_scope=config.context_scope,
            as_of=config.as_of,
            ambiguity_policy=config.ambiguity_policy,
            rewrite_enabled=self.rewrite_enabled,
            graph_enabled=True,
            strict_grounding=self.strict_grounding,
        )
        rewritten = flow.expanded_query != query
        logger.debug(
            "Graph plan: %d concepts resolved, %d unsupported terms, rewritten=%s",
            len(flow.interpretation.resolved_concepts),
            len(flow.unsupported_terms),
            rewritten,
        )
        return EnginePlan(
            engine=self.engine_id,
            retrieval_query=flow.expanded_query,
            prompt_query=flow.expanded_query,
            short_circuit=flow.strict_failure_message,
            interpretation=flow.interpretation,
            cacheable=not rewritten,
        )


def resolve_engine(
    requested: EngineId,
    graph_enabled: bool,
    compat: CompatEngine,
    graph: Optional[GraphEngine],
) -> AnswerEngine:
    """Pick the engine once per request; graph needs both the request and the flag."""
    if requested == EngineId.GRAPH and graph_enabled and graph is not None:
        return graph
    return compat
