"""RAG orchestrator.

Per-request state machine:

    CACHE_CHECK -> RETRIEVE -> GENERATE -> AUDIT -> (CACHE_STORE) -> RESPOND

with DEGRADED as a terminal state for generation failures that survive the
retry, the kill switch, or any other unexpected failure. ``answer`` always
returns a RAGResponse; it never raises to the caller.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional, Protocol
from uuid import UUID

from docrag.cache import SemanticCache
from docrag.models import (
    AuditResult,
    CachedResponse,
    Citation,
    EngineId,
    RAGConfig,
    RAGResponse,
    RAGState,
    RAGStats,
    RerankedResult,
    SourceChunk,
)
from docrag.providers.base import parse_json_object
from docrag.retrieval import HybridSearcher, Reranker

from . import prompts
from .classifier import classify_error
from .engines import CompatEngine, EnginePlan, GraphEngine, resolve_engine
from .query_flow import QueryFlow

logger = logging.getLogger(__name__)

KILL_SWITCH = "CHAT_KILL_SWITCH"
DEFAULT_OWNER = "local"
MAX_ATTEMPTS = 2


class TextGenerator(Protocol):
    @property
    def is_configured(self) -> bool:
        ...

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        model: Optional[str] = None,
    ) -> str:
        ...


class ConversationStore(Protocol):
    async def save_turn(
        self,
        owner_id: str,
        chat_id: Optional[UUID],
        role: str,
        content: str,
        sources: Optional[list[dict[str, Any]]] = None,
    ) -> UUID:
        ...

    async def save_audit_log(self, **values: Any) -> None:
        ...


def to_source(citation_id: str, result: RerankedResult) -> SourceChunk:
    return SourceChunk(
        citation_id=citation_id,
        chunk_id=result.chunk_id,
        document_id=result.document_id,
        content=result.content,
        page_number=result.page_number,
        bounding_box=result.bounding_box,
        highlight_boxes=result.highlight_boxes,
        highlight_text=result.highlight_text,
        parent_header=result.parent_header,
        filename=result.filename,
        relevance_score=result.relevance_score,
    )


def to_citations(sources: list[SourceChunk]) -> list[Citation]:
    return [
        Citation(
            id=s.citation_id,
            chunk_id=s.chunk_id,
            page=s.page_number,
            confidence=s.relevance_score,
        )
        for s in sources
    ]


def to_message_sources(sources: list[SourceChunk]) -> list[dict[str, Any]]:
    return [
        {
            "id": s.citation_id,
            "chunk_id": str(s.chunk_id),
            "document_id": str(s.document_id),
            "page_number": s.page_number,
            "filename": s.filename,
        }
        for s in sources
    ]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class RAGOrchestrator:
    """Answers a question from the indexed corpus with verified citations.

    Collaborators are injected; ``cache``, ``auditor``, ``conversation_store``
    and ``query_flow`` are optional and their absence disables the feature.
    """

    def __init__(
        self,
        searcher: HybridSearcher,
        reranker: Reranker,
        generator: TextGenerator,
        auditor: Optional[TextGenerator] = None,
        cache: Optional[SemanticCache] = None,
        conversation_store: Optional[ConversationStore] = None,
        query_flow: Optional[QueryFlow] = None,
        language: str = prompts.DEFAULT_LANGUAGE,
        context_char_budget: int = 12000,
        retry_base_delay: float = 0.5,
        max_attempts: int = MAX_ATTEMPTS,
        kill_switch: bool = False,
        graph_enabled: bool = False,
        rewrite_enabled: bool = False,
        strict_grounding: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.searcher = searcher
        self.reranker = reranker
        self.generator = generator
        self.auditor = auditor
        self.cache = cache
        self.conversation_store = conversation_store
        self.language = prompts.resolve_language(language)
        self.context_char_budget = context_char_budget
        self.retry_base_delay = retry_base_delay
        self.max_attempts = max(1, max_attempts)
        self.kill_switch = kill_switch
        self.graph_enabled = graph_enabled
        self.sleep = sleep

        self.compat_engine = CompatEngine()
        self.graph_engine = (
            GraphEngine(query_flow, rewrite_enabled, strict_grounding) if query_flow else None
        )

    def backoff_delay(self, attempt: int) -> float:
        base = self.retry_base_delay
        return base * 2 ** attempt + random.uniform(0, base)

    async def answer(
        self,
        query: str,
        config: Optional[RAGConfig] = None,
        owner_id: str = DEFAULT_OWNER,
        chat_id: Optional[UUID] = None,
    ) -> RAGResponse:
        """Answer ``query`` and persist the exchange.

        Args:
            query: The user's question.
            config: Per-request configuration (defaults to RAGConfig()).
            owner_id: Conversation owner.
            chat_id: Existing chat to append to; a new chat is created if
                missing or unknown.

        Returns:
            RAGResponse. Failures surface as ``degraded=True`` with a
            localized fallback message and an ``error_code``.
        """
        config = config or RAGConfig()
        start = time.perf_counter()
        trace: list[RAGState] = []

        chat_id = await self._save_turn(owner_id, chat_id, "user", query)

        if self.kill_switch:
            logger.warning("Kill switch active, answering degraded")
            response = self._degraded(trace, config.engine, KILL_SWITCH, RAGStats())
        else:
            try:
                response = await self._run(query, config, trace)
            except Exception as e:
                classification = classify_error(e)
                logger.error(
                    "Answer failed at %s (%s): %s",
                    classification.stage,
                    classification.code,
                    classification.message,
                )
                response = self._degraded(trace, config.engine, classification.code, RAGStats())

        response.stats.total_time_ms = _elapsed_ms(start)
        response.chat_id = await self._save_turn(
            owner_id, chat_id, "assistant", response.response, to_message_sources(response.sources)
        ) or chat_id
        await self._save_audit_log(owner_id, response.chat_id, query, response, config)

        logger.info(
            "Answered via %s: verified=%s confidence=%.2f cached=%s degraded=%s (%.0f ms)",
            response.engine.value,
            response.verified,
            response.confidence,
            response.cached,
            response.degraded,
            response.stats.total_time_ms,
        )
        return response

    async def _run(self, query: str, config: RAGConfig, trace: list[RAGState]) -> RAGResponse:
        engine = resolve_engine(
            config.engine, self.graph_enabled, self.compat_engine, self.graph_engine
        )
        plan = await engine.plan(query, config)
        stats = RAGStats()

        if plan.short_circuit:
            trace.append(RAGState.RESPOND)
            return RAGResponse(
                response=plan.short_circuit,
                engine=plan.engine,
                state_trace=trace,
                interpretation=plan.interpretation,
                stats=stats,
            )

        trace.append(RAGState.CACHE_CHECK)
        if self.cache is not None and plan.cacheable:
            cached = await self.cache.lookup(query)
            if cached is not None:
                trace.append(RAGState.RESPOND)
                return await self._from_cache(cached, plan, trace)

        trace.append(RAGState.RETRIEVE)
        retrieve_start = time.perf_counter()
        results = await self.searcher.search(plan.retrieval_query, config.search)
        reranked = await self.reranker.rerank(plan.retrieval_query, results, config.top_k)
        sources = [to_source(str(i), r) for i, r in enumerate(reranked, start=1)]
        stats.retrieval_time_ms = _elapsed_ms(retrieve_start)
        stats.chunks_retrieved = len(results)
        stats.chunks_used = len(sources)

        if not sources and await self._corpus_is_empty(config):
            trace.append(RAGState.RESPOND)
            return RAGResponse(
                response=prompts.message("empty_corpus", self.language),
                verified=True,
                confidence=1.0,
                engine=plan.engine,
                verification=AuditResult(verified=True, confidence=1.0, assessment="System empty"),
                stats=stats,
                state_trace=trace,
                interpretation=plan.interpretation,
            )

        attempt = 0
        while True:
            attempt += 1
            stats.attempts = attempt
            try:
                return await self._generate_and_audit(query, plan, sources, config, stats, trace)
            except Exception as e:
                classification = classify_error(e)
                logger.warning(
                    "Attempt %d/%d failed at %s (%s): %s",
                    attempt,
                    self.max_attempts,
                    classification.stage,
                    classification.code,
                    classification.message,
                )
                if not classification.retryable or attempt >= self.max_attempts:
                    return self._degraded(trace, plan.engine, classification.code, stats, plan)
                await self.sleep(self.backoff_delay(attempt - 1))

    async def _generate_and_audit(
        self,
        query: str,
        plan: EnginePlan,
        sources: list[SourceChunk],
        config: RAGConfig,
        stats: RAGStats,
        trace: list[RAGState],
    ) -> RAGResponse:
        trace.append(RAGState.GENERATE)
        generate_start = time.perf_counter()
        if not sources:
            draft = prompts.message("not_found", self.language)
            context = ""
        else:
            context = prompts.build_context(sources, self.context_char_budget)
            draft = await self.generator.generate(
                prompts.generator_system_prompt(self.language),
                prompts.generator_user_prompt(plan.prompt_query, context, self.language),
                temperature=config.temperature,
                model=config.generator_model,
            )
        stats.generation_time_ms = _elapsed_ms(generate_start)

        trace.append(RAGState.AUDIT)
        audit_start = time.perf_counter()
        if not sources:
            audit = AuditResult(
                verified=False, confidence=0.0, assessment="No sources", corrected_response=draft, skipped=True
            )
        else:
            audit = await self._audit(draft, context, config)
        stats.verification_time_ms = _elapsed_ms(audit_start)

        final_text = audit.corrected_response if audit.removed_claims else draft
        verified = audit.verified and audit.confidence >= config.confidence_threshold

        if verified and self.cache is not None and plan.cacheable:
            trace.append(RAGState.CACHE_STORE)
            await self.cache.store(
                query,
                final_text,
                to_citations(sources),
                audit.confidence,
                [s.chunk_id for s in sources],
            )

        trace.append(RAGState.RESPOND)
        return RAGResponse(
            response=final_text,
            sources=sources,
            verified=verified,
            confidence=audit.confidence,
            engine=plan.engine,
            verification=audit,
            stats=stats,
            state_trace=trace,
            interpretation=plan.interpretation,
        )

    async def _audit(self, draft: str, context: str, config: RAGConfig) -> AuditResult:
        """Verify ``draft`` against ``context``. Never raises."""
        if config.skip_verification:
            return AuditResult(
                verified=True, confidence=0.5, assessment="Verification skipped",
                corrected_response=draft, skipped=True,
            )
        if self.auditor is None or not self.auditor.is_configured:
            return AuditResult(
                verified=True, confidence=0.5, assessment="No auditor available",
                corrected_response=draft, skipped=True,
            )

        try:
            text = await self.auditor.generate(
                prompts.AUDITOR_SYSTEM_PROMPT,
                prompts.auditor_user_prompt(draft, context),
                temperature=0.0,
                model=config.auditor_model,
            )
        except Exception as e:
            logger.warning("Verification failed, answer left unverified: %s", e)
            return AuditResult(
                verified=False, confidence=0.0, assessment="Verification failed", corrected_response=draft
            )

        payload = parse_json_object(text)
        if payload is None:
            logger.warning("Auditor returned no JSON object, answer left unverified")
            return AuditResult(
                verified=False, confidence=0.0, assessment="Verification failed", corrected_response=draft
            )
        return prompts.parse_audit(payload, draft)

    async def _from_cache(
        self, cached: CachedResponse, plan: EnginePlan, trace: list[RAGState]
    ) -> RAGResponse:
        """Rebuild clickable sources for a cached answer from the chunk table.

        A failed chunk fetch still serves the cached text, without sources.
        """
        try:
            fetched = await self.searcher.fetch_chunks(cached.chunk_ids)
        except Exception as e:
            logger.warning("Could not load sources for cached answer: %s", e)
            fetched = []
        chunks = {c.chunk_id: c for c in fetched}
        sources = []
        for citation in cached.citations:
            chunk = chunks.get(citation.chunk_id)
            if chunk is None:
                continue
            sources.append(
                SourceChunk(
                    citation_id=citation.id,
                    chunk_id=chunk.chunk_id,
                    document_id=chunk.document_id,
                    content=chunk.content,
                    page_number=chunk.page_number,
                    bounding_box=chunk.bounding_box,
                    highlight_boxes=chunk.highlight_boxes,
                    highlight_text=chunk.highlight_text,
                    parent_header=chunk.parent_header,
                    filename=chunk.filename,
                    relevance_score=citation.confidence,
                )
            )

        return RAGResponse(
            response=cached.answer_text,
            sources=sources,
            verified=True,
            confidence=cached.confidence,
            cached=True,
            engine=plan.engine,
            verification=AuditResult(
                verified=True,
                confidence=cached.confidence,
                assessment="Retrieved from semantic cache",
                corrected_response=cached.answer_text,
            ),
            stats=RAGStats(chunks_used=len(sources)),
            state_trace=trace,
            interpretation=plan.interpretation,
        )

    async def _corpus_is_empty(self, config: RAGConfig) -> bool:
        try:
            return await self.searcher.corpus_is_empty(config.search.owner_id)
        except Exception as e:
            logger.warning("Corpus check failed, answering not-found: %s", e)
            return False

    def _degraded(
        self,
        trace: list[RAGState],
        engine: EngineId,
        error_code: str,
        stats: RAGStats,
        plan: Optional[EnginePlan] = None,
    ) -> RAGResponse:
        trace.append(RAGState.DEGRADED)
        return RAGResponse(
            response=prompts.message("degraded", self.language),
            degraded=True,
            engine=engine,
            stats=stats,
            state_trace=trace,
            error_code=error_code,
            interpretation=plan.interpretation if plan else None,
        )

    async def _save_turn(
        self,
        owner_id: str,
        chat_id: Optional[UUID],
        role: str,
        content: str,
        sources: Optional[list[dict[str, Any]]] = None,
    ) -> Optional[UUID]:
        if self.conversation_store is None:
            return chat_id
        try:
            return await self.conversation_store.save_turn(owner_id, chat_id, role, content, sources)
        except Exception as e:
            logger.warning("Failed to persist %s turn: %s", role, e)
            return chat_id

    async def _save_audit_log(
        self,
        owner_id: str,
        chat_id: Optional[UUID],
        query: str,
        response: RAGResponse,
        config: RAGConfig,
    ) -> None:
        if self.conversation_store is None:
            return
        try:
            await self.conversation_store.save_audit_log(
                owner_id=owner_id,
                chat_id=chat_id,
                query=query,
                retrieved_chunk_ids=[s.chunk_id for s in response.sources],
                final_response=response.response,
                citations=[c.model_dump(mode="json") for c in to_citations(response.sources)],
                confidence_score=response.confidence,
                verified=response.verified,
                degraded=response.degraded,
                cached=response.cached,
                engine=response.engine.value,
                error_code=response.error_code,
                model_used=config.generator_model,
                latency_ms=int(response.stats.total_time_ms),
            )
        except Exception as e:
            logger.warning("Failed to write audit log: %s", e)
