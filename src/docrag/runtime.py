"""Process-scoped collaborators built from settings.

Each getter builds its object on first use and returns the same instance for
the rest of the process. Optional services whose configuration is missing
return None instead of raising; callers treat None as "feature disabled".
"""

import logging
from functools import lru_cache
from typing import Optional

from docrag.cache import InMemoryL1Cache, PostgresCacheStore, RedisL1Cache, SemanticCache
from docrag.config import settings
from docrag.models import ChunkerConfig
from docrag.pipeline import (
    Embedder,
    GeminiOcrEngine,
    TemplateDetector,
    TesseractOCR,
    TesseractOcrEngine,
)
from docrag.pipeline.ingest import IngestionPipeline
from docrag.providers import (
    AnthropicClient,
    CohereClient,
    GeminiClient,
    GeminiEmbeddingProvider,
    OllamaEmbeddingProvider,
)
from docrag.rag import LlmTermClassifier, QueryFlow, RAGOrchestrator
from docrag.retrieval import HybridSearcher, Reranker
from docrag.storage import (
    PostgresChunkStore,
    PostgresConceptStore,
    PostgresConversationStore,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def get_gemini_client() -> GeminiClient:
    return GeminiClient(settings.google_api_key, default_model=settings.generator_model)


@lru_cache(maxsize=None)
def get_auditor_client() -> Optional[AnthropicClient]:
    if not settings.anthropic_api_key:
        logger.info("Anthropic API key not set, answers will not be verified")
        return None
    return AnthropicClient(settings.anthropic_api_key, default_model=settings.auditor_model)


@lru_cache(maxsize=None)
def get_rerank_client() -> Optional[CohereClient]:
    if not settings.cohere_api_key:
        return None
    return CohereClient(settings.cohere_api_key, model=settings.rerank_model)


@lru_cache(maxsize=None)
def get_embedder() -> Embedder:
    if settings.embedding_provider == "ollama":
        provider = OllamaEmbeddingProvider(
            host=settings.ollama_host, model=settings.ollama_embedding_model
        )
    else:
        provider = GeminiEmbeddingProvider(
            get_gemini_client(),
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
        )
    return Embedder(
        provider,
        batch_size=settings.embedding_batch_size,
        batch_delay_ms=settings.embedding_batch_delay_ms,
        dimensions=settings.embedding_dimensions,
    )


@lru_cache(maxsize=None)
def get_ocr_engines() -> dict:
    return {
        "gemini": GeminiOcrEngine(get_gemini_client(), model=settings.ocr_model),
        "tesseract": TesseractOcrEngine(
            TesseractOCR(language=settings.tesseract_language),
            enabled=settings.ocr_tesseract_enabled,
        ),
    }


@lru_cache(maxsize=None)
def get_template_detector() -> TemplateDetector:
    return TemplateDetector(
        settings.template_profile_dir,
        enabled=settings.template_aware_filtering_enabled,
        ocr_fallback_enabled=settings.template_ocr_fallback_enabled,
        ocr_engine=get_ocr_engines()["gemini"],
        ocr_timeout_s=settings.template_ocr_timeout_seconds,
    )


@lru_cache(maxsize=None)
def get_ingestion_pipeline() -> IngestionPipeline:
    return IngestionPipeline(
        get_embedder(),
        template_detector=get_template_detector(),
        ocr_engines=get_ocr_engines(),
        chunker_config=ChunkerConfig(
            max_tokens=settings.max_chunk_tokens,
            overlap_percent=settings.chunk_overlap_percent,
            min_tokens=settings.min_chunk_tokens,
        ),
        ocr_rescue_enabled=settings.ocr_rescue_enabled,
        ocr_engine=settings.ocr_engine,
        ocr_timeout_s=settings.ocr_timeout_seconds,
        term_mining_enabled=settings.term_mining_enabled,
    )


@lru_cache(maxsize=None)
def get_cache() -> Optional[SemanticCache]:
    if not settings.cache_enabled:
        return None
    l1 = RedisL1Cache.from_url(settings.redis_url) if settings.redis_url else InMemoryL1Cache()
    return SemanticCache(
        PostgresCacheStore(),
        embedder=get_embedder(),
        l1=l1,
        ttl_seconds=settings.cache_ttl_seconds,
        similarity_threshold=settings.cache_similarity_threshold,
    )


@lru_cache(maxsize=None)
def get_searcher() -> HybridSearcher:
    return HybridSearcher(get_embedder(), PostgresChunkStore())


@lru_cache(maxsize=None)
def get_orchestrator() -> RAGOrchestrator:
    query_flow = QueryFlow(
        PostgresConceptStore(),
        term_classifier=LlmTermClassifier(get_gemini_client()),
        language=settings.answer_language,
    )
    return RAGOrchestrator(
        searcher=get_searcher(),
        reranker=Reranker(get_rerank_client(), top_k=settings.rag_top_k),
        generator=get_gemini_client(),
        auditor=get_auditor_client(),
        cache=get_cache(),
        conversation_store=PostgresConversationStore(),
        query_flow=query_flow,
        language=settings.answer_language,
        context_char_budget=settings.rag_context_char_budget,
        retry_base_delay=settings.rag_retry_base_delay_seconds,
        kill_switch=settings.rag_v2_kill_switch,
        graph_enabled=settings.rag_v2_graph_enabled,
        rewrite_enabled=settings.rag_v2_rewrite_enabled,
        strict_grounding=settings.rag_v2_strict_grounding,
    )
