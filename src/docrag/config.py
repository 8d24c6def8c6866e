"""Configuration management for the docrag ingestion and answer pipeline."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "docrag"
    postgres_password: str = "localdev"
    postgres_db: str = "docrag"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_seconds: float = 30.0
    db_pool_pre_ping: bool = True

    # Redis (exact-hash cache tier); unset means in-process tier only
    redis_url: Optional[str] = None

    # Provider credentials
    google_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    cohere_api_key: Optional[str] = None

    # Embeddings
    embedding_provider: str = "google"
    embedding_model: str = "gemini-embedding-001"
    embedding_dimensions: int = 768
    embedding_batch_size: int = 16
    embedding_batch_delay_ms: int = 250

    # Ollama (local embeddings)
    ollama_host: str = "http://localhost:11434"
    ollama_embedding_model: str = "nomic-embed-text"

    # Chunking
    max_chunk_tokens: int = 1200
    chunk_overlap_percent: float = 0.15
    min_chunk_tokens: int = 50

    # Template-aware boilerplate filtering
    template_aware_filtering_enabled: bool = False
    template_ocr_fallback_enabled: bool = False
    template_profile_dir: str = "config/template-profiles"
    template_ocr_timeout_seconds: float = 20.0

    # OCR rescue
    ocr_rescue_enabled: bool = True
    ocr_engine: str = "gemini"
    ocr_model: str = "gemini-2.5-flash"
    ocr_timeout_seconds: float = 60.0
    ocr_tesseract_enabled: bool = True
    tesseract_language: str = "eng"

    # Semantic cache
    cache_enabled: bool = True
    cache_ttl_seconds: int = 86400
    cache_similarity_threshold: float = 0.95

    # RAG
    generator_model: str = "gemini-2.0-flash"
    auditor_model: str = "claude-3-5-haiku-latest"
    rerank_model: str = "rerank-v3.5"
    rag_top_k: int = 5
    rag_confidence_threshold: float = 0.85
    rag_context_char_budget: int = 12000
    rag_retry_base_delay_seconds: float = 0.5
    answer_language: str = "en"

    # Graph-aware engine
    rag_v2_graph_enabled: bool = False
    rag_v2_rewrite_enabled: bool = False
    rag_v2_strict_grounding: bool = False
    rag_v2_kill_switch: bool = False
    term_mining_enabled: bool = False

    # Logging
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """Construct async database URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def sync_database_url(self) -> str:
        """Construct sync database URL for Alembic."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
