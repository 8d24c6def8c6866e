"""HTTP clients for external model providers.

All clients are async (httpx), raise ``ProviderError`` subclasses with a
``retryable`` flag, and report ``is_configured`` instead of failing at
construction when credentials are missing.
"""

from .anthropic import AnthropicClient
from .base import HttpProvider, extract_json_object, parse_json_object
from .cohere import CohereClient
from .gemini import GeminiClient, GeminiEmbeddingProvider
from .ollama import OllamaEmbeddingProvider

__all__ = [
    # Base
    "HttpProvider",
    "extract_json_object",
    "parse_json_object",
    # Generation / OCR / embeddings
    "GeminiClient",
    "GeminiEmbeddingProvider",
    "OllamaEmbeddingProvider",
    # Verification
    "AnthropicClient",
    # Rerank
    "CohereClient",
]
