"""Google Gemini REST client: text generation, document OCR and embeddings."""

import base64
import logging
from typing import Any, Optional

import httpx

from docrag.errors import RetrievalProviderError

from .base import HttpProvider

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiClient(HttpProvider):
    """
    Thin async client for the Gemini ``generateContent`` and ``embedContent``
    endpoints.

    Implements the generation provider contract
    (``generate(system_prompt, user_prompt, temperature)``) and is used by the
    OCR engine and the embedding provider.
    """

    name = "gemini"
    error_cls = RetrievalProviderError

    def __init__(
        self,
        api_key: Optional[str],
        default_model: str = "gemini-2.0-flash",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        base_url: str = GEMINI_BASE_URL,
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> str:
        if not self.api_key:
            raise self.error_cls("gemini api key not configured", retryable=False)
        return self.api_key

    async def generate_content(
        self,
        model: str,
        parts: list[dict[str, Any]],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Call ``generateContent`` and return the concatenated candidate text.

        Args:
            model: Gemini model id.
            parts: Content parts ({'text': ...} or {'inline_data': ...}).
            system_prompt: Optional system instruction.
            temperature: Sampling temperature.

        Returns:
            Text of the first candidate (empty string if none).
        """
        key = self._require_key()
        payload: dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        if temperature is not None:
            payload["generationConfig"] = {"temperature": temperature}

        data = await self._post_json(
            f"{self.base_url}/models/{model}:generateContent",
            payload,
            params={"key": key},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        content_parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in content_parts)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        model: Optional[str] = None,
    ) -> str:
        return await self.generate_content(
            model or self.default_model,
            [{"text": user_prompt}],
            system_prompt=system_prompt,
            temperature=temperature,
        )

    async def generate_with_document(
        self,
        model: str,
        prompt: str,
        data: bytes,
        mime_type: str = "application/pdf",
    ) -> str:
        """Send a prompt plus an inline document (e.g. a PDF) in one request."""
        parts = [
            {"text": prompt},
            {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}},
        ]
        return await self.generate_content(model, parts)

    async def embed(
        self,
        text: str,
        model: str = "gemini-embedding-001",
        dimensions: int = 768,
        task_type: str = "RETRIEVAL_DOCUMENT",
    ) -> list[float]:
        key = self._require_key()
        payload = {
            "model": f"models/{model}",
            "content": {"parts": [{"text": text}]},
            "taskType": task_type,
            "outputDimensionality": dimensions,
        }
        data = await self._post_json(
            f"{self.base_url}/models/{model}:embedContent",
            payload,
            params={"key": key},
        )
        return list(data.get("embedding", {}).get("values", []))


class GeminiEmbeddingProvider:
    """Embedding provider backed by ``GeminiClient.embed``."""

    def __init__(self, client: GeminiClient, model: str = "gemini-embedding-001", dimensions: int = 768):
        self.client = client
        self.model = model
        self.dimensions = dimensions

    @property
    def is_configured(self) -> bool:
        return self.client.is_configured

    async def embed(self, text: str) -> list[float]:
        return await self.client.embed(text, model=self.model, dimensions=self.dimensions)
