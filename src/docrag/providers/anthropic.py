"""Anthropic Messages API client, used as the independent answer auditor."""

from typing import Optional

import httpx

from docrag.errors import VerificationProviderError

from .base import HttpProvider

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class AnthropicClient(HttpProvider):
    """Async client for ``/v1/messages`` implementing the generation contract."""

    name = "anthropic"
    error_cls = VerificationProviderError

    def __init__(
        self,
        api_key: Optional[str],
        default_model: str = "claude-3-5-haiku-latest",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        max_tokens: int = 2048,
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.default_model = default_model
        self.max_tokens = max_tokens

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        model: Optional[str] = None,
    ) -> str:
        if not self.api_key:
            raise self.error_cls("anthropic api key not configured", retryable=False)

        payload = {
            "model": model or self.default_model,
            "max_tokens": self.max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        data = await self._post_json(ANTHROPIC_URL, payload, headers=headers)
        return "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
