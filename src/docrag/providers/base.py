"""Shared HTTP plumbing for model provider clients."""

import json
import logging
from typing import Any, Optional

import httpx

from docrag.errors import ProviderError

logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in ``text``.

    Braces inside JSON string literals are ignored. Returns None when no
    balanced object is present.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            char = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:pos + 1]
        start = text.find("{", start + 1)
    return None


def parse_json_object(text: str) -> Optional[dict[str, Any]]:
    """Extract and decode the first balanced JSON object, or None."""
    span = extract_json_object(text)
    if span is None:
        return None
    try:
        value = json.loads(span)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


class HttpProvider:
    """Base class for async JSON-over-HTTP provider clients.

    Subclasses set ``name`` and ``error_cls``; transport failures and
    non-2xx responses are raised as ``error_cls`` with ``retryable`` set for
    timeouts and transient statuses.
    """

    name = "provider"
    error_cls: type[ProviderError] = ProviderError

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 60.0):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        try:
            response = await self.client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise self.error_cls(f"{self.name} timeout: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise self.error_cls(f"{self.name} connection error: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise self.error_cls.from_status(self.name, response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise self.error_cls(f"{self.name} returned invalid JSON") from e
