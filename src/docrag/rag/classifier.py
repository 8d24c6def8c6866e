"""Classify answer-path failures into retryable upstream/database errors."""

import asyncio
from dataclasses import dataclass

import httpx
from sqlalchemy.exc import DBAPIError

from docrag.errors import ProviderError, StorageError

UPSTREAM_TRANSIENT = "CHAT_UPSTREAM_TRANSIENT"
DB_TRANSIENT = "CHAT_DB_TRANSIENT"
UNEXPECTED = "CHAT_UNEXPECTED"

UPSTREAM_MARKERS = (
    "llm call timed out",
    "etimedout",
    "econnreset",
    "too many requests",
    "status code 429",
    "status: 429",
    "status 429",
    "status code 500",
    "status code 502",
    "status code 503",
    "status code 504",
    "status: 500",
    "status: 502",
    "status: 503",
    "status: 504",
)

DATABASE_MARKERS = (
    "connection terminated",
    "connection timeout",
    "connection timed out",
    "connection refused",
    "timeout expired",
    "remaining connection slots are reserved",
    "sorry, too many clients already",
    "pool",
)


@dataclass(frozen=True)
class ErrorClassification:
    code: str
    stage: str
    retryable: bool
    message: str


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__} {error}".lower()


def classify_error(error: BaseException) -> ErrorClassification:
    """Map an exception to a stable code and a retry decision.

    Typed errors decide first: provider errors carry their own
    ``retryable`` flag and transport timeouts are always upstream.
    Untyped errors fall back to message markers.
    """
    message = str(error)

    if isinstance(error, ProviderError):
        if error.retryable:
            return ErrorClassification(UPSTREAM_TRANSIENT, "upstream", True, message)
        return ErrorClassification(UNEXPECTED, "upstream", False, message)

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return ErrorClassification(UPSTREAM_TRANSIENT, "upstream", True, message)

    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return ErrorClassification(DB_TRANSIENT, "database", True, message)

    described = _describe(error)
    if any(marker in described for marker in UPSTREAM_MARKERS):
        return ErrorClassification(UPSTREAM_TRANSIENT, "upstream", True, message)

    if isinstance(error, (StorageError, DBAPIError)) or any(
        marker in described for marker in DATABASE_MARKERS
    ):
        return ErrorClassification(DB_TRANSIENT, "database", True, message)

    return ErrorClassification(UNEXPECTED, "unexpected", False, message)
