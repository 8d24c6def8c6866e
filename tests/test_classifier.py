"""Tests for answer-path error classification."""

import asyncio

import httpx
from sqlalchemy.exc import DBAPIError

from docrag.errors import ProviderError, StorageError
from docrag.rag import DB_TRANSIENT, UNEXPECTED, UPSTREAM_TRANSIENT, classify_error


class TestClassifyError:
    """Tests for classify_error."""

    def test_retryable_provider_error(self):
        error = ProviderError.from_status("gemini", 503, "overloaded")
        result = classify_error(error)

        assert result.code == UPSTREAM_TRANSIENT
        assert result.retryable

    def test_client_error_not_retried(self):
        """A 400 from the provider is unexpected and final."""
        result = classify_error(ProviderError.from_status("gemini", 400, "bad request"))

        assert result.code == UNEXPECTED
        assert not result.retryable

    def test_transport_timeouts(self):
        assert classify_error(httpx.ReadTimeout("read timed out")).code == UPSTREAM_TRANSIENT
        assert classify_error(asyncio.TimeoutError()).retryable

    def test_upstream_markers(self):
        """Untyped errors are matched on their message."""
        assert classify_error(RuntimeError("LLM call timed out")).code == UPSTREAM_TRANSIENT
        assert classify_error(RuntimeError("Request failed with status code 429")).retryable

    def test_database_errors(self):
        invalidated = DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True)

        assert classify_error(invalidated).code == DB_TRANSIENT
        assert classify_error(StorageError("write failed")).code == DB_TRANSIENT
        assert classify_error(RuntimeError("sorry, too many clients already")).stage == "database"

    def test_unexpected(self):
        result = classify_error(KeyError("missing"))

        assert result.code == UNEXPECTED
        assert result.stage == "unexpected"
        assert not result.retryable
