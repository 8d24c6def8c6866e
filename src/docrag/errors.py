"""Exception hierarchy for ingestion, retrieval and answering.

Only ``UnsupportedFormatError`` and ``StorageError`` are expected to reach
callers of the ingestion pipeline. Everything else is absorbed by the stage
that raised it and recorded as a warning or diagnostic.
"""

from typing import Optional

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class DocRagError(Exception):
    """Base class for all docrag errors."""


class UnsupportedFormatError(DocRagError):
    """The parser has no handler for the given MIME type."""

    def __init__(self, mime_type: str):
        super().__init__(f"Unsupported file type: {mime_type}")
        self.mime_type = mime_type


class OcrError(DocRagError):
    """OCR provider failure. ``code`` is the stable warning identifier."""

    code = "ocr_error"


class OcrTimeoutError(OcrError):
    code = "ocr_timeout"


class OcrParseError(OcrError):
    code = "ocr_parse_error"


class OcrMissingCredentialError(OcrError):
    code = "ocr_missing_api_key"


class OcrProviderUnavailableError(OcrError):
    code = "ocr_tesseract_unavailable"


class TemplateProfileInvalidError(DocRagError):
    """A template profile file could not be read or validated."""

    def __init__(self, path: str, reason: str = "invalid profile"):
        super().__init__(f"{path}: {reason}")
        self.path = path


class StorageError(DocRagError):
    """Persisting an ingestion or answer failed."""


class CacheUnavailableError(DocRagError):
    """A cache tier could not be reached."""


class ProviderError(DocRagError):
    """Error calling an external model provider over HTTP."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable

    @classmethod
    def from_status(cls, provider: str, status_code: int, body: str = "") -> "ProviderError":
        """Build an error for an HTTP status, flagging transient statuses."""
        return cls(
            f"{provider} error {status_code}: {body[:200]}",
            status_code=status_code,
            retryable=status_code in RETRYABLE_STATUS_CODES,
        )


class RetrievalProviderError(ProviderError):
    """Embedding, rerank or generation provider failure on the answer path."""


class VerificationProviderError(ProviderError):
    """Auditor provider failure. Treated as 'not verified', never fatal."""
