"""Template profile models for boilerplate detection."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .base import BoundingBox

DEFAULT_MATCH_THRESHOLD = 0.72


class DetectionMode(str, Enum):
    """Which evidence was available when matching a template."""

    TEXT = "text"
    OCR = "ocr"
    HYBRID = "hybrid"
    NONE = "none"


class TemplateAnchor(BaseModel):
    """Text expected at a fixed place on every document of a template."""

    text: str
    page: Optional[int] = None
    region: Optional[BoundingBox] = None
    weight: Optional[float] = None

    @field_validator("text")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("anchor text must not be blank")
        return value


class TemplatePageFingerprint(BaseModel):
    page: int = Field(..., ge=1)
    visual_hash: str = Field(..., min_length=1, alias="visualHash")
    token_hash: Optional[str] = Field(None, alias="tokenHash")

    class Config:
        populate_by_name = True


class TemplateProfile(BaseModel):
    """
    Stored fingerprint of a recurring document layout.

    Profiles are JSON files using camelCase keys (``matchThreshold``,
    ``boilerplatePatterns``, ``sampledPages``); both spellings are accepted.
    """

    id: str = Field(..., min_length=1)
    version: int = 1
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    match_threshold: Optional[float] = Field(None, alias="matchThreshold")
    anchors: list[TemplateAnchor] = Field(default_factory=list)
    boilerplate_patterns: list[str] = Field(default_factory=list, alias="boilerplatePatterns")
    sampled_pages: list[TemplatePageFingerprint] = Field(default_factory=list, alias="sampledPages")
    metadata: Optional[dict[str, Any]] = None

    class Config:
        populate_by_name = True

    @field_validator("id", "name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("match_threshold")
    @classmethod
    def _clamp_threshold(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        return max(0.0, min(1.0, value))

    @field_validator("boilerplate_patterns")
    @classmethod
    def _drop_blank_patterns(cls, value: list[str]) -> list[str]:
        return [pattern for pattern in value if pattern.strip()]

    @property
    def threshold(self) -> float:
        return self.match_threshold if self.match_threshold is not None else DEFAULT_MATCH_THRESHOLD


class TemplateDiagnostics(BaseModel):
    """Outcome of template detection, persisted with the document."""

    profile_id: Optional[str] = None
    matched: bool = False
    match_score: Optional[float] = None
    detection_mode: DetectionMode = DetectionMode.NONE
    boilerplate_chunks: int = 0
    warnings: list[str] = Field(default_factory=list)


class TemplateDetectionResult(BaseModel):
    diagnostics: TemplateDiagnostics = Field(default_factory=TemplateDiagnostics)
    boilerplate_chunk_indexes: set[int] = Field(default_factory=set)
