"""Concept graph models used by the graph-aware engine and term mining."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AmbiguityPolicy(str, Enum):
    """How to treat a term that maps to more than one concept."""

    ASK = "ask"
    SHOW_BOTH = "show_both"
    STRICT = "strict"


class ConceptCriticality(str, Enum):
    NORMAL = "normal"
    CRITICAL = "critical"


class ContextScope(BaseModel):
    """Organizational scope a question is asked in. Unset fields match anything."""

    team: Optional[str] = None
    product: Optional[str] = None
    region: Optional[str] = None
    process: Optional[str] = None
    role: Optional[str] = None

    class Config:
        frozen = True

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


class ResolvedConcept(BaseModel):
    concept_id: UUID
    concept_key: str
    concept_label: str
    alias: str
    alias_normalized: str
    definition_version_id: Optional[UUID] = None
    definition: Optional[str] = None
    confidence: float = 0.0
    criticality: ConceptCriticality = ConceptCriticality.NORMAL


class Ambiguity(BaseModel):
    term: str
    candidate_concepts: list[str]
    reason: str


class QueryInterpretation(BaseModel):
    """What the graph engine understood from a question."""

    detected_terms: list[str] = Field(default_factory=list)
    resolved_concepts: list[ResolvedConcept] = Field(default_factory=list)
    definition_version_ids: list[UUID] = Field(default_factory=list)
    rewritten_query: Optional[str] = None


class QueryFlowResult(BaseModel):
    expanded_query: str
    interpretation: QueryInterpretation
    ambiguities: list[Ambiguity] = Field(default_factory=list)
    unsupported_terms: list[str] = Field(default_factory=list)
    strict_failure_message: Optional[str] = None
    interpretation_time_ms: float = 0.0
    graph_expansion_time_ms: float = 0.0


class TermCandidateInput(BaseModel):
    """A possible internal term mined from document text."""

    term_original: str
    term_normalized: str
    context: str = ""
    confidence: float = Field(..., ge=0.0, le=1.0)


class ScopedRow(BaseModel):
    """Scope and validity window shared by concept-graph rows."""

    team: Optional[str] = None
    product: Optional[str] = None
    region: Optional[str] = None
    process: Optional[str] = None
    role: Optional[str] = None
    valid_from: datetime
    valid_to: Optional[datetime] = None

    class Config:
        from_attributes = True


class AliasMatch(ScopedRow):
    alias: str
    alias_normalized: str
    confidence: float = 1.0
    concept_id: UUID
    concept_key: str
    concept_label: str
    criticality: ConceptCriticality = ConceptCriticality.NORMAL


class DefinitionMatch(ScopedRow):
    id: UUID
    concept_id: UUID
    definition: str
    confidence: float = 0.7


class RelationMatch(ScopedRow):
    from_concept_id: UUID
    to_concept_id: UUID
    from_key: str
    to_key: str
    relation_type: str
