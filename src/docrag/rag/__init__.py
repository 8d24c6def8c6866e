"""Answer path: engines, query flow, prompts and the orchestrator."""

from .classifier import (
    DB_TRANSIENT,
    UNEXPECTED,
    UPSTREAM_TRANSIENT,
    ErrorClassification,
    classify_error,
)
from .engines import CompatEngine, EnginePlan, GraphEngine, resolve_engine
from .orchestrator import KILL_SWITCH, RAGOrchestrator
from .prompts import MESSAGES, build_context, message
from .query_flow import (
    LlmTermClassifier,
    QueryFlow,
    make_candidate_terms,
    scope_matches,
    temporal_matches,
)

__all__ = [
    # Classification
    "DB_TRANSIENT",
    "UNEXPECTED",
    "UPSTREAM_TRANSIENT",
    "ErrorClassification",
    "classify_error",
    # Engines
    "CompatEngine",
    "EnginePlan",
    "GraphEngine",
    "resolve_engine",
    # Orchestrator
    "KILL_SWITCH",
    "RAGOrchestrator",
    # Prompts
    "MESSAGES",
    "build_context",
    "message",
    # Query flow
    "LlmTermClassifier",
    "QueryFlow",
    "make_candidate_terms",
    "scope_matches",
    "temporal_matches",
]
