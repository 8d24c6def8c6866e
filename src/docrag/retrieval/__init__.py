"""Retrieval: hybrid vector + lexical search and reranking."""

from .hybrid import (
    ChunkStore,
    HybridSearcher,
    dedupe_by_highlight,
    fuse_scores,
)
from .reranker import Reranker, passthrough_ranking

__all__ = [
    # Hybrid search
    "ChunkStore",
    "HybridSearcher",
    "dedupe_by_highlight",
    "fuse_scores",
    # Rerank
    "Reranker",
    "passthrough_ranking",
]
