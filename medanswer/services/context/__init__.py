"""Retrieval and ranking services.

Scores patient record chunks against a structured query and refines the
ranking with re-ranking, time decay and source diversification.
"""

from importlib import import_module

__all__ = [
    "Chunk",
    "ChunkMetadata",
    "RetrievalCandidate",
    "StructuredQuery",
    "QueryIntent",
    "RetrievalScorer",
    "RetrieverAgent",
    "RetrievalResult",
    "RetrievalError",
    "ReRanker",
    "TimeDecayScorer",
    "ResultDiversifier",
]

_LAZY_IMPORTS = {
    "Chunk": ("medanswer.services.context.chunks", "Chunk"),
    "ChunkMetadata": ("medanswer.services.context.chunks", "ChunkMetadata"),
    "RetrievalCandidate": ("medanswer.services.context.chunks", "RetrievalCandidate"),
    "StructuredQuery": ("medanswer.services.context.query", "StructuredQuery"),
    "QueryIntent": ("medanswer.services.context.query", "QueryIntent"),
    "RetrievalScorer": ("medanswer.services.context.scorer", "RetrievalScorer"),
    "RetrieverAgent": ("medanswer.services.context.retriever", "RetrieverAgent"),
    "RetrievalResult": ("medanswer.services.context.retriever", "RetrievalResult"),
    "RetrievalError": ("medanswer.services.context.retriever", "RetrievalError"),
    "ReRanker": ("medanswer.services.context.reranker", "ReRanker"),
    "TimeDecayScorer": ("medanswer.services.context.time_decay", "TimeDecayScorer"),
    "ResultDiversifier": ("medanswer.services.context.diversifier", "ResultDiversifier"),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)
