"""Retriever agent for patient record chunks.

Runs the retrieval pipeline for a structured query:
1. Metadata filtering (patient, artifact types, date range)
2. Hybrid search (vector similarity blended with keyword match)
3. Scoring and ranking with the retrieval scorer
4. Snippet and highlight generation

Results are cached per query for a short TTL.
"""

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass, field

from medanswer.config import settings
from medanswer.services.context.chunks import Chunk, RetrievalCandidate
from medanswer.services.context.metadata_filter import (
    FilterCriteria,
    InMemoryMetadataFilter,
    MetadataFilter,
)
from medanswer.services.context.query import StructuredQuery
from medanswer.services.context.scorer import RetrievalScorer, ScoredChunk
from medanswer.services.context.snippets import generate_highlights, generate_snippet
from medanswer.services.context.vector_search import Embedder, VectorSearch
from medanswer.utils.cache import TTLCache

logger = logging.getLogger("medanswer")


class RetrievalError(RuntimeError):
    """Raised when a retrieval collaborator fails."""


@dataclass
class RetrievalDiagnostics:
    metadata_filter_time_ms: float = 0.0
    search_time_ms: float = 0.0
    scoring_time_ms: float = 0.0
    snippet_time_ms: float = 0.0
    cache_hit: bool = False


@dataclass
class RetrievalResult:
    """Ranked candidates plus search-space and timing diagnostics."""

    candidates: list[RetrievalCandidate]
    total_searched: int
    filtered_count: int
    retrieval_time_ms: float
    query_id: str
    diagnostics: RetrievalDiagnostics = field(default_factory=RetrievalDiagnostics)


class RetrieverAgent:
    """Retrieves and ranks chunks for a structured query."""

    SEMANTIC_BLEND = 0.6
    KEYWORD_BLEND = 0.4

    def __init__(
        self,
        embedder: Embedder,
        vector_search: VectorSearch,
        metadata_filter: MetadataFilter | None = None,
        scorer: RetrievalScorer | None = None,
        cache: TTLCache | None = None,
        snippet_length: int | None = None,
    ):
        self.embedder = embedder
        self.vector_search = vector_search
        self.metadata_filter = metadata_filter or InMemoryMetadataFilter()
        self.scorer = scorer or RetrievalScorer()
        self.cache = cache or TTLCache(
            ttl_seconds=settings.retrieval_cache_ttl_seconds,
            max_entries=settings.retrieval_cache_max_entries,
        )
        self.snippet_length = (
            settings.snippet_length if snippet_length is None else snippet_length
        )
        self._chunks: list[Chunk] = []
        self._dimension_checked = False

    def initialize(self, chunks: list[Chunk]) -> None:
        """Load the chunk corpus and build metadata indexes."""
        self._chunks = list(chunks)
        self.metadata_filter.build_indexes(self._chunks)
        logger.info("Retriever initialized with %d chunks", len(self._chunks))

    @property
    def total_chunks(self) -> int:
        return len(self._chunks)

    async def retrieve(
        self, query: StructuredQuery, top_k: int | None = None
    ) -> RetrievalResult:
        """Run the full retrieval pipeline for a query.

        Args:
            query: Structured query to retrieve for
            top_k: Number of candidates to return

        Returns:
            RetrievalResult with ranked candidates

        Raises:
            RetrievalError: If the embedder or vector search fails
        """
        if top_k is None:
            top_k = settings.retrieval_top_k
        start_time = time.time()

        cache_key = self._cache_key(query, top_k)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Retrieval cache hit for query %s", query.query_id)
            return RetrievalResult(
                candidates=list(cached.candidates),
                total_searched=cached.total_searched,
                filtered_count=cached.filtered_count,
                retrieval_time_ms=(time.time() - start_time) * 1000,
                query_id=query.query_id,
                diagnostics=RetrievalDiagnostics(cache_hit=True),
            )

        diagnostics = RetrievalDiagnostics()

        stage_start = time.time()
        filtered = self.metadata_filter.apply_filters(FilterCriteria.from_query(query))
        diagnostics.metadata_filter_time_ms = (time.time() - stage_start) * 1000

        if not filtered:
            logger.info("No chunks matched filters for patient %s", query.patient_id)
            return RetrievalResult(
                candidates=[],
                total_searched=self.total_chunks,
                filtered_count=0,
                retrieval_time_ms=(time.time() - start_time) * 1000,
                query_id=query.query_id,
                diagnostics=diagnostics,
            )

        stage_start = time.time()
        pool = await self._hybrid_search(query, filtered, limit=top_k * 2)
        diagnostics.search_time_ms = (time.time() - stage_start) * 1000

        stage_start = time.time()
        ranked = self.scorer.score_and_rank(
            [chunk for chunk, _ in pool],
            query,
            [semantic for _, semantic in pool],
            top_k=top_k,
        )
        diagnostics.scoring_time_ms = (time.time() - stage_start) * 1000

        stage_start = time.time()
        candidates = [self._to_candidate(scored, query) for scored in ranked]
        diagnostics.snippet_time_ms = (time.time() - stage_start) * 1000

        result = RetrievalResult(
            candidates=candidates,
            total_searched=self.total_chunks,
            filtered_count=len(filtered),
            retrieval_time_ms=(time.time() - start_time) * 1000,
            query_id=query.query_id,
            diagnostics=diagnostics,
        )
        await self.cache.set(cache_key, result)

        logger.info(
            "Retrieved %d candidates from %d filtered chunks in %.1fms",
            len(candidates),
            len(filtered),
            result.retrieval_time_ms,
        )
        return result

    async def batch_retrieve(
        self, queries: list[StructuredQuery], top_k: int | None = None
    ) -> list[RetrievalResult | RetrievalError]:
        """Retrieve for several queries concurrently.

        A failed query yields its RetrievalError in place of a result.
        """
        results = await asyncio.gather(
            *(self.retrieve(query, top_k) for query in queries),
            return_exceptions=True,
        )
        for query, result in zip(queries, results):
            if isinstance(result, BaseException) and not isinstance(result, RetrievalError):
                raise result
            if isinstance(result, RetrievalError):
                logger.warning("Batch retrieval failed for query %s: %s", query.query_id, result)
        return results

    async def clear_cache(self) -> None:
        await self.cache.clear()

    def get_cache_stats(self) -> dict:
        stats = self.cache.stats()
        return {
            "size": stats["size"],
            "max_size": stats["max_size"],
            "ttl_ms": stats["ttl_seconds"] * 1000,
        }

    async def _hybrid_search(
        self, query: StructuredQuery, filtered: list[Chunk], limit: int
    ) -> list[tuple[Chunk, float]]:
        try:
            embedding = await self.embedder.embed(query.original_query)
        except Exception as exc:
            logger.exception("Query embedding failed")
            raise RetrievalError(f"Embedding failed: {exc}") from exc

        if not self._dimension_checked:
            self._dimension_checked = True
            expected = getattr(self.vector_search, "dimension", None)
            if expected is not None and len(embedding) != expected:
                logger.warning(
                    "Embedding dimension %d does not match index dimension %d",
                    len(embedding),
                    expected,
                )

        try:
            hits = await self.vector_search.search(
                embedding, min(limit * 2, len(filtered))
            )
        except Exception as exc:
            logger.exception("Vector search failed")
            raise RetrievalError(f"Vector search failed: {exc}") from exc

        semantic_by_id = {hit.id: hit.score for hit in hits}
        blended = []
        for chunk in filtered:
            semantic = semantic_by_id.get(chunk.chunk_id, 0.0)
            keyword = self.scorer.calculate_keyword_match(chunk.content, query.original_query)
            provisional = self.SEMANTIC_BLEND * semantic + self.KEYWORD_BLEND * keyword
            blended.append((provisional, chunk, semantic))

        blended.sort(key=lambda item: item[0], reverse=True)
        return [(chunk, semantic) for _, chunk, semantic in blended[:limit]]

    def _to_candidate(
        self, scored: ScoredChunk, query: StructuredQuery
    ) -> RetrievalCandidate:
        chunk = scored.chunk
        return RetrievalCandidate(
            chunk=chunk,
            score=scored.scores.combined,
            snippet=generate_snippet(chunk.content, query.original_query, self.snippet_length),
            highlights=generate_highlights(chunk.content, query.original_query),
            metadata={
                **asdict(chunk.metadata),
                "scores": asdict(scored.scores),
            },
            rank=scored.rank,
        )

    @staticmethod
    def _cache_key(query: StructuredQuery, top_k: int) -> str:
        return json.dumps(
            {
                "query": query.original_query,
                "top_k": top_k,
                "patient_id": query.patient_id,
                "intent": query.intent.value,
                "filters": query.filters.as_dict(),
            },
            sort_keys=True,
        )

    @staticmethod
    def get_diagnostics_summary(result: RetrievalResult) -> str:
        d = result.diagnostics
        reduction = (
            (result.total_searched - result.filtered_count) / result.total_searched * 100
            if result.total_searched
            else 0.0
        )
        lines = [
            f"Query ID: {result.query_id}",
            f"Total Time: {result.retrieval_time_ms:.1f}ms",
            "",
            "Pipeline Breakdown:",
            f"  Metadata Filtering: {d.metadata_filter_time_ms:.1f}ms",
            f"  Hybrid Search: {d.search_time_ms:.1f}ms",
            f"  Scoring & Ranking: {d.scoring_time_ms:.1f}ms",
            f"  Snippet Generation: {d.snippet_time_ms:.1f}ms",
            "",
            "Search Space:",
            f"  Total chunks: {result.total_searched}",
            f"  After filtering: {result.filtered_count}",
            f"  Candidates returned: {len(result.candidates)}",
            f"  Reduction: {reduction:.1f}%",
            "",
            f"Cache Hit: {'Yes' if d.cache_hit else 'No'}",
        ]
        return "\n".join(lines)

    @staticmethod
    def explain_top_result(result: RetrievalResult) -> str:
        if not result.candidates:
            return "No results found"
        top = result.candidates[0]
        lines = [
            f"Top Result: Rank {top.rank}",
            f"Chunk ID: {top.chunk.chunk_id}",
            f"Score: {top.score:.3f}",
            "",
            "Metadata:",
            f"  Type: {top.chunk.metadata.artifact_type}",
            f"  Date: {top.chunk.metadata.date}",
            f"  Author: {top.chunk.metadata.author or 'N/A'}",
            "",
            "Content Preview:",
            f"  {top.snippet}",
            "",
            f"Highlights: {len(top.highlights)} query terms found",
        ]
        return "\n".join(lines)
