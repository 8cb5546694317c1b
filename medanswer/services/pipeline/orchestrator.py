"""Query orchestrator.

Runs the answer pipeline under a wall-clock budget:
query understanding -> retrieval -> optional ranking passes ->
two-pass generation -> citation validation -> confidence -> response.

On timeout or an upstream failure the best available partial response is
returned instead; ``answer`` never raises to its caller.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Protocol

from medanswer.config import settings
from medanswer.logging import query_id_var
from medanswer.schemas.response import UIResponse
from medanswer.services.context.diversifier import ResultDiversifier
from medanswer.services.context.query import StructuredQuery
from medanswer.services.context.reranker import ReRanker
from medanswer.services.context.retriever import RetrievalError, RetrievalResult, RetrieverAgent
from medanswer.services.context.time_decay import TimeDecayScorer
from medanswer.services.llm.extraction import Extraction
from medanswer.services.llm.generator import GenerationError, TwoPassGenerator
from medanswer.services.pipeline.confidence import ConfidenceScorer
from medanswer.services.pipeline.context import PipelineContext, PipelineStage
from medanswer.services.pipeline.partial_results import PartialResultsHandler
from medanswer.services.pipeline.response_builder import ResponseBuilder
from medanswer.services.verification.citation_validator import CitationValidator

logger = logging.getLogger("medanswer")


class QueryUnderstanding(Protocol):
    """Turns a free-text question into a structured query."""

    async def understand(self, question: str, patient_id: str) -> StructuredQuery: ...


class QueryOrchestrator:
    """Coordinates the pipeline stages for a single question."""

    def __init__(
        self,
        retriever: RetrieverAgent,
        generator: TwoPassGenerator,
        query_understanding: QueryUnderstanding | None = None,
        reranker: ReRanker | None = None,
        time_decay: TimeDecayScorer | None = None,
        diversifier: ResultDiversifier | None = None,
        citation_validator: CitationValidator | None = None,
        confidence_scorer: ConfidenceScorer | None = None,
        partial_handler: PartialResultsHandler | None = None,
        response_builder: ResponseBuilder | None = None,
        enable_reranking: bool | None = None,
        enable_time_decay: bool | None = None,
        enable_diversification: bool | None = None,
    ):
        self.retriever = retriever
        self.generator = generator
        self.query_understanding = query_understanding
        self.reranker = reranker or ReRanker()
        self.time_decay = time_decay or TimeDecayScorer()
        self.diversifier = diversifier or ResultDiversifier()
        self.citation_validator = citation_validator or CitationValidator()
        self.confidence_scorer = confidence_scorer or ConfidenceScorer()
        self.partial_handler = partial_handler or PartialResultsHandler()
        self.response_builder = response_builder or ResponseBuilder(
            suppress_invalid_citations=settings.suppress_invalid_citations
        )
        self.enable_reranking = (
            settings.enable_reranking if enable_reranking is None else enable_reranking
        )
        self.enable_time_decay = (
            settings.enable_time_decay if enable_time_decay is None else enable_time_decay
        )
        self.enable_diversification = (
            settings.enable_diversification
            if enable_diversification is None
            else enable_diversification
        )

    async def answer(
        self, question: str, patient_id: str, timeout_ms: int | None = None
    ) -> UIResponse:
        """Answer a free-text question about a patient."""
        if self.query_understanding is None:
            raise ValueError("answer() requires a query understanding component")
        return await self._execute(timeout_ms, question=question, patient_id=patient_id)

    async def answer_structured(
        self, query: StructuredQuery, timeout_ms: int | None = None
    ) -> UIResponse:
        """Answer an already structured query."""
        return await self._execute(timeout_ms, query=query)

    async def _execute(
        self,
        timeout_ms: int | None,
        question: str | None = None,
        patient_id: str | None = None,
        query: StructuredQuery | None = None,
    ) -> UIResponse:
        if timeout_ms is None:
            timeout_ms = settings.pipeline_timeout_ms
        context = PipelineContext(timeout_ms=timeout_ms)
        token = query_id_var.set(query.query_id if query else None)
        try:
            async with asyncio.timeout(context.timeout_ms / 1000):
                return await self._run(context, question, patient_id, query)
        except TimeoutError as exc:
            logger.warning(
                "Query timed out after %dms during %s",
                context.timeout_ms,
                context.stage.value,
            )
            return self._partial(exc, context)
        except (RetrievalError, GenerationError) as exc:
            logger.warning("Pipeline failed during %s: %s", context.stage.value, exc)
            return self._partial(exc, context)
        except Exception as exc:
            logger.exception("Unexpected pipeline failure during %s", context.stage.value)
            return self._partial(exc, context)
        finally:
            query_id_var.reset(token)

    async def _run(
        self,
        context: PipelineContext,
        question: str | None,
        patient_id: str | None,
        query: StructuredQuery | None,
    ) -> UIResponse:
        context.advance(PipelineStage.QUERY_UNDERSTANDING)
        if query is None:
            query = await self.query_understanding.understand(question, patient_id)
            query_id_var.set(query.query_id)
        context.record("structured_query", query)

        context.advance(PipelineStage.RETRIEVAL)
        retrieval = await self.retriever.retrieve(query)
        retrieval = self._post_process(retrieval, query)
        context.record("retrieval_results", retrieval)

        context.advance(PipelineStage.EXTRACTION)

        def on_extracted(extractions: list[Extraction]) -> None:
            context.record("extractions", extractions)
            context.advance(PipelineStage.GENERATION)

        generation = await self.generator.generate_answer_with_retries(
            retrieval.candidates, query, on_extracted=on_extracted
        )
        context.record("generated_answer", generation.summary)

        context.advance(PipelineStage.FORMATTING)
        citations = self.citation_validator.validate(
            generation.extractions, retrieval.candidates
        )
        if not citations.valid:
            logger.warning(
                "Citation validation found %d errors in %d extractions",
                citations.error_count,
                citations.validated_count,
            )
        confidence = self.confidence_scorer.calculate_confidence(
            retrieval.candidates, generation.extractions
        )
        response = self.response_builder.build(
            query,
            retrieval,
            generation,
            confidence,
            citations,
            processing_time_ms=context.elapsed_ms,
        )
        context.advance(PipelineStage.COMPLETE)
        logger.info(
            "Answered query in %.1fms with %s confidence",
            context.elapsed_ms,
            confidence.label,
        )
        return response

    def _post_process(
        self, retrieval: RetrievalResult, query: StructuredQuery
    ) -> RetrievalResult:
        candidates = retrieval.candidates
        if self.enable_reranking:
            candidates = self.reranker.rerank(candidates, query)
        if self.enable_time_decay:
            candidates = self.time_decay.apply_time_decay(candidates)
        if self.enable_diversification:
            candidates = self.diversifier.ensure_minimum_diversity(
                self.diversifier.diversify(candidates)
            )
        if candidates is retrieval.candidates:
            return retrieval
        return replace(retrieval, candidates=candidates)

    def _partial(self, error: BaseException, context: PipelineContext) -> UIResponse:
        partial = self.partial_handler.handle_partial_result(error, context)
        return self.partial_handler.format_partial_response(
            partial, processing_time_ms=context.elapsed_ms
        )
