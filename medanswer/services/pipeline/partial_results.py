"""Fallback responses when the pipeline times out or a stage fails."""

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from medanswer.schemas.response import (
    ConfidenceInfo,
    ProvenanceItem,
    ResponseMetadata,
    StructuredExtraction,
    UIResponse,
)
from medanswer.services.context.chunks import RetrievalCandidate
from medanswer.services.pipeline.context import STAGE_DATA_KEYS, PipelineContext, PipelineStage

TOTAL_STAGES = len(STAGE_DATA_KEYS)
SNIPPETS_SHOWN = 3

RETRIEVAL_AVAILABLE_MESSAGE = (
    "Query is taking longer than expected. Showing supporting snippets without full analysis."
)
RETRIEVAL_FAILED_MESSAGE = "Unable to retrieve records at this time. Please try again."
GENERIC_FAILURE_MESSAGE = "Unable to process query. Please try again."

STAGE_FAILURE_MESSAGES = {
    PipelineStage.QUERY_UNDERSTANDING: (
        "Unable to understand your query. Please try rephrasing and try again."
    ),
    PipelineStage.RETRIEVAL: RETRIEVAL_FAILED_MESSAGE,
    PipelineStage.EXTRACTION: (
        "Query is taking longer than expected. "
        "Showing retrieval results without detailed analysis."
    ),
    PipelineStage.GENERATION: RETRIEVAL_AVAILABLE_MESSAGE,
    PipelineStage.FORMATTING: "Query completed but formatting timed out. Showing raw results.",
}


@dataclass
class PartialResult:
    completed_stages: list[PipelineStage]
    failed_stage: PipelineStage
    error_message: str
    user_message: str
    available_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Fallback:
    type: str
    data: Any = None


class PartialResultsHandler:
    """Assembles the best available answer from completed pipeline stages."""

    def handle_partial_result(
        self, error: BaseException, context: PipelineContext
    ) -> PartialResult:
        data = context.data
        available: dict[str, Any] = {}
        if "structured_query" in data:
            available["query"] = data["structured_query"]

        if "retrieval_results" in data:
            user_message = RETRIEVAL_AVAILABLE_MESSAGE
            available["candidates"] = list(data["retrieval_results"].candidates)
            if "extractions" in data:
                available["extractions"] = list(data["extractions"])
            if "generated_answer" in data:
                available["answer"] = data["generated_answer"]
                user_message = self.create_partial_message(context.stage)
        elif "structured_query" in data:
            user_message = RETRIEVAL_FAILED_MESSAGE
        else:
            user_message = GENERIC_FAILURE_MESSAGE

        return PartialResult(
            completed_stages=context.completed_stages(),
            failed_stage=context.stage,
            error_message=str(error) or type(error).__name__,
            user_message=user_message,
            available_data=available,
        )

    def format_partial_response(
        self, partial: PartialResult, processing_time_ms: float = 0.0
    ) -> UIResponse:
        query = partial.available_data.get("query")
        candidates: list[RetrievalCandidate] = partial.available_data.get("candidates", [])
        extractions = partial.available_data.get("extractions", [])
        answer = partial.available_data.get("answer")
        shown = candidates[:SNIPPETS_SHOWN]

        short_answer = partial.user_message
        detailed_summary = ""
        warnings: list[str] = []
        if answer is not None:
            short_answer = answer.short_answer
            detailed_summary = answer.detailed_summary
            warnings = [partial.user_message, *answer.verification_warnings]
        elif shown:
            detailed_summary = "### Supporting Snippets (unprocessed)\n\n" + "\n\n".join(
                f"{index + 1}. {c.snippet} (Score: {c.score:.2f})" for index, c in enumerate(shown)
            )

        return UIResponse(
            query_id=query.query_id if query else str(uuid4()),
            short_answer=short_answer,
            detailed_summary=detailed_summary,
            structured_extractions=[
                StructuredExtraction(
                    type=e.type,
                    value=dict(e.content),
                    confidence=e.confidence,
                    source_artifact_id=e.provenance.artifact_id if e.provenance else None,
                    supporting_text=e.provenance.supporting_text if e.provenance else None,
                )
                for e in extractions
            ],
            provenance=[
                ProvenanceItem(
                    artifact_id=c.artifact_id,
                    artifact_type=c.chunk.metadata.artifact_type,
                    snippet=c.snippet,
                    occurred_at=c.chunk.metadata.date,
                    relevance_score=c.score,
                    source_url=c.chunk.metadata.source_url,
                )
                for c in shown
            ],
            confidence=ConfidenceInfo(
                overall=0.0,
                label="low",
                explanation="Partial results due to timeout or upstream failure",
            ),
            metadata=ResponseMetadata(
                patient_id=query.patient_id if query else None,
                processing_time_ms=processing_time_ms,
                chunks_retrieved=len(candidates),
                detail_level=int(query.detail_level) if query else None,
                model=answer.model if answer is not None else None,
                partial=True,
                completed_stages=[stage.value for stage in partial.completed_stages],
                failed_stage=partial.failed_stage.value,
                error=partial.error_message,
                warnings=warnings,
            ),
        )

    @staticmethod
    def determine_fallback(context: PipelineContext) -> Fallback:
        data = context.data
        if "generated_answer" in data:
            return Fallback("generated_answer", data["generated_answer"])
        if "extractions" in data:
            return Fallback("structured_extractions", data["extractions"])
        if "retrieval_results" in data:
            return Fallback("raw_snippets", data["retrieval_results"])
        if "structured_query" in data:
            return Fallback("structured_query", data["structured_query"])
        return Fallback("none")

    @staticmethod
    def create_partial_message(failed_stage: PipelineStage) -> str:
        return STAGE_FAILURE_MESSAGES.get(failed_stage, GENERIC_FAILURE_MESSAGE)

    @staticmethod
    def has_partial_results(context: PipelineContext) -> bool:
        return bool(context.completed_stages())

    @staticmethod
    def get_completion_percentage(completed_stages: list[PipelineStage]) -> int:
        return round(len(completed_stages) / TOTAL_STAGES * 100)
