"""Assembly of the final UI response from pipeline outputs."""

from medanswer.schemas.response import (
    ConfidenceBreakdown,
    ConfidenceInfo,
    ProvenanceItem,
    ResponseMetadata,
    StructuredExtraction,
    UIResponse,
)
from medanswer.services.context.chunks import RetrievalCandidate
from medanswer.services.context.query import StructuredQuery
from medanswer.services.context.retriever import RetrievalResult
from medanswer.services.llm.extraction import Extraction
from medanswer.services.llm.generator import TwoPassResult
from medanswer.services.pipeline.confidence import ConfidenceScore
from medanswer.services.pipeline.context import STAGE_DATA_KEYS
from medanswer.services.verification.citation_validator import CitationValidationResult


class ResponseBuilder:
    """Builds a UIResponse from a completed pipeline run."""

    def __init__(self, suppress_invalid_citations: bool = False):
        self.suppress_invalid_citations = suppress_invalid_citations

    def build(
        self,
        query: StructuredQuery,
        retrieval: RetrievalResult,
        generation: TwoPassResult,
        confidence: ConfidenceScore,
        citations: CitationValidationResult,
        processing_time_ms: float,
    ) -> UIResponse:
        extractions = generation.extractions
        if self.suppress_invalid_citations and citations.errors:
            invalid = citations.invalid_indices
            extractions = [e for i, e in enumerate(extractions) if i not in invalid]

        by_chunk = {c.chunk_id: c for c in retrieval.candidates}
        warnings = list(generation.summary.verification_warnings)
        warnings += [
            f"Citation {error.error_type} in extraction {error.extraction_index}: {error.message}"
            for error in citations.errors
        ]

        return UIResponse(
            query_id=query.query_id,
            short_answer=generation.summary.short_answer,
            detailed_summary=generation.summary.detailed_summary,
            structured_extractions=[
                self._structured_extraction(e, by_chunk) for e in extractions
            ],
            provenance=self._provenance(extractions, by_chunk),
            confidence=ConfidenceInfo(
                overall=confidence.score,
                label=confidence.label,
                breakdown=ConfidenceBreakdown(
                    retrieval=confidence.avg_retrieval_score,
                    reasoning=confidence.extraction_quality,
                    extraction=confidence.extraction_quality,
                ),
                explanation=confidence.reason,
            ),
            metadata=ResponseMetadata(
                patient_id=query.patient_id,
                processing_time_ms=processing_time_ms,
                artifacts_searched=retrieval.total_searched,
                chunks_retrieved=len(retrieval.candidates),
                detail_level=int(query.detail_level),
                model=generation.summary.model,
                partial=False,
                completed_stages=[stage.value for _, stage in STAGE_DATA_KEYS],
                warnings=warnings,
            ),
        )

    @staticmethod
    def _structured_extraction(
        extraction: Extraction, by_chunk: dict[str, RetrievalCandidate]
    ) -> StructuredExtraction:
        provenance = extraction.provenance
        candidate = by_chunk.get(provenance.chunk_id) if provenance else None
        return StructuredExtraction(
            type=extraction.type,
            value=dict(extraction.content),
            relevance=min(1.0, max(0.0, candidate.score)) if candidate else 0.0,
            confidence=extraction.confidence,
            source_artifact_id=provenance.artifact_id if provenance else None,
            supporting_text=provenance.supporting_text if provenance else None,
        )

    @staticmethod
    def _provenance(
        extractions: list[Extraction], by_chunk: dict[str, RetrievalCandidate]
    ) -> list[ProvenanceItem]:
        items = []
        seen = set()
        for extraction in extractions:
            provenance = extraction.provenance
            if provenance is None:
                continue
            key = (provenance.chunk_id, provenance.char_offsets)
            if key in seen:
                continue
            seen.add(key)
            candidate = by_chunk.get(provenance.chunk_id)
            metadata = candidate.chunk.metadata if candidate else None
            items.append(
                ProvenanceItem(
                    artifact_id=provenance.artifact_id,
                    artifact_type=metadata.artifact_type if metadata else None,
                    snippet=provenance.supporting_text,
                    occurred_at=metadata.date if metadata else None,
                    relevance_score=candidate.score if candidate else 0.0,
                    char_offsets=provenance.char_offsets,
                    source_url=metadata.source_url if metadata else None,
                )
            )
        return items
