"""Answer confidence scoring from retrieval and extraction signals."""

from dataclasses import dataclass
from typing import Literal

from medanswer.services.context.chunks import RetrievalCandidate
from medanswer.services.llm.extraction import Extraction

ConfidenceLabel = Literal["high", "medium", "low"]


@dataclass(frozen=True)
class ConfidenceScore:
    score: float
    label: ConfidenceLabel
    avg_retrieval_score: float
    extraction_quality: float
    support_density: float
    reason: str


class ConfidenceScorer:
    """Weighted blend of retrieval score, extraction quality and support density."""

    RETRIEVAL_WEIGHT = 0.6
    EXTRACTION_WEIGHT = 0.3
    SUPPORT_WEIGHT = 0.1

    HIGH_THRESHOLD = 0.7
    MEDIUM_THRESHOLD = 0.4

    def calculate_confidence(
        self,
        candidates: list[RetrievalCandidate],
        extractions: list[Extraction],
    ) -> ConfidenceScore:
        avg_retrieval = (
            sum(c.score for c in candidates) / len(candidates) if candidates else 0.0
        )
        quality = self.assess_extraction_quality(extractions)
        density = self.calculate_support_density(extractions, candidates)
        score = min(
            1.0,
            self.RETRIEVAL_WEIGHT * avg_retrieval
            + self.EXTRACTION_WEIGHT * quality
            + self.SUPPORT_WEIGHT * density,
        )
        return ConfidenceScore(
            score=score,
            label=self.get_confidence_label(score),
            avg_retrieval_score=avg_retrieval,
            extraction_quality=quality,
            support_density=density,
            reason=self.explain_confidence(score, avg_retrieval, quality, density),
        )

    @staticmethod
    def assess_extraction_quality(extractions: list[Extraction]) -> float:
        if not extractions:
            return 0.0
        total = 0.0
        for extraction in extractions:
            quality = 0.5
            if extraction.provenance:
                quality += 0.3
                if extraction.provenance.char_offsets:
                    quality += 0.2
            total += quality
        return total / len(extractions)

    @staticmethod
    def calculate_support_density(
        extractions: list[Extraction], candidates: list[RetrievalCandidate]
    ) -> float:
        """Distinct cited artifacts per retrieved candidate, capped at 1."""
        if not extractions:
            return 0.0
        sources = {e.provenance.artifact_id for e in extractions if e.provenance}
        return min(1.0, len(sources) / max(len(candidates), 1))

    def get_confidence_label(self, score: float) -> ConfidenceLabel:
        if score >= self.HIGH_THRESHOLD:
            return "high"
        if score >= self.MEDIUM_THRESHOLD:
            return "medium"
        return "low"

    def is_acceptable(self, confidence: ConfidenceScore) -> bool:
        return confidence.score >= self.MEDIUM_THRESHOLD

    def explain_confidence(
        self, score: float, retrieval: float, quality: float, density: float
    ) -> str:
        if retrieval >= 0.8:
            retrieval_reason = "retrieval scores are very high"
        elif retrieval >= 0.6:
            retrieval_reason = "retrieval scores are good"
        elif retrieval >= 0.4:
            retrieval_reason = "retrieval scores are moderate"
        else:
            retrieval_reason = "retrieval scores are low"

        if quality >= 0.8:
            quality_reason = "extraction quality is excellent"
        elif quality >= 0.6:
            quality_reason = "extraction quality is good"
        elif quality >= 0.4:
            quality_reason = "extraction quality is fair"
        else:
            quality_reason = "extraction quality is poor"

        if density >= 0.7:
            density_reason = "multiple sources confirm findings"
        elif density >= 0.4:
            density_reason = "some sources confirm findings"
        else:
            density_reason = "limited source confirmation"

        label = self.get_confidence_label(score)
        return (
            f"Confidence is {label} ({score:.2f}) because: "
            f"{retrieval_reason}, {quality_reason}, {density_reason}."
        )
