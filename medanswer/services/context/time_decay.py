"""Time decay applied on top of retrieval scores."""

import math
from dataclasses import dataclass, replace
from datetime import datetime

from medanswer.config import settings
from medanswer.services.context.chunks import (
    RetrievalCandidate,
    days_between,
    parse_record_date,
)

DECAY_MILESTONES = (0, 7, 30, 90, 180, 365)
EXAMPLE_SCORE = 0.8


@dataclass(frozen=True)
class DecayCurvePoint:
    days_ago: int
    decay_factor: float
    penalty_pct: float


@dataclass(frozen=True)
class DecayAnalysis:
    date: str
    days_ago: int | None
    decay_factor: float
    penalty_percentage: float
    example_original: float
    example_decayed: float


class TimeDecayScorer:
    """Multiplies scores by ``exp(-rate * days_ago)``.

    Future dates and unparseable dates are not penalized.
    """

    def __init__(self, decay_rate: float | None = None):
        self.decay_rate = settings.recency_decay_rate if decay_rate is None else decay_rate

    def get_decay_rate(self) -> float:
        return self.decay_rate

    def decay_factor(self, days: float) -> float:
        if days < 0:
            return 1.0
        return math.exp(-self.decay_rate * days)

    def calculate_decay_factor(
        self, occurred_at: str, reference_time: datetime | None = None
    ) -> float:
        parsed = parse_record_date(occurred_at)
        if parsed is None:
            return 1.0
        return self.decay_factor(days_between(parsed, reference_time))

    def calculate_days_ago(
        self, occurred_at: str, reference_time: datetime | None = None
    ) -> int | None:
        parsed = parse_record_date(occurred_at)
        if parsed is None:
            return None
        return round(days_between(parsed, reference_time))

    def apply_time_decay(
        self,
        candidates: list[RetrievalCandidate],
        reference_time: datetime | None = None,
    ) -> list[RetrievalCandidate]:
        """Decay every candidate's score, then re-sort and re-rank."""
        decayed = []
        for candidate in candidates:
            date = candidate.chunk.metadata.date
            factor = self.calculate_decay_factor(date, reference_time)
            decayed.append(
                replace(
                    candidate,
                    original_score=candidate.score,
                    score=candidate.score * factor,
                    time_decay_factor=factor,
                    days_ago=self.calculate_days_ago(date, reference_time),
                )
            )
        decayed.sort(key=lambda c: c.score, reverse=True)
        return [replace(c, rank=index + 1) for index, c in enumerate(decayed)]

    def batch_apply_time_decay(
        self,
        candidate_lists: list[list[RetrievalCandidate]],
        reference_time: datetime | None = None,
    ) -> list[list[RetrievalCandidate]]:
        return [self.apply_time_decay(c, reference_time) for c in candidate_lists]

    def analyze_decay(
        self, occurred_at: str, reference_time: datetime | None = None
    ) -> DecayAnalysis:
        factor = self.calculate_decay_factor(occurred_at, reference_time)
        return DecayAnalysis(
            date=occurred_at,
            days_ago=self.calculate_days_ago(occurred_at, reference_time),
            decay_factor=factor,
            penalty_percentage=(1 - factor) * 100,
            example_original=EXAMPLE_SCORE,
            example_decayed=EXAMPLE_SCORE * factor,
        )

    def _curve_point(self, days: int) -> DecayCurvePoint:
        factor = self.decay_factor(days)
        return DecayCurvePoint(days_ago=days, decay_factor=factor, penalty_pct=(1 - factor) * 100)

    def get_decay_curve(self, max_days: int = 365, step: int = 10) -> list[DecayCurvePoint]:
        if step <= 0:
            raise ValueError("step must be positive")
        return [self._curve_point(days) for days in range(0, max_days + 1, step)]

    def get_decay_milestones(self) -> list[DecayCurvePoint]:
        return [self._curve_point(days) for days in DECAY_MILESTONES]

    def compare_before_after(
        self,
        candidates: list[RetrievalCandidate],
        decayed: list[RetrievalCandidate],
    ) -> dict:
        original_ranks = {c.chunk_id: index + 1 for index, c in enumerate(candidates)}
        rank_changes = []
        improved = degraded = unchanged = 0
        for candidate in decayed:
            original_rank = original_ranks.get(candidate.chunk_id, 0)
            change = original_rank - (candidate.rank or 0)
            if change > 0:
                improved += 1
            elif change < 0:
                degraded += 1
            else:
                unchanged += 1
            rank_changes.append(
                {
                    "chunk_id": candidate.chunk_id,
                    "original_rank": original_rank,
                    "decayed_rank": candidate.rank,
                    "rank_change": change,
                    "original_score": candidate.original_score,
                    "decayed_score": candidate.score,
                    "days_ago": candidate.days_ago,
                }
            )
        factors = [c.time_decay_factor for c in decayed if c.time_decay_factor is not None]
        return {
            "rank_changes": rank_changes,
            "summary": {
                "improved": improved,
                "degraded": degraded,
                "unchanged": unchanged,
                "avg_decay_factor": sum(factors) / len(factors) if factors else 1.0,
            },
        }

    def find_most_affected(
        self, decayed: list[RetrievalCandidate], threshold: float = 50
    ) -> list[RetrievalCandidate]:
        """Candidates whose decay penalty is at least ``threshold`` percent."""
        return [
            c
            for c in decayed
            if c.time_decay_factor is not None
            and (1 - c.time_decay_factor) * 100 >= threshold
        ]

    def explain_decay(self, candidate: RetrievalCandidate) -> str:
        factor = candidate.time_decay_factor if candidate.time_decay_factor is not None else 1.0
        original = candidate.original_score if candidate.original_score is not None else candidate.score
        days = candidate.days_ago
        lines = [
            f"Time Decay Analysis: {candidate.chunk_id}",
            "=" * 60,
            "",
            f"Document Date: {candidate.chunk.metadata.date}",
            f"Days Ago: {days if days is not None else 'unknown'}",
            "",
            "Scores:",
            f"  Original Score: {original:.4f}",
            f"  Decay Factor:   {factor:.4f} (e^(-{self.decay_rate} * {days}))",
            f"  Decayed Score:  {candidate.score:.4f}",
            "",
            "Impact:",
            f"  Penalty: {(1 - factor) * 100:.1f}%",
            f"  Score Loss: {original - candidate.score:.4f}",
            "",
            "Interpretation:",
        ]
        if days is None:
            lines.append("  Unknown date - no penalty applied")
        elif days < 7:
            lines.append("  Very recent (< 1 week) - minimal penalty")
        elif days < 30:
            lines.append("  Recent (< 1 month) - small penalty")
        elif days < 90:
            lines.append("  Moderate age (< 3 months) - moderate penalty")
        elif days < 180:
            lines.append("  Old (< 6 months) - significant penalty")
        else:
            lines.append("  Very old (> 6 months) - large penalty")
        return "\n".join(lines)
