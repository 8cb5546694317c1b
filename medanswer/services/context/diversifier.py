"""Result diversification across source artifacts.

Penalizes repeated chunks from the same artifact so a single long
document cannot crowd out other sources.
"""

from collections import Counter
from dataclasses import dataclass, replace

from medanswer.config import settings
from medanswer.services.context.chunks import RetrievalCandidate


@dataclass(frozen=True)
class DiversityStats:
    total_candidates: int
    unique_artifacts: int
    avg_chunks_per_artifact: float
    max_chunks_from_single_artifact: int
    diversity_ratio: float


@dataclass(frozen=True)
class PenaltyPoint:
    position: int
    penalty: float
    penalty_pct: float


def _ranked(candidates: list[RetrievalCandidate]) -> list[RetrievalCandidate]:
    return [replace(c, rank=index + 1) for index, c in enumerate(candidates)]


class ResultDiversifier:
    """Applies ``base ** (position - 1)`` penalties per artifact."""

    def __init__(
        self,
        penalty_base: float | None = None,
        top_k: int | None = None,
        min_sources: int | None = None,
    ):
        self.penalty_base = settings.diversity_penalty_base if penalty_base is None else penalty_base
        self.top_k = settings.diversity_top_k if top_k is None else top_k
        self.min_sources = settings.diversity_min_sources if min_sources is None else min_sources

    def get_penalty_base(self) -> float:
        return self.penalty_base

    def calculate_diversity_penalty(self, position: int) -> float:
        """Penalty multiplier for the ``position``-th (1-indexed) chunk of an artifact."""
        return self.penalty_base ** (position - 1)

    @staticmethod
    def group_by_artifact(
        candidates: list[RetrievalCandidate],
    ) -> dict[str, list[RetrievalCandidate]]:
        groups: dict[str, list[RetrievalCandidate]] = {}
        for candidate in candidates:
            groups.setdefault(candidate.artifact_id, []).append(candidate)
        return groups

    def diversify(self, candidates: list[RetrievalCandidate]) -> list[RetrievalCandidate]:
        """Penalize repeated artifacts in input order, then re-sort and re-rank."""
        if not candidates:
            return []
        penalized = []
        for group in self.group_by_artifact(candidates).values():
            for index, candidate in enumerate(group):
                position = index + 1
                penalty = self.calculate_diversity_penalty(position)
                penalized.append(
                    replace(
                        candidate,
                        original_score=candidate.score,
                        score=candidate.score * penalty,
                        diversity_penalty=penalty,
                        artifact_position=position,
                    )
                )
        penalized.sort(key=lambda c: c.score, reverse=True)
        return _ranked(penalized)

    def batch_diversify(
        self, candidate_lists: list[list[RetrievalCandidate]]
    ) -> list[list[RetrievalCandidate]]:
        return [self.diversify(candidates) for candidates in candidate_lists]

    def ensure_minimum_diversity(
        self,
        results: list[RetrievalCandidate],
        top_k: int | None = None,
        min_sources: int | None = None,
    ) -> list[RetrievalCandidate]:
        """Pull unrepresented artifacts into the top K when it has too few sources.

        Each swap replaces the lowest-scoring top-K candidate whose artifact
        is still represented by another top-K candidate; the displaced
        candidate rejoins the remainder. If no other artifact exists beyond
        the top K the results are returned unchanged.
        """
        top_k = self.top_k if top_k is None else top_k
        min_sources = self.min_sources if min_sources is None else min_sources
        if len(results) <= top_k:
            return list(results)

        top = list(results[:top_k])
        remaining = list(results[top_k:])
        sources = {c.artifact_id for c in top}
        if len(sources) >= min_sources:
            return list(results)

        for candidate in list(remaining):
            if len(sources) >= min_sources:
                break
            if candidate.artifact_id in sources:
                continue
            counts = Counter(c.artifact_id for c in top)
            replaceable = [c for c in top if counts[c.artifact_id] > 1]
            if not replaceable:
                break
            displaced = min(replaceable, key=lambda c: c.score)
            top[top.index(displaced)] = candidate
            remaining.remove(candidate)
            remaining.append(displaced)
            sources.add(candidate.artifact_id)

        top.sort(key=lambda c: c.score, reverse=True)
        remaining.sort(key=lambda c: c.score, reverse=True)
        return _ranked(top + remaining)

    def has_minimum_diversity(
        self,
        results: list[RetrievalCandidate],
        top_k: int | None = None,
        min_sources: int | None = None,
    ) -> bool:
        top_k = self.top_k if top_k is None else top_k
        min_sources = self.min_sources if min_sources is None else min_sources
        return len({c.artifact_id for c in results[:top_k]}) >= min_sources

    def calculate_diversity_stats(self, candidates: list[RetrievalCandidate]) -> DiversityStats:
        if not candidates:
            return DiversityStats(0, 0, 0.0, 0, 0.0)
        groups = self.group_by_artifact(candidates)
        return DiversityStats(
            total_candidates=len(candidates),
            unique_artifacts=len(groups),
            avg_chunks_per_artifact=len(candidates) / len(groups),
            max_chunks_from_single_artifact=max(len(g) for g in groups.values()),
            diversity_ratio=len(groups) / len(candidates),
        )

    def compare_before_after(
        self,
        original: list[RetrievalCandidate],
        diversified: list[RetrievalCandidate],
    ) -> dict:
        original_ranks = {c.chunk_id: index + 1 for index, c in enumerate(original)}
        rank_changes = []
        improved = degraded = unchanged = 0
        for candidate in diversified:
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
                    "artifact_id": candidate.artifact_id,
                    "original_rank": original_rank,
                    "diversified_rank": candidate.rank,
                    "rank_change": change,
                    "original_score": candidate.original_score,
                    "diversified_score": candidate.score,
                    "penalty": candidate.diversity_penalty,
                }
            )
        penalties = [c.diversity_penalty for c in diversified if c.diversity_penalty is not None]
        return {
            "rank_changes": rank_changes,
            "stats": {
                "improved": improved,
                "degraded": degraded,
                "unchanged": unchanged,
                "avg_penalty": sum(penalties) / len(penalties) if penalties else 1.0,
            },
        }

    def find_most_penalized(
        self, diversified: list[RetrievalCandidate], threshold: float = 20
    ) -> list[RetrievalCandidate]:
        return [
            c
            for c in diversified
            if c.diversity_penalty is not None and (1 - c.diversity_penalty) * 100 >= threshold
        ]

    def get_penalty_curve(self, max_position: int = 10) -> list[PenaltyPoint]:
        points = []
        for position in range(1, max_position + 1):
            penalty = self.calculate_diversity_penalty(position)
            points.append(PenaltyPoint(position, penalty, (1 - penalty) * 100))
        return points

    @staticmethod
    def interleave_groups(
        groups: dict[str, list[RetrievalCandidate]],
    ) -> list[RetrievalCandidate]:
        """Round-robin one candidate from each artifact group at a time."""
        interleaved = []
        longest = max((len(g) for g in groups.values()), default=0)
        for index in range(longest):
            for group in groups.values():
                if index < len(group):
                    interleaved.append(group[index])
        return interleaved

    def explain_diversification(self, candidate: RetrievalCandidate) -> str:
        position = candidate.artifact_position or 1
        penalty = candidate.diversity_penalty if candidate.diversity_penalty is not None else 1.0
        original = candidate.original_score if candidate.original_score is not None else candidate.score
        lines = [
            f"Diversification Analysis: {candidate.chunk_id}",
            "=" * 60,
            "",
            f"Artifact: {candidate.artifact_id}",
            f"Position within artifact: {position}",
            "",
            "Scores:",
            f"  Original Score: {original:.4f}",
            f"  Penalty Factor: {penalty:.4f} ({self.penalty_base}^{position - 1})",
            f"  Final Score:    {candidate.score:.4f}",
            "",
            "Impact:",
            f"  Score Reduction: {original - candidate.score:.4f}",
            f"  Penalty %:       {(1 - penalty) * 100:.1f}%",
        ]
        if position == 1:
            lines.append("  First chunk from artifact - no penalty")
        else:
            lines.append(
                f"  Chunk {position} from artifact - {(1 - penalty) * 100:.0f}% penalty"
            )
        return "\n".join(lines)
