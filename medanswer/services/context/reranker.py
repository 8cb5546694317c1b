"""Second-pass re-ranking of retrieval candidates.

Blends the retrieval score with signals that need the full query:
entity coverage, query token overlap and artifact type match.
"""

from dataclasses import dataclass, field, replace

from medanswer.config import settings
from medanswer.services.context.chunks import RetrievalCandidate, tokenize
from medanswer.services.context.preferences import (
    RERANK_TYPE_BONUSES,
    TypePreferenceTable,
)
from medanswer.services.context.query import Entity, QueryIntent, StructuredQuery


@dataclass(frozen=True)
class RerankWeights:
    original_score: float = 0.7
    entity_coverage: float = 0.15
    query_overlap: float = 0.10
    type_match_bonus: float = 0.05

    def __post_init__(self):
        total = (
            self.original_score
            + self.entity_coverage
            + self.query_overlap
            + self.type_match_bonus
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Re-rank weights must sum to 1.0, got {total:.3f}")


@dataclass
class RerankDetail:
    candidate: RetrievalCandidate
    original_score: float
    rerank_score: float
    signals: dict[str, float]
    original_rank: int
    rank_change: int = 0


@dataclass
class RankChange:
    chunk_id: str
    old_rank: int
    new_rank: int


@dataclass
class RankingComparison:
    improved: int = 0
    degraded: int = 0
    unchanged: int = 0
    rank_changes: dict[str, int] = field(default_factory=dict)
    top_changes: list[RankChange] = field(default_factory=list)


class ReRanker:
    """Re-scores the head of a ranked candidate list."""

    NEUTRAL_ENTITY_COVERAGE = 0.5
    SIGNIFICANT_RANK_CHANGE = 3

    def __init__(
        self,
        weights: RerankWeights | None = None,
        type_bonuses: TypePreferenceTable = RERANK_TYPE_BONUSES,
        top_k: int | None = None,
    ):
        self.weights = weights or RerankWeights()
        self.type_bonuses = type_bonuses
        self.top_k = settings.rerank_top_k if top_k is None else top_k

    @staticmethod
    def get_default_weights() -> RerankWeights:
        return RerankWeights()

    def rerank(
        self,
        candidates: list[RetrievalCandidate],
        query: StructuredQuery,
        top_k: int | None = None,
    ) -> list[RetrievalCandidate]:
        """Re-rank the first ``top_k`` candidates; the rest keep their order."""
        if not candidates:
            return []
        top_k = self.top_k if top_k is None else top_k
        details = self.rerank_with_details(candidates, query, top_k)
        return [d.candidate for d in details] + list(candidates[top_k:])

    def rerank_with_details(
        self,
        candidates: list[RetrievalCandidate],
        query: StructuredQuery,
        top_k: int | None = None,
    ) -> list[RerankDetail]:
        top_k = self.top_k if top_k is None else top_k
        head = candidates[:top_k]
        details = []
        for index, candidate in enumerate(head):
            signals = {
                "entity_coverage": self.calculate_entity_coverage(
                    candidate.chunk.content, query.entities
                ),
                "query_overlap": self.calculate_query_overlap(
                    candidate.chunk.content, query.original_query
                ),
                "position_boost": self.calculate_position_boost(index, len(head)),
                "type_match_bonus": self.calculate_type_match_bonus(
                    candidate.chunk.metadata.artifact_type, query.intent
                ),
            }
            details.append(
                RerankDetail(
                    candidate=candidate,
                    original_score=candidate.score,
                    rerank_score=self.combine_scores(candidate.score, signals),
                    signals=signals,
                    original_rank=candidate.rank or index + 1,
                )
            )

        details.sort(key=lambda d: d.rerank_score, reverse=True)
        for new_index, detail in enumerate(details):
            new_rank = new_index + 1
            detail.rank_change = detail.original_rank - new_rank
            detail.candidate = replace(
                detail.candidate,
                score=detail.rerank_score,
                rank=new_rank,
                original_score=detail.original_score,
                rerank_signals=dict(detail.signals),
            )
        return details

    def calculate_entity_coverage(self, content: str, entities: tuple[Entity, ...]) -> float:
        if not entities:
            return self.NEUTRAL_ENTITY_COVERAGE
        lowered = content.lower()
        matched = sum(
            1
            for entity in entities
            if entity.text.lower() in lowered or entity.normalized.lower() in lowered
        )
        return matched / len(entities)

    @staticmethod
    def calculate_query_overlap(content: str, query: str) -> float:
        query_tokens = tokenize(query)
        if not query_tokens:
            return 0.0
        content_tokens = set(tokenize(content))
        return sum(1 for token in query_tokens if token in content_tokens) / len(query_tokens)

    @staticmethod
    def calculate_position_boost(position: int, total: int) -> float:
        """Linear boost from 1.0 at the head to 0.5 at the tail (informational)."""
        if total <= 1:
            return 1.0
        return 1.0 - (0.5 / (total - 1)) * position

    def calculate_type_match_bonus(
        self, artifact_type: str, intent: QueryIntent | str
    ) -> float:
        return self.type_bonuses.lookup(artifact_type, intent)

    def combine_scores(self, original_score: float, signals: dict[str, float]) -> float:
        w = self.weights
        return (
            w.original_score * original_score
            + w.entity_coverage * signals["entity_coverage"]
            + w.query_overlap * signals["query_overlap"]
            + w.type_match_bonus * signals["type_match_bonus"]
        )

    def compare_rankings(
        self,
        original: list[RetrievalCandidate],
        reranked: list[RetrievalCandidate],
    ) -> RankingComparison:
        comparison = RankingComparison()
        original_ranks = {c.chunk_id: index + 1 for index, c in enumerate(original)}
        for new_index, candidate in enumerate(reranked):
            new_rank = new_index + 1
            old_rank = original_ranks.get(candidate.chunk_id, new_rank)
            change = old_rank - new_rank
            comparison.rank_changes[candidate.chunk_id] = change
            if change > 0:
                comparison.improved += 1
            elif change < 0:
                comparison.degraded += 1
            else:
                comparison.unchanged += 1
            if abs(change) >= self.SIGNIFICANT_RANK_CHANGE:
                comparison.top_changes.append(
                    RankChange(candidate.chunk_id, old_rank=old_rank, new_rank=new_rank)
                )
        comparison.top_changes.sort(key=lambda c: abs(c.old_rank - c.new_rank), reverse=True)
        return comparison

    def explain_reranking(self, detail: RerankDetail) -> str:
        w = self.weights
        s = detail.signals
        if detail.rank_change:
            change = f"{'+' if detail.rank_change > 0 else ''}{detail.rank_change}"
        else:
            change = "N/A"
        lines = [
            f"Re-Ranking Analysis: {detail.candidate.chunk_id}",
            "",
            "Original:",
            f"  Rank: {detail.original_rank}",
            f"  Score: {detail.original_score:.3f}",
            "",
            "Re-Ranking Signals:",
            f"  Entity Coverage ({w.entity_coverage * 100:.0f}%): {s['entity_coverage']:.3f}",
            f"  Query Overlap   ({w.query_overlap * 100:.0f}%): {s['query_overlap']:.3f}",
            f"  Type Match      ({w.type_match_bonus * 100:.0f}%): {s['type_match_bonus']:.3f}",
            f"  Position Boost: {s['position_boost']:.3f}",
            "",
            "Final:",
            f"  Re-rank Score: {detail.rerank_score:.3f}",
            f"  Rank Change: {change}",
        ]
        return "\n".join(lines)

    def batch_rerank(
        self,
        candidate_lists: list[list[RetrievalCandidate]],
        queries: list[StructuredQuery],
        top_k: int | None = None,
    ) -> list[list[RetrievalCandidate]]:
        if len(candidate_lists) != len(queries):
            raise ValueError("Candidate lists and queries must have same length")
        return [
            self.rerank(candidates, query, top_k)
            for candidates, query in zip(candidate_lists, queries)
        ]
