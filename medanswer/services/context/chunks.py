"""Chunk and retrieval candidate models shared by the ranking stages."""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

_NON_WORD = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class ChunkMetadata:
    artifact_type: str
    date: str
    author: str | None = None
    section: str | None = None
    source_url: str | None = None


@dataclass(frozen=True)
class Chunk:
    """A retrievable fragment of a source clinical artifact."""

    chunk_id: str
    artifact_id: str
    patient_id: str
    content: str
    metadata: ChunkMetadata


@dataclass(frozen=True)
class Highlight:
    start: int
    end: int
    text: str
    score: float = 1.0


@dataclass
class RetrievalCandidate:
    """A scored chunk moving through the ranking stages.

    Stages never mutate a candidate they receive; they return copies
    made with ``dataclasses.replace`` carrying their explainability fields.
    """

    chunk: Chunk
    score: float
    snippet: str = ""
    highlights: list[Highlight] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    rank: int | None = None
    original_score: float | None = None
    rerank_signals: dict[str, float] | None = None
    time_decay_factor: float | None = None
    days_ago: int | None = None
    diversity_penalty: float | None = None
    artifact_position: int | None = None

    @property
    def artifact_id(self) -> str:
        return self.chunk.artifact_id

    @property
    def chunk_id(self) -> str:
        return self.chunk.chunk_id


def tokenize(text: str) -> list[str]:
    """Lowercase, replace punctuation with spaces and split on whitespace."""
    return [token for token in _NON_WORD.sub(" ", text.lower()).split() if token]


def parse_record_date(value: str | None) -> datetime | None:
    """Parse an ISO-8601 record date, returning None when invalid.

    Naive timestamps are treated as UTC.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def days_between(date: datetime, reference: datetime | None = None) -> float:
    """Fractional days from ``date`` to ``reference`` (negative for future dates)."""
    reference = reference or datetime.now(UTC)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=UTC)
    return (reference - date).total_seconds() / 86400.0
