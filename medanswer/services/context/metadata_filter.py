"""Metadata filtering over the chunk corpus."""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from medanswer.services.context.chunks import Chunk, parse_record_date
from medanswer.services.context.query import StructuredQuery


@dataclass(frozen=True)
class FilterCriteria:
    patient_id: str
    artifact_types: tuple[str, ...] | None = None
    date_from: str | None = None
    date_to: str | None = None

    @classmethod
    def from_query(cls, query: StructuredQuery) -> "FilterCriteria":
        date_range = query.filters.date_range
        return cls(
            patient_id=query.patient_id,
            artifact_types=query.filters.artifact_types,
            date_from=date_range.start if date_range else None,
            date_to=date_range.end if date_range else None,
        )


class MetadataFilter(Protocol):
    def build_indexes(self, chunks: list[Chunk]) -> None: ...

    def apply_filters(self, criteria: FilterCriteria) -> list[Chunk]: ...


class InMemoryMetadataFilter:
    """Patient/type indexed filter for small in-process corpora."""

    def __init__(self) -> None:
        self._by_patient: dict[str, list[Chunk]] = {}

    def build_indexes(self, chunks: list[Chunk]) -> None:
        self._by_patient = {}
        for chunk in chunks:
            self._by_patient.setdefault(chunk.patient_id, []).append(chunk)

    def apply_filters(self, criteria: FilterCriteria) -> list[Chunk]:
        chunks = self._by_patient.get(criteria.patient_id, [])
        if criteria.artifact_types:
            allowed = set(criteria.artifact_types)
            chunks = [c for c in chunks if c.metadata.artifact_type in allowed]

        date_from = parse_record_date(criteria.date_from)
        date_to = parse_record_date(criteria.date_to)
        if date_from or date_to:
            chunks = [c for c in chunks if self._in_range(c, date_from, date_to)]
        return list(chunks)

    @staticmethod
    def _in_range(
        chunk: Chunk, date_from: datetime | None, date_to: datetime | None
    ) -> bool:
        date = parse_record_date(chunk.metadata.date)
        if date is None:
            return False
        if date_from and date < date_from:
            return False
        if date_to and date > date_to:
            return False
        return True
