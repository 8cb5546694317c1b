"""Structured query model produced by the query-understanding front-end."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4


class QueryIntent(str, Enum):
    """Types of user query intents."""

    RETRIEVE_MEDICATIONS = "retrieve_medications"
    RETRIEVE_CARE_PLANS = "retrieve_care_plans"
    RETRIEVE_NOTES = "retrieve_notes"
    SUMMARY = "summary"
    COMPARISON = "comparison"
    RETRIEVE_ALL = "retrieve_all"
    UNKNOWN = "unknown"


class DetailLevel(IntEnum):
    MINIMAL = 1
    BASIC = 2
    STANDARD = 3
    DETAILED = 4
    COMPREHENSIVE = 5


@dataclass(frozen=True)
class Entity:
    """A clinical entity mentioned in the query."""

    text: str
    normalized: str
    type: str
    confidence: float = 1.0


@dataclass(frozen=True)
class DateRange:
    start: str | None = None
    end: str | None = None


@dataclass(frozen=True)
class QueryFilters:
    artifact_types: tuple[str, ...] | None = None
    date_range: DateRange | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "artifact_types": list(self.artifact_types) if self.artifact_types else None,
            "date_range": (
                {"from": self.date_range.start, "to": self.date_range.end}
                if self.date_range
                else None
            ),
        }


@dataclass(frozen=True)
class StructuredQuery:
    """Read-only query handed to retrieval and generation."""

    original_query: str
    patient_id: str
    intent: QueryIntent = QueryIntent.UNKNOWN
    entities: tuple[Entity, ...] = ()
    temporal_filter: str | None = None
    filters: QueryFilters = field(default_factory=QueryFilters)
    detail_level: DetailLevel = DetailLevel.STANDARD
    query_id: str = field(default_factory=lambda: str(uuid4()))
