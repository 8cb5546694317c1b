"""Pydantic schemas."""

from medanswer.schemas.extraction import ExtractionPayload, ProvenancePayload
from medanswer.schemas.response import (
    ConfidenceBreakdown,
    ConfidenceInfo,
    ProvenanceItem,
    ResponseMetadata,
    StructuredExtraction,
    UIResponse,
)

__all__ = [
    "ExtractionPayload",
    "ProvenancePayload",
    "ConfidenceBreakdown",
    "ConfidenceInfo",
    "ProvenanceItem",
    "ResponseMetadata",
    "StructuredExtraction",
    "UIResponse",
]
