"""Pydantic schemas for the answer returned to the UI."""

from typing import Any, Literal

from pydantic import BaseModel, Field

# ============================================
# Answer Components
# ============================================


class StructuredExtraction(BaseModel):
    """A cited fact shown alongside the answer."""

    type: str
    value: dict[str, Any]
    relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source_artifact_id: str | None = None
    supporting_text: str | None = None


class ProvenanceItem(BaseModel):
    """A source record snippet supporting the answer."""

    artifact_id: str
    artifact_type: str | None = None
    snippet: str
    occurred_at: str | None = None
    relevance_score: float = 0.0
    char_offsets: tuple[int, int] | None = None
    source_url: str | None = None


class ConfidenceBreakdown(BaseModel):
    retrieval: float = 0.0
    reasoning: float = 0.0
    extraction: float = 0.0


class ConfidenceInfo(BaseModel):
    overall: float = Field(default=0.0, ge=0.0, le=1.0)
    label: Literal["high", "medium", "low"] = "low"
    breakdown: ConfidenceBreakdown = Field(default_factory=ConfidenceBreakdown)
    explanation: str = ""


class ResponseMetadata(BaseModel):
    patient_id: str | None = None
    processing_time_ms: float = 0.0
    artifacts_searched: int = 0
    chunks_retrieved: int = 0
    detail_level: int | None = None
    model: str | None = None
    partial: bool = False
    completed_stages: list[str] = []
    failed_stage: str | None = None
    error: str | None = None
    warnings: list[str] = []


# ============================================
# UI Response
# ============================================


class UIResponse(BaseModel):
    """Complete answer payload for a patient record question."""

    query_id: str
    short_answer: str
    detailed_summary: str = ""
    structured_extractions: list[StructuredExtraction] = []
    provenance: list[ProvenanceItem] = []
    confidence: ConfidenceInfo = Field(default_factory=ConfidenceInfo)
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
