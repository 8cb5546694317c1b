"""Schemas for structured extractions returned by the extraction pass."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProvenancePayload(BaseModel):
    """Source location of an extracted fact."""

    model_config = ConfigDict(extra="ignore")

    artifact_id: str = Field(..., min_length=1)
    chunk_id: str = Field(..., min_length=1)
    char_offsets: tuple[int, int]
    supporting_text: str = Field(..., min_length=1)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ExtractionPayload(BaseModel):
    """A single extraction as emitted by the model."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1)
    content: dict[str, Any] = Field(..., min_length=1)
    provenance: ProvenancePayload

