"""Extraction model and parsing of raw extraction-pass output."""

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from medanswer.schemas.extraction import ExtractionPayload

logger = logging.getLogger("medanswer")

EXTRACTION_TYPES = (
    "medication",
    "condition",
    "procedure",
    "measurement",
    "date",
    "patient_info",
    "demographic",
)


class ExtractionParseError(ValueError):
    """Raised when an extraction cannot be converted and validation is off."""


@dataclass(frozen=True)
class Provenance:
    """Where an extracted fact was found in the source chunk."""

    artifact_id: str
    chunk_id: str
    char_offsets: tuple[int, int]
    supporting_text: str
    confidence: float = 0.0


@dataclass(frozen=True)
class Extraction:
    type: str
    content: dict[str, Any] = field(default_factory=dict)
    provenance: Provenance | None = None

    @property
    def name(self) -> str | None:
        value = self.content.get("name")
        return str(value) if value is not None else None

    @property
    def confidence(self) -> float:
        return self.provenance.confidence if self.provenance else 0.0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "content": dict(self.content)}
        if self.provenance:
            data["provenance"] = {
                "artifact_id": self.provenance.artifact_id,
                "chunk_id": self.provenance.chunk_id,
                "char_offsets": list(self.provenance.char_offsets),
                "supporting_text": self.provenance.supporting_text,
                "confidence": self.provenance.confidence,
            }
        return data


def normalize_extractions(raw: list[Any]) -> list[Any]:
    """Collapse provenance given as an array to its first element."""
    normalized = []
    for index, item in enumerate(raw):
        if isinstance(item, dict) and isinstance(item.get("provenance"), list):
            logger.warning(
                "Extraction %d: provenance is an array, taking first element", index
            )
            provenance = item["provenance"]
            item = {**item, "provenance": provenance[0] if provenance else None}
        normalized.append(item)
    return normalized


def _from_payload(payload: ExtractionPayload) -> Extraction:
    p = payload.provenance
    return Extraction(
        type=payload.type,
        content=dict(payload.content),
        provenance=Provenance(
            artifact_id=p.artifact_id,
            chunk_id=p.chunk_id,
            char_offsets=(p.char_offsets[0], p.char_offsets[1]),
            supporting_text=p.supporting_text,
            confidence=p.confidence,
        ),
    )


def parse_extractions(raw: list[Any], validate: bool = True) -> list[Extraction]:
    """Convert raw extraction dicts into Extraction objects.

    Args:
        raw: Extraction objects as decoded from the model's JSON output
        validate: Drop malformed items instead of failing

    Returns:
        Parsed extractions in input order

    Raises:
        ExtractionParseError: If an item is malformed and validation is off
    """
    extractions = []
    for index, item in enumerate(normalize_extractions(raw)):
        try:
            extractions.append(_from_payload(ExtractionPayload.model_validate(item)))
        except ValidationError as exc:
            if not validate:
                raise ExtractionParseError(f"Extraction {index} is malformed: {exc}") from exc
            logger.warning("Skipping extraction %d: %s", index, exc.errors()[0]["msg"])

    if validate and len(extractions) != len(raw):
        logger.info("Kept %d valid extractions out of %d total", len(extractions), len(raw))
    return extractions
