"""Citation validation for extraction provenance.

Checks that every extraction points at a retrieved chunk, that its
character offsets fall inside that chunk, and that the quoted supporting
text is what the chunk actually says at those offsets.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Literal

from medanswer.services.context.chunks import Chunk, RetrievalCandidate
from medanswer.services.llm.extraction import Extraction, Provenance

CitationErrorType = Literal[
    "invalid_artifact_id", "invalid_offsets", "text_mismatch", "missing_provenance"
]
CitationWarningType = Literal["whitespace_mismatch", "case_mismatch", "partial_match"]

ERROR_TYPES: tuple[CitationErrorType, ...] = (
    "invalid_artifact_id",
    "invalid_offsets",
    "text_mismatch",
    "missing_provenance",
)


@dataclass(frozen=True)
class CitationError:
    extraction_index: int
    error_type: CitationErrorType
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CitationWarning:
    extraction_index: int
    warning_type: CitationWarningType
    message: str


@dataclass
class CitationValidationResult:
    valid: bool
    errors: list[CitationError] = field(default_factory=list)
    warnings: list[CitationWarning] = field(default_factory=list)
    validated_count: int = 0

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @property
    def invalid_indices(self) -> set[int]:
        return {error.extraction_index for error in self.errors}


@dataclass(frozen=True)
class TextMatch:
    valid: bool
    extracted: str = ""
    warning_type: CitationWarningType | None = None
    warning_message: str | None = None


class CitationValidator:
    """Validates extraction provenance against retrieved candidates."""

    def validate(
        self,
        extractions: list[Extraction],
        candidates: list[RetrievalCandidate],
    ) -> CitationValidationResult:
        """Validate every extraction; invalid ones are reported, never dropped."""
        chunks = {c.chunk.chunk_id: c.chunk for c in candidates}
        result = CitationValidationResult(valid=True, validated_count=len(extractions))

        for index, extraction in enumerate(extractions):
            self._validate_one(index, extraction, chunks, result)

        result.valid = not result.errors
        return result

    def _validate_one(
        self,
        index: int,
        extraction: Extraction,
        chunks: dict[str, Chunk],
        result: CitationValidationResult,
    ) -> None:
        provenance = extraction.provenance
        if provenance is None:
            result.errors.append(
                CitationError(index, "missing_provenance", f"Extraction {index} missing provenance")
            )
            return

        chunk = chunks.get(provenance.chunk_id)
        if chunk is None:
            result.errors.append(
                CitationError(
                    index,
                    "invalid_artifact_id",
                    f"Chunk {provenance.chunk_id} not found in candidates",
                    {"chunk_id": provenance.chunk_id, "artifact_id": provenance.artifact_id},
                )
            )
            return

        if chunk.artifact_id != provenance.artifact_id:
            result.errors.append(
                CitationError(
                    index,
                    "invalid_artifact_id",
                    f"Artifact ID mismatch: chunk has {chunk.artifact_id}, "
                    f"provenance has {provenance.artifact_id}",
                    {"expected": chunk.artifact_id, "actual": provenance.artifact_id},
                )
            )

        if not self.validate_char_offsets(provenance.char_offsets, chunk.content):
            start, end = provenance.char_offsets
            result.errors.append(
                CitationError(
                    index,
                    "invalid_offsets",
                    f"Invalid char offsets [{start}, {end}] for chunk length {len(chunk.content)}",
                    {"offsets": provenance.char_offsets, "text_length": len(chunk.content)},
                )
            )
            return

        match = self.validate_text_match(
            provenance.supporting_text, chunk.content, provenance.char_offsets
        )
        if not match.valid:
            result.errors.append(
                CitationError(
                    index,
                    "text_mismatch",
                    "Supporting text does not match chunk text at offsets",
                    {
                        "expected": match.extracted,
                        "actual": provenance.supporting_text,
                        "offsets": provenance.char_offsets,
                    },
                )
            )
        elif match.warning_type:
            result.warnings.append(
                CitationWarning(index, match.warning_type, match.warning_message or "")
            )

    @staticmethod
    def validate_char_offsets(offsets: tuple[int, int], text: str) -> bool:
        start, end = offsets
        return 0 <= start < end <= len(text)

    @staticmethod
    def validate_text_match(
        supporting_text: str, chunk_text: str, offsets: tuple[int, int]
    ) -> TextMatch:
        extracted = chunk_text[offsets[0] : offsets[1]]
        if extracted == supporting_text:
            return TextMatch(valid=True, extracted=extracted)
        if extracted.strip() == supporting_text.strip():
            return TextMatch(
                valid=True,
                extracted=extracted,
                warning_type="whitespace_mismatch",
                warning_message="Supporting text matches after trimming whitespace",
            )
        if extracted.strip().lower() == supporting_text.strip().lower():
            return TextMatch(
                valid=True,
                extracted=extracted,
                warning_type="case_mismatch",
                warning_message="Supporting text matches with different case",
            )
        return TextMatch(valid=False, extracted=extracted)

    def validate_provenance(self, provenance: Provenance, chunk: Chunk) -> bool:
        if provenance.artifact_id != chunk.artifact_id or provenance.chunk_id != chunk.chunk_id:
            return False
        if not self.validate_char_offsets(provenance.char_offsets, chunk.content):
            return False
        return self.validate_text_match(
            provenance.supporting_text, chunk.content, provenance.char_offsets
        ).valid

    def validate_single(
        self, extraction: Extraction, candidates: list[RetrievalCandidate]
    ) -> CitationValidationResult:
        return self.validate([extraction], candidates)

    @staticmethod
    def all_have_provenance(extractions: list[Extraction]) -> bool:
        return all(e.provenance is not None for e in extractions)

    @staticmethod
    def get_extractions_without_provenance(extractions: list[Extraction]) -> list[int]:
        return [index for index, e in enumerate(extractions) if e.provenance is None]

    @staticmethod
    def get_error_types_summary(errors: list[CitationError]) -> dict[str, int]:
        counts = Counter(error.error_type for error in errors)
        return {error_type: counts.get(error_type, 0) for error_type in ERROR_TYPES}

    @staticmethod
    def get_validation_summary(result: CitationValidationResult) -> str:
        lines = [
            "Citation Validation Summary:",
            "=" * 60,
            "",
            f"Status: {'VALID' if result.valid else 'INVALID'}",
            f"Validated: {result.validated_count} extractions",
            f"Errors: {result.error_count}",
            f"Warnings: {result.warning_count}",
        ]
        if result.errors:
            lines += ["", "Errors:"]
            lines += [
                f"  {i + 1}. [Extraction {e.extraction_index}] {e.error_type}: {e.message}"
                for i, e in enumerate(result.errors)
            ]
        if result.warnings:
            lines += ["", "Warnings:"]
            lines += [
                f"  {i + 1}. [Extraction {w.extraction_index}] {w.warning_type}: {w.message}"
                for i, w in enumerate(result.warnings)
            ]
        return "\n".join(lines)
