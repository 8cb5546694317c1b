"""Two-pass answer generation.

Pass 1 (extraction) asks the model for structured facts with provenance at
temperature 0. Pass 2 (summarization) writes the answer from those facts
only; the chunk text never reaches the second prompt, so the model cannot
introduce claims that were not extracted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable

from medanswer.config import settings
from medanswer.services.context.chunks import RetrievalCandidate
from medanswer.services.context.query import StructuredQuery
from medanswer.services.llm.answer_parser import parse_summary_response
from medanswer.services.llm.client import LLMClient
from medanswer.services.llm.extraction import (
    Extraction,
    ExtractionParseError,
    parse_extractions,
)
from medanswer.services.llm.prompts import ExtractionPromptBuilder
from medanswer.services.verification.count_verifier import ExtractionCountVerifier
from medanswer.services.verification.medication_dedup import MedicationDeduplicator

logger = logging.getLogger("medanswer")


class GenerationError(RuntimeError):
    """Raised when a generation pass fails."""


@dataclass(frozen=True)
class GenerationConfig:
    extraction_temperature: float = 0.0
    summarization_temperature: float = 0.3
    extraction_max_tokens: int = 2000
    summarization_max_tokens: int = 500
    enable_validation: bool = True

    @classmethod
    def from_settings(cls) -> "GenerationConfig":
        return cls(
            extraction_temperature=settings.extraction_temperature,
            summarization_temperature=settings.summarization_temperature,
            extraction_max_tokens=settings.extraction_max_tokens,
            summarization_max_tokens=settings.summarization_max_tokens,
            enable_validation=settings.enable_extraction_validation,
        )


@dataclass(frozen=True)
class GeneratedAnswer:
    short_answer: str
    detailed_summary: str
    model: str
    tokens_used: int
    extractions_count: int
    verification_warnings: tuple[str, ...] = ()


@dataclass
class TwoPassResult:
    """Output of both generation passes."""

    extractions: list[Extraction]
    summary: GeneratedAnswer
    pass1_tokens: int
    pass2_tokens: int
    total_tokens: int
    execution_time_ms: float
    metadata: dict = field(default_factory=dict)


class TwoPassGenerator:
    """Generates grounded answers with an extraction and a summarization pass."""

    def __init__(
        self,
        llm: LLMClient,
        prompt_builder: ExtractionPromptBuilder | None = None,
        deduplicator: MedicationDeduplicator | None = None,
        count_verifier: ExtractionCountVerifier | None = None,
        config: GenerationConfig | None = None,
    ):
        self.llm = llm
        self.prompt_builder = prompt_builder or ExtractionPromptBuilder()
        self.deduplicator = deduplicator or MedicationDeduplicator()
        self.count_verifier = count_verifier or ExtractionCountVerifier()
        self.config = config or GenerationConfig.from_settings()

    def get_default_config(self) -> GenerationConfig:
        return replace(self.config)

    async def generate_answer(
        self,
        candidates: list[RetrievalCandidate],
        query: StructuredQuery,
        config: GenerationConfig | None = None,
        on_extracted: Callable[[list[Extraction]], None] | None = None,
    ) -> TwoPassResult:
        """Run both passes.

        Args:
            candidates: Ranked retrieval candidates to extract from
            query: The structured query being answered
            config: Overrides for the default generation config
            on_extracted: Called with the extractions once Pass 1 completes

        Returns:
            TwoPassResult with extractions and the generated answer

        Raises:
            GenerationError: If either pass fails
        """
        start_time = time.time()
        config = config or self.config

        extractions, pass1_tokens = await self.extraction_pass(candidates, query, config)
        if on_extracted is not None:
            on_extracted(extractions)

        summary, pass2_tokens = await self.summarization_pass(extractions, query, config)

        return TwoPassResult(
            extractions=extractions,
            summary=summary,
            pass1_tokens=pass1_tokens,
            pass2_tokens=pass2_tokens,
            total_tokens=pass1_tokens + pass2_tokens,
            execution_time_ms=(time.time() - start_time) * 1000,
        )

    async def extraction_pass(
        self,
        candidates: list[RetrievalCandidate],
        query: StructuredQuery,
        config: GenerationConfig,
    ) -> tuple[list[Extraction], int]:
        prompt = self.prompt_builder.build_extraction_prompt(candidates, query)
        try:
            completion = await self.llm.extract(
                prompt.system_prompt,
                prompt.user_prompt,
                temperature=config.extraction_temperature,
                max_tokens=config.extraction_max_tokens,
            )
        except Exception as exc:
            logger.exception("Extraction pass failed")
            raise GenerationError(f"Extraction pass failed: {exc}") from exc

        try:
            extractions = parse_extractions(
                completion.extractions or [], validate=config.enable_validation
            )
        except ExtractionParseError as exc:
            raise GenerationError(str(exc)) from exc

        stats = self.deduplicator.get_stats(extractions)
        deduplicated = self.deduplicator.deduplicate(extractions)
        if stats.duplicates_detected:
            logger.info(
                "Medication deduplication: %d medications -> %d unique",
                stats.total,
                stats.unique_normalized,
            )
        logger.info("Extraction pass produced %d extractions", len(deduplicated))
        return deduplicated, completion.total_tokens or 0

    async def summarization_pass(
        self,
        extractions: list[Extraction],
        query: StructuredQuery,
        config: GenerationConfig,
    ) -> tuple[GeneratedAnswer, int]:
        prompt = self.prompt_builder.build_summarization_prompt(extractions, query)
        try:
            completion = await self.llm.summarize(
                prompt.system_prompt,
                prompt.user_prompt,
                temperature=config.summarization_temperature,
                max_tokens=config.summarization_max_tokens,
            )
            model_info = await self.llm.get_model_info()
        except Exception as exc:
            logger.exception("Summarization pass failed")
            raise GenerationError(f"Summarization pass failed: {exc}") from exc

        parsed = parse_summary_response(completion.summary)
        warnings: list[str] = []

        short_check = self.count_verifier.verify(extractions, parsed.short_answer)
        detail_check = self.count_verifier.verify(extractions, parsed.detailed_summary)
        for check in (short_check, detail_check):
            for warning in check.warnings:
                if warning not in warnings:
                    warnings.append(warning)

        short_answer = short_check.corrected_text or parsed.short_answer
        detailed_summary = detail_check.corrected_text or parsed.detailed_summary
        if warnings:
            logger.warning("Count verification corrected the generated answer")

        tokens = completion.total_tokens or 0
        return (
            GeneratedAnswer(
                short_answer=short_answer,
                detailed_summary=detailed_summary,
                model=model_info.label,
                tokens_used=tokens,
                extractions_count=len(extractions),
                verification_warnings=tuple(warnings),
            ),
            tokens,
        )

    async def generate_answer_with_retries(
        self,
        candidates: list[RetrievalCandidate],
        query: StructuredQuery,
        config: GenerationConfig | None = None,
        max_retries: int | None = None,
        on_extracted: Callable[[list[Extraction]], None] | None = None,
    ) -> TwoPassResult:
        """Retry generation with exponential backoff between attempts."""
        max_retries = settings.generation_max_retries if max_retries is None else max_retries
        base_delay = settings.generation_retry_base_delay_seconds
        last_error: GenerationError | None = None

        for attempt in range(1, max_retries + 1):
            try:
                return await self.generate_answer(candidates, query, config, on_extracted)
            except GenerationError as exc:
                last_error = exc
                if attempt >= max_retries:
                    break
                delay = base_delay * (2**attempt)
                logger.warning(
                    "Generation attempt %d/%d failed (%s). Retrying in %.1fs.",
                    attempt,
                    max_retries,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)

        raise GenerationError(
            f"Two-pass generation failed after {max_retries} attempts: {last_error}"
        ) from last_error

    @staticmethod
    def validate_result(result: TwoPassResult) -> bool:
        if result.extractions is None:
            return False
        if not result.summary.short_answer or not result.summary.detailed_summary:
            return False
        return result.total_tokens == result.pass1_tokens + result.pass2_tokens
