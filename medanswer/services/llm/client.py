"""Contract for the language model service used by the generator."""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class ExtractionCompletion:
    """Decoded output of an extraction call."""

    extractions: list[dict[str, Any]] = field(default_factory=list)
    total_tokens: int = 0


@dataclass
class SummaryCompletion:
    summary: str
    total_tokens: int = 0


@dataclass(frozen=True)
class ModelInfo:
    provider: str
    model: str

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.model}"


class LLMClient(Protocol):
    """Language model service performing the two generation passes."""

    async def extract(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> ExtractionCompletion: ...

    async def summarize(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> SummaryCompletion: ...

    async def get_model_info(self) -> ModelInfo: ...
