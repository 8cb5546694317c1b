"""Per-query pipeline state."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PipelineStage(str, Enum):
    QUERY_UNDERSTANDING = "query_understanding"
    RETRIEVAL = "retrieval"
    EXTRACTION = "extraction"
    GENERATION = "generation"
    FORMATTING = "formatting"
    COMPLETE = "complete"


# Data keys in completion order, paired with the stage that produces them.
STAGE_DATA_KEYS: tuple[tuple[str, PipelineStage], ...] = (
    ("structured_query", PipelineStage.QUERY_UNDERSTANDING),
    ("retrieval_results", PipelineStage.RETRIEVAL),
    ("extractions", PipelineStage.EXTRACTION),
    ("generated_answer", PipelineStage.GENERATION),
)


@dataclass
class PipelineContext:
    """Stage tracker and append-only store of stage outputs.

    Each data key can be written once; later writes are ignored so a
    retried stage never overwrites what an earlier attempt recorded.
    """

    timeout_ms: int
    stage: PipelineStage = PipelineStage.QUERY_UNDERSTANDING
    start_time: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)

    def record(self, key: str, value: Any) -> bool:
        if key not in {k for k, _ in STAGE_DATA_KEYS}:
            raise KeyError(f"Unknown pipeline data key: {key}")
        if key in self.data:
            return False
        self.data[key] = value
        return True

    def advance(self, stage: PipelineStage) -> None:
        self.stage = stage

    @property
    def elapsed_ms(self) -> float:
        return (time.time() - self.start_time) * 1000

    def completed_stages(self) -> list[PipelineStage]:
        return [stage for key, stage in STAGE_DATA_KEYS if key in self.data]
