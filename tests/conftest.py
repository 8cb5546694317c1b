from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from medanswer.services.context.chunks import Chunk, ChunkMetadata, RetrievalCandidate
from medanswer.services.llm.client import ExtractionCompletion, ModelInfo, SummaryCompletion
from medanswer.services.llm.extraction import Extraction, Provenance

REFERENCE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def reference_time():
    return REFERENCE_TIME


def _iso_days_ago(days: float, reference: datetime = REFERENCE_TIME) -> str:
    return (reference - timedelta(days=days)).isoformat()


@pytest.fixture
def days_ago():
    return _iso_days_ago


@pytest.fixture
def make_chunk():
    def _make(
        chunk_id: str,
        content: str = "Patient continues metformin 500mg daily.",
        artifact_id: str | None = None,
        patient_id: str = "patient-1",
        artifact_type: str = "progress_note",
        date: str | None = None,
        source_url: str | None = None,
    ) -> Chunk:
        return Chunk(
            chunk_id=chunk_id,
            artifact_id=artifact_id or f"artifact-{chunk_id}",
            patient_id=patient_id,
            content=content,
            metadata=ChunkMetadata(
                artifact_type=artifact_type,
                date=date or REFERENCE_TIME.isoformat(),
                source_url=source_url,
            ),
        )

    return _make


@pytest.fixture
def make_candidate(make_chunk):
    def _make(chunk_id: str, score: float, rank: int | None = None, **chunk_kwargs):
        chunk = make_chunk(chunk_id, **chunk_kwargs)
        return RetrievalCandidate(
            chunk=chunk,
            score=score,
            snippet=chunk.content[:200],
            rank=rank,
        )

    return _make


@pytest.fixture
def make_extraction():
    def _make(
        type: str = "medication",
        name: str | None = "Metformin",
        confidence: float = 0.9,
        chunk: Chunk | None = None,
        quote: str | None = None,
        with_provenance: bool = True,
        **content,
    ) -> Extraction:
        if name is not None:
            content = {"name": name, **content}
        if not with_provenance:
            return Extraction(type=type, content=content)
        if chunk is not None:
            quote = quote or chunk.content.split(".")[0]
            start = chunk.content.find(quote)
            provenance = Provenance(
                artifact_id=chunk.artifact_id,
                chunk_id=chunk.chunk_id,
                char_offsets=(start, start + len(quote)),
                supporting_text=quote,
                confidence=confidence,
            )
        else:
            provenance = Provenance(
                artifact_id="artifact-x",
                chunk_id="chunk-x",
                char_offsets=(0, 5),
                supporting_text=quote or "quote",
                confidence=confidence,
            )
        return Extraction(type=type, content=content, provenance=provenance)

    return _make


class FakeLLM:
    """Scripted LLM client recording every call."""

    def __init__(
        self,
        extractions: list | None = None,
        summary: str = "The patient takes Metformin 500mg.",
        extract_error: Exception | None = None,
        fail_times: int = 0,
        extract_delay: float = 0.0,
        summarize_delay: float = 0.0,
    ):
        self.extractions = extractions if extractions is not None else []
        self.summary = summary
        self.extract_error = extract_error
        self.fail_times = fail_times
        self.extract_delay = extract_delay
        self.summarize_delay = summarize_delay
        self.extract_calls: list[dict] = []
        self.summarize_calls: list[dict] = []

    async def extract(self, system_prompt, user_prompt, temperature, max_tokens):
        self.extract_calls.append(
            {
                "system": system_prompt,
                "user": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.extract_delay:
            await asyncio.sleep(self.extract_delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("llm unavailable")
        if self.extract_error is not None:
            raise self.extract_error
        return ExtractionCompletion(extractions=list(self.extractions), total_tokens=120)

    async def summarize(self, system_prompt, user_prompt, temperature, max_tokens):
        self.summarize_calls.append(
            {
                "system": system_prompt,
                "user": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.summarize_delay:
            await asyncio.sleep(self.summarize_delay)
        return SummaryCompletion(summary=self.summary, total_tokens=40)

    async def get_model_info(self):
        return ModelInfo(provider="ollama", model="meditron")


@pytest.fixture
def fake_llm_cls():
    return FakeLLM


@pytest.fixture
def no_sleep(monkeypatch):
    delays: list[float] = []

    async def _sleep(delay, *args, **kwargs):
        delays.append(delay)

    monkeypatch.setattr("medanswer.services.llm.generator.asyncio.sleep", _sleep)
    return delays
