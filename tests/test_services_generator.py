from __future__ import annotations

import pytest

from medanswer.services.context.query import StructuredQuery
from medanswer.services.llm.extraction import ExtractionParseError, parse_extractions
from medanswer.services.llm.generator import GenerationConfig, GenerationError, TwoPassGenerator
from medanswer.services.llm.prompts import NO_EXTRACTIONS_INSTRUCTION, ExtractionPromptBuilder


def _query(text: str = "What medications is the patient taking?") -> StructuredQuery:
    return StructuredQuery(original_query=text, patient_id="patient-1")


def _raw(chunk, quote, name, confidence=0.9, type="medication"):
    start = chunk.content.find(quote)
    return {
        "type": type,
        "content": {"name": name},
        "provenance": {
            "artifact_id": chunk.artifact_id,
            "chunk_id": chunk.chunk_id,
            "char_offsets": [start, start + len(quote)],
            "supporting_text": quote,
            "confidence": confidence,
        },
    }


@pytest.fixture
def candidates(make_candidate):
    return [
        make_candidate(
            "c1",
            0.9,
            rank=1,
            content="Continue metformin 500mg twice daily. Internal billing note 4471.",
        ),
        make_candidate("c2", 0.7, rank=2, content="Lisinopril 10mg daily for hypertension."),
    ]


@pytest.fixture
def raw_extractions(candidates):
    c1, c2 = candidates[0].chunk, candidates[1].chunk
    return [
        _raw(c1, "metformin 500mg", "Metformin 500mg", confidence=0.8),
        _raw(c1, "metformin", "Metformin", confidence=0.95),
        _raw(c2, "Lisinopril 10mg", "Lisinopril 10mg", confidence=0.9),
    ]


def _generator(llm):
    return TwoPassGenerator(llm=llm, config=GenerationConfig())


@pytest.mark.anyio
async def test_two_pass_generation(fake_llm_cls, candidates, raw_extractions):
    llm = fake_llm_cls(
        extractions=raw_extractions,
        summary="The patient takes metformin and lisinopril.\n\nMetformin 500mg and lisinopril 10mg.",
    )

    result = await _generator(llm).generate_answer(candidates, _query())

    assert [e.name for e in result.extractions] == ["Metformin", "Lisinopril 10mg"]
    assert result.summary.short_answer == "The patient takes metformin and lisinopril."
    assert result.summary.detailed_summary == "Metformin 500mg and lisinopril 10mg."
    assert result.summary.model == "ollama:meditron"
    assert result.summary.extractions_count == 2
    assert result.summary.verification_warnings == ()
    assert (result.pass1_tokens, result.pass2_tokens, result.total_tokens) == (120, 40, 160)
    assert TwoPassGenerator.validate_result(result)

    assert llm.extract_calls[0]["temperature"] == 0.0
    assert llm.extract_calls[0]["max_tokens"] == 2000
    assert llm.summarize_calls[0]["temperature"] == 0.3
    assert llm.summarize_calls[0]["max_tokens"] == 500


@pytest.mark.anyio
async def test_summary_prompt_never_sees_chunk_text(fake_llm_cls, candidates, raw_extractions):
    llm = fake_llm_cls(extractions=raw_extractions)

    await _generator(llm).generate_answer(candidates, _query())

    assert "Internal billing note 4471" in llm.extract_calls[0]["user"]
    assert "[Chunk 1]" in llm.extract_calls[0]["user"]
    summary_prompt = llm.summarize_calls[0]["user"]
    assert "Internal billing note 4471" not in summary_prompt
    assert "c1" not in summary_prompt
    assert 'Supporting Evidence: "metformin"' in summary_prompt


@pytest.mark.anyio
async def test_empty_extractions_use_no_information_branch(fake_llm_cls, candidates):
    llm = fake_llm_cls(
        extractions=[],
        summary="No information about current medications was found in the records.",
    )

    result = await _generator(llm).generate_answer(candidates, _query())

    assert result.extractions == []
    assert NO_EXTRACTIONS_INSTRUCTION in llm.summarize_calls[0]["user"]
    assert result.summary.short_answer.startswith("No information")
    assert result.summary.extractions_count == 0


@pytest.mark.anyio
async def test_count_claims_are_corrected_per_section(fake_llm_cls, candidates, raw_extractions):
    llm = fake_llm_cls(
        extractions=raw_extractions,
        summary=(
            "The patient takes 4 medications.\n\n"
            "They take 2 medications: metformin and lisinopril."
        ),
    )

    result = await _generator(llm).generate_answer(candidates, _query())

    assert result.summary.short_answer == "The patient takes 2 medications."
    assert result.summary.detailed_summary == "They take 2 medications: metformin and lisinopril."
    assert len(result.summary.verification_warnings) == 1
    assert "Auto-corrected" in result.summary.verification_warnings[0]


@pytest.mark.anyio
async def test_malformed_extractions_are_dropped(fake_llm_cls, candidates, raw_extractions):
    condition = _raw(candidates[1].chunk, "hypertension", "Hypertension", type="condition")
    condition["provenance"] = [condition["provenance"], dict(condition["provenance"])]
    llm = fake_llm_cls(
        extractions=[
            {"type": "medication", "content": {"name": "Aspirin"}},
            {"type": "", "content": {"name": "Blank"}, "provenance": raw_extractions[0]["provenance"]},
            condition,
            raw_extractions[2],
        ]
    )

    result = await _generator(llm).generate_answer(candidates, _query())

    assert [(e.type, e.name) for e in result.extractions] == [
        ("medication", "Lisinopril 10mg"),
        ("condition", "Hypertension"),
    ]


@pytest.mark.anyio
async def test_malformed_extraction_fails_when_validation_disabled(fake_llm_cls, candidates):
    llm = fake_llm_cls(extractions=[{"type": "medication", "content": {"name": "Aspirin"}}])
    generator = TwoPassGenerator(llm=llm, config=GenerationConfig(enable_validation=False))

    with pytest.raises(GenerationError):
        await generator.generate_answer(candidates, _query())


@pytest.mark.anyio
async def test_llm_failure_becomes_generation_error(fake_llm_cls, candidates):
    llm = fake_llm_cls(extract_error=ValueError("model returned invalid JSON"))

    with pytest.raises(GenerationError, match="Extraction pass failed"):
        await _generator(llm).generate_answer(candidates, _query())
    assert llm.summarize_calls == []


@pytest.mark.anyio
async def test_on_extracted_runs_before_summarization(fake_llm_cls, candidates, raw_extractions):
    llm = fake_llm_cls(extractions=raw_extractions)
    seen = []

    def on_extracted(extractions):
        seen.append((len(extractions), len(llm.summarize_calls)))

    await _generator(llm).generate_answer(candidates, _query(), on_extracted=on_extracted)

    assert seen == [(2, 0)]


@pytest.mark.anyio
async def test_retries_with_exponential_backoff(fake_llm_cls, candidates, raw_extractions, no_sleep):
    llm = fake_llm_cls(extractions=raw_extractions, fail_times=2)

    result = await _generator(llm).generate_answer_with_retries(
        candidates, _query(), max_retries=3
    )

    assert result.summary.extractions_count == 2
    assert len(llm.extract_calls) == 3
    assert no_sleep == [2.0, 4.0]


@pytest.mark.anyio
async def test_retries_exhausted(fake_llm_cls, candidates, no_sleep):
    llm = fake_llm_cls(fail_times=10)

    with pytest.raises(GenerationError, match="failed after 3 attempts"):
        await _generator(llm).generate_answer_with_retries(candidates, _query(), max_retries=3)

    assert len(llm.extract_calls) == 3
    assert no_sleep == [2.0, 4.0]


def test_parse_extractions_takes_first_provenance_of_array(candidates, caplog):
    raw = _raw(candidates[0].chunk, "metformin", "Metformin")
    raw["provenance"] = [raw["provenance"], {"artifact_id": "other"}]

    [extraction] = parse_extractions([raw])

    assert extraction.provenance.chunk_id == "c1"
    assert "provenance is an array" in caplog.text


def test_parse_extractions_without_validation_raises():
    with pytest.raises(ExtractionParseError):
        parse_extractions([{"type": "medication"}], validate=False)


def test_parse_extractions_defaults_confidence(candidates):
    raw = _raw(candidates[0].chunk, "metformin", "Metformin")
    del raw["provenance"]["confidence"]

    [extraction] = parse_extractions([raw])

    assert extraction.confidence == 0.0
    assert extraction.to_dict()["provenance"]["char_offsets"] == [9, 18]


def test_prompt_estimated_tokens(candidates):
    prompt = ExtractionPromptBuilder().build_extraction_prompt(candidates, _query())
    assert prompt.total_chunks == 2
    assert '"measurement"' in prompt.system_prompt
    assert '"patient_info"' in prompt.system_prompt
    assert prompt.estimated_tokens * 4 >= len(prompt.system_prompt) + len(prompt.user_prompt)
