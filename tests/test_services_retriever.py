from __future__ import annotations

import logging

import pytest

from medanswer.services.context.metadata_filter import FilterCriteria, InMemoryMetadataFilter
from medanswer.services.context.query import DateRange, QueryFilters, StructuredQuery
from medanswer.services.context.retriever import RetrievalError, RetrieverAgent
from medanswer.services.context.snippets import generate_highlights, generate_snippet
from medanswer.services.context.vector_search import InMemoryVectorStore, VectorHit
from medanswer.utils.cache import TTLCache


class DummyEmbedder:
    dimension = 2

    def __init__(self, vectors: dict[str, list[float]] | None = None, fail_on: str | None = None):
        self.vectors = vectors or {}
        self.fail_on = fail_on
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text == self.fail_on:
            raise ConnectionError("embedding service down")
        return self.vectors.get(text, [1.0, 0.0])


class SpySearch:
    def __init__(self, hits: list[VectorHit], dimension: int = 2):
        self.hits = hits
        self.dimension = dimension
        self.calls: list[int] = []

    async def search(self, embedding, k):
        self.calls.append(k)
        return self.hits[:k]


def _query(text: str = "metformin", patient_id: str = "patient-1", **kwargs) -> StructuredQuery:
    return StructuredQuery(original_query=text, patient_id=patient_id, **kwargs)


@pytest.fixture
def corpus(make_chunk):
    return [
        make_chunk("c1", content="Patient continues metformin 500mg"),
        make_chunk("c2", content="Blood pressure stable on lisinopril"),
        make_chunk("c3", content="Metformin started", patient_id="patient-2"),
    ]


@pytest.fixture
def agent(corpus):
    store = InMemoryVectorStore(dimension=2)
    store.add("c1", [1.0, 0.0])
    store.add("c2", [0.0, 1.0])
    store.add("c3", [1.0, 0.0])
    retriever = RetrieverAgent(embedder=DummyEmbedder(), vector_search=store)
    retriever.initialize(corpus)
    return retriever


@pytest.mark.anyio
async def test_retrieve_ranks_matching_chunk_first(agent):
    result = await agent.retrieve(_query())

    assert [c.chunk_id for c in result.candidates] == ["c1", "c2"]
    assert [c.rank for c in result.candidates] == [1, 2]
    assert result.total_searched == 3
    assert result.filtered_count == 2

    top = result.candidates[0]
    assert 0.0 <= top.score <= 1.0
    assert top.metadata["artifact_type"] == "progress_note"
    assert "combined" in top.metadata["scores"]
    assert [h.text for h in top.highlights] == ["metformin"]


@pytest.mark.anyio
async def test_retrieve_second_call_is_cache_hit(agent):
    query = _query()
    first = await agent.retrieve(query)
    second = await agent.retrieve(query)

    assert not first.diagnostics.cache_hit
    assert second.diagnostics.cache_hit
    assert [c.chunk_id for c in second.candidates] == [c.chunk_id for c in first.candidates]
    assert agent.embedder.calls == ["metformin"]
    assert agent.get_cache_stats()["size"] == 1

    await agent.clear_cache()
    assert agent.get_cache_stats()["size"] == 0


@pytest.mark.anyio
async def test_cache_is_keyed_by_top_k(agent):
    query = _query()

    narrow = await agent.retrieve(query, top_k=1)
    wide = await agent.retrieve(query, top_k=5)
    narrow_again = await agent.retrieve(query, top_k=1)

    assert [c.chunk_id for c in narrow.candidates] == ["c1"]
    assert not wide.diagnostics.cache_hit
    assert [c.chunk_id for c in wide.candidates] == ["c1", "c2"]
    assert narrow_again.diagnostics.cache_hit
    assert len(narrow_again.candidates) == 1
    assert agent.get_cache_stats()["size"] == 2


@pytest.mark.anyio
async def test_retrieve_with_no_matching_chunks_skips_search(agent):
    result = await agent.retrieve(_query(patient_id="nobody"))

    assert result.candidates == []
    assert result.filtered_count == 0
    assert agent.embedder.calls == []
    assert agent.explain_top_result(result) == "No results found"


@pytest.mark.anyio
async def test_retrieve_respects_artifact_type_filter(agent):
    query = _query(filters=QueryFilters(artifact_types=("lab_result",)))
    result = await agent.retrieve(query)
    assert result.candidates == []


@pytest.mark.anyio
async def test_vector_search_requests_twice_the_pool(make_chunk):
    chunks = [make_chunk(f"c{i}", content=f"note {i} metformin") for i in range(6)]
    search = SpySearch([VectorHit(id=c.chunk_id, score=0.5) for c in chunks])
    retriever = RetrieverAgent(embedder=DummyEmbedder(), vector_search=search)
    retriever.initialize(chunks)

    result = await retriever.retrieve(_query(), top_k=2)

    # pool of 2 * top_k, vector search asked for twice the pool
    assert search.calls == [6]
    assert len(result.candidates) == 2


@pytest.mark.anyio
async def test_embedding_failure_raises_retrieval_error(agent):
    agent.embedder.fail_on = "metformin"
    with pytest.raises(RetrievalError):
        await agent.retrieve(_query())


@pytest.mark.anyio
async def test_dimension_mismatch_is_logged_once(make_chunk, caplog):
    search = SpySearch([VectorHit(id="c1", score=0.9)], dimension=3)
    retriever = RetrieverAgent(embedder=DummyEmbedder(), vector_search=search)
    retriever.initialize([make_chunk("c1")])

    with caplog.at_level(logging.WARNING, logger="medanswer"):
        await retriever.retrieve(_query("metformin"))
        await retriever.retrieve(_query("lisinopril"))

    assert caplog.text.count("does not match index dimension") == 1


@pytest.mark.anyio
async def test_batch_retrieve_returns_errors_in_place(agent):
    agent.embedder.fail_on = "boom"
    results = await agent.batch_retrieve([_query("metformin"), _query("boom")])

    assert [c.chunk_id for c in results[0].candidates][0] == "c1"
    assert isinstance(results[1], RetrievalError)


@pytest.mark.anyio
async def test_diagnostics_summary_mentions_reduction(agent):
    result = await agent.retrieve(_query())
    summary = agent.get_diagnostics_summary(result)

    assert "Reduction: 33.3%" in summary
    assert "Cache Hit: No" in summary
    assert "Chunk ID: c1" in agent.explain_top_result(result)


@pytest.mark.anyio
async def test_cache_entries_expire(corpus):
    class Clock:
        now = 0.0

        def __call__(self):
            return self.now

    clock = Clock()
    store = InMemoryVectorStore(dimension=2)
    store.add("c1", [1.0, 0.0])
    retriever = RetrieverAgent(
        embedder=DummyEmbedder(),
        vector_search=store,
        cache=TTLCache(ttl_seconds=300, max_entries=10, clock=clock),
    )
    retriever.initialize(corpus)

    await retriever.retrieve(_query())
    clock.now = 301
    result = await retriever.retrieve(_query())

    assert not result.diagnostics.cache_hit
    assert len(retriever.embedder.calls) == 2


def test_metadata_filter_date_range_excludes_invalid_dates(make_chunk):
    chunks = [
        make_chunk("old", date="2023-01-01T00:00:00Z"),
        make_chunk("new", date="2024-05-01T00:00:00Z"),
        make_chunk("bad", date="sometime last year"),
    ]
    metadata_filter = InMemoryMetadataFilter()
    metadata_filter.build_indexes(chunks)

    query = _query(filters=QueryFilters(date_range=DateRange(start="2024-01-01")))
    filtered = metadata_filter.apply_filters(FilterCriteria.from_query(query))

    assert [c.chunk_id for c in filtered] == ["new"]

    unfiltered = metadata_filter.apply_filters(FilterCriteria(patient_id="patient-1"))
    assert len(unfiltered) == 3


@pytest.mark.anyio
async def test_vector_store_maps_cosine_to_unit_interval():
    store = InMemoryVectorStore(dimension=2)
    store.add("same", [2.0, 0.0])
    store.add("opposite", [-1.0, 0.0])

    hits = await store.search([1.0, 0.0], k=5)

    assert [h.id for h in hits] == ["same", "opposite"]
    assert hits[0].score == pytest.approx(1.0)
    assert hits[1].score == pytest.approx(0.0)

    with pytest.raises(ValueError):
        store.add("wrong", [1.0, 0.0, 0.0])


def test_snippet_returns_short_content_unchanged():
    assert generate_snippet("short note", "metformin") == "short note"


def test_snippet_without_match_takes_prefix():
    content = "z" * 300
    assert generate_snippet(content, "metformin") == "z" * 200 + "..."


def test_snippet_centers_on_first_match():
    content = "x" * 300 + " metformin " + "y" * 300
    snippet = generate_snippet(content, "metformin")

    assert len(snippet) == 206
    assert snippet.startswith("...")
    assert snippet.endswith("...")
    assert "metformin" in snippet


def test_snippet_moves_start_to_word_boundary():
    content = "word " * 60 + "metformin " + "word " * 60
    snippet = generate_snippet(content, "metformin")
    assert snippet.startswith("...word ")


def test_snippet_match_near_end_has_no_trailing_ellipsis():
    content = "a" * 250 + " metformin"
    snippet = generate_snippet(content, "metformin")

    assert snippet.startswith("...")
    assert snippet.endswith("metformin")


def test_highlights_cover_every_occurrence():
    highlights = generate_highlights("Metformin 500mg; metformin refill", "metformin xr")

    assert [(h.start, h.end) for h in highlights] == [(0, 9), (17, 26)]
    assert [h.text for h in highlights] == ["Metformin", "metformin"]
