from __future__ import annotations

import asyncio

import pytest

from memoria.db.connection import get_conn
from memoria.db.queries import get_turns_for_summary, get_unfolded_turns, insert_turn
from memoria.errors import EmbeddingError, ExtractionError, StoreError, SummarizationError
from memoria.memory.extraction import SummaryExtraction
from memoria.memory.long_term import LongTermMemory
from memoria.memory.summarization import SummarizationAgent
from memoria.memory.types import MemoryKind, Summary, Turn, TurnRole


class _Embedder:
    dims = 3

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def embed(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingError("embedding backend offline")
        if "Berlin" in text:
            return [1.0, 0.0, 0.0]
        if "jazz" in text:
            return [0.0, 1.0, 0.0]
        return [0.0, 0.0, 1.0]


class _Extractor:
    def __init__(self, *results: object) -> None:
        self.results = list(results)
        self.calls = 0

    async def extract(self, spec, turns):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


SUMMARY = SummaryExtraction(
    summary="User moved to Berlin and asked about flats.",
    key_facts=["User lives in Berlin", "User likes jazz"],
    tools_used=["web_search"],
    topics=["relocation"],
)


def _span(agent_id: str = "main", n: int = 4) -> list[Turn]:
    turns = [
        Turn(
            id=f"t{i}",
            role=TurnRole.USER if i % 2 == 0 else TurnRole.AGENT,
            content=f"turn number {i} about moving house",
        )
        for i in range(n)
    ]
    with get_conn() as conn:
        for turn in turns:
            insert_turn(conn, agent_id, turn)
    return turns


def _unfolded() -> list[Turn]:
    with get_conn() as conn:
        return get_unfolded_turns(conn, "main")


def _agent(
    extractor: _Extractor, embedder: _Embedder | None = None, **kwargs
) -> SummarizationAgent:
    embedder = embedder or _Embedder()
    long_term = LongTermMemory("main", _Embedder())
    return SummarizationAgent("main", extractor, long_term, embedder=embedder, **kwargs)


@pytest.mark.asyncio
async def test_summarize_persists_summary_and_folds_span() -> None:
    span = _span()
    agent = _agent(_Extractor(SUMMARY))

    summary = await agent.summarize(span)

    assert summary.span_start_turn_id == "t0"
    assert summary.span_end_turn_id == "t3"
    assert summary.tools_mentioned == ["web_search"]
    assert summary.embedding == [1.0, 0.0, 0.0]
    assert summary.token_savings > 0
    assert all(turn.summary_id == summary.id for turn in span)
    with get_conn() as conn:
        folded = get_turns_for_summary(conn, "main", summary.id)
        assert [turn.id for turn in folded] == ["t0", "t1", "t2", "t3"]
        assert get_unfolded_turns(conn, "main") == []
    stored = agent.get_summary(summary.id)
    assert stored is not None
    assert stored.key_facts == ["User lives in Berlin", "User likes jazz"]
    assert stored.topics == ["relocation"]
    assert agent.count_summaries() == 1


@pytest.mark.asyncio
async def test_key_facts_are_promoted_to_long_term_memory() -> None:
    span = _span()
    long_term = LongTermMemory("main", _Embedder())
    agent = SummarizationAgent("main", _Extractor(SUMMARY), long_term)
    long_term.store("User lives in Berlin", MemoryKind.PREFERENCE, 0.9)

    await agent.summarize(span)

    assert long_term.count() == 2
    jazz = long_term.search([0.0, 1.0, 0.0], k=1)[0].entry
    assert jazz.content == "User likes jazz"
    assert jazz.kind is MemoryKind.FACT
    assert jazz.importance == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_transient_failures_are_retried() -> None:
    span = _span()
    extractor = _Extractor(ExtractionError("bad json"), ExtractionError("bad json"), SUMMARY)
    agent = _agent(extractor, max_attempts=3)

    summary = await agent.summarize(span)

    assert extractor.calls == 3
    assert summary.text == SUMMARY.summary


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_and_persist_nothing() -> None:
    span = _span()
    extractor = _Extractor(ExtractionError("bad json"))
    agent = _agent(extractor, max_attempts=2)

    with pytest.raises(SummarizationError):
        await agent.summarize(span)

    assert extractor.calls == 2
    assert agent.count_summaries() == 0
    assert len(_unfolded()) == 4
    assert all(turn.summary_id is None for turn in span)


@pytest.mark.asyncio
async def test_non_retryable_failure_stops_early() -> None:
    span = _span()
    extractor = _Extractor(ExtractionError("empty span", retryable=False))
    agent = _agent(extractor, max_attempts=3)

    with pytest.raises(SummarizationError):
        await agent.summarize(span)
    assert extractor.calls == 1


@pytest.mark.asyncio
async def test_each_attempt_is_bounded_by_timeout() -> None:
    span = _span()

    class _Slow:
        async def extract(self, spec, turns):
            await asyncio.sleep(5)

    agent = SummarizationAgent(
        "main",
        _Slow(),
        LongTermMemory("main", _Embedder()),
        max_attempts=2,
        timeout_seconds=0.01,
    )
    with pytest.raises(SummarizationError):
        await agent.summarize(span)
    assert agent.count_summaries() == 0


@pytest.mark.asyncio
async def test_embedding_failure_stores_summary_without_embedding() -> None:
    span = _span()
    agent = _agent(_Extractor(SUMMARY), embedder=_Embedder(fail=True))

    summary = await agent.summarize(span)

    assert summary.embedding is None
    stored = agent.get_summary(summary.id)
    assert stored is not None and stored.embedding is None
    assert agent.search_similar_summaries([1.0, 0.0, 0.0], k=5) == []


@pytest.mark.asyncio
async def test_turn_cannot_be_folded_twice() -> None:
    span = _span()
    agent = _agent(_Extractor(SUMMARY))
    await agent.summarize(span[:2])

    with pytest.raises(StoreError):
        await agent.summarize(span[1:])

    assert agent.count_summaries() == 1
    assert [turn.id for turn in _unfolded()] == ["t2", "t3"]


def test_similar_summary_ties_go_to_newer_and_recent_is_newest_first() -> None:
    agent = _agent(_Extractor(SUMMARY))
    for i, created in enumerate(["2026-01-01T00:00:00+00:00", "2026-02-01T00:00:00+00:00"]):
        agent.save_summary(
            Summary(
                id=f"sum_{i}",
                span_start_turn_id="a",
                span_end_turn_id="b",
                text=f"Berlin chat {i}",
                embedding=[1.0, 0.0, 0.0],
                created_at=created,
            ),
            [],
        )
    agent.save_summary(
        Summary(
            id="sum_2",
            span_start_turn_id="c",
            span_end_turn_id="d",
            text="jazz chat",
            embedding=[0.0, 1.0, 0.0],
            created_at="2026-03-01T00:00:00+00:00",
        ),
        [],
    )

    hits = agent.search_similar_summaries([1.0, 0.0, 0.0], k=2, min_similarity=0.6)
    assert [summary.id for _score, summary in hits] == ["sum_1", "sum_0"]
    assert [s.id for s in agent.get_recent_summaries(2)] == ["sum_2", "sum_1"]
