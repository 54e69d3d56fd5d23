from __future__ import annotations

import pytest

from memoria.memory.tokens import estimate_turn_tokens
from memoria.memory.types import Turn, TurnRole
from memoria.memory.working import WorkingMemory


def _turn(i: int, content: str | None = None) -> Turn:
    role = TurnRole.USER if i % 2 == 0 else TurnRole.AGENT
    return Turn(id=f"t{i}", role=role, content=content or f"message {i}")


def _memory(budget: int = 100, cost: int = 10, min_retained: int = 2) -> WorkingMemory:
    return WorkingMemory(
        budget,
        fill_ratio=0.7,
        eviction_batch_ratio=0.3,
        min_retained_turns=min_retained,
        estimator=lambda _turn: cost,
    )


def test_default_estimator_counts_content_role_and_overhead() -> None:
    turn = Turn(id="t1", role=TurnRole.USER, content="a" * 40)
    assert estimate_turn_tokens(turn) == 10 + 1 + 5


def test_default_estimator_is_monotonic_in_content_length() -> None:
    short = Turn(id="a", role=TurnRole.AGENT, content="x" * 10)
    long = Turn(id="b", role=TurnRole.AGENT, content="x" * 400)
    assert estimate_turn_tokens(long) > estimate_turn_tokens(short)


def test_should_evict_only_above_fill_threshold() -> None:
    memory = _memory()
    for i in range(7):
        memory.append(_turn(i))
    assert memory.current_tokens == 70
    assert memory.should_evict() is False
    memory.append(_turn(7))
    assert memory.should_evict() is True
    assert memory.utilization == pytest.approx(80.0)


def test_evict_oldest_removes_batch_and_returns_below_threshold() -> None:
    memory = _memory()
    for i in range(8):
        memory.append(_turn(i))

    evicted = memory.evict_oldest()

    assert [turn.id for turn in evicted] == ["t0", "t1", "t2"]
    assert memory.current_tokens == 50
    assert memory.should_evict() is False
    assert [turn.id for turn in memory.snapshot()] == [f"t{i}" for i in range(3, 8)]


def test_evict_oldest_continues_until_under_fill_threshold() -> None:
    memory = WorkingMemory(
        100,
        fill_ratio=0.7,
        eviction_batch_ratio=0.1,
        min_retained_turns=2,
        estimator=lambda _turn: 10,
    )
    for i in range(10):
        memory.append(_turn(i))

    evicted = memory.evict_oldest()

    assert len(evicted) == 3
    assert memory.current_tokens == 70
    assert memory.should_evict() is False


def test_eviction_keeps_minimum_retained_turns() -> None:
    memory = _memory(cost=60, min_retained=2)
    memory.append(_turn(0))
    memory.append(_turn(1))
    assert memory.should_evict() is True
    assert memory.oldest_span() == []
    assert memory.evict_oldest() == []
    assert len(memory) == 2

    relaxed = _memory(cost=60, min_retained=1)
    relaxed.append(_turn(0))
    relaxed.append(_turn(1))
    assert [turn.id for turn in relaxed.evict_oldest()] == ["t0"]
    assert relaxed.current_tokens == 60


def test_oldest_span_does_not_mutate() -> None:
    memory = _memory()
    for i in range(8):
        memory.append(_turn(i))

    span = memory.oldest_span()

    assert len(memory) == 8
    assert memory.current_tokens == 80
    assert [turn.id for turn in memory.evict_oldest()] == [turn.id for turn in span]


def test_evict_explicit_count_ignores_later_appends() -> None:
    memory = _memory()
    for i in range(8):
        memory.append(_turn(i))
    span = memory.oldest_span()
    memory.append(_turn(8))
    memory.append(_turn(9))

    evicted = memory.evict_oldest(len(span))

    assert [turn.id for turn in evicted] == ["t0", "t1", "t2"]
    assert memory.snapshot()[0].id == "t3"


def test_evict_explicit_count_larger_than_buffer_raises() -> None:
    memory = _memory()
    memory.append(_turn(0))
    with pytest.raises(ValueError):
        memory.evict_oldest(2)


def test_load_from_keeps_most_recent_turns_within_budget() -> None:
    memory = _memory(cost=30)
    turns = [_turn(i) for i in range(5)]

    memory.load_from(turns)

    assert [turn.id for turn in memory.snapshot()] == ["t2", "t3", "t4"]
    assert memory.current_tokens == 90


def test_load_from_is_idempotent_and_never_evicts() -> None:
    memory = _memory(cost=30)
    memory.append(_turn(99))
    turns = [_turn(i) for i in range(5)]

    memory.load_from(turns)
    first = [turn.id for turn in memory.snapshot()]
    memory.load_from(turns)

    assert [turn.id for turn in memory.snapshot()] == first
    assert "t99" not in first
    assert memory.should_evict() is True
    assert len(memory) == 3


def test_snapshot_is_a_copy() -> None:
    memory = _memory()
    memory.append(_turn(0))
    snapshot = memory.snapshot()
    snapshot.clear()
    assert len(memory) == 1


def test_clear_resets_tokens() -> None:
    memory = _memory()
    memory.append(_turn(0))
    memory.clear()
    assert len(memory) == 0
    assert memory.current_tokens == 0
