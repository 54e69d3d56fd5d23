"""Record types shared by the memory tiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


class TurnRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class MemoryKind(str, Enum):
    FACT = "fact"
    PREFERENCE = "preference"
    SKILL = "skill"
    CONTEXT = "context"

    @classmethod
    def parse(cls, value: object) -> MemoryKind:
        """Lenient parse used for model output; anything unrecognised is a plain fact."""
        if isinstance(value, MemoryKind):
            return value
        text = str(value or "").strip().lower()
        for kind in cls:
            if kind.value == text:
                return kind
        return cls.FACT


def clamp_importance(value: object, default: float = 0.5) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(1.0, max(0.0, number))


@dataclass(slots=True)
class Turn:
    id: str
    role: TurnRole
    content: str
    created_at: str = field(default_factory=now_iso)
    importance: float = 0.5
    summary_id: str | None = None

    @property
    def is_folded(self) -> bool:
        return self.summary_id is not None


@dataclass(slots=True)
class Summary:
    id: str
    span_start_turn_id: str
    span_end_turn_id: str
    text: str
    key_facts: list[str] = field(default_factory=list)
    tools_mentioned: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    embedding: list[float] | None = None
    token_savings: int = 0
    created_at: str = field(default_factory=now_iso)


@dataclass(slots=True)
class MemoryEntry:
    id: str
    content: str
    embedding: list[float]
    kind: MemoryKind = MemoryKind.FACT
    importance: float = 0.5
    created_at: str = field(default_factory=now_iso)
    last_accessed: str = field(default_factory=now_iso)
    access_count: int = 0
    source_turn_id: str | None = None


@dataclass(slots=True)
class ScoredEntry:
    similarity: float
    entry: MemoryEntry


@dataclass(slots=True)
class StoreResult:
    id: str
    deduplicated: bool = False
    similarity: float | None = None


@dataclass(slots=True)
class MemoryStats:
    working_turns: int
    working_tokens: int
    working_budget: int
    working_utilization: float
    long_term_entries: int
    summaries: int
