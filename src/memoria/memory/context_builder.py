"""Assembles the memory portion of the prompt from the warm and cold tiers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from memoria.config import get_settings
from memoria.memory.long_term import LongTermMemory
from memoria.memory.summarization import SummarizationAgent
from memoria.memory.tokens import estimate_tokens
from memoria.memory.types import ScoredEntry, Summary
from memoria.memory.working import WorkingMemory

logger = logging.getLogger(__name__)

FACTS_HEADER = "## Relevant Context:"
RECENT_HEADER = "## Recent Session Summaries:"
EARLIER_HEADER = "## Relevant Earlier Conversation:"

# Resident turns shorter than this only match as whole words ("ok" must not hit "book").
MIN_OVERLAP_CHARS = 16


@dataclass(slots=True)
class ContextSection:
    name: str
    header: str
    items: list[str] = field(default_factory=list)

    def render(self) -> str:
        return "\n".join([self.header, *self.items]) + "\n"


def _format_fact(scored: ScoredEntry) -> str:
    entry = scored.entry
    kind = entry.kind.value.capitalize()
    return f"- {entry.content} (Type: {kind}, Importance: {entry.importance:.2f})"


def _format_summary(summary: Summary, relevance: float | None = None) -> str:
    line = f"- [{summary.created_at[:10]}] {summary.text}"
    if relevance is not None:
        line += f" (relevance: {relevance * 100:.0f}%)"
    if summary.key_facts:
        line += "\n  Facts: " + ", ".join(summary.key_facts)
    return line


def _repeats_resident(item: str, resident: list[str]) -> bool:
    for content in resident:
        text = content.strip()
        if not text:
            continue
        if len(text) >= MIN_OVERLAP_CHARS:
            if text in item:
                return True
        elif re.search(rf"(?<!\w){re.escape(text)}(?!\w)", item):
            return True
    return False


class ContextBuilder:
    """Builds one bounded context string for the current user query.

    Sections come out in a fixed order (long-term facts, recent summaries,
    one relevant older summary). When the budget is tight whole sections are
    dropped from the end, so nothing is ever cut mid-sentence. Turns still in
    working memory are sent as raw history by the caller and never repeated
    here. For the same stored state and query the output is byte-identical.
    """

    def __init__(
        self,
        working_memory: WorkingMemory,
        long_term: LongTermMemory,
        summarizer: SummarizationAgent,
        *,
        window_tokens: int | None = None,
        memory_top_k: int | None = None,
        memory_min_similarity: float | None = None,
        recent_summaries: int | None = None,
        relevance_threshold: float | None = None,
    ) -> None:
        settings = get_settings()
        self._working = working_memory
        self._long_term = long_term
        self._summarizer = summarizer
        self._window = window_tokens or settings.context_window_tokens
        self._top_k = memory_top_k or settings.context_memory_top_k
        self._min_similarity = (
            settings.context_memory_min_similarity
            if memory_min_similarity is None
            else memory_min_similarity
        )
        self._recent_count = (
            settings.summary_recent_count if recent_summaries is None else recent_summaries
        )
        self._relevance = (
            settings.summary_relevance_threshold
            if relevance_threshold is None
            else relevance_threshold
        )

    def build(self, current_query: str, reserved_tokens: int = 0) -> str:
        sections = self.collect_sections(current_query)
        budget = self._window - max(0, reserved_tokens) - self._working.current_tokens
        while sections and estimate_tokens(self._render(sections)) > budget:
            dropped = sections.pop()
            logger.debug("Dropped context section %s to fit %d tokens", dropped.name, budget)
        return self._render(sections)

    def collect_sections(self, current_query: str) -> list[ContextSection]:
        """Non-empty sections in output order, before any budget trimming."""
        resident = [turn.content for turn in self._working.snapshot()]

        def fresh(items: list[str]) -> list[str]:
            return [item for item in items if not _repeats_resident(item, resident)]

        query_embedding = (
            self._long_term.embedder.embed(current_query) if current_query.strip() else None
        )

        facts: list[ScoredEntry] = []
        if query_embedding is not None:
            facts = self._long_term.search(
                query_embedding, k=self._top_k, min_similarity=self._min_similarity
            )

        recent = self._summarizer.get_recent_summaries(self._recent_count)
        recent_ids = {summary.id for summary in recent}

        earlier: list[str] = []
        if query_embedding is not None:
            hits = self._summarizer.search_similar_summaries(
                query_embedding, k=1, min_similarity=self._relevance
            )
            for similarity, summary in hits:
                if summary.id not in recent_ids:
                    earlier.append(_format_summary(summary, relevance=similarity))

        sections = [
            ContextSection("facts", FACTS_HEADER, fresh([_format_fact(item) for item in facts])),
            ContextSection("recent", RECENT_HEADER, fresh([_format_summary(s) for s in recent])),
            ContextSection("earlier", EARLIER_HEADER, fresh(earlier)),
        ]
        return [section for section in sections if section.items]

    @staticmethod
    def _render(sections: list[ContextSection]) -> str:
        return "\n".join(section.render() for section in sections)
