"""Per-agent conversation memory: wires the three tiers into the turn loop."""

from __future__ import annotations

import asyncio
import logging

from memoria.db.connection import get_conn
from memoria.db.queries import get_unfolded_turns, insert_turn
from memoria.errors import MemoriaError, StoreError, SummarizationError
from memoria.ids import TURN_PREFIX, new_id
from memoria.logging import agent_log_context
from memoria.memory.context_builder import ContextBuilder
from memoria.memory.embeddings import EmbeddingProvider
from memoria.memory.extraction import StructuredExtractor
from memoria.memory.facts import FactExtractor
from memoria.memory.factory import default_extractor, long_term_memory_for
from memoria.memory.long_term import LongTermMemory
from memoria.memory.summarization import SummarizationAgent
from memoria.memory.types import MemoryStats, Summary, Turn, TurnRole, clamp_importance
from memoria.memory.working import WorkingMemory
from memoria.tasks.runner import BackgroundRunner
from memoria.tools.memory import register_memory_tools
from memoria.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ConversationMemory:
    """Memory for one agent.

    Every turn is persisted before it enters working memory. When working
    memory fills up the oldest span is summarized first and evicted only after
    the summary is durable; if summarization fails the span stays resident and
    eviction is retried on the next turn.
    """

    def __init__(
        self,
        agent_id: str,
        *,
        long_term: LongTermMemory,
        summarizer: SummarizationAgent,
        fact_extractor: FactExtractor,
        working: WorkingMemory | None = None,
        context_builder: ContextBuilder | None = None,
    ) -> None:
        self.agent_id = agent_id
        self.long_term = long_term
        self.summarizer = summarizer
        self.fact_extractor = fact_extractor
        self.working = working or WorkingMemory()
        self.context_builder = context_builder or ContextBuilder(
            self.working, long_term, summarizer
        )
        self._evict_lock = asyncio.Lock()

    @classmethod
    def create(
        cls,
        agent_id: str,
        *,
        extractor: StructuredExtractor | None = None,
        embedder: EmbeddingProvider | None = None,
        runner: BackgroundRunner | None = None,
        working: WorkingMemory | None = None,
    ) -> ConversationMemory:
        resolved_extractor = extractor or default_extractor()
        long_term = long_term_memory_for(agent_id, embedder)
        return cls(
            agent_id,
            long_term=long_term,
            summarizer=SummarizationAgent(agent_id, resolved_extractor, long_term),
            fact_extractor=FactExtractor(long_term, resolved_extractor, runner=runner),
            working=working,
        )

    def restore(self) -> int:
        """Reload unfolded turns from the store; returns how many became resident."""
        with get_conn() as conn:
            turns = get_unfolded_turns(conn, self.agent_id)
        self.working.load_from(turns)
        return len(self.working)

    async def record_turn(
        self, role: TurnRole | str, content: str, importance: float = 0.5
    ) -> Turn:
        turn = Turn(
            id=new_id(TURN_PREFIX),
            role=TurnRole(role),
            content=content,
            importance=clamp_importance(importance),
        )
        await asyncio.to_thread(self._persist_turn, turn)
        self.working.append(turn)
        await self.maybe_evict()
        return turn

    async def maybe_evict(self) -> Summary | None:
        async with self._evict_lock:
            if not self.working.should_evict():
                return None
            span = self.working.oldest_span()
            if not span:
                return None
            with agent_log_context(self.agent_id):
                try:
                    summary = await self.summarizer.summarize(span)
                except (SummarizationError, StoreError) as exc:
                    logger.warning(
                        "Keeping %d turns resident; summarization failed: %s", len(span), exc
                    )
                    return None
            resident = self.working.snapshot()[: len(span)]
            if [turn.id for turn in resident] != [turn.id for turn in span]:
                raise RuntimeError("working memory changed under a pending eviction")
            self.working.evict_oldest(len(span))
            return summary

    def complete_exchange(self, user_turn: Turn, agent_turn: Turn) -> bool:
        return self.fact_extractor.spawn_extraction(user_turn, agent_turn)

    def assemble_context(self, query: str, reserved_tokens: int = 0) -> str:
        """Memory context for ``query``, or an empty string if a tier is unavailable."""
        try:
            return self.context_builder.build(query, reserved_tokens=reserved_tokens)
        except MemoriaError as exc:
            logger.warning("Falling back to working-memory-only context: %s", exc)
            return ""

    def history(self) -> list[Turn]:
        return self.working.snapshot()

    def stats(self) -> MemoryStats:
        return MemoryStats(
            working_turns=len(self.working),
            working_tokens=self.working.current_tokens,
            working_budget=self.working.token_budget,
            working_utilization=round(self.working.utilization, 2),
            long_term_entries=self.long_term.count(),
            summaries=self.summarizer.count_summaries(),
        )

    def tool_registry(self) -> ToolRegistry:
        """Registry with the long-term memory tools for this agent's tool loop."""
        registry = ToolRegistry()
        register_memory_tools(registry, self.long_term)
        return registry

    async def shutdown(self) -> None:
        """Abandon this agent's in-flight extractions; a shared runner stays open."""
        cancelled = self.fact_extractor.close()
        if cancelled:
            logger.info("Abandoned %d fact extractions for %s", cancelled, self.agent_id)

    def _persist_turn(self, turn: Turn) -> None:
        with get_conn() as conn:
            insert_turn(conn, self.agent_id, turn)
