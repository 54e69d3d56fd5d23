"""Background mining of completed exchanges into long-term memory."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from memoria.config import get_settings
from memoria.errors import MemoriaError
from memoria.ids import new_id
from memoria.memory.extraction import FACT_PROMPT, StructuredExtractor
from memoria.memory.long_term import LongTermMemory
from memoria.memory.types import Turn
from memoria.tasks import get_background_runner
from memoria.tasks.runner import BackgroundRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExtractionReport:
    candidates: int = 0
    stored: int = 0
    deduplicated: int = 0
    failed: int = 0
    duration_ms: int = 0


class FactExtractor:
    """Mines finished exchanges for long-term facts off the caller's path.

    Jobs are named under a per-instance prefix so ``close`` cancels only this
    extractor's work, even when the runner is shared across agents.
    """

    def __init__(
        self,
        long_term: LongTermMemory,
        extractor: StructuredExtractor,
        *,
        runner: BackgroundRunner | None = None,
        timeout_seconds: float | None = None,
        enabled: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._long_term = long_term
        self._extractor = extractor
        self._runner = runner
        self._shared_runner = runner is None
        self._closed = False
        self._job_prefix = f"memoria.facts.{long_term.agent_id}.{new_id('fxt')}:"
        self._timeout = timeout_seconds or settings.fact_extraction_timeout_seconds
        self._enabled = (
            int(settings.fact_extraction_enabled) == 1 if enabled is None else enabled
        )

    @property
    def runner(self) -> BackgroundRunner:
        if self._runner is None or (self._shared_runner and self._runner.closed):
            self._runner = get_background_runner()
        return self._runner

    def spawn_extraction(self, user_turn: Turn, agent_turn: Turn) -> bool:
        """Queue extraction for one exchange and return without waiting on it."""
        if not self._enabled or self._closed:
            return False
        return self.runner.submit(
            f"{self._job_prefix}{user_turn.id}",
            self._run,
            user_turn=user_turn,
            agent_turn=agent_turn,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> int:
        """Stop spawning and cancel this extractor's in-flight jobs; returns how many."""
        self._closed = True
        if self._runner is None:
            return 0
        return self._runner.cancel(self._job_prefix)

    async def extract_and_store(self, user_turn: Turn, agent_turn: Turn) -> ExtractionReport:
        """Extract candidate facts and store each one; raises only if extraction fails."""
        started = time.perf_counter()
        extraction = await asyncio.wait_for(
            self._extractor.extract(FACT_PROMPT, [user_turn, agent_turn]),
            timeout=self._timeout,
        )
        report = ExtractionReport(candidates=len(extraction.facts))
        for fact in extraction.facts:
            try:
                result = await asyncio.to_thread(
                    self._long_term.store,
                    fact.content,
                    fact.kind,
                    fact.importance,
                    user_turn.id,
                )
            except (MemoriaError, ValueError) as exc:
                report.failed += 1
                logger.warning("Dropped extracted fact from %s: %s", user_turn.id, exc)
                continue
            if result.deduplicated:
                report.deduplicated += 1
            else:
                report.stored += 1
        report.duration_ms = int((time.perf_counter() - started) * 1000)
        return report

    async def _run(self, user_turn: Turn, agent_turn: Turn) -> None:
        try:
            report = await self.extract_and_store(user_turn, agent_turn)
        except TimeoutError:
            logger.warning(
                "Fact extraction for %s timed out after %.1fs", user_turn.id, self._timeout
            )
            return
        except MemoriaError as exc:
            logger.warning("Fact extraction for %s failed: %s", user_turn.id, exc)
            return
        logger.info(
            "Fact extraction for %s: %d candidates, %d stored, %d duplicates, %d failed (%d ms)",
            user_turn.id,
            report.candidates,
            report.stored,
            report.deduplicated,
            report.failed,
            report.duration_ms,
        )
