"""Warm tier: condenses evicted spans of turns into persisted summaries."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Sequence

from memoria.config import get_settings
from memoria.db.connection import get_conn, transaction
from memoria.db.queries import link_turns
from memoria.errors import EmbeddingError, MemoriaError, SummarizationError
from memoria.ids import SUMMARY_PREFIX, new_id
from memoria.memory.embeddings import EmbeddingProvider
from memoria.memory.extraction import SUMMARY_PROMPT, StructuredExtractor, SummaryExtraction
from memoria.memory.long_term import LongTermMemory
from memoria.memory.tokens import estimate_tokens, estimate_turn_tokens
from memoria.memory.types import MemoryKind, Summary, Turn
from memoria.memory.vectors import cosine_similarity, from_blob, to_blob

logger = logging.getLogger(__name__)

_SUMMARY_COLUMNS = (
    "id, span_start_turn_id, span_end_turn_id, text, key_facts_json, tools_json, "
    "topics_json, decisions_json, embedding, token_savings, created_at"
)


def _load_list(raw: object) -> list[str]:
    if not isinstance(raw, str) or not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(item) for item in parsed] if isinstance(parsed, list) else []


def _row_to_summary(row: sqlite3.Row) -> Summary:
    blob = row["embedding"]
    return Summary(
        id=str(row["id"]),
        span_start_turn_id=str(row["span_start_turn_id"]),
        span_end_turn_id=str(row["span_end_turn_id"]),
        text=str(row["text"]),
        key_facts=_load_list(row["key_facts_json"]),
        tools_mentioned=_load_list(row["tools_json"]),
        topics=_load_list(row["topics_json"]),
        decisions=_load_list(row["decisions_json"]),
        embedding=from_blob(blob) if blob else None,
        token_savings=int(row["token_savings"]),
        created_at=str(row["created_at"]),
    )


def count_summaries(agent_id: str) -> int:
    with get_conn() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM summaries WHERE agent_id=?", (agent_id,)
        ).fetchone()
    return int(row["n"]) if row is not None else 0


def estimate_token_savings(span: Sequence[Turn], summary_text: str) -> int:
    original = sum(estimate_turn_tokens(turn) for turn in span)
    return max(0, original - estimate_tokens(summary_text))


class SummarizationAgent:
    """Turns a span of evicted turns into a durable Summary.

    ``summarize`` either persists the summary and links every turn of the span
    to it, or raises and leaves the store untouched. Key facts are promoted to
    long-term memory afterwards on a best-effort basis.
    """

    def __init__(
        self,
        agent_id: str,
        extractor: StructuredExtractor,
        long_term: LongTermMemory,
        *,
        embedder: EmbeddingProvider | None = None,
        max_attempts: int | None = None,
        timeout_seconds: float | None = None,
        retry_backoff_seconds: float | None = None,
        key_fact_importance: float | None = None,
    ) -> None:
        settings = get_settings()
        self.agent_id = agent_id
        self._extractor = extractor
        self._long_term = long_term
        self._embedder = embedder or long_term.embedder
        self._max_attempts = max(1, max_attempts or settings.summarization_max_attempts)
        self._timeout = timeout_seconds or settings.summarization_timeout_seconds
        self._backoff = (
            settings.summarization_retry_backoff_seconds
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )
        self._key_fact_importance = (
            settings.key_fact_importance if key_fact_importance is None else key_fact_importance
        )

    async def summarize(self, span: Sequence[Turn]) -> Summary:
        if not span:
            raise ValueError("cannot summarize an empty span")
        started = time.perf_counter()
        extraction = await self._extract_with_retry(span)
        summary = Summary(
            id=new_id(SUMMARY_PREFIX),
            span_start_turn_id=span[0].id,
            span_end_turn_id=span[-1].id,
            text=extraction.summary,
            key_facts=list(extraction.key_facts),
            tools_mentioned=list(extraction.tools_used),
            topics=list(extraction.topics),
            decisions=list(extraction.decisions),
            token_savings=estimate_token_savings(span, extraction.summary),
        )
        summary.embedding = await self._embed_summary(summary)
        await asyncio.to_thread(self.save_summary, summary, [turn.id for turn in span])
        for turn in span:
            turn.summary_id = summary.id
        await self._promote_key_facts(summary)
        logger.info(
            "Summarized %d turns into %s (saved ~%d tokens, %d ms)",
            len(span),
            summary.id,
            summary.token_savings,
            int((time.perf_counter() - started) * 1000),
        )
        return summary

    def save_summary(self, summary: Summary, turn_ids: Sequence[str]) -> None:
        """Insert the summary and fold its turns in one transaction."""
        with get_conn() as conn, transaction(conn):
            conn.execute(
                (
                    f"INSERT INTO summaries(agent_id, {_SUMMARY_COLUMNS}) "
                    "VALUES(?,?,?,?,?,?,?,?,?,?,?,?)"
                ),
                (
                    self.agent_id,
                    summary.id,
                    summary.span_start_turn_id,
                    summary.span_end_turn_id,
                    summary.text,
                    json.dumps(summary.key_facts),
                    json.dumps(summary.tools_mentioned),
                    json.dumps(summary.topics),
                    json.dumps(summary.decisions),
                    to_blob(summary.embedding) if summary.embedding else None,
                    summary.token_savings,
                    summary.created_at,
                ),
            )
            link_turns(conn, self.agent_id, list(turn_ids), summary.id)

    def search_similar_summaries(
        self,
        query_embedding: list[float],
        k: int = 1,
        min_similarity: float | None = None,
    ) -> list[tuple[float, Summary]]:
        """Most similar summaries first; equal scores go to the newer summary.

        Summaries stored without an embedding never match.
        """
        if k <= 0:
            return []
        with get_conn() as conn:
            rows = conn.execute(
                (
                    f"SELECT {_SUMMARY_COLUMNS} FROM summaries "
                    "WHERE agent_id=? AND embedding IS NOT NULL"
                ),
                (self.agent_id,),
            ).fetchall()
        scored: list[tuple[float, Summary]] = []
        for row in rows:
            summary = _row_to_summary(row)
            similarity = cosine_similarity(query_embedding, summary.embedding or [])
            if min_similarity is not None and similarity < min_similarity:
                continue
            scored.append((similarity, summary))
        scored.sort(key=lambda item: item[1].id)
        scored.sort(key=lambda item: item[1].created_at, reverse=True)
        scored.sort(key=lambda item: item[0], reverse=True)
        return scored[:k]

    def get_recent_summaries(self, limit: int = 3) -> list[Summary]:
        if limit <= 0:
            return []
        with get_conn() as conn:
            rows = conn.execute(
                (
                    f"SELECT {_SUMMARY_COLUMNS} FROM summaries WHERE agent_id=? "
                    "ORDER BY created_at DESC, id DESC LIMIT ?"
                ),
                (self.agent_id, int(limit)),
            ).fetchall()
        return [_row_to_summary(row) for row in rows]

    def get_summary(self, summary_id: str) -> Summary | None:
        with get_conn() as conn:
            row = conn.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM summaries WHERE agent_id=? AND id=?",
                (self.agent_id, summary_id),
            ).fetchone()
        return _row_to_summary(row) if row is not None else None

    def count_summaries(self) -> int:
        return count_summaries(self.agent_id)

    async def _extract_with_retry(self, span: Sequence[Turn]) -> SummaryExtraction:
        last_error: BaseException | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._extractor.extract(SUMMARY_PROMPT, span),
                    timeout=self._timeout,
                )
            except TimeoutError as exc:
                last_error = exc
                logger.warning(
                    "Summarization attempt %d/%d timed out after %.1fs",
                    attempt,
                    self._max_attempts,
                    self._timeout,
                )
            except MemoriaError as exc:
                last_error = exc
                logger.warning(
                    "Summarization attempt %d/%d failed: %s", attempt, self._max_attempts, exc
                )
                if not exc.retryable:
                    break
            if attempt < self._max_attempts and self._backoff > 0:
                await asyncio.sleep(self._backoff)
        raise SummarizationError(
            f"summarization failed for span {span[0].id}..{span[-1].id}: {last_error}"
        ) from last_error

    async def _embed_summary(self, summary: Summary) -> list[float] | None:
        try:
            return await asyncio.to_thread(self._embedder.embed, summary.text)
        except EmbeddingError as exc:
            logger.warning("Storing summary %s without embedding: %s", summary.id, exc)
            return None

    async def _promote_key_facts(self, summary: Summary) -> None:
        for fact in summary.key_facts:
            try:
                await asyncio.to_thread(
                    self._long_term.store,
                    fact,
                    MemoryKind.FACT,
                    self._key_fact_importance,
                )
            except (MemoriaError, ValueError) as exc:
                logger.warning("Could not promote key fact from %s: %s", summary.id, exc)
