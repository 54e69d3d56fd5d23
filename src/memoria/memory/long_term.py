"""Cold tier: embedded long-term memory entries with similarity dedup."""

from __future__ import annotations

import logging
import sqlite3
import threading

from memoria.config import get_settings
from memoria.db.connection import get_conn, transaction
from memoria.ids import MEMORY_PREFIX, new_id
from memoria.memory.embeddings import EmbeddingProvider
from memoria.memory.types import (
    MemoryEntry,
    MemoryKind,
    ScoredEntry,
    StoreResult,
    clamp_importance,
    now_iso,
)
from memoria.memory.vectors import cosine_similarity, from_blob, to_blob

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = (
    "id, content, embedding, kind, importance, created_at, last_accessed, "
    "access_count, source_turn_id"
)


def _row_to_entry(row: sqlite3.Row) -> MemoryEntry:
    return MemoryEntry(
        id=str(row["id"]),
        content=str(row["content"]),
        embedding=from_blob(row["embedding"]),
        kind=MemoryKind.parse(row["kind"]),
        importance=float(row["importance"]),
        created_at=str(row["created_at"]),
        last_accessed=str(row["last_accessed"]),
        access_count=int(row["access_count"]),
        source_turn_id=row["source_turn_id"],
    )


class LongTermMemory:
    """Per-agent store of durable facts, preferences, skills and context.

    Writes are serialized by a process-level lock plus a ``BEGIN IMMEDIATE``
    transaction, so the find-similar check and the insert behave as one step
    and two near-identical facts stored concurrently collapse into one entry.
    """

    def __init__(
        self,
        agent_id: str,
        embedder: EmbeddingProvider,
        *,
        dedup_threshold: float | None = None,
    ) -> None:
        settings = get_settings()
        self.agent_id = agent_id
        self.embedder = embedder
        self.dedup_threshold = (
            settings.memory_dedup_threshold if dedup_threshold is None else dedup_threshold
        )
        self._lock = threading.Lock()

    def store(
        self,
        content: str,
        kind: MemoryKind | str = MemoryKind.FACT,
        importance: float = 0.5,
        source_turn_id: str | None = None,
    ) -> StoreResult:
        text = content.strip()
        if not text:
            raise ValueError("memory content must not be empty")
        resolved_kind = MemoryKind.parse(kind)
        # Embed outside the critical section.
        embedding = self.embedder.embed(text)

        with self._lock, get_conn() as conn, transaction(conn):
            match_id, similarity = self._best_match(conn, embedding)
            if match_id is not None and similarity >= self.dedup_threshold:
                logger.debug(
                    "Skipped duplicate memory (similarity %.3f with %s)", similarity, match_id
                )
                return StoreResult(id=match_id, deduplicated=True, similarity=similarity)

            entry_id = new_id(MEMORY_PREFIX)
            now = now_iso()
            conn.execute(
                (
                    "INSERT INTO memory_entries("
                    "id, agent_id, content, embedding, kind, importance, "
                    "created_at, last_accessed, access_count, source_turn_id"
                    ") VALUES(?,?,?,?,?,?,?,?,0,?)"
                ),
                (
                    entry_id,
                    self.agent_id,
                    text,
                    to_blob(embedding),
                    resolved_kind.value,
                    clamp_importance(importance),
                    now,
                    now,
                    source_turn_id,
                ),
            )
        logger.info("Stored %s memory %s", resolved_kind.value, entry_id)
        return StoreResult(id=entry_id)

    def find_similar(self, embedding: list[float], threshold: float | None = None) -> str | None:
        """Id of the most similar entry at or above ``threshold``, if any."""
        limit = self.dedup_threshold if threshold is None else threshold
        with self._lock, get_conn() as conn:
            match_id, similarity = self._best_match(conn, embedding)
        if match_id is not None and similarity >= limit:
            return match_id
        return None

    def search(
        self,
        query_embedding: list[float],
        k: int = 5,
        min_similarity: float | None = None,
    ) -> list[ScoredEntry]:
        """Top-k entries by cosine similarity, most similar first.

        Ties go to the newer entry, then to the lower id. Returned entries get
        their access bookkeeping updated.
        """
        if k <= 0:
            return []
        with self._lock, get_conn() as conn:
            rows = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM memory_entries WHERE agent_id=?",
                (self.agent_id,),
            ).fetchall()
            scored: list[ScoredEntry] = []
            for row in rows:
                entry = _row_to_entry(row)
                similarity = cosine_similarity(query_embedding, entry.embedding)
                if min_similarity is not None and similarity < min_similarity:
                    continue
                scored.append(ScoredEntry(similarity=similarity, entry=entry))
            scored.sort(key=lambda item: item.entry.id)
            scored.sort(key=lambda item: item.entry.created_at, reverse=True)
            scored.sort(key=lambda item: item.similarity, reverse=True)
            top = scored[:k]
            if top:
                self._touch(conn, [item.entry for item in top])
        return top

    def search_text(
        self, query: str, k: int = 5, min_similarity: float | None = None
    ) -> list[ScoredEntry]:
        if not query.strip():
            return []
        return self.search(self.embedder.embed(query), k=k, min_similarity=min_similarity)

    def search_by_type(self, kind: MemoryKind | str, limit: int = 20) -> list[MemoryEntry]:
        resolved = MemoryKind.parse(kind)
        with get_conn() as conn:
            rows = conn.execute(
                (
                    f"SELECT {_ENTRY_COLUMNS} FROM memory_entries "
                    "WHERE agent_id=? AND kind=? "
                    "ORDER BY importance DESC, created_at DESC, id ASC LIMIT ?"
                ),
                (self.agent_id, resolved.value, max(1, int(limit))),
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def get(self, entry_id: str) -> MemoryEntry | None:
        with get_conn() as conn:
            row = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM memory_entries WHERE id=? AND agent_id=?",
                (entry_id, self.agent_id),
            ).fetchone()
        return _row_to_entry(row) if row is not None else None

    def delete(self, entry_id: str) -> bool:
        with self._lock, get_conn() as conn, transaction(conn):
            cursor = conn.execute(
                "DELETE FROM memory_entries WHERE id=? AND agent_id=?",
                (entry_id, self.agent_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted memory %s", entry_id)
        return deleted

    def count(self) -> int:
        with get_conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM memory_entries WHERE agent_id=?",
                (self.agent_id,),
            ).fetchone()
        return int(row["n"]) if row is not None else 0

    def _best_match(
        self, conn: sqlite3.Connection, embedding: list[float]
    ) -> tuple[str | None, float]:
        best_id: str | None = None
        best = -1.0
        rows = conn.execute(
            "SELECT id, embedding FROM memory_entries WHERE agent_id=? ORDER BY id",
            (self.agent_id,),
        ).fetchall()
        for row in rows:
            similarity = cosine_similarity(embedding, from_blob(row["embedding"]))
            if similarity > best:
                best = similarity
                best_id = str(row["id"])
        return best_id, best

    def _touch(self, conn: sqlite3.Connection, entries: list[MemoryEntry]) -> None:
        now = now_iso()
        placeholders = ",".join("?" for _ in entries)
        with transaction(conn):
            conn.execute(
                (
                    "UPDATE memory_entries SET access_count=access_count+1, last_accessed=? "
                    f"WHERE id IN ({placeholders})"
                ),
                (now, *[entry.id for entry in entries]),
            )
        for entry in entries:
            entry.access_count += 1
            entry.last_accessed = now
