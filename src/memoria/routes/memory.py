"""Long-term memory management API routes."""

import asyncio

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from memoria.config import get_settings
from memoria.db.connection import get_conn
from memoria.db.queries import get_unfolded_turns
from memoria.memory.factory import long_term_memory_for
from memoria.memory.summarization import count_summaries
from memoria.memory.tokens import estimate_turn_tokens
from memoria.memory.types import MemoryEntry, MemoryKind

router = APIRouter(prefix="/agents/{agent_id}/memory", tags=["memory"])


class MemoryAddInput(BaseModel):
    content: str = Field(min_length=1)
    kind: MemoryKind = MemoryKind.FACT
    importance: float = Field(default=0.7, ge=0.0, le=1.0)


def _entry_payload(entry: MemoryEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "content": entry.content,
        "kind": entry.kind.value,
        "importance": entry.importance,
        "created_at": entry.created_at,
        "last_accessed": entry.last_accessed,
        "access_count": entry.access_count,
        "source_turn_id": entry.source_turn_id,
    }


@router.get("")
async def search_memory(
    agent_id: str,
    q: str = "",
    limit: int = Query(default=10, ge=1, le=100),
    min_similarity: float | None = Query(default=None, ge=-1.0, le=1.0),
) -> dict[str, object]:
    if not q.strip():
        return {"items": []}
    memory = long_term_memory_for(agent_id)
    results = await asyncio.to_thread(memory.search_text, q, limit, min_similarity)
    return {
        "items": [
            {**_entry_payload(item.entry), "similarity": round(item.similarity, 4)}
            for item in results
        ]
    }


@router.post("", status_code=201)
async def add_memory(agent_id: str, body: MemoryAddInput) -> dict[str, object]:
    content = body.content.strip()
    if not content:
        raise HTTPException(status_code=422, detail="content must not be blank")
    memory = long_term_memory_for(agent_id)
    result = await asyncio.to_thread(memory.store, content, body.kind, body.importance)
    return {"id": result.id, "deduplicated": result.deduplicated, "similarity": result.similarity}


@router.get("/kind/{kind}")
def list_by_kind(
    agent_id: str,
    kind: MemoryKind,
    limit: int = Query(default=20, ge=1, le=200),
) -> dict[str, object]:
    entries = long_term_memory_for(agent_id).search_by_type(kind, limit=limit)
    return {"items": [_entry_payload(entry) for entry in entries]}


@router.get("/stats")
def memory_stats(agent_id: str) -> dict[str, object]:
    settings = get_settings()
    with get_conn() as conn:
        resident = get_unfolded_turns(conn, agent_id)
    memory = long_term_memory_for(agent_id)
    summaries = count_summaries(agent_id)
    return {
        "agent_id": agent_id,
        "unsummarized_turns": len(resident),
        "unsummarized_tokens": sum(estimate_turn_tokens(turn) for turn in resident),
        "token_budget": settings.memory_token_budget,
        "long_term_entries": memory.count(),
        "summaries": summaries,
    }


@router.get("/{entry_id}")
def get_memory(agent_id: str, entry_id: str) -> dict[str, object]:
    entry = long_term_memory_for(agent_id).get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="memory entry not found")
    return _entry_payload(entry)


@router.delete("/{entry_id}")
def delete_memory(agent_id: str, entry_id: str) -> dict[str, object]:
    if not long_term_memory_for(agent_id).delete(entry_id):
        raise HTTPException(status_code=404, detail="memory entry not found")
    return {"deleted": entry_id}
