"""Agent-facing tools for inspecting and curating long-term memory.

An agent loop gets them through ``ConversationMemory.tool_registry()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from memoria.errors import MemoriaError
from memoria.memory.long_term import LongTermMemory
from memoria.memory.types import MemoryKind, clamp_importance
from memoria.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 50
DEFAULT_ADD_IMPORTANCE = 0.7


def _int_arg(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return default


def register_memory_tools(registry: ToolRegistry, memory: LongTermMemory) -> None:
    async def tool_search_memory(args: dict[str, Any]) -> dict[str, Any]:
        query = str(args.get("query") or "").strip()
        if not query:
            return {"error": "query is required"}
        limit = min(MAX_SEARCH_LIMIT, max(1, _int_arg(args.get("limit"), DEFAULT_SEARCH_LIMIT)))
        min_importance = clamp_importance(args.get("min_importance"), default=0.0)
        try:
            results = await asyncio.to_thread(memory.search_text, query, limit)
        except MemoriaError as exc:
            return {"error": f"memory search failed: {exc}"}
        items = [
            {
                "id": item.entry.id,
                "content": item.entry.content,
                "kind": item.entry.kind.value,
                "importance": round(item.entry.importance, 2),
                "similarity": round(item.similarity, 4),
            }
            for item in results
            if item.entry.importance >= min_importance
        ]
        logger.info("Memory search returned %d results", len(items))
        return {"items": items, "count": len(items)}

    async def tool_add_memory(args: dict[str, Any]) -> dict[str, Any]:
        content = str(args.get("content") or "").strip()
        if not content:
            return {"error": "content is required"}
        kind = MemoryKind.parse(args.get("kind") or args.get("memory_type"))
        importance = clamp_importance(args.get("importance"), default=DEFAULT_ADD_IMPORTANCE)
        try:
            result = await asyncio.to_thread(memory.store, content, kind, importance)
        except MemoriaError as exc:
            return {"error": f"failed to store memory: {exc}"}
        return {
            "id": result.id,
            "deduplicated": result.deduplicated,
            "kind": kind.value,
            "importance": round(importance, 2),
        }

    async def tool_delete_memory(args: dict[str, Any]) -> dict[str, Any]:
        entry_id = str(args.get("entry_id") or "").strip()
        if not entry_id:
            return {"error": "entry_id is required"}
        try:
            deleted = await asyncio.to_thread(memory.delete, entry_id)
        except MemoriaError as exc:
            return {"error": f"failed to delete memory: {exc}"}
        if not deleted:
            return {"error": f"memory entry '{entry_id}' not found"}
        return {"deleted": entry_id}

    registry.register(
        "search_memory",
        "Search long-term memory using semantic similarity. Use it to recall facts, "
        "preferences and earlier decisions that are not in the current conversation.",
        tool_search_memory,
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to look for"},
                "limit": {
                    "type": "integer",
                    "description": f"Maximum number of results (default {DEFAULT_SEARCH_LIMIT})",
                },
                "min_importance": {
                    "type": "number",
                    "description": "Minimum importance 0.0-1.0 (default 0.0)",
                },
            },
            "required": ["query"],
        },
    )
    registry.register(
        "add_memory",
        "Store a new entry in long-term memory. Near-duplicates of existing entries "
        "are detected and not stored twice.",
        tool_add_memory,
        parameters={
            "type": "object",
            "properties": {
                "content": {
                    "type": "string",
                    "description": "The content to remember (concise, self-contained)",
                },
                "kind": {
                    "type": "string",
                    "enum": [kind.value for kind in MemoryKind],
                    "description": "Type of memory (default fact)",
                },
                "importance": {
                    "type": "number",
                    "description": f"Importance 0.0-1.0 (default {DEFAULT_ADD_IMPORTANCE})",
                },
            },
            "required": ["content"],
        },
    )
    registry.register(
        "delete_memory",
        "Delete a long-term memory entry by id. Use search_memory first to find the id "
        "of an outdated or incorrect entry.",
        tool_delete_memory,
        parameters={
            "type": "object",
            "properties": {
                "entry_id": {"type": "string", "description": "Id of the entry to delete"},
            },
            "required": ["entry_id"],
        },
    )
