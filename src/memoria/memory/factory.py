"""Shared per-agent memory instances."""

from __future__ import annotations

import logging
import threading

from memoria.memory.embeddings import EmbeddingProvider, build_embedder
from memoria.memory.extraction import LLMStructuredExtractor, StructuredExtractor
from memoria.memory.long_term import LongTermMemory
from memoria.providers.openai_compat import OpenAICompatProvider

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_long_term: dict[str, LongTermMemory] = {}
_embedder: EmbeddingProvider | None = None


def default_embedder() -> EmbeddingProvider:
    global _embedder
    with _lock:
        if _embedder is None:
            _embedder = build_embedder()
        return _embedder


def default_extractor() -> StructuredExtractor:
    return LLMStructuredExtractor(OpenAICompatProvider())


def long_term_memory_for(
    agent_id: str, embedder: EmbeddingProvider | None = None
) -> LongTermMemory:
    """One LongTermMemory per agent so every writer shares the same dedup lock."""
    with _lock:
        memory = _long_term.get(agent_id)
    if memory is not None:
        if embedder is not None and embedder is not memory.embedder:
            logger.warning(
                "Long-term memory for %s already uses %s; ignoring %s",
                agent_id,
                type(memory.embedder).__name__,
                type(embedder).__name__,
            )
        return memory
    resolved = embedder or default_embedder()
    with _lock:
        return _long_term.setdefault(agent_id, LongTermMemory(agent_id, resolved))


def reset_memory_cache() -> None:
    global _embedder
    with _lock:
        _long_term.clear()
        _embedder = None
