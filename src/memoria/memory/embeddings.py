"""Embedding providers: text to fixed-length float vectors."""

from __future__ import annotations

import logging
import threading
from hashlib import sha256
from random import Random
from typing import Any, Protocol

import httpx

from memoria.config import Settings, get_settings
from memoria.errors import ConfigError, EmbeddingError
from memoria.memory.vectors import fit_dims

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    @property
    def dims(self) -> int: ...

    def embed(self, text: str) -> list[float]: ...


class OllamaEmbedder:
    """Ollama ``/api/embeddings`` client."""

    def __init__(
        self,
        base_url: str,
        model: str,
        dims: int,
        *,
        timeout_seconds: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._dims = dims
        self._timeout = timeout_seconds
        self._transport = transport

    @property
    def dims(self) -> int:
        return self._dims

    def embed(self, text: str) -> list[float]:
        payload = {"model": self._model, "prompt": text}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(f"{self._base_url}/api/embeddings", json=payload)
                response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingError(f"ollama embedding request failed: {exc}") from exc
        embedding = body.get("embedding") if isinstance(body, dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingError("ollama response missing embedding")
        parsed = [float(item) for item in embedding if isinstance(item, int | float)]
        if len(parsed) != len(embedding):
            raise EmbeddingError("ollama embedding contains non-numeric values")
        return fit_dims(parsed, self._dims)


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: str, dims: int) -> None:
        self._model_name = model_name
        self._dims = dims
        self._model: Any = None
        self._lock = threading.Lock()

    @property
    def dims(self) -> int:
        return self._dims

    def _load(self) -> Any:
        with self._lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer
                except ImportError as exc:
                    raise EmbeddingError(
                        "sentence-transformers is not installed; install memoria[local]",
                        retryable=False,
                    ) from exc
                self._model = SentenceTransformer(self._model_name)
            return self._model

    def embed(self, text: str) -> list[float]:
        model = self._load()
        try:
            output = model.encode([text], normalize_embeddings=False)
        except Exception as exc:
            raise EmbeddingError(f"sentence-transformers encode failed: {exc}") from exc
        if len(output) == 0:
            raise EmbeddingError("sentence-transformers returned no vectors")
        first = output[0]
        values = first.tolist() if hasattr(first, "tolist") else list(first)
        return fit_dims([float(item) for item in values], self._dims)


class HashEmbedder:
    """Deterministic pseudo-embedding seeded from the text hash.

    Identical texts map to identical vectors and anything else is close to
    orthogonal, which is enough for local development and tests.
    """

    def __init__(self, dims: int) -> None:
        self._dims = dims

    @property
    def dims(self) -> int:
        return self._dims

    def embed(self, text: str) -> list[float]:
        if self._dims <= 0:
            return []
        seed = int.from_bytes(sha256(text.strip().encode("utf-8")).digest()[:8], "big")
        rng = Random(seed)
        return [rng.uniform(-1.0, 1.0) for _ in range(self._dims)]


def build_embedder(settings: Settings | None = None) -> EmbeddingProvider:
    settings = settings or get_settings()
    backend = settings.embedding_backend.strip().lower()
    if backend == "ollama":
        return OllamaEmbedder(
            settings.ollama_base_url,
            settings.ollama_embed_model,
            settings.embedding_dims,
            timeout_seconds=settings.ollama_timeout_seconds,
        )
    if backend == "sentence_transformers":
        return SentenceTransformerEmbedder(
            settings.sentence_transformer_model, settings.embedding_dims
        )
    if backend == "hash":
        logger.warning("Using hash embeddings; similarity search is exact-match only")
        return HashEmbedder(settings.embedding_dims)
    raise ConfigError(f"unknown embedding backend: {settings.embedding_backend}")
