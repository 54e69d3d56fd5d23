"""Vector math and blob encoding for stored embeddings."""

from __future__ import annotations

import math
import struct
from collections.abc import Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    Mismatched lengths, empty vectors and zero vectors all score 0.0 so they
    can never clear a similarity threshold.
    """
    if not a or len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def normalize(vector: Sequence[float]) -> list[float]:
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0.0:
        return [0.0 for _ in vector]
    return [v / norm for v in vector]


def fit_dims(vector: Sequence[float], dims: int) -> list[float]:
    if len(vector) == dims:
        return list(vector)
    if len(vector) > dims:
        return list(vector[:dims])
    return [*vector, *([0.0] * (dims - len(vector)))]


def to_blob(vector: Sequence[float]) -> bytes:
    """Pack as little-endian float32."""
    return struct.pack(f"<{len(vector)}f", *vector)


def from_blob(blob: bytes | None) -> list[float]:
    if not blob:
        return []
    count = len(blob) // 4
    return list(struct.unpack(f"<{count}f", blob[: count * 4]))
