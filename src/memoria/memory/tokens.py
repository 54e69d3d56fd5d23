"""Token estimation helpers."""

from collections.abc import Callable

from memoria.memory.types import Turn

TURN_OVERHEAD_TOKENS = 5

TokenEstimator = Callable[[Turn], int]


def estimate_tokens(text: str) -> int:
    # ~4 chars/token for mixed English content.
    return len(text) // 4


def estimate_turn_tokens(turn: Turn) -> int:
    role = turn.role.value if hasattr(turn.role, "value") else str(turn.role)
    return estimate_tokens(turn.content) + estimate_tokens(role) + TURN_OVERHEAD_TOKENS
