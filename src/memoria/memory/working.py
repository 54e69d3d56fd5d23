"""Hot tier: bounded buffer of recent, not-yet-summarized turns."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable

from memoria.config import get_settings
from memoria.memory.tokens import TokenEstimator, estimate_turn_tokens
from memoria.memory.types import Turn

logger = logging.getLogger(__name__)


class WorkingMemory:
    """Ordered turn buffer with a token budget.

    The buffer never evicts on its own. Callers check ``should_evict``, hand
    ``oldest_span`` to the summarizer and only then call ``evict_oldest``, so a
    turn leaves the buffer only once something durable replaces it.
    """

    def __init__(
        self,
        token_budget: int | None = None,
        *,
        fill_ratio: float | None = None,
        eviction_batch_ratio: float | None = None,
        min_retained_turns: int | None = None,
        estimator: TokenEstimator = estimate_turn_tokens,
    ) -> None:
        settings = get_settings()
        self._budget = int(token_budget or settings.memory_token_budget)
        self._fill_ratio = float(fill_ratio or settings.memory_fill_ratio)
        self._batch_ratio = float(eviction_batch_ratio or settings.memory_eviction_batch_ratio)
        if min_retained_turns is None:
            min_retained_turns = settings.memory_min_retained_turns
        self._min_retained = max(0, int(min_retained_turns))
        self._estimator = estimator
        self._turns: deque[tuple[Turn, int]] = deque()
        self._tokens = 0

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def token_budget(self) -> int:
        return self._budget

    @property
    def current_tokens(self) -> int:
        return self._tokens

    @property
    def fill_threshold(self) -> float:
        return self._fill_ratio * self._budget

    @property
    def utilization(self) -> float:
        """Percent of the token budget in use."""
        return (self._tokens / self._budget) * 100.0

    def append(self, turn: Turn) -> None:
        cost = self._estimator(turn)
        self._turns.append((turn, cost))
        self._tokens += cost

    def should_evict(self) -> bool:
        return self._tokens > self.fill_threshold

    def oldest_span(self) -> list[Turn]:
        """The turns ``evict_oldest`` would remove right now, without removing them."""
        return [turn for turn, _cost in list(self._turns)[: self._span_length()]]

    def evict_oldest(self, count: int | None = None) -> list[Turn]:
        """Remove and return the oldest turns.

        With ``count`` unset the batch size follows the eviction policy: at least
        ``eviction_batch_ratio * token_budget`` tokens and enough to get back under
        the fill threshold, always keeping ``min_retained_turns`` turns resident.
        An explicit ``count`` removes exactly that many, which lets the caller
        commit a span it computed earlier even if turns were appended since.
        """
        n = self._span_length() if count is None else count
        if n < 0 or n > len(self._turns):
            raise ValueError(f"cannot evict {n} turns from a buffer of {len(self._turns)}")
        evicted: list[Turn] = []
        for _ in range(n):
            turn, cost = self._turns.popleft()
            self._tokens -= cost
            evicted.append(turn)
        if evicted:
            logger.debug(
                "Evicted %d turns from working memory (%d tokens left, %.1f%% utilization)",
                len(evicted),
                self._tokens,
                self.utilization,
            )
        return evicted

    def load_from(self, turns: Iterable[Turn]) -> None:
        """Replace the buffer with the most recent turns that fit the budget."""
        self.clear()
        ordered = list(turns)
        kept: list[tuple[Turn, int]] = []
        total = 0
        for turn in reversed(ordered):
            cost = self._estimator(turn)
            if total + cost > self._budget:
                break
            kept.append((turn, cost))
            total += cost
        kept.reverse()
        self._turns.extend(kept)
        self._tokens = total
        if len(kept) < len(ordered):
            logger.warning(
                "Working memory budget reached during load; loaded %d/%d turns",
                len(kept),
                len(ordered),
            )
        logger.info(
            "Loaded %d turns into working memory (%d tokens, %.1f%% utilization)",
            len(kept),
            self._tokens,
            self.utilization,
        )

    def snapshot(self) -> list[Turn]:
        return [turn for turn, _cost in self._turns]

    def clear(self) -> None:
        self._turns.clear()
        self._tokens = 0

    def _span_length(self) -> int:
        target = self._batch_ratio * self._budget
        threshold = self.fill_threshold
        limit = len(self._turns) - self._min_retained
        removed = 0
        remaining = self._tokens
        n = 0
        for _turn, cost in self._turns:
            if n >= limit:
                break
            if removed >= target and remaining <= threshold:
                break
            removed += cost
            remaining -= cost
            n += 1
        return n
