"""
Run-wide wall-clock budget and per-query allocation math.

A single TimeBudget is created per run and passed explicitly to every layer
that needs to decide whether to start more work. The allocation helpers are
plain functions so the scheduler can be tested with a virtual clock.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True)
class BudgetSettings:
    """Timing knobs for one run, all in milliseconds."""

    total_ms: int = 270_000
    teardown_buffer_ms: int = 15_000
    safety_margin_ms: int = 5_000
    per_future_query_reserve_ms: int = 25_000
    min_term_allowance_ms: int = 20_000
    per_item_cost_ms: int = 8_000
    enrichment_cap_ms: int = 20_000

    def __post_init__(self):
        if self.total_ms <= 0:
            raise ValueError("total_ms must be positive")
        if self.per_item_cost_ms <= 0:
            raise ValueError("per_item_cost_ms must be positive")
        if self.teardown_buffer_ms < 0 or self.safety_margin_ms < 0:
            raise ValueError("buffers must be non-negative")


class TimeBudget:
    """
    Shared wall-clock allowance for one run.

    The usable allowance is the total minus a teardown buffer. ``remaining()``
    never increases over the budget's lifetime, even if the injected clock
    misbehaves.

    Example:
        >>> budget = TimeBudget(total_ms=270_000, teardown_buffer_ms=15_000)
        >>> budget.remaining() <= 255_000
        True
    """

    def __init__(self, total_ms: int, teardown_buffer_ms: int = 0, clock: Clock = time.monotonic):
        self._clock = clock
        self._start = clock()
        self.total_ms = total_ms
        self.usable_ms = max(total_ms - teardown_buffer_ms, 0)
        self._floor_remaining = float(self.usable_ms)

    @classmethod
    def from_settings(cls, settings: BudgetSettings, clock: Clock = time.monotonic) -> "TimeBudget":
        return cls(settings.total_ms, settings.teardown_buffer_ms, clock=clock)

    def elapsed(self) -> float:
        """Milliseconds since the run started."""
        return max((self._clock() - self._start) * 1000.0, 0.0)

    def remaining(self) -> float:
        """Milliseconds left in the usable allowance (never negative)."""
        left = max(self.usable_ms - self.elapsed(), 0.0)
        # Monotonic: never hand back time already reported as spent.
        self._floor_remaining = min(self._floor_remaining, left)
        return self._floor_remaining

    def deadline_after(self, allowance_ms: float) -> float:
        """Absolute deadline (as elapsed-ms mark) ``allowance_ms`` from now."""
        return self.elapsed() + max(allowance_ms, 0.0)

    def is_past(self, deadline_ms: float, margin_ms: float = 0.0) -> bool:
        """True once ``now + margin`` has crossed ``deadline_ms``."""
        return self.elapsed() + margin_ms > deadline_ms

    def time_until(self, deadline_ms: float) -> float:
        return max(deadline_ms - self.elapsed(), 0.0)

    def __repr__(self) -> str:
        return f"TimeBudget(usable_ms={self.usable_ms}, elapsed={self.elapsed():.0f}, remaining={self.remaining():.0f})"


@dataclass(frozen=True)
class TermPlan:
    """Allocation for one query, computed right before it starts."""

    index: int
    total: int
    reserve_ms: float
    allowance_ms: float
    deadline_ms: float
    max_items: int


def compute_reserve(index: int, total: int, per_future_query_reserve_ms: float) -> float:
    """
    Time held back for the queries that come after query ``index`` (0-based).

    Example:
        >>> compute_reserve(1, 3, 25_000)
        25000
    """
    future = max(total - index - 1, 0)
    return future * max(per_future_query_reserve_ms, 0)


def term_allowance(remaining_ms: float, reserve_ms: float, safety_margin_ms: float,
                   minimum_ms: float) -> float:
    """
    Allowance for the current query, floored at ``minimum_ms``.

    Example:
        >>> term_allowance(260_000, 25_000, 5_000, 20_000)
        230000
    """
    return max(remaining_ms - reserve_ms - safety_margin_ms, max(minimum_ms, 0))


def max_items(allowance_ms: float, per_item_cost_ms: float) -> int:
    """
    How many items an allowance can realistically cover.

    Example:
        >>> max_items(100_000, 8_000)
        12
    """
    if per_item_cost_ms <= 0:
        raise ValueError("per_item_cost_ms must be positive")
    return max(int(math.floor(allowance_ms / per_item_cost_ms)), 0)


def pretrim(links: Sequence[T], limit: int) -> List[T]:
    """Keep the first ``limit`` candidates, preserving collection order."""
    return list(links[:max(limit, 0)])


def plan_term(budget: TimeBudget, settings: BudgetSettings, index: int, total: int) -> TermPlan:
    """Compute reserve, allowance, absolute deadline and item cap for query ``index``."""
    reserve = compute_reserve(index, total, settings.per_future_query_reserve_ms)
    allowance = term_allowance(
        budget.remaining(), reserve, settings.safety_margin_ms, settings.min_term_allowance_ms
    )
    return TermPlan(
        index=index,
        total=total,
        reserve_ms=reserve,
        allowance_ms=allowance,
        # A floored allowance may overshoot the run; the run deadline still wins.
        deadline_ms=min(budget.deadline_after(allowance), float(budget.usable_ms)),
        max_items=max_items(allowance, settings.per_item_cost_ms),
    )
