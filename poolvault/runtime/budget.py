"""
poolvault.runtime.budget — explicit per-invocation step budget.

Every loop over a bounded collection (index decoding, distribution, payout,
maturity sweep) charges the budget *before* doing the work. When the next
charge would exceed the limit, `BudgetExhausted` is raised and the invocation
rolls back as a whole; the budget never silently truncates work.

    budget = StepBudget(limit=CFG.step_limit)
    for addr in index:
        budget.consume(STEP_ITEM)
        ...
"""

from __future__ import annotations

from poolvault.errors import BudgetExhausted

# Default costs, in steps.
STEP_ITEM = 1          # visiting one element of a bounded collection
STEP_EMIT = 5          # one outbound payment


class StepBudget:
    """
    Deterministic step counter with a hard limit.

    - `used` only grows.
    - `remaining` never drops below zero; the charge that would cross the
      limit raises instead of being applied.
    """

    __slots__ = ("_limit", "_used")

    def __init__(self, limit: int) -> None:
        if not isinstance(limit, int) or limit < 0:
            raise ValueError("limit must be a non-negative int")
        self._limit = limit
        self._used = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return self._limit - self._used

    def consume(self, steps: int = 1) -> None:
        if not isinstance(steps, int) or steps < 0:
            raise ValueError("steps must be a non-negative int")
        new_used = self._used + steps
        if new_used > self._limit:
            raise BudgetExhausted(used=self._used, limit=self._limit, need=steps)
        self._used = new_used

    def __repr__(self) -> str:
        return f"StepBudget(used={self._used}, limit={self._limit})"


def unlimited() -> StepBudget:
    """A budget large enough never to trip; for offline tools such as the CLI."""
    return StepBudget(limit=(1 << 62))


__all__ = ["StepBudget", "unlimited", "STEP_ITEM", "STEP_EMIT"]
