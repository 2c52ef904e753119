"""
poolvault.distribution — integer-exact proportional splits.

    share_i = floor(pool * weight_i / W),   W = sum(weight)

Python ints are unbounded, so `pool * weight_i` never overflows. The
undistributed remainder ("dust") stays with the caller; it is never
redistributed. Zero shares are omitted from the outcome.

Properties:
- sum(shares) <= pool
- a larger weight never yields a smaller share
- the outcome does not depend on input order (each share only depends on its
  own weight and the totals)

This module owns no state; it is reused for token allocation and coupons.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from poolvault.errors import PolicyViolation, ReasonCode
from poolvault.runtime.budget import STEP_ITEM, StepBudget
from poolvault.types import DistributionOutcome

Weights = Union[Mapping[bytes, int], Iterable[Tuple[bytes, int]]]


def _collect(weights: Weights, budget: Optional[StepBudget]) -> Dict[bytes, int]:
    pairs = weights.items() if isinstance(weights, Mapping) else weights
    merged: Dict[bytes, int] = {}
    for addr, w in pairs:
        if budget is not None:
            budget.consume(STEP_ITEM)
        if isinstance(w, bool) or not isinstance(w, int) or w < 0:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "weights must be non-negative integers", address=addr)
        key = bytes(addr)
        merged[key] = merged.get(key, 0) + w
    return merged


def distribute(pool: int, weights: Weights, *, budget: Optional[StepBudget] = None) -> DistributionOutcome:
    """Split `pool` across `weights`; duplicate addresses have their weights summed."""
    if isinstance(pool, bool) or not isinstance(pool, int) or pool < 0:
        raise PolicyViolation(ReasonCode.BAD_INPUT, "pool must be a non-negative integer", pool=str(pool))

    w = _collect(weights, budget)
    total = sum(w.values())
    if total == 0 or pool == 0:
        return DistributionOutcome(pool=pool)

    shares: Dict[bytes, int] = {}
    distributed = 0
    for addr, weight in w.items():
        if budget is not None:
            budget.consume(STEP_ITEM)
        share = (pool * weight) // total
        if share > 0:
            shares[addr] = share
            distributed += share
    return DistributionOutcome(pool=pool, shares=shares, distributed=distributed)


__all__ = ["distribute", "Weights"]
