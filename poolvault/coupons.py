"""
poolvault.coupons — holder registry and proportional coupon payout.

Storage
-------
    holders_index                bounded set of holder addresses
    holder:<HEX>                 held units (decimal)
    coupon:last_pool             pool of the latest payout
    coupon:last_count            recipients with a non-zero share
    coupon:last_time             ledger time of the payout
    coupon:last_distributed      sum of all computed shares
    coupon:last_failed           recipients whose payment was rejected

A payout is best-effort per recipient: a rejected payment is logged and
skipped, and the bookkeeping is still written once at the end. A payout
with no recipient at all writes nothing.
"""

from __future__ import annotations

from typing import List, Optional

from poolvault.config import CFG, RuntimeConfig
from poolvault.distribution import distribute
from poolvault.errors import PolicyViolation, ReasonCode
from poolvault.ledger import ParticipantIndex
from poolvault.logging import get_logger
from poolvault.maturity import MaturityTracker
from poolvault.metrics import METRICS
from poolvault.runtime import codec
from poolvault.runtime.budget import STEP_ITEM, StepBudget, unlimited
from poolvault.runtime.emitter import Emitter
from poolvault.runtime.storage_api import StateStore
from poolvault.types import CouponReport, HolderRecord

log = get_logger(__name__)


class HolderRegistry:
    def __init__(
        self,
        store: StateStore,
        *,
        config: RuntimeConfig = CFG,
        budget: Optional[StepBudget] = None,
    ) -> None:
        self.store = store
        self.config = config
        self.budget = budget if budget is not None else unlimited()
        self.index = ParticipantIndex(store, codec.K_HOLDERS, config.max_holders, budget=self.budget)

    def set_holder(self, address: bytes, units: int) -> None:
        """Upsert a holder; `units == 0` removes it from the index."""
        if len(address) != self.config.address_len:
            raise PolicyViolation(ReasonCode.BAD_INPUT, f"holder must be {self.config.address_len} bytes")
        addr = bytes(address)
        if units == 0:
            self.index.remove(addr)
            self.store.put_uint(codec.k_holder(addr), 0)
            return
        if addr not in self.index and not self.index.add(addr):
            raise PolicyViolation(ReasonCode.CAP_EXCEEDED, "holder registry full", capacity=self.index.capacity)
        self.store.put_uint(codec.k_holder(addr), units)

    def units_of(self, address: bytes) -> int:
        return self.store.get_uint(codec.k_holder(address))

    def holders(self) -> List[HolderRecord]:
        out: List[HolderRecord] = []
        for addr in self.index.members():
            self.budget.consume(STEP_ITEM)
            out.append(HolderRecord(address=addr, held_units=self.units_of(addr)))
        return out


class CouponDistributor:
    def __init__(
        self,
        store: StateStore,
        emitter: Emitter,
        holders: HolderRegistry,
        tracker: MaturityTracker,
        *,
        budget: Optional[StepBudget] = None,
    ) -> None:
        self.store = store
        self.emitter = emitter
        self.holders = holders
        self.tracker = tracker
        self.budget = budget if budget is not None else unlimited()

    def pay(self, pool: int, now: int, *, asset: str, token_id: Optional[str] = None) -> CouponReport:
        """
        Split `pool` over current holders, emit one payment per non-zero
        share, then decrement coupons and record the bookkeeping.

        A payout with no recipient (empty pool, no holders, or every share
        flooring to zero) touches nothing: no coupon is consumed and the
        previous bookkeeping stays in place.
        """
        tokens = [token_id] if token_id else None
        if token_id and self.tracker.get(token_id) is None:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "unknown token", token=token_id)
        outcome = distribute(
            pool,
            [(h.address, h.held_units) for h in self.holders.holders()],
            budget=self.budget,
        )
        if outcome.recipients == 0:
            log.info("coupon skipped, nothing to distribute", extra={"pool": pool})
            return CouponReport(pool=pool, recipients=0, distributed=0, paid=0, failed=(), tokens=(), time=now)

        paid = 0
        failed: List[bytes] = []
        for addr, share in outcome.shares.items():
            self.budget.consume(STEP_ITEM)
            if self.emitter.try_emit("coupon", addr, share, asset) is None:
                failed.append(addr)
                continue
            paid += 1

        touched = self.tracker.decrement_coupons(tokens)

        s = self.store
        s.put_uint(codec.K_COUPON_LAST_POOL, pool)
        s.put_uint(codec.K_COUPON_LAST_COUNT, outcome.recipients)
        s.put_uint(codec.K_COUPON_LAST_TIME, now)
        s.put_uint(codec.K_COUPON_LAST_DISTRIBUTED, outcome.distributed)
        s.put_uint(codec.K_COUPON_LAST_FAILED, len(failed))
        METRICS.add_dust(outcome.dust)

        log.info(
            "coupon paid",
            extra={
                "pool": pool,
                "recipients": outcome.recipients,
                "paid": paid,
                "failed": len(failed),
                "dust": outcome.dust,
            },
        )
        return CouponReport(
            pool=pool,
            recipients=outcome.recipients,
            distributed=outcome.distributed,
            paid=paid,
            failed=tuple(failed),
            tokens=tuple(touched),
            time=now,
        )


__all__ = ["HolderRegistry", "CouponDistributor"]
