"""
poolvault.maturity — token metadata and the time-driven maturity sweep.

Storage
-------
    tokens_index                          bounded set of token ids (ascii)
    mpmeta:<token>:maturityDate           decimal timestamp
    mpmeta:<token>:isMatured              b"1" once matured
    mpmeta:<token>:couponsRemaining       decimal, floored at zero

`is_matured` only ever flips false → true and `couponsRemaining` only goes
down. The sweep is idempotent for a given time.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from poolvault.config import CFG, RuntimeConfig
from poolvault.errors import PolicyViolation, ReasonCode
from poolvault.ledger import ParticipantIndex
from poolvault.logging import get_logger
from poolvault.runtime import codec
from poolvault.runtime.budget import STEP_ITEM, StepBudget, unlimited
from poolvault.runtime.storage_api import StateStore
from poolvault.types import SweepReport, TokenMeta

log = get_logger(__name__)


class MaturityTracker:
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
        self.index = ParticipantIndex(store, codec.K_TOKENS, config.max_tokens, budget=self.budget)

    # ---------------------------- registry ---------------------------- #

    def token_ids(self) -> List[str]:
        return [t.decode("ascii") for t in self.index.members()]

    def get(self, token_id: str) -> Optional[TokenMeta]:
        codec.check_token_id(token_id)
        if token_id.encode("ascii") not in self.index:
            return None
        return TokenMeta(
            token_id=token_id,
            maturity_timestamp=self.store.get_uint(codec.k_token(token_id, "maturityDate")),
            coupons_remaining=self.store.get_uint(codec.k_token(token_id, "couponsRemaining")),
            is_matured=self.store.get_flag(codec.k_token(token_id, "isMatured")),
        )

    def tokens(self) -> List[TokenMeta]:
        out: List[TokenMeta] = []
        for tid in self.token_ids():
            meta = self.get(tid)
            if meta is not None:
                out.append(meta)
        return out

    def register(self, meta: TokenMeta) -> None:
        tid = codec.check_token_id(meta.token_id)
        key = tid.encode("ascii")
        if key in self.index:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "token already registered", token=tid)
        if not self.index.add(key):
            raise PolicyViolation(ReasonCode.CAP_EXCEEDED, "token registry full", capacity=self.index.capacity)
        self.store.put_uint(codec.k_token(tid, "maturityDate"), meta.maturity_timestamp)
        self.store.put_uint(codec.k_token(tid, "couponsRemaining"), meta.coupons_remaining)
        self.store.put_flag(codec.k_token(tid, "isMatured"), meta.is_matured)
        log.info(
            "token registered",
            extra={"token": tid, "maturity": meta.maturity_timestamp, "coupons": meta.coupons_remaining},
        )

    # ----------------------------- updates ---------------------------- #

    def sweep(self, now: int) -> SweepReport:
        """Flip `isMatured` on every registered token whose maturity time has come."""
        ids = self.token_ids()
        matured: List[str] = []
        for tid in ids:
            self.budget.consume(STEP_ITEM)
            if self.store.get_flag(codec.k_token(tid, "isMatured")):
                continue
            if now >= self.store.get_uint(codec.k_token(tid, "maturityDate")):
                self.store.put_flag(codec.k_token(tid, "isMatured"), True)
                matured.append(tid)
        if matured:
            log.info("tokens matured", extra={"tokens": matured, "at": now})
        return SweepReport(now=now, scanned=len(ids), newly_matured=tuple(matured))

    def decrement_coupons(self, token_ids: Optional[Iterable[str]] = None) -> List[str]:
        """
        Decrement `couponsRemaining` by one (floored at zero) for the given
        tokens, or for every registered token. Returns the ids touched.
        """
        if token_ids is None:
            ids = self.token_ids()
        else:
            ids = [codec.check_token_id(t) for t in token_ids]
            known = set(self.token_ids())
            for tid in ids:
                if tid not in known:
                    raise PolicyViolation(ReasonCode.BAD_INPUT, "unknown token", token=tid)

        touched: List[str] = []
        for tid in ids:
            self.budget.consume(STEP_ITEM)
            key = codec.k_token(tid, "couponsRemaining")
            remaining = self.store.get_uint(key)
            if remaining > 0:
                self.store.put_uint(key, remaining - 1)
            touched.append(tid)
        return touched


__all__ = ["MaturityTracker"]
