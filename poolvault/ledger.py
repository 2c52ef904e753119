"""
poolvault.ledger — per-participant balances, the participant index, and the
aggregate total.

Storage
-------
    invested:<HEX>        contributed units (decimal)
    refunded:<HEX>        b"1" once refunded
    contributors_index    bounded ordered set of addresses
    total_raised          sum of every invested:<HEX>

The ledger is the only writer of these keys. It updates `total_raised` on the
state machine's behalf and reports the single below → at-or-above-target
crossing through `on_threshold`.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from poolvault.config import CFG, RuntimeConfig
from poolvault.errors import PolicyViolation, ReasonCode
from poolvault.logging import get_logger
from poolvault.metrics import METRICS
from poolvault.runtime import codec
from poolvault.runtime.budget import STEP_ITEM, StepBudget, unlimited
from poolvault.runtime.storage_api import StateStore
from poolvault.types import Participant

log = get_logger(__name__)


class ParticipantIndex:
    """
    Bounded, ordered, duplicate-free set of byte strings stored under one key.

    Insertion is idempotent. When full, `add` reports False and leaves the set
    unchanged; callers decide whether that is a degradation or an error.
    """

    def __init__(self, store: StateStore, key: bytes, capacity: int, *, budget: Optional[StepBudget] = None) -> None:
        self.store = store
        self.key = key
        self.capacity = capacity
        self.budget = budget if budget is not None else unlimited()

    def members(self) -> List[bytes]:
        items = self.store.get_set(self.key)
        self.budget.consume(STEP_ITEM * len(items))
        return items[: self.capacity]

    def __len__(self) -> int:
        return len(self.members())

    def __contains__(self, item: bytes) -> bool:
        return bytes(item) in self.members()

    def is_full(self) -> bool:
        return len(self) >= self.capacity

    def add(self, item: bytes) -> bool:
        items = self.members()
        item = bytes(item)
        if item in items or len(items) >= self.capacity:
            return False
        items.append(item)
        self.store.put_set(self.key, items)
        return True

    def remove(self, item: bytes) -> bool:
        items = self.members()
        item = bytes(item)
        if item not in items:
            return False
        items.remove(item)
        self.store.put_set(self.key, items)
        return True


class ContributionLedger:
    def __init__(
        self,
        store: StateStore,
        *,
        config: RuntimeConfig = CFG,
        budget: Optional[StepBudget] = None,
        on_threshold: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.store = store
        self.config = config
        self.budget = budget if budget is not None else unlimited()
        self.on_threshold = on_threshold
        self.index = ParticipantIndex(store, codec.K_CONTRIBUTORS, config.max_participants, budget=self.budget)

    def _check(self, address: bytes) -> bytes:
        if not isinstance(address, (bytes, bytearray)) or len(address) != self.config.address_len:
            raise PolicyViolation(
                ReasonCode.BAD_SENDER,
                f"address must be {self.config.address_len} bytes",
            )
        return bytes(address)

    # ------------------------------ writes ------------------------------ #

    def record_contribution(self, address: bytes, amount: int) -> int:
        """
        Add `amount` to `address`'s balance and the aggregate total.

        Returns the new total. `amount == 0` changes nothing.
        """
        addr = self._check(address)
        if amount < 0:
            raise PolicyViolation(ReasonCode.BAD_AMOUNT, "amount must be non-negative")
        before = self.total()
        if amount == 0:
            return before

        balance = self.get_balance(addr) + amount
        after = before + amount
        self.store.put_uint(codec.k_invested(addr), balance)
        self.store.put_uint(codec.K_TOTAL, after)

        if not self.index.add(addr) and addr not in self.index:
            log.warning(
                "participant index full; contributor not enumerated",
                extra={"address": codec.addr_hex(addr), "capacity": self.index.capacity},
            )

        METRICS.add_contributed(amount)
        log.info(
            "contribution recorded",
            extra={"address": codec.addr_hex(addr), "amount": amount, "balance": balance, "total": after},
        )

        target = self.store.get_uint(codec.K_TARGET)
        if before < target <= after and self.on_threshold is not None:
            self.on_threshold(after)
        return after

    def mark_refunded(self, address: bytes) -> None:
        self.store.put_flag(codec.k_refunded(self._check(address)), True)

    # ------------------------------ reads ------------------------------- #

    def total(self) -> int:
        return self.store.get_uint(codec.K_TOTAL)

    def get_balance(self, address: bytes) -> int:
        return self.store.get_uint(codec.k_invested(address))

    def is_refunded(self, address: bytes) -> bool:
        return self.store.get_flag(codec.k_refunded(address))

    def participant(self, address: bytes) -> Participant:
        return Participant(
            address=bytes(address),
            contributed=self.get_balance(address),
            refunded=self.is_refunded(address),
        )

    def enumerate_participants(self) -> List[bytes]:
        return self.index.members()

    def contributions(self) -> List[Tuple[bytes, int]]:
        """(address, balance) over the index, in insertion order."""
        out: List[Tuple[bytes, int]] = []
        for addr in self.enumerate_participants():
            self.budget.consume(STEP_ITEM)
            out.append((addr, self.get_balance(addr)))
        return out


__all__ = ["ParticipantIndex", "ContributionLedger"]
