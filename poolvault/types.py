"""
poolvault.types — value objects shared across the vault core.

Everything here is an immutable dataclass or an enum; persistence lives in the
modules that own each record (see `runtime.codec` for the key layout).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple


class VaultStatus(IntEnum):
    """Lifecycle status; transitions only move forward."""

    ACTIVE = 1
    THRESHOLD_REACHED = 2
    SUCCEEDED = 3
    FAILED_REFUNDING = 4

    @property
    def is_open(self) -> bool:
        return self in (VaultStatus.ACTIVE, VaultStatus.THRESHOLD_REACHED)

    @property
    def is_terminal(self) -> bool:
        return not self.is_open


# Allowed forward edges of the lifecycle.
TRANSITIONS: Dict[VaultStatus, Tuple[VaultStatus, ...]] = {
    VaultStatus.ACTIVE: (VaultStatus.THRESHOLD_REACHED, VaultStatus.SUCCEEDED, VaultStatus.FAILED_REFUNDING),
    VaultStatus.THRESHOLD_REACHED: (VaultStatus.SUCCEEDED, VaultStatus.FAILED_REFUNDING),
    VaultStatus.SUCCEEDED: (),
    VaultStatus.FAILED_REFUNDING: (),
}


@dataclass(frozen=True)
class VaultConfig:
    """
    Immutable per-vault parameters, installed once.

    target_amount / deadline / beneficiary / settlement_asset are required;
    the rest are optional extensions (0 / None meaning "not configured").
    """

    target_amount: int
    deadline: int
    beneficiary: bytes
    settlement_asset: str = "native"
    hard_cap: int = 0
    authority: Optional[bytes] = None
    token_asset: Optional[str] = None
    token_supply: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_amount": self.target_amount,
            "deadline": self.deadline,
            "beneficiary": self.beneficiary.hex().upper(),
            "settlement_asset": self.settlement_asset,
            "hard_cap": self.hard_cap,
            "authority": self.authority.hex().upper() if self.authority else None,
            "token_asset": self.token_asset,
            "token_supply": self.token_supply,
        }


@dataclass(frozen=True)
class Participant:
    address: bytes
    contributed: int = 0
    refunded: bool = False


@dataclass(frozen=True)
class HolderRecord:
    address: bytes
    held_units: int


@dataclass(frozen=True)
class TokenMeta:
    token_id: str
    maturity_timestamp: int
    coupons_remaining: int = 0
    is_matured: bool = False


@dataclass(frozen=True)
class DistributionOutcome:
    """
    Result of a proportional split.

    `shares` holds only non-zero entries, ordered by first appearance in the
    input. `distributed == sum(shares.values()) <= pool`.
    """

    pool: int
    shares: Dict[bytes, int] = field(default_factory=dict)
    distributed: int = 0

    @property
    def dust(self) -> int:
        return self.pool - self.distributed

    @property
    def recipients(self) -> int:
        return len(self.shares)

    def share_of(self, address: bytes) -> int:
        return self.shares.get(address, 0)


# ----------------------------- reports ---------------------------------------


@dataclass(frozen=True)
class SweepReport:
    now: int
    scanned: int
    newly_matured: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CouponReport:
    pool: int
    recipients: int
    distributed: int
    paid: int
    failed: Tuple[bytes, ...] = ()
    tokens: Tuple[str, ...] = ()
    time: int = 0

    @property
    def dust(self) -> int:
        return self.pool - self.distributed


@dataclass(frozen=True)
class AllocationReport:
    staged: bool
    paid: int
    paid_units: int
    outstanding: int
    outstanding_units: int


__all__ = [
    "VaultStatus",
    "TRANSITIONS",
    "VaultConfig",
    "Participant",
    "HolderRecord",
    "TokenMeta",
    "DistributionOutcome",
    "SweepReport",
    "CouponReport",
    "AllocationReport",
]
