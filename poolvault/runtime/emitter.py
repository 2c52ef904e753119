"""
poolvault.runtime.emitter — outbound payments and their confirmation records.

Emitting only *queues* a payment with the host; the host accepts or rejects it
immediately and reports the final outcome later through an EMISSION_RESULT
invocation. Each accepted payment gets a persisted record:

    emit_seq                    last assigned emission id
    emission:<id>:kind          settlement | refund | coupon | allocation
    emission:<id>:dest          raw destination address
    emission:<id>:amount        decimal units
    emission:<id>:asset         asset identifier
    emission:<id>:state         pending | confirmed | failed

Two call styles:

- `emit(...)`      critical path; raises `EmissionFailure` on rejection so the
                   invocation rolls back.
- `try_emit(...)`  best-effort path; returns None on rejection and the caller
                   carries on.

Ids are only consumed by accepted emissions, so the sequence has no gaps.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from poolvault.config import CFG, RuntimeConfig
from poolvault.errors import EmissionFailure, PolicyViolation, ReasonCode
from poolvault.logging import get_logger
from poolvault.metrics import METRICS
from poolvault.runtime import codec
from poolvault.runtime.budget import STEP_EMIT, STEP_ITEM, StepBudget, unlimited
from poolvault.runtime.storage_api import StateStore

if TYPE_CHECKING:  # pragma: no cover
    from poolvault.runtime.host import HostCapabilities

log = get_logger(__name__)

KINDS = ("settlement", "refund", "coupon", "allocation")

PENDING = "pending"
CONFIRMED = "confirmed"
FAILED = "failed"
STATES = (PENDING, CONFIRMED, FAILED)


@dataclass(frozen=True)
class PaymentInstruction:
    emission_id: int
    kind: str
    destination: bytes
    amount: int
    asset: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emission_id": self.emission_id,
            "kind": self.kind,
            "destination": self.destination.hex().upper(),
            "amount": self.amount,
            "asset": self.asset,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PaymentInstruction":
        return cls(
            emission_id=int(d["emission_id"]),
            kind=str(d["kind"]),
            destination=bytes.fromhex(str(d["destination"])),
            amount=int(d["amount"]),
            asset=str(d["asset"]),
        )


@dataclass(frozen=True)
class EmissionRecord:
    emission_id: int
    kind: str
    destination: bytes
    amount: int
    asset: str
    state: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emission_id": self.emission_id,
            "kind": self.kind,
            "destination": self.destination.hex().upper(),
            "amount": self.amount,
            "asset": self.asset,
            "state": self.state,
        }


class Emitter:
    """
    Queue payments through the host and keep their records.

    One instance per invocation: the per-invocation emission cap
    (`config.max_emissions`) is counted on the instance.
    """

    def __init__(
        self,
        store: StateStore,
        host: "HostCapabilities",
        *,
        config: RuntimeConfig = CFG,
        budget: Optional[StepBudget] = None,
    ) -> None:
        self.store = store
        self.host = host
        self.config = config
        self.budget = budget if budget is not None else unlimited()
        self._count = 0
        self.queued: List[PaymentInstruction] = []

    @property
    def emitted(self) -> int:
        return self._count

    # --------------------------- emission --------------------------- #

    def _queue(self, kind: str, destination: bytes, amount: int, asset: str) -> Optional[PaymentInstruction]:
        if kind not in KINDS:
            raise ValueError(f"unknown emission kind: {kind}")
        if amount <= 0:
            raise ValueError("emission amount must be positive")
        self.budget.consume(STEP_EMIT)

        if self._count >= self.config.max_emissions:
            log.warning("per-invocation emission cap reached", extra={"kind": kind, "cap": self.config.max_emissions})
            METRICS.record_emission(kind, "rejected")
            return None

        eid = self.store.get_uint(codec.K_EMIT_SEQ) + 1
        instr = PaymentInstruction(
            emission_id=eid,
            kind=kind,
            destination=bytes(destination),
            amount=int(amount),
            asset=asset,
        )
        if not self.host.emit_payment(instr):
            METRICS.record_emission(kind, "rejected")
            return None

        self.store.put_uint(codec.K_EMIT_SEQ, eid)
        self.store.put(codec.k_emission(eid, "kind"), kind.encode("ascii"))
        self.store.put(codec.k_emission(eid, "dest"), instr.destination)
        self.store.put_uint(codec.k_emission(eid, "amount"), instr.amount)
        self.store.put_asset(codec.k_emission(eid, "asset"), asset)
        self.store.put(codec.k_emission(eid, "state"), PENDING.encode("ascii"))
        self._count += 1
        self.queued.append(instr)
        METRICS.record_emission(kind, "accepted")
        log.debug(
            "payment queued",
            extra={"emission_id": eid, "kind": kind, "dest": codec.addr_hex(destination), "amount": amount},
        )
        return instr

    def emit(
        self,
        kind: str,
        destination: bytes,
        amount: int,
        asset: str,
        *,
        code: ReasonCode = ReasonCode.SETTLEMENT_FAILED,
    ) -> PaymentInstruction:
        """Queue a payment the invocation cannot do without."""
        instr = self._queue(kind, destination, amount, asset)
        if instr is None:
            raise EmissionFailure(
                code,
                f"{kind} payment rejected by host",
                destination=destination,
                amount=amount,
            )
        return instr

    def try_emit(self, kind: str, destination: bytes, amount: int, asset: str) -> Optional[PaymentInstruction]:
        """Queue a payment; None when the host rejects it."""
        instr = self._queue(kind, destination, amount, asset)
        if instr is None:
            log.warning(
                "best-effort payment rejected; skipping recipient",
                extra={"kind": kind, "dest": codec.addr_hex(destination), "amount": amount},
            )
        return instr

    # ------------------------- confirmation ------------------------- #

    def get_record(self, emission_id: int) -> Optional[EmissionRecord]:
        raw_state = self.store.get(codec.k_emission(emission_id, "state"))
        if raw_state is None:
            return None
        return EmissionRecord(
            emission_id=emission_id,
            kind=(self.store.get(codec.k_emission(emission_id, "kind")) or b"").decode("ascii"),
            destination=self.store.get(codec.k_emission(emission_id, "dest")) or b"",
            amount=self.store.get_uint(codec.k_emission(emission_id, "amount")),
            asset=self.store.get_asset(codec.k_emission(emission_id, "asset")) or "",
            state=raw_state.decode("ascii"),
        )

    def on_completion(self, emission_id: int, success: bool) -> EmissionRecord:
        """
        Apply the host's final verdict for an emission.

        pending → confirmed | failed. A repeated notification leaves the record
        untouched and returns it as-is.
        """
        rec = self.get_record(emission_id)
        if rec is None:
            raise PolicyViolation(ReasonCode.UNKNOWN_EMISSION, "unknown emission id", emission_id=emission_id)
        if rec.state != PENDING:
            log.info("duplicate completion ignored", extra={"emission_id": emission_id, "state": rec.state})
            return rec
        state = CONFIRMED if success else FAILED
        self.store.put(codec.k_emission(emission_id, "state"), state.encode("ascii"))
        METRICS.record_emission(rec.kind, state)
        if not success:
            log.warning("emission failed after acceptance", extra={"emission_id": emission_id, "kind": rec.kind})
        return EmissionRecord(
            emission_id=rec.emission_id,
            kind=rec.kind,
            destination=rec.destination,
            amount=rec.amount,
            asset=rec.asset,
            state=state,
        )

    def pending_emissions(self) -> List[EmissionRecord]:
        out: List[EmissionRecord] = []
        last = self.store.get_uint(codec.K_EMIT_SEQ)
        for eid in range(1, last + 1):
            self.budget.consume(STEP_ITEM)
            rec = self.get_record(eid)
            if rec is not None and rec.state == PENDING:
                out.append(rec)
        return out


__all__ = [
    "KINDS",
    "PENDING",
    "CONFIRMED",
    "FAILED",
    "STATES",
    "PaymentInstruction",
    "EmissionRecord",
    "Emitter",
]
