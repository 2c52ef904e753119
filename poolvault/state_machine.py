"""
poolvault.state_machine — the vault lifecycle.

    Active ──(total ≥ target)──▶ ThresholdReached
       │                              │
       └──────(control signal, now ≥ deadline)──────┐
                                                    ▼
                           total ≥ target ? Succeeded : FailedRefunding

Transitions only move forward. Settlement pays the whole total to the
beneficiary in one emission; refunds pay each participant their full balance,
exactly once.

Storage
-------
    status                 decimal VaultStatus
    target_amount, deadline, beneficiary, settlement_asset
    hard_cap, authority, token_asset, token_supply     (optional extras)
    settlement_emission    id of the latest settlement payment
    settlement_state       pending | confirmed | failed
    alloc:<HEX>            staged, not yet paid token allocation
    alloc_staged           b"1" once staging has happened

Reasons returned by the handlers are short human strings; rejections raise a
`VaultError` subclass and leave rollback to the dispatcher.
"""

from __future__ import annotations

from typing import Optional

from poolvault.config import CFG, RuntimeConfig
from poolvault.distribution import distribute
from poolvault.errors import ConfigError, PolicyViolation, ReasonCode
from poolvault.ledger import ContributionLedger
from poolvault.logging import get_logger
from poolvault.metrics import METRICS
from poolvault.runtime import codec
from poolvault.runtime.budget import STEP_ITEM, StepBudget, unlimited
from poolvault.runtime.emitter import CONFIRMED, FAILED, PENDING, EmissionRecord, Emitter
from poolvault.runtime.storage_api import StateStore
from poolvault.types import TRANSITIONS, AllocationReport, VaultConfig, VaultStatus

log = get_logger(__name__)

TOO_EARLY = "too early"
ALREADY_FINALIZED = "already finalized"


class VaultStateMachine:
    def __init__(
        self,
        store: StateStore,
        emitter: Emitter,
        *,
        config: RuntimeConfig = CFG,
        budget: Optional[StepBudget] = None,
    ) -> None:
        self.store = store
        self.emitter = emitter
        self.config = config
        self.budget = budget if budget is not None else unlimited()
        self.ledger = ContributionLedger(
            store,
            config=config,
            budget=self.budget,
            on_threshold=self.on_threshold_reached,
        )

    # ------------------------------------------------------------------ #
    # Installation & configuration
    # ------------------------------------------------------------------ #

    def is_installed(self) -> bool:
        return self.store.exists(codec.K_STATUS)

    def install(self, vc: VaultConfig) -> None:
        """Persist the immutable vault parameters and start in Active."""
        if self.is_installed():
            raise ConfigError("vault already installed", code=ReasonCode.ALREADY_CONFIGURED)
        if vc.target_amount <= 0:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "target_amount must be positive")
        if len(vc.beneficiary) != self.config.address_len:
            raise PolicyViolation(ReasonCode.NO_BENEFICIARY, f"beneficiary must be {self.config.address_len} bytes")
        if vc.hard_cap and vc.hard_cap < vc.target_amount:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "hard_cap below target_amount")
        if vc.authority is not None and len(vc.authority) != self.config.address_len:
            raise PolicyViolation(ReasonCode.BAD_INPUT, f"authority must be {self.config.address_len} bytes")
        if vc.token_supply and not vc.token_asset:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "token_supply requires token_asset")

        s = self.store
        s.put_uint(codec.K_TARGET, vc.target_amount)
        s.put_uint(codec.K_DEADLINE, vc.deadline)
        s.put(codec.K_BENEFICIARY, vc.beneficiary)
        s.put_asset(codec.K_ASSET, vc.settlement_asset)
        if vc.hard_cap:
            s.put_uint(codec.K_HARD_CAP, vc.hard_cap)
        if vc.authority is not None:
            s.put(codec.K_AUTHORITY, vc.authority)
        if vc.token_asset:
            s.put_asset(codec.K_TOKEN_ASSET, vc.token_asset)
        if vc.token_supply:
            s.put_uint(codec.K_TOKEN_SUPPLY, vc.token_supply)
        s.put_uint(codec.K_TOTAL, 0)
        s.put_uint(codec.K_STATUS, int(VaultStatus.ACTIVE))
        log.info("vault installed", extra=vc.to_dict())

    def vault_config(self) -> VaultConfig:
        self.status()
        s = self.store
        return VaultConfig(
            target_amount=s.get_uint(codec.K_TARGET),
            deadline=s.get_uint(codec.K_DEADLINE),
            beneficiary=s.get(codec.K_BENEFICIARY) or b"",
            settlement_asset=s.get_asset(codec.K_ASSET) or "native",
            hard_cap=s.get_uint(codec.K_HARD_CAP),
            authority=s.get(codec.K_AUTHORITY),
            token_asset=s.get_asset(codec.K_TOKEN_ASSET),
            token_supply=s.get_uint(codec.K_TOKEN_SUPPLY),
        )

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def status(self) -> VaultStatus:
        raw = self.store.get(codec.K_STATUS)
        if raw is None:
            raise ConfigError("vault not installed")
        try:
            return VaultStatus(codec.decode_uint(raw))
        except ValueError as e:
            raise PolicyViolation(ReasonCode.CODEC, "unknown status value", raw=raw) from e

    def _transition(self, new: VaultStatus) -> None:
        cur = self.status()
        if new not in TRANSITIONS[cur]:
            raise PolicyViolation(ReasonCode.BAD_STATE, f"illegal transition {cur.name} -> {new.name}")
        self.store.put_uint(codec.K_STATUS, int(new))
        log.info("status changed", extra={"from": cur.name, "to": new.name})

    def settlement_state(self) -> Optional[str]:
        raw = self.store.get(codec.K_SETTLEMENT_STATE)
        return raw.decode("ascii") if raw is not None else None

    # ------------------------------------------------------------------ #
    # Handlers
    # ------------------------------------------------------------------ #

    def on_contribution(self, sender: bytes, amount: int, now: int) -> str:
        st = self.status()
        if not st.is_open:
            raise PolicyViolation(ReasonCode.FUNDRAISING_CLOSED, "fundraising closed", status=st.name)
        if now >= self.store.get_uint(codec.K_DEADLINE):
            raise PolicyViolation(ReasonCode.DEADLINE_PASSED, "deadline passed")
        cap = self.store.get_uint(codec.K_HARD_CAP)
        if cap and self.ledger.total() + amount > cap:
            raise PolicyViolation(ReasonCode.CAP_EXCEEDED, "contribution exceeds hard cap", hard_cap=cap)
        self.ledger.record_contribution(sender, amount)
        return "contribution recorded"

    def on_threshold_reached(self, total: int) -> None:
        if self.status() is VaultStatus.ACTIVE:
            self._transition(VaultStatus.THRESHOLD_REACHED)
            log.info("funding threshold reached", extra={"total": total})

    def on_control_signal(self, now: int) -> str:
        if now < self.store.get_uint(codec.K_DEADLINE):
            return TOO_EARLY

        st = self.status()
        if st is VaultStatus.SUCCEEDED and self.settlement_state() == FAILED:
            self._emit_settlement()
            log.warning("settlement re-emitted after failed confirmation")
            return "settlement re-emitted"
        if st.is_terminal:
            return ALREADY_FINALIZED

        total = self.ledger.total()
        if total >= self.store.get_uint(codec.K_TARGET):
            self._emit_settlement()
            self._transition(VaultStatus.SUCCEEDED)
            return "settled"

        self._transition(VaultStatus.FAILED_REFUNDING)
        return "refunds enabled"

    def _emit_settlement(self) -> None:
        beneficiary = self.store.get(codec.K_BENEFICIARY)
        if not beneficiary:
            raise PolicyViolation(ReasonCode.NO_BENEFICIARY, "no beneficiary configured")
        total = self.ledger.total()
        asset = self.store.get_asset(codec.K_ASSET) or "native"
        instr = self.emitter.emit("settlement", beneficiary, total, asset, code=ReasonCode.SETTLEMENT_FAILED)
        self.store.put_uint(codec.K_SETTLEMENT_EMISSION, instr.emission_id)
        self.store.put(codec.K_SETTLEMENT_STATE, PENDING.encode("ascii"))
        log.info("settlement emitted", extra={"emission_id": instr.emission_id, "amount": total})

    def on_refund_request(self, address: bytes) -> str:
        st = self.status()
        if st is not VaultStatus.FAILED_REFUNDING:
            raise PolicyViolation(ReasonCode.REFUNDS_UNAVAILABLE, "refunds unavailable", status=st.name)
        if self.ledger.is_refunded(address):
            raise PolicyViolation(ReasonCode.ALREADY_REFUNDED, "already refunded", address=address)
        balance = self.ledger.get_balance(address)
        if balance == 0:
            raise PolicyViolation(ReasonCode.NO_INVESTMENT, "no investment", address=address)
        asset = self.store.get_asset(codec.K_ASSET) or "native"
        instr = self.emitter.emit("refund", address, balance, asset, code=ReasonCode.REFUND_FAILED)
        self.ledger.mark_refunded(address)
        log.info(
            "refund emitted",
            extra={"address": codec.addr_hex(address), "amount": balance, "emission_id": instr.emission_id},
        )
        return "refunded"

    def on_emission_result(self, rec: EmissionRecord) -> None:
        """Track the settlement's final outcome; other kinds live only in their record."""
        if rec.kind != "settlement":
            return
        if self.store.get_uint(codec.K_SETTLEMENT_EMISSION) != rec.emission_id:
            return
        if rec.state in (CONFIRMED, FAILED):
            self.store.put(codec.K_SETTLEMENT_STATE, rec.state.encode("ascii"))

    # ------------------------------------------------------------------ #
    # Token allocation (stage-then-pay)
    # ------------------------------------------------------------------ #

    def allocate(self, now: int) -> AllocationReport:
        """
        Stage `token_supply` proportionally to contributions (first call only),
        then pay every non-zero staged balance. Rejected payments stay staged
        for a later call.
        """
        st = self.status()
        if st is not VaultStatus.SUCCEEDED:
            raise PolicyViolation(ReasonCode.ALLOCATION_FAILED, "allocation requires a succeeded vault", status=st.name)
        supply = self.store.get_uint(codec.K_TOKEN_SUPPLY)
        token_asset = self.store.get_asset(codec.K_TOKEN_ASSET)
        if not supply or not token_asset:
            raise ConfigError("token allocation not configured")

        staged_now = False
        if not self.store.get_flag(codec.K_ALLOC_STAGED):
            outcome = distribute(supply, self.ledger.contributions(), budget=self.budget)
            for addr, share in outcome.shares.items():
                self.store.put_uint(codec.k_alloc(addr), share)
            self.store.put_flag(codec.K_ALLOC_STAGED, True)
            METRICS.add_dust(outcome.dust)
            staged_now = True
            log.info(
                "allocation staged",
                extra={"supply": supply, "recipients": outcome.recipients, "dust": outcome.dust, "at": now},
            )

        paid = paid_units = outstanding = outstanding_units = 0
        for addr in self.ledger.enumerate_participants():
            self.budget.consume(STEP_ITEM)
            pending = self.store.get_uint(codec.k_alloc(addr))
            if pending == 0:
                continue
            if self.emitter.try_emit("allocation", addr, pending, token_asset) is None:
                outstanding += 1
                outstanding_units += pending
                continue
            self.store.put_uint(codec.k_alloc(addr), 0)
            paid += 1
            paid_units += pending

        return AllocationReport(
            staged=staged_now,
            paid=paid,
            paid_units=paid_units,
            outstanding=outstanding,
            outstanding_units=outstanding_units,
        )


__all__ = ["VaultStateMachine", "TOO_EARLY", "ALREADY_FINALIZED"]
