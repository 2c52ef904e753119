"""
poolvault.dispatcher — classify one inbound transaction and route it.

Classification
--------------
PAYMENT, amount > dust ceiling     contribution
PAYMENT, amount ≤ dust ceiling     "ping": a refund request by the sender when
                                   the vault is FailedRefunding, otherwise a
                                   control signal
INVOKE, command=finalize           control signal (any sender)
INVOKE, command=refund             refund request by the sender
INVOKE, command=maturity-scan |    administrative; sender must be the
        coupon | allocate |        configured authority
        register-token | set-holder
EMISSION_RESULT                    completion notice for an earlier payment
anything else                      accepted and ignored

Atomicity
---------
Every invocation runs between `host.begin()` and `host.finish(accepted)`.
A `VaultError` becomes a reject result and the host discards every write and
payment made so far. Any other exception also discards everything, then
propagates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from poolvault import logging as vlog
from poolvault.config import CFG, RuntimeConfig
from poolvault.coupons import CouponDistributor, HolderRegistry
from poolvault.errors import ConfigError, PolicyViolation, ReasonCode, VaultError
from poolvault.maturity import MaturityTracker
from poolvault.metrics import METRICS, Metrics
from poolvault.runtime import codec
from poolvault.runtime.budget import StepBudget
from poolvault.runtime.context import InvocationContext, TriggerKind
from poolvault.runtime.emitter import Emitter, PaymentInstruction
from poolvault.runtime.host import HostCapabilities
from poolvault.runtime.storage_api import StateStore
from poolvault.state_machine import VaultStateMachine
from poolvault.types import TokenMeta, VaultConfig, VaultStatus

log = vlog.get_logger(__name__)

ADMIN_COMMANDS = ("maturity-scan", "coupon", "allocate", "register-token", "set-holder")

_TRUE = ("1", "true", "yes", "ok", "success")
_FALSE = ("0", "false", "no", "fail", "failed")


@dataclass(frozen=True)
class InvocationResult:
    accepted: bool
    reason: str
    code: ReasonCode = ReasonCode.OK
    data: Dict[str, Any] = field(default_factory=dict)
    emissions: Tuple[PaymentInstruction, ...] = ()

    @classmethod
    def ok(cls, reason: str, **data: Any) -> "InvocationResult":
        return cls(accepted=True, reason=reason, data=data)

    @classmethod
    def reject(cls, err: VaultError) -> "InvocationResult":
        return cls(accepted=False, reason=err.message, code=err.code, data=dict(err.data))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "reason": self.reason,
            "code": int(self.code),
            "code_name": self.code.name,
            "data": self.data,
            "emissions": [e.to_dict() for e in self.emissions],
        }


class _Components:
    """Per-invocation wiring of the core over one StateStore and budget."""

    def __init__(self, host: HostCapabilities, config: RuntimeConfig) -> None:
        self.budget = StepBudget(limit=config.step_limit)
        self.store = StateStore(host, config)
        self.emitter = Emitter(self.store, host, config=config, budget=self.budget)
        self.vault = VaultStateMachine(self.store, self.emitter, config=config, budget=self.budget)
        self.tracker = MaturityTracker(self.store, config=config, budget=self.budget)
        self.holders = HolderRegistry(self.store, config=config, budget=self.budget)
        self.coupons = CouponDistributor(
            self.store, self.emitter, self.holders, self.tracker, budget=self.budget
        )


class EntryDispatcher:
    def __init__(
        self,
        host: HostCapabilities,
        *,
        config: RuntimeConfig = CFG,
        metrics: Metrics = METRICS,
        name: str = "vault",
    ) -> None:
        self.host = host
        self.config = config
        self.metrics = metrics
        self.name = name
        self._routes: Dict[str, Callable[[_Components, InvocationContext], InvocationResult]] = {
            "finalize": self._cmd_finalize,
            "refund": self._cmd_refund,
            "maturity-scan": self._cmd_maturity_scan,
            "coupon": self._cmd_coupon,
            "allocate": self._cmd_allocate,
            "register-token": self._cmd_register_token,
            "set-holder": self._cmd_set_holder,
        }

    # ------------------------------------------------------------------ #
    # Atomic boundary
    # ------------------------------------------------------------------ #

    def _atomic(self, trigger: str, body: Callable[[_Components], InvocationResult]) -> InvocationResult:
        self.host.begin()
        comps = _Components(self.host, self.config)
        with self.metrics.invocation_timer():
            try:
                result = body(comps)
            except VaultError as err:
                self.host.finish(False)
                self.metrics.record_invocation(trigger, "rejected")
                self.metrics.record_rejection(err.code.name)
                log.info("invocation rejected", extra={"code": err.code.name, "reason": err.message})
                return InvocationResult.reject(err)
            except BaseException:
                self.host.finish(False)
                self.metrics.record_invocation(trigger, "rejected")
                log.exception("invocation aborted by unexpected error")
                raise
            emissions = tuple(comps.emitter.queued)
            self.host.finish(True)
        self.metrics.record_invocation(trigger, "accepted")
        log.debug("invocation accepted", extra={"reason": result.reason, "emitted": len(emissions)})
        return InvocationResult(
            accepted=True,
            reason=result.reason,
            code=ReasonCode.OK,
            data=result.data,
            emissions=emissions,
        )

    def install(self, vc: VaultConfig) -> InvocationResult:
        """Install the vault parameters as its own atomic invocation."""
        with vlog.trace_scope(vault=self.name, trigger="INSTALL"):
            def body(c: _Components) -> InvocationResult:
                c.vault.install(vc)
                return InvocationResult.ok("installed")

            return self._atomic("OTHER", body)

    def dispatch(self, ctx: InvocationContext) -> InvocationResult:
        with vlog.trace_scope(
            ctx.tx_id,
            vault=self.name,
            trigger=ctx.trigger.value,
            sender=codec.addr_hex(ctx.sender),
        ):
            return self._atomic(ctx.trigger.value, lambda c: self._route(c, ctx))

    # ------------------------------------------------------------------ #
    # Classification
    # ------------------------------------------------------------------ #

    def _check_sender(self, ctx: InvocationContext) -> None:
        if len(ctx.sender) != self.config.address_len:
            raise PolicyViolation(ReasonCode.BAD_SENDER, f"sender must be {self.config.address_len} bytes")

    def _route(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        if ctx.trigger is TriggerKind.PAYMENT:
            self._check_sender(ctx)
            return self._on_payment(c, ctx)
        if ctx.trigger is TriggerKind.INVOKE:
            self._check_sender(ctx)
            route = self._routes.get(ctx.command)
            if route is None:
                raise PolicyViolation(ReasonCode.UNKNOWN_COMMAND, "unknown command", command=ctx.command)
            if ctx.command in ADMIN_COMMANDS:
                self._require_authority(c, ctx)
            return route(c, ctx)
        if ctx.trigger is TriggerKind.EMISSION_RESULT:
            return self._on_emission_result(c, ctx)
        return InvocationResult.ok("ignored")

    def _on_payment(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        if ctx.amount > self.config.dust_ceiling:
            reason = c.vault.on_contribution(ctx.sender, ctx.amount, ctx.now)
            return InvocationResult.ok(reason, amount=ctx.amount)
        if c.vault.status() is VaultStatus.FAILED_REFUNDING:
            return InvocationResult.ok(c.vault.on_refund_request(ctx.sender))
        return InvocationResult.ok(c.vault.on_control_signal(ctx.now))

    def _require_authority(self, c: _Components, ctx: InvocationContext) -> None:
        authority = c.vault.vault_config().authority
        if authority is None:
            raise ConfigError("no authority configured")
        if ctx.sender != authority:
            raise PolicyViolation(ReasonCode.UNAUTHORIZED, "sender is not the vault authority", sender=ctx.sender)

    def _on_emission_result(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        eid = _int_param(ctx.params, "emission_id")
        raw = (ctx.param("success") or "").strip().lower()
        if raw in _TRUE:
            success = True
        elif raw in _FALSE:
            success = False
        else:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "success must be true or false", success=raw)
        rec = c.emitter.on_completion(eid, success)
        c.vault.on_emission_result(rec)
        return InvocationResult.ok(rec.state, emission_id=eid, kind=rec.kind)

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def _cmd_finalize(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        return InvocationResult.ok(c.vault.on_control_signal(ctx.now))

    def _cmd_refund(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        return InvocationResult.ok(c.vault.on_refund_request(ctx.sender))

    def _cmd_maturity_scan(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        rep = c.tracker.sweep(ctx.now)
        return InvocationResult.ok("maturity scanned", scanned=rep.scanned, matured=list(rep.newly_matured))

    def _cmd_coupon(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        pool = ctx.amount if ctx.amount else _int_param(ctx.params, "pool", default=0)
        asset = c.vault.vault_config().settlement_asset
        rep = c.coupons.pay(pool, ctx.now, asset=asset, token_id=ctx.param("token"))
        return InvocationResult.ok(
            "coupon paid",
            pool=rep.pool,
            recipients=rep.recipients,
            paid=rep.paid,
            failed=len(rep.failed),
            dust=rep.dust,
        )

    def _cmd_allocate(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        rep = c.vault.allocate(ctx.now)
        return InvocationResult.ok(
            "allocation processed",
            staged=rep.staged,
            paid=rep.paid,
            outstanding=rep.outstanding,
        )

    def _cmd_register_token(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        token = ctx.param("token")
        if not token:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "token parameter required")
        meta = TokenMeta(
            token_id=codec.check_token_id(token),
            maturity_timestamp=_int_param(ctx.params, "maturity"),
            coupons_remaining=_int_param(ctx.params, "coupons", default=0),
        )
        c.tracker.register(meta)
        return InvocationResult.ok("token registered", token=token)

    def _cmd_set_holder(self, c: _Components, ctx: InvocationContext) -> InvocationResult:
        raw = ctx.param("holder")
        if not raw:
            raise PolicyViolation(ReasonCode.BAD_INPUT, "holder parameter required")
        holder = codec.parse_address(raw, self.config.address_len)
        units = _int_param(ctx.params, "units")
        c.holders.set_holder(holder, units)
        return InvocationResult.ok("holder updated", holder=codec.addr_hex(holder), units=units)


def _int_param(params: Mapping[str, str], name: str, *, default: Optional[int] = None) -> int:
    raw = params.get(name)
    if raw is None or raw == "":
        if default is None:
            raise PolicyViolation(ReasonCode.BAD_INPUT, f"{name} parameter required")
        return default
    return codec.parse_uint(raw)


def run_invocation(
    host: HostCapabilities,
    trigger: TriggerKind | str,
    sender: bytes | str,
    amount: int = 0,
    *,
    params: Optional[Mapping[str, Any]] = None,
    now: Optional[int] = None,
    config: RuntimeConfig = CFG,
    tx_id: Optional[str] = None,
) -> InvocationResult:
    """
    Build a context from the host clock (unless `now` is given) and dispatch it.
    A malformed context is rejected before the host is touched.
    """
    try:
        ctx = InvocationContext(
            trigger=TriggerKind.parse(trigger),
            sender=sender,
            amount=amount,
            now=host.now() if now is None else now,
            params=dict(params or {}),
            tx_id=tx_id,
        )
    except VaultError as err:
        return InvocationResult.reject(err)
    return EntryDispatcher(host, config=config).dispatch(ctx)


__all__ = ["ADMIN_COMMANDS", "InvocationResult", "EntryDispatcher", "run_invocation"]
