"""
poolvault.cli.scenario — YAML scenarios and state summaries for the CLI.

Scenario file
-------------
    accounts:                    # optional aliases usable wherever an address is expected
      alice: "0x1111111111111111111111111111111111111111"
    config:                      # optional RuntimeConfig overrides
      max_participants: 16
    vault:                       # installed unless the loaded state already has a vault
      target_amount: 1000
      deadline: 100
      beneficiary: bob
      settlement_asset: native
      authority: admin           # optional; hard_cap, token_asset, token_supply too
    steps:
      - at: 10
        kind: PAYMENT            # PAYMENT | INVOKE | EMISSION_RESULT | OTHER
        sender: alice
        amount: 600
        params: {command: finalize}
        host:                    # optional failure toggles for this step only
          reject_all_emissions: true
          fail_emissions_to: [alice]
          fail_writes: [total_raised]
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from poolvault.config import CFG, RuntimeConfig
from poolvault.coupons import HolderRegistry
from poolvault.dispatcher import EntryDispatcher, InvocationResult
from poolvault.errors import VaultError
from poolvault.maturity import MaturityTracker
from poolvault.runtime import codec
from poolvault.runtime.context import InvocationContext, TriggerKind
from poolvault.runtime.emitter import Emitter
from poolvault.runtime.host import InMemoryHost
from poolvault.runtime.storage_api import StateStore
from poolvault.state_machine import VaultStateMachine
from poolvault.types import VaultConfig

_HOST_TOGGLES = ("reject_all_emissions", "fail_all_writes", "fail_emissions_to", "fail_writes", "emission_slots")


class ScenarioError(ValueError):
    """The scenario or state file is unreadable or malformed."""


@dataclass(frozen=True)
class StepOutcome:
    index: int
    at: int
    kind: str
    sender: str
    amount: int
    result: InvocationResult

    def to_dict(self) -> Dict[str, Any]:
        d = self.result.to_dict()
        d.update({"step": self.index, "at": self.at, "kind": self.kind, "sender": self.sender, "amount": self.amount})
        return d


# ----------------------------- loading --------------------------------- #


def load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ScenarioError(f"scenario file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ScenarioError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ScenarioError("scenario root must be a mapping")
    return data


def runtime_config(overrides: Optional[Mapping[str, Any]]) -> RuntimeConfig:
    if not overrides:
        return CFG
    known = set(CFG.as_dict())
    unknown = set(overrides) - known
    if unknown:
        raise ScenarioError(f"unknown config keys: {sorted(unknown)}")
    return CFG.replace(**dict(overrides))


class _Resolver:
    def __init__(self, accounts: Optional[Mapping[str, Any]], length: int) -> None:
        self.length = length
        self.aliases: Dict[str, bytes] = {}
        for name, value in dict(accounts or {}).items():
            self.aliases[str(name)] = self.address(value)

    def _parse(self, text: str) -> bytes:
        try:
            return codec.parse_address(text, self.length)
        except VaultError as e:
            raise ScenarioError(f"bad address {text!r}: {e.message}") from e

    def address(self, value: Any) -> bytes:
        if isinstance(value, int) and not isinstance(value, bool):
            # unquoted 0x... literals arrive as YAML integers
            try:
                return value.to_bytes(self.length, "big")
            except OverflowError as e:
                raise ScenarioError(f"address {value:#x} does not fit {self.length} bytes") from e
        text = str(value)
        if text in self.aliases:
            return self.aliases[text]
        return self._parse(text)

    def label(self, address: bytes) -> str:
        for name, addr in self.aliases.items():
            if addr == address:
                return name
        return codec.addr_hex(address)


def vault_config(section: Mapping[str, Any], resolve: _Resolver) -> VaultConfig:
    try:
        return VaultConfig(
            target_amount=int(section["target_amount"]),
            deadline=int(section["deadline"]),
            beneficiary=resolve.address(section["beneficiary"]),
            settlement_asset=str(section.get("settlement_asset", "native")),
            hard_cap=int(section.get("hard_cap", 0)),
            authority=resolve.address(section["authority"]) if section.get("authority") else None,
            token_asset=str(section["token_asset"]) if section.get("token_asset") else None,
            token_supply=int(section.get("token_supply", 0)),
        )
    except KeyError as e:
        raise ScenarioError(f"vault section missing {e.args[0]!r}") from e
    except (TypeError, ValueError) as e:
        raise ScenarioError(f"vault section invalid: {e}") from e


# ----------------------------- running --------------------------------- #


def _apply_toggles(host: InMemoryHost, toggles: Mapping[str, Any], resolve: _Resolver) -> None:
    unknown = set(toggles) - set(_HOST_TOGGLES)
    if unknown:
        raise ScenarioError(f"unknown host toggles: {sorted(unknown)}")
    host.reject_all_emissions = bool(toggles.get("reject_all_emissions", False))
    host.fail_all_writes = bool(toggles.get("fail_all_writes", False))
    host.fail_emissions_to = {resolve.address(a) for a in toggles.get("fail_emissions_to") or []}
    host.fail_writes = {str(k).encode("ascii") for k in toggles.get("fail_writes") or []}
    slots = toggles.get("emission_slots")
    host.emission_slots = int(slots) if slots is not None else None


def run_scenario(
    scenario: Mapping[str, Any],
    *,
    host: Optional[InMemoryHost] = None,
    name: str = "vault",
) -> Dict[str, Any]:
    """
    Run every step of `scenario` on `host` (fresh when omitted).

    Returns {"host", "config", "install", "steps", "resolver"}; step results
    keep going after a reject, exactly as a ledger would.
    """
    cfg = runtime_config(scenario.get("config"))
    resolve = _Resolver(scenario.get("accounts"), cfg.address_len)
    host = host if host is not None else InMemoryHost()
    dispatcher = EntryDispatcher(host, config=cfg, name=name)

    install: Optional[InvocationResult] = None
    if scenario.get("vault"):
        store = StateStore(host, cfg)
        if not store.exists(codec.K_STATUS):
            install = dispatcher.install(vault_config(scenario["vault"], resolve))

    steps = scenario.get("steps") or []
    if not isinstance(steps, list):
        raise ScenarioError("steps must be a list")

    outcomes: List[StepOutcome] = []
    for i, step in enumerate(steps):
        if not isinstance(step, dict):
            raise ScenarioError(f"step {i} must be a mapping")
        at = _int(step.get("at", host.now()), f"step {i}: at")
        if at < host.now():
            raise ScenarioError(f"step {i}: time goes backwards ({at} < {host.now()})")
        host.set_time(at)
        kind = TriggerKind.parse(step.get("kind", "PAYMENT"))
        sender = resolve.address(step["sender"]) if step.get("sender") is not None else b""
        amount = _int(step.get("amount", 0), f"step {i}: amount")
        params = {str(k): _param_value(v, resolve) for k, v in dict(step.get("params") or {}).items()}

        _apply_toggles(host, step.get("host") or {}, resolve)
        try:
            ctx = InvocationContext(trigger=kind, sender=sender, amount=amount, now=at, params=params, tx_id=f"step-{i}")
            result = dispatcher.dispatch(ctx)
        except VaultError as err:
            result = InvocationResult.reject(err)
        finally:
            _apply_toggles(host, {}, resolve)

        outcomes.append(
            StepOutcome(index=i, at=at, kind=kind.value, sender=resolve.label(sender) if sender else "-", amount=amount, result=result)
        )

    return {"host": host, "config": cfg, "install": install, "steps": outcomes, "resolver": resolve}


def _int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise ScenarioError(f"{what} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ScenarioError(f"{what} must be an integer") from e


def _param_value(value: Any, resolve: _Resolver) -> str:
    text = str(value)
    return codec.addr_hex(resolve.aliases[text]) if text in resolve.aliases else text


# ----------------------------- summaries ------------------------------- #


def summarize(host: InMemoryHost, config: RuntimeConfig = CFG) -> Dict[str, Any]:
    """Decode committed state into a plain dict (status, totals, participants, tokens, emissions)."""
    store = StateStore(host, config)
    emitter = Emitter(store, host, config=config)
    vault = VaultStateMachine(store, emitter, config=config)
    out: Dict[str, Any] = {"installed": vault.is_installed(), "now": host.now()}
    if not out["installed"]:
        return out

    out["status"] = vault.status().name
    out["vault"] = vault.vault_config().to_dict()
    out["total_raised"] = vault.ledger.total()
    out["settlement_state"] = vault.settlement_state()
    out["participants"] = [
        {
            "address": codec.addr_hex(p),
            "contributed": vault.ledger.get_balance(p),
            "refunded": vault.ledger.is_refunded(p),
            "allocation_pending": store.get_uint(codec.k_alloc(p)),
        }
        for p in vault.ledger.enumerate_participants()
    ]
    out["holders"] = [
        {"address": codec.addr_hex(h.address), "units": h.held_units}
        for h in HolderRegistry(store, config=config).holders()
    ]
    out["tokens"] = [
        {
            "token": t.token_id,
            "maturity": t.maturity_timestamp,
            "matured": t.is_matured,
            "coupons_remaining": t.coupons_remaining,
        }
        for t in MaturityTracker(store, config=config).tokens()
    ]
    last = store.get_uint(codec.K_EMIT_SEQ)
    out["emissions"] = [
        rec.to_dict() for rec in (emitter.get_record(i) for i in range(1, last + 1)) if rec is not None
    ]
    out["pending_emissions"] = [rec.emission_id for rec in emitter.pending_emissions()]
    out["coupon"] = {
        "last_pool": store.get_uint(codec.K_COUPON_LAST_POOL),
        "last_count": store.get_uint(codec.K_COUPON_LAST_COUNT),
        "last_time": store.get_uint(codec.K_COUPON_LAST_TIME),
        "last_distributed": store.get_uint(codec.K_COUPON_LAST_DISTRIBUTED),
        "last_failed": store.get_uint(codec.K_COUPON_LAST_FAILED),
    }
    return out


__all__ = ["ScenarioError", "StepOutcome", "load_yaml", "run_scenario", "summarize", "vault_config", "runtime_config"]
