from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Callable, Optional

import pytest

from poolvault.config import CFG, RuntimeConfig
from poolvault.dispatcher import EntryDispatcher, InvocationResult
from poolvault.runtime.context import InvocationContext, TriggerKind
from poolvault.runtime.emitter import Emitter
from poolvault.runtime.host import InMemoryHost
from poolvault.runtime.storage_api import StateStore
from poolvault.state_machine import VaultStateMachine
from poolvault.types import VaultConfig


def addr(n: int) -> bytes:
    """A 20-byte address made of one repeated byte."""
    return bytes([n]) * 20


@pytest.fixture
def cfg() -> RuntimeConfig:
    """Small capacities so bounded-collection edges are cheap to reach."""
    return CFG.replace(
        max_participants=8,
        max_holders=8,
        max_tokens=8,
        max_emissions=64,
        step_limit=100_000,
    )


@pytest.fixture
def host() -> InMemoryHost:
    return InMemoryHost(now=0)


@pytest.fixture
def accounts() -> SimpleNamespace:
    return SimpleNamespace(
        alice=addr(0xA1),
        bob=addr(0xB0),
        carol=addr(0xC4),
        dave=addr(0xD5),
        beneficiary=addr(0xBE),
        admin=addr(0xAD),
    )


@pytest.fixture
def store(host: InMemoryHost, cfg: RuntimeConfig) -> StateStore:
    return StateStore(host, cfg)


@pytest.fixture
def view(host: InMemoryHost, cfg: RuntimeConfig) -> Callable[[], VaultStateMachine]:
    """Read-only view of committed vault state (fresh objects per call)."""

    def _view() -> VaultStateMachine:
        store = StateStore(host, cfg)
        return VaultStateMachine(store, Emitter(store, host, config=cfg), config=cfg)

    return _view


@pytest.fixture
def make_vault(host: InMemoryHost, cfg: RuntimeConfig, accounts: SimpleNamespace) -> Callable[..., EntryDispatcher]:
    """Install a vault (target 1000, deadline 100 by default) and return its dispatcher."""

    def _make(target: int = 1000, deadline: int = 100, **extras: Any) -> EntryDispatcher:
        d = EntryDispatcher(host, config=cfg)
        extras.setdefault("authority", accounts.admin)
        res = d.install(
            VaultConfig(target_amount=target, deadline=deadline, beneficiary=accounts.beneficiary, **extras)
        )
        assert res.accepted, res
        return d

    return _make


@pytest.fixture
def send(host: InMemoryHost) -> Callable[..., InvocationResult]:
    """send(dispatcher, kind, sender, amount=0, at=None, **params) -> InvocationResult"""

    def _send(
        d: EntryDispatcher,
        kind: TriggerKind | str,
        sender: bytes,
        amount: int = 0,
        at: Optional[int] = None,
        **params: Any,
    ) -> InvocationResult:
        if at is not None:
            host.set_time(at)
        ctx = InvocationContext(
            trigger=TriggerKind.parse(kind),
            sender=sender,
            amount=amount,
            now=host.now(),
            params={k: str(v) for k, v in params.items()},
        )
        return d.dispatch(ctx)

    return _send
