"""
poolvault.runtime — the seam between the vault core and its host.

- codec:        canonical value encodings and the state key layout
- journal:      overlay journal backing transactional invocations
- storage_api:  StateStore, typed access to host state
- context:      TriggerKind, InvocationContext
- host:         HostCapabilities protocol and the InMemoryHost fake
- emitter:      outbound payments and confirmation records
- budget:       StepBudget for bounded loops
"""

from __future__ import annotations

from .budget import StepBudget
from .context import InvocationContext, TriggerKind
from .emitter import EmissionRecord, Emitter, PaymentInstruction
from .host import HostCapabilities, InMemoryHost
from .journal import Journal
from .storage_api import StateStore

__all__ = [
    "StepBudget",
    "InvocationContext",
    "TriggerKind",
    "EmissionRecord",
    "Emitter",
    "PaymentInstruction",
    "HostCapabilities",
    "InMemoryHost",
    "Journal",
    "StateStore",
]
