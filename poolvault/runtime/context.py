"""
poolvault.runtime.context — the per-invocation environment.

An `InvocationContext` carries what the host tells the vault about the
inbound transaction: its trigger kind, sender, attached amount, the ledger
time and (for INVOKE / EMISSION_RESULT) decoded string parameters. It is pure
data; validation happens once at construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from poolvault.errors import PolicyViolation, ReasonCode


class TriggerKind(str, Enum):
    PAYMENT = "PAYMENT"
    INVOKE = "INVOKE"
    EMISSION_RESULT = "EMISSION_RESULT"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Union[str, "TriggerKind"]) -> "TriggerKind":
        if isinstance(value, TriggerKind):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.OTHER


def to_bytes(value: Union[bytes, bytearray, str]) -> bytes:
    """Coerce raw bytes or a hex string (optional 0x) to bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        h = value.strip()
        h = h[2:] if h.startswith(("0x", "0X")) else h
        try:
            return bytes.fromhex(h)
        except ValueError as e:
            raise PolicyViolation(ReasonCode.BAD_SENDER, "invalid hex address", value=value) from e
    raise PolicyViolation(ReasonCode.BAD_SENDER, f"cannot convert {type(value).__name__} to address")


@dataclass(frozen=True)
class InvocationContext:
    """
    Fields
    ------
    trigger:  what kind of inbound transaction this is.
    sender:   originating address (raw bytes).
    amount:   attached value in atomic units (0 for non-payments).
    now:      ledger close time.
    params:   decoded string parameters (command, token, emission_id, ...).
    tx_id:    optional opaque identifier, used only for logging.
    """

    trigger: TriggerKind
    sender: bytes
    amount: int = 0
    now: int = 0
    params: Mapping[str, str] = field(default_factory=dict)
    tx_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "trigger", TriggerKind.parse(self.trigger))
        object.__setattr__(self, "sender", to_bytes(self.sender))
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount < 0:
            raise PolicyViolation(ReasonCode.BAD_AMOUNT, "amount must be a non-negative int")
        if isinstance(self.now, bool) or not isinstance(self.now, int) or self.now < 0:
            raise PolicyViolation(ReasonCode.BAD_TRANSACTION, "ledger time must be a non-negative int")
        params = {str(k): str(v) for k, v in dict(self.params or {}).items()}
        object.__setattr__(self, "params", MappingProxyType(params))

    def param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.params.get(name, default)

    @property
    def command(self) -> str:
        return (self.params.get("command") or "").strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger.value,
            "sender": self.sender.hex().upper(),
            "amount": self.amount,
            "now": self.now,
            "params": dict(self.params),
            "tx_id": self.tx_id,
        }


__all__ = ["TriggerKind", "InvocationContext", "to_bytes"]
