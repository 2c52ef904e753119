"""
poolvault.errors
----------------

A small, consistent error system for the vault core.

Design goals
------------
- One root `VaultError` with a numeric `ReasonCode` and optional `data`.
- Concrete subclasses for the rejection families the dispatcher reports:
  policy violations, critical write failures, emission failures, exhausted
  step budgets, codec and configuration problems.
- Safe JSON representation (`to_dict`) suitable for logs and CLI output.
- Clear separation of *retryable* vs *permanent* failures.

Only `VaultError` turns into a reject result; any other exception is a
programming error and propagates after the invocation is rolled back.

This module uses only stdlib to avoid boot-time dependency cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Mapping


class ReasonCode(IntEnum):
    OK = 0

    # Fundraiser rollback codes
    FUNDRAISING_CLOSED = 1
    DEADLINE_PASSED = 2
    ALLOCATION_FAILED = 3
    NO_BENEFICIARY = 4
    SETTLEMENT_FAILED = 5
    REFUNDS_UNAVAILABLE = 6
    ALREADY_REFUNDED = 7
    NO_INVESTMENT = 8
    REFUND_FAILED = 9
    BAD_TRANSACTION = 10
    BAD_SENDER = 11
    BAD_AMOUNT = 12

    # Extensions
    UNAUTHORIZED = 13
    CAP_EXCEEDED = 14
    NOT_CONFIGURED = 15
    UNKNOWN_COMMAND = 16
    WRITE_FAILED = 17
    BUDGET_EXHAUSTED = 18
    BAD_STATE = 19
    CODEC = 20
    ALREADY_CONFIGURED = 21
    UNKNOWN_EMISSION = 22
    BAD_INPUT = 23


@dataclass(eq=False)
class VaultError(Exception):
    """
    Root error for the vault core.

    Attributes
    ----------
    code: ReasonCode
        Numeric, stable reason code reported in reject results.
    message: str
        Short human-readable reason.
    data: dict
        Optional machine data (addresses as hex, amounts, keys).
    retryable: bool
        Whether the same request may succeed later without changing inputs.
    """

    code: ReasonCode
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    retryable: bool = False

    def __post_init__(self) -> None:
        super().__init__(f"{self.code.name}: {self.message}")

    def with_context(self, **ctx: Any) -> "VaultError":
        """Return a *new* error with extra context merged (does not mutate)."""
        d = dict(self.data)
        d.update({k: _coerce_json(v) for k, v in ctx.items()})
        err = VaultError(code=self.code, message=self.message, data=d, retryable=self.retryable)
        err.__class__ = type(self)
        return err

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": int(self.code),
            "reason": self.code.name,
            "message": self.message,
            "data": _coerce_json(self.data),
            "retryable": self.retryable,
        }

    def __str__(self) -> str:
        parts = [f"{self.code.name}({int(self.code)}): {self.message}"]
        if self.data:
            parts.append("[" + ", ".join(f"{k}={v}" for k, v in self.data.items()) + "]")
        return " ".join(parts)


class PolicyViolation(VaultError):
    """Wrong lifecycle state, duplicate request, or unauthorized sender."""

    def __init__(self, code: ReasonCode, message: str, **data: Any) -> None:
        super().__init__(code=code, message=message, data=_jsonmap(data))


class CriticalWriteFailure(VaultError):
    def __init__(self, key: bytes, message: str = "state write failed") -> None:
        super().__init__(
            code=ReasonCode.WRITE_FAILED,
            message=message,
            data={"key": key.decode("ascii", "replace")},
            retryable=True,
        )


class EmissionFailure(VaultError):
    """A payment could not be queued by the host."""

    def __init__(self, code: ReasonCode, message: str, **data: Any) -> None:
        super().__init__(code=code, message=message, data=_jsonmap(data), retryable=True)


class BudgetExhausted(VaultError):
    def __init__(self, used: int, limit: int, need: int) -> None:
        super().__init__(
            code=ReasonCode.BUDGET_EXHAUSTED,
            message="step budget exhausted",
            data={"used": used, "limit": limit, "need": need},
            retryable=False,
        )


class CodecError(VaultError):
    def __init__(self, message: str = "malformed value", **data: Any) -> None:
        super().__init__(code=ReasonCode.CODEC, message=message, data=_jsonmap(data))


class ConfigError(VaultError):
    def __init__(self, message: str = "vault not configured", code: ReasonCode = ReasonCode.NOT_CONFIGURED, **data: Any) -> None:
        super().__init__(code=code, message=message, data=_jsonmap(data))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _coerce_json(v: Any) -> Any:
    if v is None or isinstance(v, (bool, int, float, str)):
        return v
    if isinstance(v, (bytes, bytearray)):
        return bytes(v).hex().upper()
    if isinstance(v, Mapping):
        return {str(k): _coerce_json(x) for k, x in v.items()}
    if isinstance(v, (list, tuple, set)):
        return [_coerce_json(x) for x in v]
    return str(v)


def _jsonmap(d: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: _coerce_json(v) for k, v in d.items()}


__all__ = [
    "ReasonCode",
    "VaultError",
    "PolicyViolation",
    "CriticalWriteFailure",
    "EmissionFailure",
    "BudgetExhausted",
    "CodecError",
    "ConfigError",
]
