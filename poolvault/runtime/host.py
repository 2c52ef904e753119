"""
poolvault.runtime.host — the capability set the vault needs from its host.

The vault never touches persistence, clocks or the payment rail directly; it
is handed a `HostCapabilities` implementation:

    read_state(key) -> Optional[bytes]
    write_state(key, value) -> bool          False = write refused
    emit_payment(instr) -> bool              False = payment rejected
    now() -> int                             ledger close time
    begin() / finish(accepted)               invocation boundary

Everything written or emitted between `begin()` and `finish()` is
provisional: `finish(True)` makes it durable, `finish(False)` discards all of
it, so a rejected invocation leaves no trace.

`InMemoryHost` is the in-process implementation used by tests and the CLI. It
stages work in a `Journal`, limits emissions per invocation, and can be told
to fail writes or payments to exercise the rollback paths.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, runtime_checkable

from poolvault.logging import get_logger
from poolvault.runtime.emitter import PaymentInstruction
from poolvault.runtime.journal import Journal

log = get_logger(__name__)


@runtime_checkable
class HostCapabilities(Protocol):
    def read_state(self, key: bytes) -> Optional[bytes]: ...
    def write_state(self, key: bytes, value: bytes) -> bool: ...
    def emit_payment(self, instr: PaymentInstruction) -> bool: ...
    def now(self) -> int: ...
    def begin(self) -> None: ...
    def finish(self, accepted: bool) -> None: ...


class InMemoryHost:
    """
    Dict-backed host with transactional invocations.

    Failure injection (all mutable attributes, flip them between invocations):
      - fail_writes:          set of keys whose writes are refused
      - fail_all_writes:      refuse every write
      - fail_emissions_to:    set of destinations whose payments are rejected
      - reject_all_emissions: reject every payment
      - emission_slots:       max accepted payments per invocation (None = no cap)
    """

    def __init__(
        self,
        now: int = 0,
        *,
        state: Optional[Dict[bytes, bytes]] = None,
        emission_slots: Optional[int] = None,
    ) -> None:
        self._state: Dict[bytes, bytes] = dict(state or {})
        self._journal = Journal(self._state)
        self._now = int(now)
        self.outbox: List[PaymentInstruction] = []
        self.emission_slots = emission_slots
        self._slots_used = 0

        self.fail_writes: Set[bytes] = set()
        self.fail_all_writes = False
        self.fail_emissions_to: Set[bytes] = set()
        self.reject_all_emissions = False

    # ------------------------------ clock ------------------------------ #

    def now(self) -> int:
        return self._now

    def set_time(self, t: int) -> None:
        if t < 0:
            raise ValueError("time must be non-negative")
        self._now = int(t)

    def advance(self, dt: int) -> int:
        self.set_time(self._now + int(dt))
        return self._now

    # ------------------------------ state ------------------------------ #

    def read_state(self, key: bytes) -> Optional[bytes]:
        return self._journal.get(key)

    def write_state(self, key: bytes, value: bytes) -> bool:
        if self.fail_all_writes or key in self.fail_writes:
            log.debug("injected write failure", extra={"key": key.decode("ascii", "replace")})
            return False
        self._journal.set(key, value)
        return True

    def state_items(self) -> Iterable[tuple]:
        return self._journal.items()

    # ----------------------------- payments ---------------------------- #

    def emit_payment(self, instr: PaymentInstruction) -> bool:
        if self.reject_all_emissions or instr.destination in self.fail_emissions_to:
            return False
        if self.emission_slots is not None and self._slots_used >= self.emission_slots:
            return False
        self._slots_used += 1
        self._journal.record_effect(instr)
        if self._journal.depth() == 0:
            self.outbox.extend(self._journal.flush_effects())
        return True

    def staged_payments(self) -> List[PaymentInstruction]:
        return list(self._journal.staged_effects())

    # ---------------------------- boundary ----------------------------- #

    def in_invocation(self) -> bool:
        return self._journal.depth() > 0

    def begin(self) -> None:
        if self._journal.depth() > 0:
            raise RuntimeError("invocation already open")
        self._journal.begin()
        self._slots_used = 0

    def finish(self, accepted: bool) -> None:
        if self._journal.depth() == 0:
            raise RuntimeError("no open invocation")
        if accepted:
            self.outbox.extend(self._journal.commit())
        else:
            self._journal.revert_all()
        self._slots_used = 0

    # ---------------------------- snapshots ---------------------------- #

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly dump of committed state, clock and outbox."""
        return {
            "now": self._now,
            "state": {k.decode("ascii"): v.hex() for k, v in sorted(self._state.items())},
            "outbox": [p.to_dict() for p in self.outbox],
        }

    @classmethod
    def load(cls, snap: Dict[str, Any]) -> "InMemoryHost":
        state = {str(k).encode("ascii"): bytes.fromhex(str(v)) for k, v in dict(snap.get("state") or {}).items()}
        host = cls(now=int(snap.get("now", 0)), state=state)
        host.outbox = [PaymentInstruction.from_dict(p) for p in snap.get("outbox") or []]
        return host

    def raw_state(self) -> Dict[bytes, bytes]:
        """Committed state (copy)."""
        return dict(self._state)


__all__ = ["HostCapabilities", "InMemoryHost"]
