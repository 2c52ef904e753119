"""
Prometheus metrics for the vault core.

Instruments
-----------
  • invocations_total{trigger,outcome}   — one per dispatched invocation
  • rejections_total{reason}             — ReasonCode name of each reject
  • emissions_total{kind,outcome}        — outbound payments and their confirmations
  • contributed_units_total              — atomic units recorded by the ledger
  • distribution_dust_units_total        — undistributed remainder of every split
  • invocation_seconds                   — wall time of a full invocation

Label vocabularies are closed; anything outside them is folded into a catch-all
value so series counts stay bounded.

Usage
-----
    from poolvault.metrics import METRICS

    METRICS.record_invocation("PAYMENT", "accepted")
    with METRICS.invocation_timer():
        ...

Construct a private `Metrics(registry=CollectorRegistry())` for tests.
"""

from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter
from typing import Iterable, Iterator

from prometheus_client import REGISTRY, Counter, Histogram

from poolvault.errors import ReasonCode

_TRIGGERS = ("PAYMENT", "INVOKE", "EMISSION_RESULT", "OTHER")
_OUTCOMES = ("accepted", "rejected")
_EMISSION_KINDS = ("settlement", "refund", "coupon", "allocation", "other")
_EMISSION_OUTCOMES = ("accepted", "rejected", "confirmed", "failed")
_REASONS = tuple(rc.name for rc in ReasonCode)

_INVOCATION_BUCKETS = (
    0.0005, 0.001, 0.0025, 0.005,
    0.01, 0.025, 0.05, 0.1,
    0.25, 0.5, 1.0,
)


class Metrics:
    """Container for the vault's Prometheus instruments."""

    def __init__(
        self,
        *,
        namespace: str = "poolvault",
        subsystem: str = "",
        registry=REGISTRY,
        invocation_buckets: Iterable[float] = _INVOCATION_BUCKETS,
    ) -> None:
        common = dict(namespace=namespace, subsystem=subsystem, registry=registry)
        self.invocations_total = Counter(
            "invocations_total",
            "Dispatched invocations, labeled by trigger kind and outcome.",
            labelnames=("trigger", "outcome"),
            **common,
        )
        self.rejections_total = Counter(
            "rejections_total",
            "Rejected invocations, labeled by reason code name.",
            labelnames=("reason",),
            **common,
        )
        self.emissions_total = Counter(
            "emissions_total",
            "Outbound payment emissions and confirmations, labeled by kind and outcome.",
            labelnames=("kind", "outcome"),
            **common,
        )
        self.contributed_units_total = Counter(
            "contributed_units_total",
            "Atomic units recorded as contributions.",
            **common,
        )
        self.distribution_dust_units_total = Counter(
            "distribution_dust_units_total",
            "Atomic units left undistributed by integer flooring.",
            **common,
        )
        self.invocation_seconds = Histogram(
            "invocation_seconds",
            "Wall time spent in a single invocation (seconds).",
            buckets=tuple(invocation_buckets),
            **common,
        )

    # ----- Recording helpers -------------------------------------------------

    def record_invocation(self, trigger: str, outcome: str) -> None:
        if trigger not in _TRIGGERS:
            trigger = "OTHER"
        if outcome not in _OUTCOMES:
            outcome = "rejected"
        self.invocations_total.labels(trigger=trigger, outcome=outcome).inc()

    def record_rejection(self, reason: str) -> None:
        if reason not in _REASONS:
            reason = ReasonCode.BAD_INPUT.name
        self.rejections_total.labels(reason=reason).inc()

    def record_emission(self, kind: str, outcome: str) -> None:
        if kind not in _EMISSION_KINDS:
            kind = "other"
        if outcome not in _EMISSION_OUTCOMES:
            outcome = "rejected"
        self.emissions_total.labels(kind=kind, outcome=outcome).inc()

    def add_contributed(self, units: int) -> None:
        if units > 0:
            self.contributed_units_total.inc(units)

    def add_dust(self, units: int) -> None:
        if units > 0:
            self.distribution_dust_units_total.inc(units)

    @contextmanager
    def invocation_timer(self) -> Iterator[None]:
        start = perf_counter()
        try:
            yield
        finally:
            self.invocation_seconds.observe(perf_counter() - start)


# Default singleton using the global registry
METRICS = Metrics()

__all__ = ["Metrics", "METRICS"]
