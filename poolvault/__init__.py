"""
poolvault — pooled-contribution vault with proportional distribution.

A tiny, stable façade over the core so hosts and tools can rely on one API:

- version() -> str
- open_vault(host=None, *, config=None, name="vault") -> EntryDispatcher
    Wire a dispatcher over a host (an in-memory one when omitted).
- run_invocation(host, trigger, sender, amount=0, *, params=None, now=None) -> InvocationResult
    Dispatch a single inbound transaction atomically.
- distribute(pool, weights) -> DistributionOutcome
    Integer-exact proportional split.

Heavy modules are imported lazily so `import poolvault` stays cheap for tools
that only need the version or config.
"""

from __future__ import annotations

import importlib
from typing import Any, Optional

from .version import __version__


def version() -> str:
    """Return the poolvault version string."""
    return __version__


def open_vault(host: Any = None, *, config: Any = None, name: str = "vault") -> Any:
    """Return an `EntryDispatcher` bound to `host` (default: a fresh InMemoryHost)."""
    dispatcher = importlib.import_module(".dispatcher", __name__)
    if host is None:
        host = importlib.import_module(".runtime.host", __name__).InMemoryHost()
    if config is None:
        config = importlib.import_module(".config", __name__).CFG
    return dispatcher.EntryDispatcher(host, config=config, name=name)


def run_invocation(host: Any, trigger: Any, sender: Any, amount: int = 0, **kwargs: Any) -> Any:
    dispatcher = importlib.import_module(".dispatcher", __name__)
    return dispatcher.run_invocation(host, trigger, sender, amount, **kwargs)


def distribute(pool: int, weights: Any, *, budget: Optional[Any] = None) -> Any:
    distribution = importlib.import_module(".distribution", __name__)
    return distribution.distribute(pool, weights, budget=budget)


__all__ = ["__version__", "version", "open_vault", "run_invocation", "distribute"]
