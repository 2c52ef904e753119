"""poolvault.version — package version.

`POOLVAULT_VERSION` overrides; otherwise the installed distribution's metadata
is used, falling back to BASE_VERSION for a source checkout.
"""

from __future__ import annotations

import os
from importlib import metadata

# Bump when persisted key layout or reason codes change.
BASE_VERSION = "0.3.0"


def resolve_version() -> str:
    override = os.getenv("POOLVAULT_VERSION")
    if override:
        return override
    try:
        return metadata.version("poolvault")
    except metadata.PackageNotFoundError:
        return BASE_VERSION


__version__ = resolve_version()

__all__ = ["__version__", "BASE_VERSION", "resolve_version"]
