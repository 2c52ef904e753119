"""
poolvault.config — runtime caps and bounded-collection sizes.

This module centralizes the numeric limits the vault core runs under. It has
NO third-party deps and is safe to import very early.

Configuration precedence:
  1) Environment variables (POOLVAULT_* / legacy VAULT_*)
  2) Hardcoded safe defaults below

Key env vars:
  - POOLVAULT_DUST_CEILING       (int)   default: 100
  - POOLVAULT_MAX_PARTICIPANTS   (int)   default: 64
  - POOLVAULT_MAX_HOLDERS        (int)   default: 64
  - POOLVAULT_MAX_TOKENS         (int)   default: 128
  - POOLVAULT_MAX_EMISSIONS      (int)   default: 256    (per invocation)
  - POOLVAULT_STEP_LIMIT         (int)   default: 100_000
  - POOLVAULT_ADDRESS_LEN        (int)   default: 20
  - POOLVAULT_MAX_KEY_BYTES      (int)   default: 96
  - POOLVAULT_MAX_VALUE_BYTES    (int)   default: 16_384

Out-of-range values are clamped; unparsable values fall back to the default.
Capacities are further clamped so a full index fits in max_value_bytes, and
max_key_bytes is raised to the longest key the state layout builds.

Usage:
    from poolvault.config import load_config
    CFG = load_config()
    if amount <= CFG.dust_ceiling: ...

Components take a RuntimeConfig argument (defaulting to CFG) so hosts and tests
can run with smaller capacities via `RuntimeConfig.replace(...)`.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional


# ----------------------------- helpers ---------------------------------------


def _raw_env(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        # Secondary prefix (legacy)
        raw = os.getenv(name.replace("POOLVAULT_", "VAULT_", 1))
    return raw


def _env_int(name: str, default: int, *, min_v: int, max_v: int) -> int:
    raw = _raw_env(name)
    if raw is None:
        return default
    try:
        v = int(raw, 0)
    except ValueError:
        return default
    if v < min_v:
        return min_v
    if v > max_v:
        return max_v
    return v


# ------------------------------- config --------------------------------------

# Longest address-derived key is b"invested:<HEX>" / b"refunded:<HEX>".
_ADDRESS_KEY_PREFIX = 9
# b"mpmeta:" + 32-char token id + b":couponsRemaining"
_TOKEN_KEY_MAX = 56
_TOKEN_ID_MAX = 32


@dataclass(frozen=True)
class RuntimeConfig:
    # Classification
    dust_ceiling: int

    # Bounded collections
    max_participants: int
    max_holders: int
    max_tokens: int

    # Per-invocation caps
    max_emissions: int
    step_limit: int

    # Encoding limits
    address_len: int
    max_key_bytes: int
    max_value_bytes: int

    def __post_init__(self) -> None:
        # A full index fits in one state value; every built key fits the key cap.
        key_floor = max(_ADDRESS_KEY_PREFIX + 2 * self.address_len, _TOKEN_KEY_MAX)
        if self.max_key_bytes < key_floor:
            object.__setattr__(self, "max_key_bytes", key_floor)
        value_floor = max(self.address_len, _TOKEN_ID_MAX) + 1
        if self.max_value_bytes < value_floor:
            object.__setattr__(self, "max_value_bytes", value_floor)

        per_address = self.max_value_bytes // (self.address_len + 1)
        for name in ("max_participants", "max_holders"):
            if getattr(self, name) > per_address:
                object.__setattr__(self, name, per_address)
        per_token = self.max_value_bytes // (_TOKEN_ID_MAX + 1)
        if self.max_tokens > per_token:
            object.__setattr__(self, "max_tokens", per_token)

    def replace(self, **changes: Any) -> "RuntimeConfig":
        return dataclasses.replace(self, **changes)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "dust_ceiling": self.dust_ceiling,
            "max_participants": self.max_participants,
            "max_holders": self.max_holders,
            "max_tokens": self.max_tokens,
            "max_emissions": self.max_emissions,
            "step_limit": self.step_limit,
            "address_len": self.address_len,
            "max_key_bytes": self.max_key_bytes,
            "max_value_bytes": self.max_value_bytes,
        }


@lru_cache(maxsize=1)
def load_config() -> RuntimeConfig:
    """
    Build and cache a RuntimeConfig from environment + safe defaults.
    """
    return RuntimeConfig(
        dust_ceiling=_env_int("POOLVAULT_DUST_CEILING", 100, min_v=0, max_v=1_000_000),
        max_participants=_env_int("POOLVAULT_MAX_PARTICIPANTS", 64, min_v=1, max_v=4096),
        max_holders=_env_int("POOLVAULT_MAX_HOLDERS", 64, min_v=1, max_v=4096),
        max_tokens=_env_int("POOLVAULT_MAX_TOKENS", 128, min_v=1, max_v=4096),
        max_emissions=_env_int("POOLVAULT_MAX_EMISSIONS", 256, min_v=1, max_v=10_000),
        step_limit=_env_int("POOLVAULT_STEP_LIMIT", 100_000, min_v=100, max_v=50_000_000),
        address_len=_env_int("POOLVAULT_ADDRESS_LEN", 20, min_v=1, max_v=64),
        max_key_bytes=_env_int("POOLVAULT_MAX_KEY_BYTES", 96, min_v=16, max_v=256),
        max_value_bytes=_env_int("POOLVAULT_MAX_VALUE_BYTES", 16_384, min_v=64, max_v=1_048_576),
    )


# Eagerly construct a module-level singleton for convenience, but keep load_config()
# as the canonical accessor (cached).
CFG: RuntimeConfig = load_config()

__all__ = ["RuntimeConfig", "load_config", "CFG"]
