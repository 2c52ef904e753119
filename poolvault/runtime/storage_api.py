"""
poolvault.runtime.storage_api — typed get/put over the host's key/value primitive.

`StateStore` is the only component that talks to `HostCapabilities.read_state`
/ `write_state`. It adds:

- key and value length caps (from `RuntimeConfig`)
- typed helpers over the canonical codec (uint, flag, bounded set, asset)
- `CriticalWriteFailure` when the host refuses a write

It holds no business logic; a never-written key reads as the type's default.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional

from poolvault.config import CFG, RuntimeConfig
from poolvault.errors import CodecError, CriticalWriteFailure
from poolvault.logging import get_logger
from poolvault.runtime import codec

if TYPE_CHECKING:  # pragma: no cover
    from poolvault.runtime.host import HostCapabilities

log = get_logger(__name__)


class StateStore:
    def __init__(self, host: "HostCapabilities", config: RuntimeConfig = CFG) -> None:
        self.host = host
        self.config = config

    # --------------------------- validation --------------------------- #

    def _check_key(self, key: bytes) -> bytes:
        if not isinstance(key, (bytes, bytearray)) or len(key) == 0:
            raise CodecError("state key must be non-empty bytes")
        if len(key) > self.config.max_key_bytes:
            raise CodecError(f"state key too long (>{self.config.max_key_bytes} bytes)")
        return bytes(key)

    def _check_value(self, value: bytes) -> bytes:
        if not isinstance(value, (bytes, bytearray)):
            raise CodecError("state value must be bytes")
        if len(value) > self.config.max_value_bytes:
            raise CodecError(f"state value too large (>{self.config.max_value_bytes} bytes)")
        return bytes(value)

    # ----------------------------- raw ------------------------------- #

    def get(self, key: bytes) -> Optional[bytes]:
        return self.host.read_state(self._check_key(key))

    def put(self, key: bytes, value: bytes) -> None:
        k = self._check_key(key)
        if not self.host.write_state(k, self._check_value(value)):
            log.error("critical state write refused", extra={"key": k.decode("ascii", "replace")})
            raise CriticalWriteFailure(k)

    def exists(self, key: bytes) -> bool:
        return self.get(key) is not None

    # ----------------------------- typed ----------------------------- #

    def get_uint(self, key: bytes, default: int = 0) -> int:
        return codec.decode_uint(self.get(key), default=default)

    def put_uint(self, key: bytes, value: int) -> None:
        self.put(key, codec.encode_uint(value))

    def get_flag(self, key: bytes) -> bool:
        return codec.decode_flag(self.get(key))

    def put_flag(self, key: bytes, flag: bool) -> None:
        self.put(key, codec.encode_flag(flag))

    def get_set(self, key: bytes) -> List[bytes]:
        return codec.decode_set(self.get(key))

    def put_set(self, key: bytes, items: Iterable[bytes]) -> None:
        self.put(key, codec.encode_set(items))

    def get_asset(self, key: bytes) -> Optional[str]:
        return codec.decode_asset(self.get(key))

    def put_asset(self, key: bytes, asset: str) -> None:
        self.put(key, codec.encode_asset(asset))


__all__ = ["StateStore"]
