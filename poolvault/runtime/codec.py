"""
poolvault.runtime.codec — canonical encodings for persisted vault state.

Every value the vault writes goes through exactly one encoder here, so a
stored byte string always has a single canonical form.

Integers
--------
Canonical decimal ASCII: digits only, no sign, no leading zeros (except "0"),
range-checked to u64 unless another width is requested.

    encode_uint(1000)    -> b"1000"
    decode_uint(b"1000") -> 1000
    decode_uint(None)    -> 0          (never-written key)
    decode_uint(b"007")  -> CodecError

Flags
-----
b"1" is true; an absent key or b"0" is false. Anything else is malformed.

Bounded sets
------------
Ordered, duplicate-free address lists are stored as a concatenation of
length-prefixed items (1 byte length, 1..255 bytes payload):

    encode_set([b"\\xaa"*20, b"\\xbb"*20]) -> b"\\x14" + b"\\xaa"*20 + b"\\x14" + b"\\xbb"*20

Key layout
----------
    status                           vault status (decimal VaultStatus)
    total_raised                     aggregate contributions
    target_amount / deadline / beneficiary / settlement_asset
    hard_cap / authority / token_asset / token_supply
    contributors_index               bounded set of contributor addresses
    invested:<HEX>                   per-participant contribution
    refunded:<HEX>                   refund flag
    holders_index / holder:<HEX>     coupon holders and their units
    tokens_index                     bounded set of token ids
    mpmeta:<token>:<field>           maturityDate | isMatured | couponsRemaining
    alloc:<HEX> / alloc_staged       staged token allocation
    emit_seq / emission:<id>:<field> outbound payment records
    settlement_emission / settlement_state
    coupon:last_*                    coupon bookkeeping
"""

from __future__ import annotations

import re
from typing import Final, Iterable, List

from poolvault.errors import CodecError

U64_MAX: Final[int] = (1 << 64) - 1

_CANONICAL_UINT = re.compile(rb"(0|[1-9][0-9]*)\Z")
_TOKEN_ID = re.compile(r"[A-Za-z0-9_.\-]{1,32}\Z")
_ASSET = re.compile(r"[A-Za-z0-9_.:\-]{1,64}\Z")

# ---------- Scalar keys ----------

K_STATUS: Final[bytes] = b"status"
K_TOTAL: Final[bytes] = b"total_raised"
K_TARGET: Final[bytes] = b"target_amount"
K_DEADLINE: Final[bytes] = b"deadline"
K_BENEFICIARY: Final[bytes] = b"beneficiary"
K_ASSET: Final[bytes] = b"settlement_asset"
K_HARD_CAP: Final[bytes] = b"hard_cap"
K_AUTHORITY: Final[bytes] = b"authority"
K_TOKEN_ASSET: Final[bytes] = b"token_asset"
K_TOKEN_SUPPLY: Final[bytes] = b"token_supply"

K_CONTRIBUTORS: Final[bytes] = b"contributors_index"
K_HOLDERS: Final[bytes] = b"holders_index"
K_TOKENS: Final[bytes] = b"tokens_index"

K_ALLOC_STAGED: Final[bytes] = b"alloc_staged"
K_EMIT_SEQ: Final[bytes] = b"emit_seq"
K_SETTLEMENT_EMISSION: Final[bytes] = b"settlement_emission"
K_SETTLEMENT_STATE: Final[bytes] = b"settlement_state"

K_COUPON_LAST_POOL: Final[bytes] = b"coupon:last_pool"
K_COUPON_LAST_COUNT: Final[bytes] = b"coupon:last_count"
K_COUPON_LAST_TIME: Final[bytes] = b"coupon:last_time"
K_COUPON_LAST_DISTRIBUTED: Final[bytes] = b"coupon:last_distributed"
K_COUPON_LAST_FAILED: Final[bytes] = b"coupon:last_failed"

# ---------- Prefixes ----------

_P_INVESTED: Final[bytes] = b"invested:"
_P_REFUNDED: Final[bytes] = b"refunded:"
_P_HOLDER: Final[bytes] = b"holder:"
_P_ALLOC: Final[bytes] = b"alloc:"
_P_TOKEN: Final[bytes] = b"mpmeta:"
_P_EMISSION: Final[bytes] = b"emission:"

TOKEN_FIELDS: Final = ("maturityDate", "isMatured", "couponsRemaining")
EMISSION_FIELDS: Final = ("kind", "dest", "amount", "asset", "state")


# ---------- Integers ----------

def encode_uint(n: int, *, bits: int = 64) -> bytes:
    if isinstance(n, bool) or not isinstance(n, int):
        raise CodecError("integer expected", got=type(n).__name__)
    if n < 0 or n.bit_length() > bits:
        raise CodecError(f"integer out of range for u{bits}", value=str(n))
    return str(n).encode("ascii")


def decode_uint(raw: bytes | None, *, bits: int = 64, default: int = 0) -> int:
    if raw is None:
        return default
    if not _CANONICAL_UINT.match(raw):
        raise CodecError("non-canonical decimal integer", raw=raw[:32].decode("ascii", "replace"))
    n = int(raw)
    if n.bit_length() > bits:
        raise CodecError(f"integer out of range for u{bits}", value=str(n))
    return n


def parse_uint(text: str | int, *, bits: int = 64) -> int:
    """Parse a user-supplied decimal (str or int) into a range-checked integer."""
    if isinstance(text, int) and not isinstance(text, bool):
        return decode_uint(encode_uint(text, bits=bits), bits=bits)
    if not isinstance(text, str):
        raise CodecError("integer expected", got=type(text).__name__)
    s = text.strip().replace("_", "")
    if not re.fullmatch(r"[0-9]+", s):
        raise CodecError("decimal integer expected", value=text)
    return decode_uint(str(int(s)).encode("ascii"), bits=bits)


# ---------- Flags & strings ----------

def encode_flag(flag: bool) -> bytes:
    return b"1" if flag else b"0"


def decode_flag(raw: bytes | None) -> bool:
    if raw is None or raw == b"0":
        return False
    if raw == b"1":
        return True
    raise CodecError("malformed flag", raw=raw[:8].decode("ascii", "replace"))


def encode_asset(asset: str) -> bytes:
    if not isinstance(asset, str) or not _ASSET.match(asset):
        raise CodecError("invalid asset identifier", asset=str(asset))
    return asset.encode("ascii")


def decode_asset(raw: bytes | None) -> str | None:
    if raw is None:
        return None
    try:
        return raw.decode("ascii")
    except UnicodeDecodeError as e:
        raise CodecError("malformed asset identifier") from e


# ---------- Addresses ----------

def addr_hex(address: bytes) -> str:
    """Uppercase hex form used in state keys and logs."""
    return bytes(address).hex().upper()


def check_address(address: bytes, length: int) -> bytes:
    if not isinstance(address, (bytes, bytearray)) or len(address) != length:
        raise CodecError(f"address must be {length} bytes")
    return bytes(address)


def parse_address(text: str, length: int) -> bytes:
    """Parse a hex address (with or without 0x prefix)."""
    s = text.strip()
    if s[:2].lower() == "0x":
        s = s[2:]
    try:
        raw = bytes.fromhex(s)
    except ValueError as e:
        raise CodecError("address is not valid hex", value=text) from e
    return check_address(raw, length)


# ---------- Bounded sets ----------

def encode_set(items: Iterable[bytes]) -> bytes:
    out = bytearray()
    for item in items:
        n = len(item)
        if n == 0 or n > 255:
            raise CodecError("set item length must be 1..255")
        out.append(n)
        out += item
    return bytes(out)


def decode_set(raw: bytes | None) -> List[bytes]:
    if not raw:
        return []
    items: List[bytes] = []
    i, end = 0, len(raw)
    while i < end:
        n = raw[i]
        if n == 0 or i + 1 + n > end:
            raise CodecError("truncated set encoding", offset=i)
        items.append(bytes(raw[i + 1 : i + 1 + n]))
        i += 1 + n
    return items


# ---------- Token ids ----------

def check_token_id(token_id: str) -> str:
    if not isinstance(token_id, str) or not _TOKEN_ID.match(token_id):
        raise CodecError("token id must be 1-32 chars of [A-Za-z0-9_.-]", token=str(token_id))
    return token_id


# ---------- Key builders ----------

def k_invested(address: bytes) -> bytes:
    return _P_INVESTED + addr_hex(address).encode("ascii")


def k_refunded(address: bytes) -> bytes:
    return _P_REFUNDED + addr_hex(address).encode("ascii")


def k_holder(address: bytes) -> bytes:
    return _P_HOLDER + addr_hex(address).encode("ascii")


def k_alloc(address: bytes) -> bytes:
    return _P_ALLOC + addr_hex(address).encode("ascii")


def k_token(token_id: str, field: str) -> bytes:
    if field not in TOKEN_FIELDS:
        raise CodecError("unknown token field", field=field)
    return _P_TOKEN + check_token_id(token_id).encode("ascii") + b":" + field.encode("ascii")


def k_emission(emission_id: int, field: str) -> bytes:
    if field not in EMISSION_FIELDS:
        raise CodecError("unknown emission field", field=field)
    return _P_EMISSION + encode_uint(emission_id) + b":" + field.encode("ascii")


__all__ = [
    "U64_MAX",
    "TOKEN_FIELDS",
    "EMISSION_FIELDS",
    "encode_uint",
    "decode_uint",
    "parse_uint",
    "encode_flag",
    "decode_flag",
    "encode_asset",
    "decode_asset",
    "addr_hex",
    "check_address",
    "parse_address",
    "encode_set",
    "decode_set",
    "check_token_id",
    "k_invested",
    "k_refunded",
    "k_holder",
    "k_alloc",
    "k_token",
    "k_emission",
]
