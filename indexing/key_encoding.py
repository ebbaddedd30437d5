"""
MiniDoc Key Encoding
====================
Order-preserving binary encoding for index keys.
Encoded keys compare byte-by-byte in the same order that
storage.types.sort_key() gives the original values, so an index scan
walks documents in query sort order.

Layout of one field component:
  [bracket byte][payload]

  missing/null → bracket only
  number       → IEEE 754 sortable transform of float64 (8 bytes)
                 +0 and -0 normalize to the same encoding.
                 Ints beyond float range clamp to -inf/+inf.
  string       → UTF-8 bytes (lone surrogates passed through),
                 0x00 escaped as 0x00 0x01,
                 terminated by 0x00 0x00.
  boolean      → 0x00 (False) / 0x01 (True)
  date         → XOR sign bit + big-endian int64 microseconds since epoch

Every component is prefix-free, so complementing all bytes of a
component reverses its order. Descending index fields use that.
"""

import math
import struct
from datetime import datetime, timedelta
from typing import Any, Sequence, Tuple

from storage.document import MISSING
from storage.types import Bracket, bracket_of, normalize_date

_EPOCH = datetime(1970, 1, 1)
_MICROSECOND = timedelta(microseconds=1)

IndexKey = Tuple[bytes, ...]


# ─── Encode ─────────────────────────────────────────────────────────────────

def encode_value(value: Any) -> bytes:
    """
    Encode one field value (MISSING and None index as null).
    Raises ValueError for values that cannot be indexed.
    """
    if value is MISSING:
        value = None
    bracket = bracket_of(value)
    head = bytes([bracket])

    if bracket == Bracket.NULL:
        return head
    if bracket == Bracket.NUMBER:
        fval = _to_float(value)
        if fval != fval:
            raise ValueError("NaN values cannot be indexed")
        if fval == 0.0:
            fval = 0.0
        return head + _encode_float(fval)
    if bracket == Bracket.STRING:
        return head + _encode_string(value)
    if bracket == Bracket.BOOLEAN:
        return head + (b"\x01" if value else b"\x00")
    if bracket == Bracket.DATE:
        micros = (normalize_date(value) - _EPOCH) // _MICROSECOND
        return head + _encode_int64(micros)

    raise ValueError(f"Unsupported key type: {type(value).__name__}")


def is_exact_key(value: Any) -> bool:
    """
    False for numbers. Large ints, Decimals and ints past float range can
    share a float64 key with a different number, so range bounds on
    numbers stay inclusive and the filter enforces strictness.
    """
    return bracket_of(value) != Bracket.NUMBER


def encode_component(value: Any, direction: int) -> bytes:
    """Encode a value for an index field with direction 1 or -1."""
    encoded = encode_value(value)
    return complement(encoded) if direction < 0 else encoded


def encode_key(values: Sequence[Any], directions: Sequence[int]) -> IndexKey:
    """Encode a compound key as a tuple of components (one per field)."""
    return tuple(encode_component(v, d) for v, d in zip(values, directions))


def complement(data: bytes) -> bytes:
    """Flip every byte. Reverses the order of prefix-free encodings."""
    return bytes(b ^ 0xFF for b in data)


# ─── Bracket bounds ─────────────────────────────────────────────────────────

def bracket_start(value: Any) -> bytes:
    """
    Exclusive lower bound of the value's bracket (ascending space).
    Bracket bytes are 0x10 apart, so bracket-1 and bracket+1 are never a
    prefix of a real key and stay valid bounds after complement().
    """
    return bytes([bracket_of(value) - 1])


def bracket_end(value: Any) -> bytes:
    """Exclusive upper bound of the value's bracket (ascending space)."""
    return bytes([bracket_of(value) + 1])


# ─── Payload encoders ───────────────────────────────────────────────────────

def _to_float(value: Any) -> float:
    try:
        return float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf


def _encode_int64(val: int) -> bytes:
    """
    XOR the sign bit of a big-endian int64.
    Maps MIN → 0x00.., 0 → 0x80.., MAX → 0xFF.. so binary order == numeric order.
    """
    raw = struct.pack(">q", val)
    return bytes([raw[0] ^ 0x80]) + raw[1:]


def _encode_float(val: float) -> bytes:
    """
    IEEE 754 sortable transform.
    1. Pack as big-endian double (8 bytes).
    2. If positive (sign bit 0): flip sign bit → positives sort after negatives.
    3. If negative (sign bit 1): flip ALL bits → more negative = smaller.
    """
    raw = bytearray(struct.pack(">d", val))
    if raw[0] & 0x80:
        for i in range(8):
            raw[i] ^= 0xFF
    else:
        raw[0] ^= 0x80
    return bytes(raw)


def _encode_string(val: str) -> bytes:
    """
    UTF-8 bytes with null-byte escaping + terminator.
    UTF-8 byte order equals code point order, so this matches str ordering.
    """
    result = bytearray()
    for b in val.encode("utf-8", "surrogatepass"):
        if b == 0x00:
            result.append(0x00)
            result.append(0x01)
        else:
            result.append(b)
    result.append(0x00)
    result.append(0x00)
    return bytes(result)
