"""
MiniDoc Value Type System
=========================
Tags every document value with one of five types: INT, FLOAT, STRING,
BOOLEAN, DATE. Provides the equality and ordering rules shared by the
predicate evaluator, sorts, group keys and index key encoding.

Ordering across types follows fixed brackets:
  missing/null < number < string < boolean < date < other

Within a bracket values use their natural ordering. INT and FLOAT share
the number bracket, so 1 == 1.0. BOOLEAN never equals a number even
though Python says True == 1.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple


class DataType(Enum):
    """Type tags for document values."""
    INT = "INT"
    FLOAT = "FLOAT"
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"


# ─── Brackets ───────────────────────────────────────────────────────────────

class Bracket:
    """Cross-type sort ranks. Also used as the first byte of index keys."""
    NULL = 0x10
    NUMBER = 0x20
    STRING = 0x30
    BOOLEAN = 0x40
    DATE = 0x50
    OTHER = 0x60


_TYPE_BRACKETS = {
    DataType.INT: Bracket.NUMBER,
    DataType.FLOAT: Bracket.NUMBER,
    DataType.STRING: Bracket.STRING,
    DataType.BOOLEAN: Bracket.BOOLEAN,
    DataType.DATE: Bracket.DATE,
}


def type_of(value: Any) -> Optional[DataType]:
    """
    Return the DataType tag for a Python value, or None if the value
    is not a storable scalar.
    """
    # bool is a subclass of int: check it first
    if isinstance(value, bool):
        return DataType.BOOLEAN
    if isinstance(value, int):
        return DataType.INT
    if isinstance(value, (float, Decimal)):
        return DataType.FLOAT
    if isinstance(value, str):
        return DataType.STRING
    if isinstance(value, (date, datetime)):
        return DataType.DATE
    return None


def is_number(value: Any) -> bool:
    """True for int/float/Decimal, False for bool."""
    return type_of(value) in (DataType.INT, DataType.FLOAT)


def is_nan(value: Any) -> bool:
    if isinstance(value, float):
        return math.isnan(value)
    if isinstance(value, Decimal):
        return value.is_nan()
    return False


def bracket_of(value: Any) -> int:
    """Sort bracket for any value, including None and record-only types."""
    if value is None:
        return Bracket.NULL
    dtype = type_of(value)
    if dtype is None:
        return Bracket.OTHER
    return _TYPE_BRACKETS[dtype]


def family_name(value: Any) -> str:
    """Human-readable comparison family, used in error messages."""
    return {
        Bracket.NULL: "null",
        Bracket.NUMBER: "number",
        Bracket.STRING: "string",
        Bracket.BOOLEAN: "boolean",
        Bracket.DATE: "date",
    }.get(bracket_of(value), type(value).__name__)


# ─── Normalization ──────────────────────────────────────────────────────────

def normalize_date(value) -> datetime:
    """
    Map date/datetime to a naive UTC datetime so they compare with each other.
    A plain date is midnight of that day.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime(value.year, value.month, value.day)


def _normalized(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return normalize_date(value)
    return value


# ─── Equality & ordering ────────────────────────────────────────────────────

def values_equal(left: Any, right: Any) -> bool:
    """
    Equality used by predicates ($eq/$in) and group keys.
    Values of different brackets are never equal.
    """
    if bracket_of(left) != bracket_of(right):
        return False
    return _normalized(left) == _normalized(right)


def same_family(left: Any, right: Any) -> bool:
    """True if the two values can be range-compared."""
    return bracket_of(left) == bracket_of(right) and bracket_of(left) != Bracket.OTHER


def compare_values(left: Any, right: Any) -> int:
    """
    Three-way compare within one family. Caller must check same_family().
    Returns -1, 0 or 1.
    """
    a, b = _normalized(left), _normalized(right)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def sort_key(value: Any) -> Tuple[int, Any]:
    """
    Total-order key for any value (missing passed as None).
    Matches the byte order produced by indexing.key_encoding.
    """
    bracket = bracket_of(value)
    if bracket == Bracket.NULL:
        return (bracket, 0)
    if bracket == Bracket.OTHER:
        return (bracket, repr(value))
    return (bracket, _normalized(value))


def equality_key(value: Any) -> Any:
    """
    Hashable key such that equality_key(a) == equality_key(b)
    iff values_equal(a, b). Dicts and lists (group records) recurse.
    """
    if isinstance(value, dict):
        return ("dict", tuple((k, equality_key(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return ("list", tuple(equality_key(v) for v in value))
    return (bracket_of(value), _normalized(value))


def tag_changed(old: Any, new: Any) -> bool:
    """True if replacing old with new is a real modification (value or tag)."""
    if type_of(old) != type_of(new):
        return True
    return _normalized(old) != _normalized(new)
