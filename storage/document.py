"""
MiniDoc Documents
=================
A document is a plain dict of field name -> tagged scalar value, plus the
store-assigned identifier under "_id".

Field name rules:
  - non-empty string
  - must not start with "$" (reserved for operators)
  - must not contain "." (reserved for paths into records)
"""

import binascii
import os
import time
from typing import Any, Dict

from storage.errors import InvalidDocumentError
from storage.types import type_of, is_nan

ID_FIELD = "_id"

Document = Dict[str, Any]


class _Missing:
    """Marker for an absent field. Distinct from None (null)."""
    __slots__ = ()

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()


def generate_object_id() -> str:
    """Generate a 24-char hex string similar to Mongo ObjectId."""
    ts = int(time.time())
    rand = binascii.b2a_hex(os.urandom(8)).decode("ascii")
    return f"{ts:08x}{rand}"[:24]


def get_path(record: Dict[str, Any], path: str) -> Any:
    """
    Resolve a field name or dotted path ("_id.author") against a document
    or record. Returns MISSING if any segment is absent.
    """
    if path in record:
        return record[path]
    if "." not in path:
        return MISSING
    cur: Any = record
    for part in path.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return MISSING
    return cur


def validate_field_name(name: Any) -> None:
    if not isinstance(name, str) or not name:
        raise InvalidDocumentError(f"Field name must be a non-empty string, got {name!r}")
    if name.startswith("$"):
        raise InvalidDocumentError(f"Field name '{name}' must not start with '$'")
    if "." in name:
        raise InvalidDocumentError(f"Field name '{name}' must not contain '.'")


def validate_value(name: str, value: Any) -> None:
    if type_of(value) is None:
        raise InvalidDocumentError(
            f"Field '{name}' has unsupported type {type(value).__name__}; "
            f"expected string, integer, float, boolean or date"
        )
    if is_nan(value):
        raise InvalidDocumentError(f"Field '{name}' is NaN")


def validate_identifier(value: Any) -> None:
    # bool is an int subclass but not a usable identifier
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidDocumentError(f"_id must be a string or integer, got {value!r}")


def validate_document(doc: Dict[str, Any]) -> None:
    """Raise InvalidDocumentError unless every field is a valid tagged value."""
    if not isinstance(doc, dict):
        raise InvalidDocumentError(f"Document must be a dict, got {type(doc).__name__}")
    for name, value in doc.items():
        if name == ID_FIELD:
            validate_identifier(value)
            continue
        validate_field_name(name)
        validate_value(name, value)
