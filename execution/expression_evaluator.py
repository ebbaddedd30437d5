"""
MiniDoc Expression Evaluator
============================
Runtime evaluation of pipeline expressions against a record.

Features:
- Field references with dotted paths ("$_id.author")
- Null propagation: a missing or null operand makes the result None
- Arithmetic with type promotion (INT+FLOAT -> FLOAT, Decimal -> float)
- Truncated $mod (sign follows the dividend)
- String concatenation and case conversion
- Type conversion ($toString, $toInt, $toDouble)
- Runtime error handling (division by zero, bad conversions)
"""

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict

from parser.ast_nodes import Expression, FieldRef, Literal, OperatorExpr, DocumentExpr
from storage.document import MISSING, get_path
from storage.errors import ExpressionError
from storage.types import is_number

Record = Dict[str, Any]


def _arith(value: Any) -> Any:
    """Operand for arithmetic. Decimal mixes with float, so promote it."""
    if isinstance(value, Decimal):
        return float(value)
    return value


def format_value(value: Any) -> str:
    """String form used by $toString and $concat callers."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class ExpressionEvaluator:
    """
    Evaluates expression ASTs against a record.
    Returns a Python value, or None for null / missing.
    """

    def evaluate(self, expr: Expression, record: Record) -> Any:
        if isinstance(expr, Literal):
            return expr.value

        if isinstance(expr, FieldRef):
            value = get_path(record, expr.path)
            return None if value is MISSING else value

        if isinstance(expr, DocumentExpr):
            return {name: self.evaluate(sub, record) for name, sub in expr.fields}

        if isinstance(expr, OperatorExpr):
            args = [self.evaluate(a, record) for a in expr.args]
            return self._apply(expr.op, args)

        raise ExpressionError(f"Expression type {type(expr).__name__} not supported")

    def _apply(self, op: str, args: list) -> Any:
        handler = getattr(self, "_op_" + op[1:], None)
        if handler is None:
            raise ExpressionError(f"Unknown expression operator {op}")
        return handler(args)

    # ─── Arithmetic ─────────────────────────────────────────────────

    def _numbers(self, op: str, args: list) -> list:
        for value in args:
            if value is not None and not is_number(value):
                raise ExpressionError(f"{op} only supports numeric operands, got {value!r}")
        return [_arith(v) for v in args]

    def _op_add(self, args):
        nums = self._numbers("$add", args)
        if any(v is None for v in nums):
            return None
        return sum(nums)

    def _op_multiply(self, args):
        nums = self._numbers("$multiply", args)
        if any(v is None for v in nums):
            return None
        return math.prod(nums)

    def _op_subtract(self, args):
        left, right = self._numbers("$subtract", args)
        if left is None or right is None:
            return None
        return left - right

    def _op_divide(self, args):
        left, right = self._numbers("$divide", args)
        if left is None or right is None:
            return None
        if right == 0:
            raise ExpressionError("Division by zero")
        return left / right

    def _op_mod(self, args):
        left, right = self._numbers("$mod", args)
        if left is None or right is None:
            return None
        if right == 0:
            raise ExpressionError("Modulo by zero")
        if isinstance(left, int) and isinstance(right, int):
            # Truncated remainder: sign of the dividend
            remainder = abs(left) % abs(right)
            return -remainder if left < 0 else remainder
        return math.fmod(left, right)

    # ─── Strings ────────────────────────────────────────────────────

    def _op_concat(self, args):
        if any(v is None for v in args):
            return None
        for value in args:
            if not isinstance(value, str):
                raise ExpressionError(f"$concat only supports strings, got {value!r}")
        return "".join(args)

    def _op_toLower(self, args):
        (value,) = args
        return "" if value is None else format_value(value).lower()

    def _op_toUpper(self, args):
        (value,) = args
        return "" if value is None else format_value(value).upper()

    # ─── Conversion ─────────────────────────────────────────────────

    def _op_toString(self, args):
        (value,) = args
        if value is None:
            return None
        return format_value(value)

    def _op_toInt(self, args):
        (value,) = args
        if value is None:
            return None
        if isinstance(value, bool):
            return int(value)
        try:
            if isinstance(value, str):
                return int(value.strip())
            if is_number(value):
                return int(value)
        except (ValueError, OverflowError) as e:
            raise ExpressionError(f"$toInt cannot convert {value!r}") from e
        raise ExpressionError(f"$toInt cannot convert {value!r}")

    def _op_toDouble(self, args):
        (value,) = args
        if value is None:
            return None
        if isinstance(value, bool):
            return float(value)
        try:
            if isinstance(value, str):
                return float(value.strip())
            if is_number(value):
                return float(value)
        except ValueError as e:
            raise ExpressionError(f"$toDouble cannot convert {value!r}") from e
        raise ExpressionError(f"$toDouble cannot convert {value!r}")
