"""
MiniDoc Predicate Evaluator
===========================
Evaluates filter trees against a document.

Rules:
- Comparisons on absent fields are False (never raise). $exists is the
  only operator that can select absence.
- Equality is exact: strings are case-sensitive, booleans never equal
  numbers, INT and FLOAT compare by value.
- Range operators ($gt/$gte/$lt/$lte) between a present field and an
  operand of another type family raise InvalidPredicateError. Every
  range comparison in the tree is checked before any clause runs.
- And/Or short-circuit left to right. Neither the result nor the
  error depends on clause order.
"""

import re
from functools import lru_cache
from typing import Any, Dict, Iterable, List

from parser.ast_nodes import Predicate, Comparison, ComparisonOp, And, Or, RANGE_OPS
from storage.document import MISSING, get_path
from storage.errors import InvalidPredicateError
from storage.types import (
    type_of, values_equal, same_family, compare_values, family_name, is_nan,
)


@lru_cache(maxsize=256)
def _compile(pattern: str):
    return re.compile(pattern)


class PredicateEvaluator:
    """
    Evaluates predicate trees. Stateless; one instance can be shared.
    """

    # ─── Validation ─────────────────────────────────────────────────

    def validate(self, predicate: Predicate) -> None:
        """
        Reject malformed trees before any document is touched.
        Raises InvalidPredicateError.
        """
        if isinstance(predicate, (And, Or)):
            if isinstance(predicate, Or) and not predicate.clauses:
                raise InvalidPredicateError("$or requires at least one clause")
            for clause in predicate.clauses:
                self.validate(clause)
            return
        if not isinstance(predicate, Comparison):
            raise InvalidPredicateError(f"Unsupported predicate node {type(predicate).__name__}")
        self._validate_comparison(predicate)

    def _validate_comparison(self, cmp: Comparison) -> None:
        if not isinstance(cmp.field, str) or not cmp.field:
            raise InvalidPredicateError(f"Comparison field must be a non-empty string, got {cmp.field!r}")
        if not isinstance(cmp.op, ComparisonOp):
            raise InvalidPredicateError(f"Unsupported operator {cmp.op!r}")

        if cmp.op == ComparisonOp.EXISTS:
            if not isinstance(cmp.value, bool):
                raise InvalidPredicateError(f"{cmp.field}: $exists requires a bool")
            return
        if cmp.op == ComparisonOp.REGEX:
            if not isinstance(cmp.value, str):
                raise InvalidPredicateError(f"{cmp.field}: $regex requires a string pattern")
            try:
                _compile(cmp.value)
            except re.error as e:
                raise InvalidPredicateError(f"{cmp.field}: invalid regex {cmp.value!r}: {e}") from e
            return
        if cmp.op in (ComparisonOp.IN, ComparisonOp.NIN):
            if not isinstance(cmp.value, (tuple, list)):
                raise InvalidPredicateError(f"{cmp.field}: {cmp.op.value} requires a list")
            for item in cmp.value:
                self._validate_operand(cmp, item)
            return
        self._validate_operand(cmp, cmp.value)

    def _validate_operand(self, cmp: Comparison, value: Any) -> None:
        if type_of(value) is None:
            raise InvalidPredicateError(
                f"{cmp.field}: unsupported operand {value!r} for {cmp.op.value}"
            )
        if is_nan(value):
            raise InvalidPredicateError(f"{cmp.field}: NaN is not a valid operand")

    # ─── Range operands ─────────────────────────────────────────────

    def range_comparisons(self, predicate: Predicate) -> List[Comparison]:
        """Every range comparison in the tree, in any branch."""
        if isinstance(predicate, Comparison):
            return [predicate] if predicate.op in RANGE_OPS else []
        found = []
        for clause in getattr(predicate, "clauses", ()):
            found.extend(self.range_comparisons(clause))
        return found

    def check_range_operands(self, predicate: Predicate, docs: Iterable[Dict[str, Any]]) -> None:
        """
        Raise InvalidPredicateError if any document holds a value that a
        range comparison in the tree cannot be compared with. Run once per
        query over the whole collection, so the outcome does not depend on
        the access path, clause order or limit.
        """
        ranges = self.range_comparisons(predicate)
        if not ranges:
            return
        for doc in docs:
            self._check_ranges(ranges, doc)

    def _check_ranges(self, ranges: List[Comparison], doc: Dict[str, Any]) -> None:
        for cmp in ranges:
            value = get_path(doc, cmp.field)
            if value is not MISSING and not same_family(value, cmp.value):
                raise InvalidPredicateError(
                    f"Cannot compare field '{cmp.field}' ({family_name(value)}) "
                    f"with {cmp.op.value} operand {cmp.value!r} ({family_name(cmp.value)})"
                )

    # ─── Evaluation ─────────────────────────────────────────────────

    def evaluate(self, predicate: Predicate, doc: Dict[str, Any]) -> bool:
        """
        Return True if the document satisfies the predicate.
        Range operands are checked against the whole tree first.
        """
        self._check_ranges(self.range_comparisons(predicate), doc)
        return self._evaluate(predicate, doc)

    def _evaluate(self, predicate: Predicate, doc: Dict[str, Any]) -> bool:
        if isinstance(predicate, Comparison):
            return self._eval_comparison(predicate, doc)

        if isinstance(predicate, And):
            for clause in predicate.clauses:
                if not self._evaluate(clause, doc):
                    return False
            return True

        if isinstance(predicate, Or):
            for clause in predicate.clauses:
                if self._evaluate(clause, doc):
                    return True
            return False

        raise InvalidPredicateError(f"Unsupported predicate node {type(predicate).__name__}")

    def _eval_comparison(self, cmp: Comparison, doc: Dict[str, Any]) -> bool:
        value = get_path(doc, cmp.field)
        op = cmp.op

        if op == ComparisonOp.EXISTS:
            return (value is not MISSING) == cmp.value
        if value is MISSING:
            return False

        if op == ComparisonOp.EQ:
            return values_equal(value, cmp.value)
        if op == ComparisonOp.NE:
            return not values_equal(value, cmp.value)
        if op == ComparisonOp.IN:
            return any(values_equal(value, item) for item in cmp.value)
        if op == ComparisonOp.NIN:
            return not any(values_equal(value, item) for item in cmp.value)
        if op == ComparisonOp.REGEX:
            return isinstance(value, str) and _compile(cmp.value).search(value) is not None
        if op in RANGE_OPS:
            return self._eval_range(cmp, value)

        raise InvalidPredicateError(f"Unsupported operator {op!r}")

    def _eval_range(self, cmp: Comparison, value: Any) -> bool:
        result = compare_values(value, cmp.value)
        if cmp.op == ComparisonOp.GT:
            return result > 0
        if cmp.op == ComparisonOp.GTE:
            return result >= 0
        if cmp.op == ComparisonOp.LT:
            return result < 0
        return result <= 0
