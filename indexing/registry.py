"""
MiniDoc Index Registry
======================
Tracks the indexes declared on one collection, keeps them in step with
every mutation, and decides whether an index can serve a query.

Index selection (plan_for):
  1. Collect top-level conjunctive comparisons from the predicate.
  2. For each index, count leading fields fixed by $eq, then check
     whether the next field has a range ($gt/$gte/$lt/$lte).
  3. Check whether the sort equals the index fields after the equality
     prefix (same directions). Then index order is the sort order, and
     ties fall back to insertion order.
  4. Best index: most equality fields, then a range, then sort coverage,
     then declaration order. An index that only covers the sort is used
     when nothing serves the filter.

The predicate is always re-applied to index candidates, so bounds only
need to be a superset of the matching keys.

Concurrency: the owning Collection holds its write lock around declare,
drop and maintenance calls, and its read lock around plan_for.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from indexing.index import Index, IndexSpec
from indexing.key_encoding import (
    encode_value, encode_component, complement, bracket_start, bracket_end, is_exact_key,
)
from parser.ast_nodes import Predicate, Comparison, ComparisonOp, And, SortKey
from planning.query_plan import IndexBounds, QueryPlan, FULL_SCAN_PLAN
from storage.document import ID_FIELD
from storage.errors import IndexConflictError, IndexNotFoundError

logger = logging.getLogger(__name__)

ID_INDEX_NAME = "_id_"

_LOWER_OPS = {ComparisonOp.GT: False, ComparisonOp.GTE: True}
_UPPER_OPS = {ComparisonOp.LT: False, ComparisonOp.LTE: True}

DocEntry = Tuple[Any, int, Dict[str, Any]]   # (doc_id, seq, doc)


def conjuncts(predicate: Predicate) -> List[Comparison]:
    """Top-level comparisons that must all hold (nested Ands flattened)."""
    if isinstance(predicate, Comparison):
        return [predicate]
    if isinstance(predicate, And):
        out = []
        for clause in predicate.clauses:
            out.extend(conjuncts(clause))
        return out
    return []


class IndexRegistry:
    """
    Declared indexes of one collection, in declaration order.
    The unique _id_ index always exists and cannot be dropped.
    """

    def __init__(self):
        self._indexes: Dict[str, Index] = {}
        self._indexes[ID_INDEX_NAME] = Index(ID_INDEX_NAME, IndexSpec(((ID_FIELD, 1),), unique=True))

    def __iter__(self):
        return iter(list(self._indexes.values()))

    def __len__(self) -> int:
        return len(self._indexes)

    def __contains__(self, name: str) -> bool:
        return name in self._indexes

    def get(self, name: str) -> Index:
        try:
            return self._indexes[name]
        except KeyError:
            raise IndexNotFoundError(name) from None

    def list_indexes(self) -> List[Dict[str, Any]]:
        return [
            {"name": idx.name, "key": dict(idx.spec.fields), "unique": idx.unique}
            for idx in self._indexes.values()
        ]

    # ─── Declaration ────────────────────────────────────────────────

    def declare_index(self, keys: Any, name: Optional[str] = None, unique: bool = False,
                      documents: Iterable[DocEntry] = ()) -> str:
        """
        Register an index and build it from the given documents.

        Idempotent: an identical index returns its existing name.
        Raises IndexConflictError if the same fields exist with another
        direction or uniqueness, or if name is taken by a different key.
        Raises DuplicateKeyError (registry unchanged) if a unique index
        cannot be built.
        """
        spec = keys if isinstance(keys, IndexSpec) else IndexSpec.from_keys(keys, unique)
        name = name or spec.default_name()

        for existing in self._indexes.values():
            if existing.spec == spec:
                if name != existing.name and name != spec.default_name():
                    raise IndexConflictError(
                        f"Index with key {dict(spec.fields)} already exists as '{existing.name}'"
                    )
                logger.debug("Index %s already declared", existing.name)
                return existing.name
            if existing.spec.field_names == spec.field_names:
                raise IndexConflictError(
                    f"Index '{existing.name}' already covers {list(spec.field_names)} "
                    f"with key {dict(existing.spec.fields)} unique={existing.unique}; "
                    f"cannot declare {dict(spec.fields)} unique={spec.unique}"
                )
        if name in self._indexes:
            raise IndexConflictError(f"Index name '{name}' is already used by a different key")

        index = Index(name, spec)
        for doc_id, seq, doc in documents:
            index.insert(doc_id, seq, doc)

        self._indexes[name] = index
        logger.info("Declared index %s on %s (%d entries)", name, dict(spec.fields), len(index))
        return name

    def drop_index(self, name: str) -> None:
        if name == ID_INDEX_NAME:
            raise IndexConflictError("Cannot drop the _id_ index")
        if name not in self._indexes:
            raise IndexNotFoundError(name)
        del self._indexes[name]
        logger.info("Dropped index %s", name)

    # ─── Maintenance ────────────────────────────────────────────────

    def apply(self, doc_id: Any, seq: int,
              old_doc: Optional[Dict[str, Any]], new_doc: Optional[Dict[str, Any]],
              changed_fields: Optional[Sequence[str]] = None) -> None:
        """
        Reflect one document change in every affected index.
        old_doc None = insert, new_doc None = delete.
        changed_fields limits maintenance to indexes touching those fields.

        All-or-nothing: if any index rejects the change, the indexes
        already updated are reverted and the error propagates.
        """
        applied: List[Index] = []
        try:
            for index in self._indexes.values():
                if changed_fields is not None and not index.covers(changed_fields):
                    continue
                if index.replace(doc_id, seq, old_doc, new_doc):
                    applied.append(index)
        except Exception:
            for index in reversed(applied):
                index.replace(doc_id, seq, new_doc, old_doc)
            logger.warning("Rolled back index maintenance for _id=%r on %d index(es)",
                           doc_id, len(applied))
            raise

    # ─── Planning ───────────────────────────────────────────────────

    def plan_for(self, predicate: Predicate, sort: Sequence[SortKey] = ()) -> QueryPlan:
        """Choose an index for (predicate, sort), or FULL_SCAN_PLAN."""
        comparisons = conjuncts(predicate)
        equalities: Dict[str, Any] = {}
        ranges: Dict[str, List[Comparison]] = {}
        for cmp in comparisons:
            if cmp.op == ComparisonOp.EQ and cmp.field not in equalities:
                equalities[cmp.field] = cmp.value
            elif cmp.op in _LOWER_OPS or cmp.op in _UPPER_OPS:
                ranges.setdefault(cmp.field, []).append(cmp)

        best: Optional[QueryPlan] = None
        best_score: Tuple = ()
        for index in self._indexes.values():
            plan = self._plan_index(index, equalities, ranges, tuple(sort))
            if plan is None:
                continue
            score = (plan.serves_filter, len(plan.equality_fields),
                     plan.range_field is not None, plan.sort_covered)
            if best is None or score > best_score:
                best, best_score = plan, score

        if best is None:
            logger.debug("plan_for: no usable index, full scan")
            return FULL_SCAN_PLAN
        logger.debug("plan_for: %s", best.describe())
        return best

    def _plan_index(self, index: Index, equalities: Dict[str, Any],
                    ranges: Dict[str, List[Comparison]],
                    sort: Tuple[SortKey, ...]) -> Optional[QueryPlan]:
        fields = index.spec.fields

        prefix: List[bytes] = []
        eq_fields: List[str] = []
        for name, direction in fields:
            if name not in equalities:
                break
            prefix.append(encode_component(equalities[name], direction))
            eq_fields.append(name)

        depth = len(prefix)
        range_field = None
        bounds = IndexBounds(prefix=tuple(prefix))
        if depth < len(fields) and fields[depth][0] in ranges:
            range_field, direction = fields[depth]
            bounds = self._range_bounds(tuple(prefix), ranges[range_field], direction)

        remaining = fields[depth:]
        sort_covered = bool(sort) and len(sort) == len(remaining) and all(
            s.field == f and s.direction == d for s, (f, d) in zip(sort, remaining)
        )
        serves_filter = depth > 0 or range_field is not None

        if not serves_filter and not sort_covered:
            return None
        return QueryPlan(
            index_name=index.name,
            bounds=bounds,
            serves_filter=serves_filter,
            sort_covered=sort_covered,
            equality_fields=tuple(eq_fields),
            range_field=range_field,
        )

    def _range_bounds(self, prefix: Tuple[bytes, ...], comparisons: List[Comparison],
                      direction: int) -> IndexBounds:
        """
        Bounds for the first lower and first upper comparison on a field,
        computed in ascending byte space and flipped for descending fields.
        A one-sided range stays inside the operand's type bracket.
        Numeric bounds stay inclusive (see is_exact_key).
        """
        low_cmp = next((c for c in comparisons if c.op in _LOWER_OPS), None)
        high_cmp = next((c for c in comparisons if c.op in _UPPER_OPS), None)

        if low_cmp is not None:
            lower = encode_value(low_cmp.value)
            lower_incl = _LOWER_OPS[low_cmp.op] or not is_exact_key(low_cmp.value)
        else:
            lower, lower_incl = bracket_start(high_cmp.value), False
        if high_cmp is not None:
            upper = encode_value(high_cmp.value)
            upper_incl = _UPPER_OPS[high_cmp.op] or not is_exact_key(high_cmp.value)
        else:
            upper, upper_incl = bracket_end(low_cmp.value), False

        if direction < 0:
            lower, upper = complement(upper), complement(lower)
            lower_incl, upper_incl = upper_incl, lower_incl
        return IndexBounds(prefix, lower, lower_incl, upper, upper_incl)
