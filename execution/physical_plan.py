"""
MiniDoc Physical Plan Operators
===============================
Volcano Iterator Model implementation.
Nodes implement open(), next(), close().

Query operators read live documents from a Collection (the caller holds
its read lock for the whole open..close span). Aggregation operators
work on records: plain dicts produced from a snapshot, so they never
touch the collection.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from execution.context import ScanStats
from execution.expression_evaluator import ExpressionEvaluator
from execution.predicate_evaluator import PredicateEvaluator
from indexing.index import Index
from parser.ast_nodes import (
    Predicate, SortKey, Projection, ProjectStage, GroupStage, Accumulator, INCLUDE,
)
from planning.query_plan import IndexBounds
from storage.collection import Collection
from storage.document import ID_FIELD, MISSING, get_path
from storage.errors import ExpressionError
from storage.types import sort_key, equality_key, is_number


# Row Structure Contract
# values: document or record dict
# doc_id / seq: source document identity, None for synthetic records
class ExecutionRow:
    __slots__ = ('values', 'doc_id', 'seq')

    def __init__(self, values: Dict[str, Any], doc_id: Any = None, seq: Optional[int] = None):
        self.values = values
        self.doc_id = doc_id
        self.seq = seq

    def __repr__(self):
        return f"Row(_id={self.doc_id!r}, seq={self.seq}, values={self.values})"


class PhysicalNode(ABC):
    """Base class for execution operators."""

    def __init__(self):
        self._open = False

    @abstractmethod
    def open(self):
        """Initialize the operator state."""
        self._open = True

    @abstractmethod
    def next(self) -> Optional[ExecutionRow]:
        """Return the next row or None if exhausted."""
        pass

    @abstractmethod
    def close(self):
        """Clean up resources."""
        self._open = False

    def children(self) -> List['PhysicalNode']:
        return []

    def __iter__(self) -> Iterator[ExecutionRow]:
        """Drain the operator: open, yield every row, close."""
        self.open()
        try:
            while True:
                row = self.next()
                if row is None:
                    return
                yield row
        finally:
            self.close()


# ═══════════════════════════════════════════════════════════════════
# Scans
# ═══════════════════════════════════════════════════════════════════

class CollectionScanExec(PhysicalNode):
    """Full scan of a collection in insertion order."""

    def __init__(self, collection: Collection, stats: Optional[ScanStats] = None):
        super().__init__()
        self.collection = collection
        self.stats = stats if stats is not None else ScanStats()
        self._iterator = None

    def open(self):
        super().open()
        self._iterator = self.collection.entries()

    def next(self) -> Optional[ExecutionRow]:
        entry = next(self._iterator, None)
        if entry is None:
            return None
        doc_id, seq, doc = entry
        self.stats.docs_examined += 1
        return ExecutionRow(doc, doc_id, seq)

    def close(self):
        super().close()
        self._iterator = None


class IndexScanExec(PhysicalNode):
    """
    Index scan over one key range.
    Fetches candidate _ids from the index, then looks up the documents
    in the collection. Candidates are not guaranteed matches: a
    FilterExec above always re-applies the full predicate.

    order_by_seq: put candidates back in insertion order (used when the
    index does not provide the requested sort).
    """

    def __init__(self, collection: Collection, index: Index, bounds: IndexBounds,
                 order_by_seq: bool = True, stats: Optional[ScanStats] = None):
        super().__init__()
        self.collection = collection
        self.index = index
        self.bounds = bounds
        self.order_by_seq = order_by_seq
        self.stats = stats if stats is not None else ScanStats()
        self._candidates: Optional[Iterator[Tuple[int, Any]]] = None

    def open(self):
        super().open()
        candidates, examined = self.index.scan(self.bounds)
        self.stats.keys_examined += examined
        if self.order_by_seq:
            candidates.sort()
        self._candidates = iter(candidates)

    def next(self) -> Optional[ExecutionRow]:
        while True:
            item = next(self._candidates, None)
            if item is None:
                return None
            seq, doc_id = item
            doc = self.collection.get(doc_id)
            if doc is None:
                continue  # Removed since the scan started, skip
            self.stats.docs_examined += 1
            return ExecutionRow(doc, doc_id, seq)

    def close(self):
        super().close()
        self._candidates = None


class ValuesExec(PhysicalNode):
    """Produces rows from a list of records (aggregation input)."""

    def __init__(self, records: Sequence[Dict[str, Any]]):
        super().__init__()
        self.records = records
        self._iter = None

    def open(self):
        super().open()
        self._iter = iter(self.records)

    def next(self) -> Optional[ExecutionRow]:
        record = next(self._iter, None)
        if record is None:
            return None
        return ExecutionRow(record)

    def close(self):
        super().close()
        self._iter = None


# ═══════════════════════════════════════════════════════════════════
# Row-at-a-time operators
# ═══════════════════════════════════════════════════════════════════

class FilterExec(PhysicalNode):
    """Filters rows based on a predicate."""

    def __init__(self, child: PhysicalNode, predicate: Predicate,
                 evaluator: Optional[PredicateEvaluator] = None):
        super().__init__()
        self.child = child
        self.predicate = predicate
        self.evaluator = evaluator or PredicateEvaluator()

    def open(self):
        super().open()
        self.child.open()

    def next(self) -> Optional[ExecutionRow]:
        while True:
            row = self.child.next()
            if row is None:
                return None
            if self.evaluator.evaluate(self.predicate, row.values):
                return row

    def close(self):
        super().close()
        self.child.close()

    def children(self): return [self.child]


class SkipExec(PhysicalNode):
    """Drops the first `count` rows."""

    def __init__(self, child: PhysicalNode, count: int):
        super().__init__()
        self.child = child
        self.count = count

    def open(self):
        super().open()
        self.child.open()
        for _ in range(self.count):
            if self.child.next() is None:
                break

    def next(self) -> Optional[ExecutionRow]:
        return self.child.next()

    def close(self):
        super().close()
        self.child.close()

    def children(self): return [self.child]


class LimitExec(PhysicalNode):
    """Limits the number of output rows."""

    def __init__(self, child: PhysicalNode, limit: int):
        super().__init__()
        self.child = child
        self.limit = limit
        self._count = 0

    def open(self):
        super().open()
        self.child.open()
        self._count = 0

    def next(self) -> Optional[ExecutionRow]:
        if self._count >= self.limit:
            return None
        row = self.child.next()
        if row is None:
            return None
        self._count += 1
        return row

    def close(self):
        super().close()
        self.child.close()

    def children(self): return [self.child]


class ProjectionExec(PhysicalNode):
    """
    Applies a find() projection. Always emits a fresh dict, so results
    never alias stored documents.
    """

    def __init__(self, child: PhysicalNode, projection: Optional[Projection]):
        super().__init__()
        self.child = child
        self.projection = projection

    def open(self):
        super().open()
        self.child.open()

    def next(self) -> Optional[ExecutionRow]:
        row = self.child.next()
        if row is None:
            return None
        return ExecutionRow(project_document(row.values, self.projection), row.doc_id, row.seq)

    def close(self):
        super().close()
        self.child.close()

    def children(self): return [self.child]


def project_document(doc: Dict[str, Any], projection: Optional[Projection]) -> Dict[str, Any]:
    if projection is None:
        return dict(doc)
    if projection.include or projection.id_only:
        out = {name: doc[name] for name in projection.include if name in doc}
    else:
        excluded = set(projection.exclude)
        out = {name: value for name, value in doc.items()
               if name != ID_FIELD and name not in excluded}
    if projection.include_id and ID_FIELD in doc:
        out = {ID_FIELD: doc[ID_FIELD], **out}
    return out


class StageProjectExec(PhysicalNode):
    """$project: included fields, computed expressions, or exclusions."""

    def __init__(self, child: PhysicalNode, stage: ProjectStage,
                 evaluator: Optional[ExpressionEvaluator] = None):
        super().__init__()
        self.child = child
        self.stage = stage
        self.evaluator = evaluator or ExpressionEvaluator()

    def open(self):
        super().open()
        self.child.open()

    def next(self) -> Optional[ExecutionRow]:
        row = self.child.next()
        if row is None:
            return None
        record = row.values
        stage = self.stage

        out: Dict[str, Any] = {}
        if stage.include_id and ID_FIELD in record:
            out[ID_FIELD] = record[ID_FIELD]
        if stage.fields or stage.id_only:
            for name, spec in stage.fields:
                if spec == INCLUDE:
                    value = get_path(record, name)
                    if value is not MISSING:
                        out[name] = value
                else:
                    out[name] = self.evaluator.evaluate(spec, record)
        else:
            excluded = set(stage.exclude)
            for name, value in record.items():
                if name != ID_FIELD and name not in excluded:
                    out[name] = value
        return ExecutionRow(out, row.doc_id, row.seq)

    def close(self):
        super().close()
        self.child.close()

    def children(self): return [self.child]


# ═══════════════════════════════════════════════════════════════════
# Blocking operators
# ═══════════════════════════════════════════════════════════════════

class SortExec(PhysicalNode):
    """
    Materializes all rows, sorts them, and yields.
    Python's sort is stable, so sorting by each key from least to most
    significant gives a multi-key sort with input order as the tie break.
    """

    def __init__(self, child: PhysicalNode, keys: Sequence[SortKey]):
        super().__init__()
        self.child = child
        self.keys = tuple(keys)
        self._rows: List[ExecutionRow] = []
        self._iter_rows: Optional[Iterator[ExecutionRow]] = None

    def open(self):
        super().open()
        self.child.open()
        self._rows = []
        while True:
            row = self.child.next()
            if row is None:
                break
            self._rows.append(row)

        for key in reversed(self.keys):
            self._rows.sort(key=lambda r, path=key.field: _sort_value(r.values, path),
                            reverse=not key.ascending)
        self._iter_rows = iter(self._rows)

    def next(self) -> Optional[ExecutionRow]:
        return next(self._iter_rows, None)

    def close(self):
        super().close()
        self.child.close()
        self._rows = []
        self._iter_rows = None

    def children(self): return [self.child]


def _sort_value(record: Dict[str, Any], path: str):
    # Missing sorts with null, ahead of every value in ascending order
    value = get_path(record, path)
    return sort_key(None if value is MISSING else value)


class _GroupState:
    """Running accumulator values for one partition."""
    __slots__ = ('key', 'values', 'seen')

    def __init__(self, key: Any, accumulators: Sequence[Accumulator]):
        self.key = key
        self.values: Dict[str, Any] = {}
        self.seen: Dict[str, int] = {}
        for acc in accumulators:
            self.seen[acc.output] = 0
            if acc.op in ("$count", "$sum", "$avg"):
                self.values[acc.output] = 0
            elif acc.op == "$push":
                self.values[acc.output] = []
            else:
                self.values[acc.output] = None


class GroupExec(PhysicalNode):
    """
    $group: one record per distinct key in order of first appearance.
    Key equality follows the predicate equality rule (1 == 1.0,
    True != 1). Materializes its input on open().
    """

    def __init__(self, child: PhysicalNode, stage: GroupStage,
                 evaluator: Optional[ExpressionEvaluator] = None):
        super().__init__()
        self.child = child
        self.stage = stage
        self.evaluator = evaluator or ExpressionEvaluator()
        self._iter_rows: Optional[Iterator[ExecutionRow]] = None

    def open(self):
        super().open()
        self.child.open()
        groups: Dict[Any, _GroupState] = {}
        accumulators = self.stage.accumulators
        while True:
            row = self.child.next()
            if row is None:
                break
            key = self.evaluator.evaluate(self.stage.key, row.values)
            slot = equality_key(key)
            state = groups.get(slot)
            if state is None:
                state = groups[slot] = _GroupState(key, accumulators)
            for acc in accumulators:
                self._accumulate(state, acc, row.values)

        self._iter_rows = iter([ExecutionRow(self._finish(s)) for s in groups.values()])

    def _accumulate(self, state: _GroupState, acc: Accumulator, record: Dict[str, Any]) -> None:
        name, op = acc.output, acc.op
        if op == "$count":
            state.values[name] += 1
            return

        value = self.evaluator.evaluate(acc.expr, record)
        if op in ("$sum", "$avg"):
            if is_number(value):
                state.values[name] += float(value) if isinstance(value, Decimal) else value
                state.seen[name] += 1
        elif op == "$min" or op == "$max":
            if value is None:
                return
            current = state.values[name]
            if current is None or self._better(op, value, current):
                state.values[name] = value
        elif op == "$first":
            if state.seen[name] == 0:
                state.values[name] = value
                state.seen[name] = 1
        elif op == "$last":
            state.values[name] = value
        elif op == "$push":
            state.values[name].append(value)
        else:
            raise ExpressionError(f"Unsupported accumulator {op}")

    @staticmethod
    def _better(op: str, value: Any, current: Any) -> bool:
        # Cross-type min/max follows the bracket order
        a, b = sort_key(value), sort_key(current)
        return a < b if op == "$min" else a > b

    def _finish(self, state: _GroupState) -> Dict[str, Any]:
        out = {ID_FIELD: state.key}
        for acc in self.stage.accumulators:
            value = state.values[acc.output]
            if acc.op == "$avg":
                seen = state.seen[acc.output]
                value = value / seen if seen else None
            out[acc.output] = value
        return out

    def next(self) -> Optional[ExecutionRow]:
        return next(self._iter_rows, None)

    def close(self):
        super().close()
        self.child.close()
        self._iter_rows = None

    def children(self): return [self.child]


class CountExec(PhysicalNode):
    """$count: a single record {output: number of input rows}."""

    def __init__(self, child: PhysicalNode, output: str):
        super().__init__()
        self.child = child
        self.output = output
        self._done = False

    def open(self):
        super().open()
        self.child.open()
        self._done = False

    def next(self) -> Optional[ExecutionRow]:
        if self._done:
            return None
        count = 0
        while self.child.next() is not None:
            count += 1
        self._done = True
        return ExecutionRow({self.output: count})

    def close(self):
        super().close()
        self.child.close()

    def children(self): return [self.child]
