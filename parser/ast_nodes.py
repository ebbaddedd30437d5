"""
MiniDoc AST Nodes
=================
Typed, immutable request trees: filter predicates, pipeline expressions,
projections, sort keys and aggregation stages.

The parser builds these from Mongo-style dicts, but every node can be
constructed directly. All nodes are frozen dataclasses, so a QuerySpec
built from them is immutable end to end.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════
# Predicates
# ═══════════════════════════════════════════════════════════════════

class ComparisonOp(Enum):
    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    IN = "$in"
    NIN = "$nin"
    EXISTS = "$exists"
    REGEX = "$regex"


RANGE_OPS = frozenset({ComparisonOp.GT, ComparisonOp.GTE, ComparisonOp.LT, ComparisonOp.LTE})


class Predicate:
    """Base class for filter nodes."""

    def children(self) -> Tuple["Predicate", ...]:
        return ()


@dataclass(frozen=True)
class Comparison(Predicate):
    """field OP value."""
    field: str
    op: ComparisonOp
    value: Any

    def __str__(self):
        return f"{self.field} {self.op.value} {self.value!r}"


@dataclass(frozen=True)
class And(Predicate):
    """Conjunction. The empty conjunction matches every document."""
    clauses: Tuple[Predicate, ...] = ()

    def children(self):
        return self.clauses

    def __str__(self):
        if not self.clauses:
            return "TRUE"
        return " AND ".join(f"({c})" for c in self.clauses)


@dataclass(frozen=True)
class Or(Predicate):
    """Disjunction."""
    clauses: Tuple[Predicate, ...] = ()

    def children(self):
        return self.clauses

    def __str__(self):
        return " OR ".join(f"({c})" for c in self.clauses)


MATCH_ALL = And(())


def eq(field_name: str, value: Any) -> Comparison:
    return Comparison(field_name, ComparisonOp.EQ, value)


def gt(field_name: str, value: Any) -> Comparison:
    return Comparison(field_name, ComparisonOp.GT, value)


def lt(field_name: str, value: Any) -> Comparison:
    return Comparison(field_name, ComparisonOp.LT, value)


def all_of(*clauses: Predicate) -> And:
    return And(tuple(clauses))


# ═══════════════════════════════════════════════════════════════════
# Sort & Projection
# ═══════════════════════════════════════════════════════════════════

ASCENDING = 1
DESCENDING = -1


@dataclass(frozen=True)
class SortKey:
    field: str
    direction: int = ASCENDING

    @property
    def ascending(self) -> bool:
        return self.direction > 0


@dataclass(frozen=True)
class Projection:
    """
    Field selection applied to results.
    include non-empty, or only _id requested → keep only those fields.
    Otherwise all fields minus exclude.
    _id is kept only when include_id is True.
    """
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    include_id: bool = False

    @property
    def id_only(self) -> bool:
        return self.include_id and not self.include and not self.exclude


# ═══════════════════════════════════════════════════════════════════
# Pipeline expressions
# ═══════════════════════════════════════════════════════════════════

class Expression:
    """Base class for aggregation expressions."""
    pass


@dataclass(frozen=True)
class FieldRef(Expression):
    """"$path" reference into the current record."""
    path: str

    def __str__(self):
        return f"${self.path}"


@dataclass(frozen=True)
class Literal(Expression):
    value: Any

    def __str__(self):
        return repr(self.value)


@dataclass(frozen=True)
class OperatorExpr(Expression):
    """{"$op": [args...]}."""
    op: str
    args: Tuple[Expression, ...]

    def __str__(self):
        return f"{self.op}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class DocumentExpr(Expression):
    """{"a": expr, "b": expr}, used for compound group keys."""
    fields: Tuple[Tuple[str, Expression], ...]


# ═══════════════════════════════════════════════════════════════════
# Pipeline stages
# ═══════════════════════════════════════════════════════════════════

class Stage:
    """Base class for aggregation stages."""
    name = "?"


INCLUDE = "include"


@dataclass(frozen=True)
class ProjectStage(Stage):
    """
    fields: (output name, FieldRef/expression or INCLUDE) pairs.
    exclude: exclusion form, mutually exclusive with fields.
    """
    fields: Tuple[Tuple[str, Any], ...] = ()
    exclude: Tuple[str, ...] = ()
    include_id: bool = False
    name = "$project"

    @property
    def id_only(self) -> bool:
        return self.include_id and not self.fields and not self.exclude


@dataclass(frozen=True)
class Accumulator:
    output: str
    op: str                       # "$count", "$sum", "$avg", ...
    expr: Optional[Expression] = None


@dataclass(frozen=True)
class GroupStage(Stage):
    key: Expression
    accumulators: Tuple[Accumulator, ...] = ()
    name = "$group"


@dataclass(frozen=True)
class SortStage(Stage):
    keys: Tuple[SortKey, ...]
    name = "$sort"


@dataclass(frozen=True)
class LimitStage(Stage):
    count: int
    name = "$limit"


@dataclass(frozen=True)
class SkipStage(Stage):
    count: int
    name = "$skip"


@dataclass(frozen=True)
class MatchStage(Stage):
    predicate: Predicate = MATCH_ALL
    name = "$match"


@dataclass(frozen=True)
class CountStage(Stage):
    output: str
    name = "$count"


# ═══════════════════════════════════════════════════════════════════
# Updates
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UpdateSpec:
    """Field changes applied by update_one/update_many, in this order."""
    set: Tuple[Tuple[str, Any], ...] = ()
    unset: Tuple[str, ...] = ()
    inc: Tuple[Tuple[str, Any], ...] = ()
    mul: Tuple[Tuple[str, Any], ...] = ()

    def touched_fields(self) -> Tuple[str, ...]:
        names = [f for f, _ in self.set] + list(self.unset)
        names += [f for f, _ in self.inc] + [f for f, _ in self.mul]
        return tuple(dict.fromkeys(names))
