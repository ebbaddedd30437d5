"""
MiniDoc Request Parser
======================
Converts Mongo-style request documents into typed AST nodes.

  filter      {"genre": "Fiction", "published_year": {"$gt": 2000}}
  projection  {"_id": 0, "title": 1, "author": 1}
  sort        {"price": -1}  or  [("price", -1), ("title", 1)]
  update      {"price": 15.99}  or  {"$set": {"price": 15.99}}
  pipeline    [{"$group": {"_id": "$genre", "avgPrice": {"$avg": "$price"}}}, ...]

Structural problems are reported here. Operand checks that also apply to
hand-built AST nodes live in execution.predicate_evaluator.validate().

AST nodes passed in place of dicts are returned unchanged.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from parser.ast_nodes import (
    Predicate, Comparison, ComparisonOp, And, Or, MATCH_ALL,
    SortKey, Projection, UpdateSpec,
    Expression, FieldRef, Literal, OperatorExpr, DocumentExpr,
    Stage, ProjectStage, GroupStage, SortStage, LimitStage, SkipStage,
    MatchStage, CountStage, Accumulator, INCLUDE,
)
from storage.errors import (
    InvalidPredicateError, InvalidQueryError, InvalidUpdateError, InvalidPipelineError,
)
from storage.types import is_number

_COMPARISON_OPS = {op.value: op for op in ComparisonOp}

# name → (min args, max args); None = unbounded
OPERATOR_ARITY: Dict[str, Tuple[int, Optional[int]]] = {
    "$add": (1, None),
    "$subtract": (2, 2),
    "$multiply": (1, None),
    "$divide": (2, 2),
    "$mod": (2, 2),
    "$concat": (1, None),
    "$toString": (1, 1),
    "$toInt": (1, 1),
    "$toDouble": (1, 1),
    "$toLower": (1, 1),
    "$toUpper": (1, 1),
}

ACCUMULATORS = frozenset({
    "$count", "$sum", "$avg", "$min", "$max", "$first", "$last", "$push",
})

UPDATE_OPERATORS = frozenset({"$set", "$unset", "$inc", "$mul"})


# ═══════════════════════════════════════════════════════════════════
# Filters
# ═══════════════════════════════════════════════════════════════════

def parse_filter(spec: Any) -> Predicate:
    """Parse a filter document. None and {} match everything."""
    if spec is None:
        return MATCH_ALL
    if isinstance(spec, Predicate):
        return spec
    if not isinstance(spec, dict):
        raise InvalidPredicateError(f"Filter must be a dict, got {type(spec).__name__}")

    clauses: List[Predicate] = []
    for key, cond in spec.items():
        if not isinstance(key, str):
            raise InvalidPredicateError(f"Filter key must be a string, got {key!r}")
        if key in ("$and", "$or"):
            clauses.append(_parse_logical(key, cond))
        elif key.startswith("$"):
            raise InvalidPredicateError(f"Unsupported top-level operator: {key}")
        else:
            clauses.extend(_parse_field_condition(key, cond))

    if len(clauses) == 1:
        return clauses[0]
    return And(tuple(clauses))


def _parse_logical(op: str, clauses: Any) -> Predicate:
    if not isinstance(clauses, (list, tuple)) or not clauses:
        raise InvalidPredicateError(f"{op} requires a non-empty list of clauses")
    parsed = tuple(parse_filter(c) for c in clauses)
    return And(parsed) if op == "$and" else Or(parsed)


def _is_operator_dict(cond: Any) -> bool:
    return isinstance(cond, dict) and bool(cond) and all(
        isinstance(k, str) and k.startswith("$") for k in cond
    )


def _parse_field_condition(field: str, cond: Any) -> List[Comparison]:
    if not _is_operator_dict(cond):
        if isinstance(cond, dict):
            raise InvalidPredicateError(
                f"Field '{field}': embedded documents are not supported in filters"
            )
        return [Comparison(field, ComparisonOp.EQ, cond)]

    options = cond.get("$options")
    if options is not None and "$regex" not in cond:
        raise InvalidPredicateError(f"Field '{field}': $options requires $regex")

    out = []
    for op_name, operand in cond.items():
        if op_name == "$options":
            continue
        op = _COMPARISON_OPS.get(op_name)
        if op is None:
            raise InvalidPredicateError(f"Field '{field}': unsupported operator {op_name}")
        if op in (ComparisonOp.IN, ComparisonOp.NIN):
            if not isinstance(operand, (list, tuple, set, frozenset)):
                raise InvalidPredicateError(f"Field '{field}': {op_name} requires a list")
            operand = tuple(operand)
        if op == ComparisonOp.REGEX and options:
            operand = _inline_regex_flags(field, operand, options)
        out.append(Comparison(field, op, operand))
    return out


def _inline_regex_flags(field: str, pattern: Any, options: Any) -> str:
    if not isinstance(pattern, str) or not isinstance(options, str):
        raise InvalidPredicateError(f"Field '{field}': $regex and $options must be strings")
    flags = "".join(ch for ch in options if ch in "ims")
    if len(flags) != len(options):
        raise InvalidPredicateError(f"Field '{field}': unsupported $options {options!r}")
    return f"(?{flags}){pattern}" if flags else pattern


# ═══════════════════════════════════════════════════════════════════
# Projection & Sort
# ═══════════════════════════════════════════════════════════════════

def _flag(name: str, value: Any, error) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise error(f"Projection value for '{name}' must be 0/1 or a bool, got {value!r}")


def parse_projection(spec: Any) -> Optional[Projection]:
    """
    Parse a projection. Returns None when there is no projection.
    A list of names is an inclusion projection.
    """
    if spec is None:
        return None
    if isinstance(spec, Projection):
        return spec
    if isinstance(spec, (list, tuple)):
        spec = {name: 1 for name in spec}
    if not isinstance(spec, dict):
        raise InvalidQueryError(f"Projection must be a dict, got {type(spec).__name__}")

    include, exclude = [], []
    include_id = False
    for name, value in spec.items():
        wanted = _flag(name, value, InvalidQueryError)
        if name == "_id":
            include_id = wanted
        elif wanted:
            include.append(name)
        else:
            exclude.append(name)

    if include and exclude:
        raise InvalidQueryError("Projection cannot mix inclusion and exclusion")
    return Projection(tuple(include), tuple(exclude), include_id)


def parse_sort(spec: Any, error=InvalidQueryError) -> Tuple[SortKey, ...]:
    """Parse a sort spec: dict, list of (field, direction) pairs, or a field name."""
    if spec is None:
        return ()
    if isinstance(spec, str):
        spec = [(spec, 1)]
    elif isinstance(spec, dict):
        spec = list(spec.items())
    if not isinstance(spec, (list, tuple)):
        raise error(f"Sort must be a dict or list of pairs, got {type(spec).__name__}")

    keys = []
    for item in spec:
        if isinstance(item, SortKey):
            keys.append(item)
            continue
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise error(f"Sort entry must be a (field, direction) pair, got {item!r}")
        name, direction = item
        if not isinstance(name, str) or not name:
            raise error(f"Sort field must be a non-empty string, got {name!r}")
        if isinstance(direction, bool) or direction not in (1, -1):
            raise error(f"Sort direction for '{name}' must be 1 or -1, got {direction!r}")
        keys.append(SortKey(name, direction))
    return tuple(keys)


# ═══════════════════════════════════════════════════════════════════
# Updates
# ═══════════════════════════════════════════════════════════════════

def parse_update(spec: Any) -> UpdateSpec:
    """
    Parse an update. A plain mapping replaces field values ($set form).
    Operator form accepts $set, $unset, $inc, $mul.
    """
    if isinstance(spec, UpdateSpec):
        return spec
    if not isinstance(spec, dict) or not spec:
        raise InvalidUpdateError("Update must be a non-empty dict")

    operator_keys = [k for k in spec if isinstance(k, str) and k.startswith("$")]
    if not operator_keys:
        return UpdateSpec(set=tuple(spec.items()))
    if len(operator_keys) != len(spec):
        raise InvalidUpdateError("Update cannot mix operators and plain fields")

    parts: Dict[str, Any] = {}
    for op, changes in spec.items():
        if op not in UPDATE_OPERATORS:
            raise InvalidUpdateError(f"Unsupported update operator: {op}")
        if not isinstance(changes, dict) or not changes:
            raise InvalidUpdateError(f"{op} requires a non-empty dict")
        if op in ("$inc", "$mul"):
            for name, amount in changes.items():
                if not is_number(amount):
                    raise InvalidUpdateError(f"{op} on '{name}' requires a number, got {amount!r}")
        parts[op] = changes

    return UpdateSpec(
        set=tuple(parts.get("$set", {}).items()),
        unset=tuple(parts.get("$unset", {}).keys()),
        inc=tuple(parts.get("$inc", {}).items()),
        mul=tuple(parts.get("$mul", {}).items()),
    )


# ═══════════════════════════════════════════════════════════════════
# Expressions
# ═══════════════════════════════════════════════════════════════════

def parse_expression(spec: Any) -> Expression:
    """
    "$field"            → FieldRef
    {"$literal": v}     → Literal
    {"$op": [args]}     → OperatorExpr
    {"a": e, "b": e}    → DocumentExpr
    anything else       → Literal
    """
    if isinstance(spec, Expression):
        return spec
    if isinstance(spec, str) and spec.startswith("$"):
        path = spec[1:]
        if not path or path.startswith("$"):
            raise InvalidPipelineError(f"Invalid field path {spec!r}")
        return FieldRef(path)
    if isinstance(spec, dict):
        return _parse_dict_expression(spec)
    if isinstance(spec, (list, tuple)):
        raise InvalidPipelineError("Array expressions are not supported")
    return Literal(spec)


def _parse_dict_expression(spec: Dict[str, Any]) -> Expression:
    keys = list(spec.keys())
    if len(keys) == 1 and isinstance(keys[0], str) and keys[0].startswith("$"):
        op = keys[0]
        arg = spec[op]
        if op == "$literal":
            return Literal(arg)
        if op not in OPERATOR_ARITY:
            raise InvalidPipelineError(f"Unsupported expression operator: {op}")
        raw_args = list(arg) if isinstance(arg, (list, tuple)) else [arg]
        low, high = OPERATOR_ARITY[op]
        if len(raw_args) < low or (high is not None and len(raw_args) > high):
            raise InvalidPipelineError(f"{op} takes {low}..{high or 'n'} arguments, got {len(raw_args)}")
        return OperatorExpr(op, tuple(parse_expression(a) for a in raw_args))

    if any(isinstance(k, str) and k.startswith("$") for k in keys):
        raise InvalidPipelineError(f"Expression object must have exactly one operator: {keys}")
    return DocumentExpr(tuple((k, parse_expression(v)) for k, v in spec.items()))


# ═══════════════════════════════════════════════════════════════════
# Pipelines
# ═══════════════════════════════════════════════════════════════════

def parse_pipeline(stages: Iterable[Any]) -> Tuple[Stage, ...]:
    if isinstance(stages, (dict, str)) or stages is None:
        raise InvalidPipelineError("Pipeline must be a list of stages")
    return tuple(parse_stage(s) for s in stages)


def parse_stage(spec: Any) -> Stage:
    if isinstance(spec, Stage):
        return spec
    if not isinstance(spec, dict) or len(spec) != 1:
        raise InvalidPipelineError("Each pipeline stage must be a single-key dict")
    name, body = next(iter(spec.items()))

    if name == "$project":
        return _parse_project_stage(body)
    if name == "$group":
        return _parse_group_stage(body)
    if name == "$sort":
        keys = parse_sort(body, error=InvalidPipelineError)
        if not keys:
            raise InvalidPipelineError("$sort requires at least one key")
        return SortStage(keys)
    if name == "$limit":
        return LimitStage(_parse_count(name, body, minimum=1))
    if name == "$skip":
        return SkipStage(_parse_count(name, body, minimum=0))
    if name == "$match":
        return MatchStage(parse_filter(body))
    if name == "$count":
        if not isinstance(body, str) or not body or body.startswith("$") or "." in body:
            raise InvalidPipelineError(f"$count requires a plain field name, got {body!r}")
        return CountStage(body)
    raise InvalidPipelineError(f"Unsupported aggregation stage: {name}")


def _parse_count(name: str, body: Any, minimum: int) -> int:
    if isinstance(body, bool) or not isinstance(body, int) or body < minimum:
        raise InvalidPipelineError(f"{name} requires an integer >= {minimum}, got {body!r}")
    return body


def _parse_project_stage(body: Any) -> ProjectStage:
    if not isinstance(body, dict) or not body:
        raise InvalidPipelineError("$project requires a non-empty dict")

    fields, exclude = [], []
    include_id = False
    for name, value in body.items():
        is_flag = isinstance(value, bool) or (isinstance(value, int) and value in (0, 1))
        if name == "_id" and is_flag:
            include_id = bool(value)
        elif is_flag and value:
            fields.append((name, INCLUDE))
        elif is_flag:
            exclude.append(name)
        else:
            fields.append((name, parse_expression(value)))

    if fields and exclude:
        raise InvalidPipelineError("$project cannot mix exclusion with inclusion or computed fields")
    return ProjectStage(tuple(fields), tuple(exclude), include_id)


def _parse_group_stage(body: Any) -> GroupStage:
    if not isinstance(body, dict) or "_id" not in body:
        raise InvalidPipelineError("$group requires an '_id' key expression")

    key = parse_expression(body["_id"])
    accumulators = []
    for output, acc in body.items():
        if output == "_id":
            continue
        if not isinstance(acc, dict) or len(acc) != 1:
            raise InvalidPipelineError(f"Accumulator '{output}' must be a single-operator dict")
        op, arg = next(iter(acc.items()))
        if op not in ACCUMULATORS:
            raise InvalidPipelineError(f"Unsupported group accumulator: {op}")
        if op == "$count":
            if arg not in ({}, None):
                raise InvalidPipelineError("$count accumulator takes no argument")
            accumulators.append(Accumulator(output, op))
        else:
            accumulators.append(Accumulator(output, op, parse_expression(arg)))
    return GroupStage(key, tuple(accumulators))
