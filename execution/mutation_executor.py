"""
MiniDoc Mutation Executor
=========================
insert / update / delete against one Collection.

Protocol (every operation):
  1. Parse and validate the request (predicate, update) up front.
     A malformed request is rejected before any document changes.
  2. Take the collection's write lock.
  3. Collect the targets in insertion order ("first match" for *_one).
  4. Compute every new document before applying any of them, so
     operand errors ($inc on a string) abort with nothing changed.
  5. Apply. Index maintenance happens inside Collection.replace/remove;
     if one document fails (unique violation) the documents already
     changed by this call are restored and the error propagates.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from execution.context import EngineConfig, ExecutionContext, ScanStats
from execution.planner import PhysicalPlanner
from execution.predicate_evaluator import PredicateEvaluator
from parser import parse_update
from parser.ast_nodes import UpdateSpec
from planning.query_spec import QuerySpec
from storage.collection import Collection
from storage.document import ID_FIELD, MISSING, Document, validate_document, validate_field_name
from storage.errors import ImmutableFieldError, InvalidUpdateError
from storage.types import is_number, tag_changed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateResult:
    matched_count: int
    modified_count: int


@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int


@dataclass(frozen=True)
class InsertResult:
    inserted_ids: List[Any] = field(default_factory=list)

    @property
    def inserted_id(self) -> Any:
        return self.inserted_ids[0] if self.inserted_ids else None


def _promote(a: Any, b: Any) -> Tuple[Any, Any]:
    """Decimal does not mix with float: fall back to float for that pair."""
    if isinstance(a, Decimal) != isinstance(b, Decimal) and (isinstance(a, float) or isinstance(b, float)):
        return float(a), float(b)
    return a, b


def apply_update(doc: Document, update: UpdateSpec) -> Tuple[Document, List[str]]:
    """
    Compute the updated copy of doc.
    Returns (new_doc, changed_fields). changed_fields lists the fields
    whose value or type tag really changed; empty means a no-op.

    Raises ImmutableFieldError if _id would change and
    InvalidUpdateError for $inc/$mul on a non-numeric field.
    """
    new_doc = dict(doc)

    for name, value in update.set:
        if name == ID_FIELD:
            if tag_changed(doc.get(ID_FIELD), value):
                raise ImmutableFieldError("Field '_id' is immutable")
            continue
        validate_field_name(name)
        new_doc[name] = value

    for name in update.unset:
        if name == ID_FIELD:
            raise ImmutableFieldError("Field '_id' is immutable")
        new_doc.pop(name, None)

    for name, amount in update.inc:
        current = _numeric_field(new_doc, name, "$inc")
        if current is MISSING:
            new_doc[name] = amount
        else:
            current, amount = _promote(current, amount)
            new_doc[name] = current + amount

    for name, factor in update.mul:
        current = _numeric_field(new_doc, name, "$mul")
        if current is MISSING:
            new_doc[name] = 0 * factor
        else:
            current, factor = _promote(current, factor)
            new_doc[name] = current * factor

    validate_document(new_doc)
    changed = [
        name for name in update.touched_fields()
        if tag_changed(doc.get(name, MISSING), new_doc.get(name, MISSING))
    ]
    return new_doc, changed


def _numeric_field(doc: Document, name: str, op: str) -> Any:
    if name == ID_FIELD:
        raise ImmutableFieldError("Field '_id' is immutable")
    validate_field_name(name)
    current = doc.get(name, MISSING)
    if current is not MISSING and not is_number(current):
        raise InvalidUpdateError(
            f"Cannot apply {op} to non-numeric field '{name}' (value {current!r})"
        )
    return current


class MutationExecutor:
    """
    Usage:
        mutations = MutationExecutor(books)
        result = mutations.update_one({"title": "The Great Gatsby"}, {"$set": {"price": 15.99}})
        result.modified_count  # → 1
    """

    def __init__(self, collection: Collection, config: Optional[EngineConfig] = None):
        self.collection = collection
        self.config = config or EngineConfig()
        self.predicates = PredicateEvaluator()

    # ─── Insert ─────────────────────────────────────────────────────

    def insert_one(self, document: Document) -> InsertResult:
        with self.collection.write_locked(self.config.lock_timeout):
            doc_id = self.collection.insert(document)
        logger.debug("insert_one into %s: _id=%r", self.collection.name, doc_id)
        return InsertResult([doc_id])

    def insert_many(self, documents: Iterable[Document]) -> InsertResult:
        """All or nothing: a rejected document undoes the whole batch."""
        with self.collection.write_locked(self.config.lock_timeout):
            ids = self.collection.insert_many(list(documents))
        return InsertResult(ids)

    # ─── Update ─────────────────────────────────────────────────────

    def update_one(self, predicate: Any, update: Any) -> UpdateResult:
        return self._update(predicate, update, multi=False)

    def update_many(self, predicate: Any, update: Any) -> UpdateResult:
        return self._update(predicate, update, multi=True)

    def _update(self, predicate: Any, update: Any, multi: bool) -> UpdateResult:
        spec = self._query(predicate)
        update_spec = parse_update(update)

        with self.collection.write_locked(self.config.lock_timeout):
            targets = self._targets(spec, multi)
            pending = []
            for doc_id in targets:
                new_doc, changed = apply_update(self.collection.get(doc_id), update_spec)
                if changed:
                    pending.append((doc_id, new_doc, changed))
            self._apply_replacements(pending)

        result = UpdateResult(matched_count=len(targets), modified_count=len(pending))
        logger.debug("%s on %s: matched=%d modified=%d",
                     "update_many" if multi else "update_one",
                     self.collection.name, result.matched_count, result.modified_count)
        return result

    def _apply_replacements(self, pending: List[Tuple[Any, Document, List[str]]]) -> None:
        done: List[Tuple[Any, Document, List[str]]] = []
        try:
            for doc_id, new_doc, changed in pending:
                old_doc = self.collection.get(doc_id)
                self.collection.replace(doc_id, new_doc, changed)
                done.append((doc_id, old_doc, changed))
        except Exception:
            for doc_id, old_doc, changed in reversed(done):
                self.collection.replace(doc_id, old_doc, changed)
            if done:
                logger.warning("Update on %s rolled back %d document(s)",
                               self.collection.name, len(done))
            raise

    # ─── Delete ─────────────────────────────────────────────────────

    def delete_one(self, predicate: Any) -> DeleteResult:
        return self._delete(predicate, multi=False)

    def delete_many(self, predicate: Any) -> DeleteResult:
        return self._delete(predicate, multi=True)

    def _delete(self, predicate: Any, multi: bool) -> DeleteResult:
        spec = self._query(predicate)
        with self.collection.write_locked(self.config.lock_timeout):
            targets = self._targets(spec, multi)
            for doc_id in targets:
                self.collection.remove(doc_id)
        logger.debug("%s on %s: deleted=%d", "delete_many" if multi else "delete_one",
                     self.collection.name, len(targets))
        return DeleteResult(deleted_count=len(targets))

    # ─── Helpers ────────────────────────────────────────────────────

    def _query(self, predicate: Any) -> QuerySpec:
        spec = predicate if isinstance(predicate, QuerySpec) else QuerySpec.build(predicate)
        self.predicates.validate(spec.predicate)
        return spec

    def _targets(self, spec: QuerySpec, multi: bool) -> List[Any]:
        """_ids of matching documents in insertion order. Caller holds the write lock."""
        ctx = ExecutionContext(self.collection, self.config, ScanStats())
        planner = PhysicalPlanner(ctx, predicates=self.predicates)
        plan = self.collection.indexes.plan_for(spec.predicate)
        targets = []
        for row in planner.plan_candidates(spec, plan):
            targets.append(row.doc_id)
            if not multi:
                break
        return targets
