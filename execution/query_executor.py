"""
MiniDoc Query Executor
======================
find / find_one / count_documents / distinct / explain over one Collection.

Every read runs under the collection's read lock, validates the
predicate before touching any document, asks the index registry for a
plan, and drains the physical operator tree. Results are copies; the
caller may mutate them freely.
"""

import logging
import time
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, List, Optional, Tuple

from execution.context import EngineConfig, ExecutionContext, ScanStats
from execution.planner import PhysicalPlanner
from execution.predicate_evaluator import PredicateEvaluator
from planning.query_plan import QueryPlan
from planning.query_spec import QuerySpec
from storage.collection import Collection
from storage.document import MISSING, Document, get_path
from storage.errors import InvalidQueryError
from storage.types import equality_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExplainReport:
    """Plan and cost of one find(), produced by QueryExecutor.explain()."""
    used_index: bool
    index_name: Optional[str]
    stage: str                      # "IXSCAN" or "COLLSCAN"
    scanned_count: int              # documents examined
    keys_examined: int
    returned_count: int
    cost_class: str                 # "indexed" or "full-scan"
    estimated_duration_class: str   # "fast", "moderate" or "slow"
    execution_time_millis: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class QueryExecutor:
    """
    Usage:
        executor = QueryExecutor(books)
        docs = executor.find(QuerySpec.build({"author": "George Orwell"}, sort={"published_year": 1}))
    """

    def __init__(self, collection: Collection, config: Optional[EngineConfig] = None):
        self.collection = collection
        self.config = config or EngineConfig()
        self.predicates = PredicateEvaluator()

    def _context(self) -> ExecutionContext:
        return ExecutionContext(self.collection, self.config, ScanStats())

    # ─── Reads ──────────────────────────────────────────────────────

    def execute(self, spec: QuerySpec) -> Tuple[List[Document], ExecutionContext, QueryPlan]:
        """Run a query and return (documents, context with stats, plan)."""
        self.predicates.validate(spec.predicate)
        ctx = self._context()
        planner = PhysicalPlanner(ctx, predicates=self.predicates)

        with self.collection.read_locked(self.config.lock_timeout):
            plan = self.collection.indexes.plan_for(spec.predicate, spec.sort)
            root = planner.plan_query(spec, plan)
            docs = [row.values for row in root]

        logger.debug("find on %s: %s returned=%d examined=%d",
                     self.collection.name, plan.describe(), len(docs), ctx.stats.docs_examined)
        return docs, ctx, plan

    def find(self, spec: QuerySpec) -> List[Document]:
        docs, _, _ = self.execute(spec)
        return docs

    def find_one(self, spec: QuerySpec) -> Optional[Document]:
        """First document of find(spec), or None."""
        docs = self.find(replace(spec, limit=1))
        return docs[0] if docs else None

    def find_page(self, spec: QuerySpec, page: int, page_size: Optional[int] = None) -> List[Document]:
        return self.find(spec.for_page(page, page_size or self.config.default_page_size))

    def count_documents(self, spec: QuerySpec) -> int:
        """Number of documents matching the predicate (skip/limit honoured)."""
        self.predicates.validate(spec.predicate)
        ctx = self._context()
        planner = PhysicalPlanner(ctx, predicates=self.predicates)
        with self.collection.read_locked(self.config.lock_timeout):
            plan = self.collection.indexes.plan_for(spec.predicate)
            root = planner.plan_query(replace(spec, sort=(), projection=None), plan, project=False)
            return sum(1 for _ in root)

    def distinct(self, field_name: str, spec: Optional[QuerySpec] = None) -> List[Any]:
        """
        Distinct values of a field among matching documents, in order of
        first appearance. Documents without the field are skipped.
        """
        if not isinstance(field_name, str) or not field_name:
            raise InvalidQueryError(f"distinct requires a field name, got {field_name!r}")
        spec = spec or QuerySpec()
        self.predicates.validate(spec.predicate)
        ctx = self._context()
        planner = PhysicalPlanner(ctx, predicates=self.predicates)

        seen = set()
        values = []
        with self.collection.read_locked(self.config.lock_timeout):
            plan = self.collection.indexes.plan_for(spec.predicate)
            for row in planner.plan_candidates(spec, plan):
                value = get_path(row.values, field_name)
                if value is MISSING:
                    continue
                key = equality_key(value)
                if key not in seen:
                    seen.add(key)
                    values.append(value)
        return values

    # ─── Explain ────────────────────────────────────────────────────

    def explain(self, spec: QuerySpec) -> ExplainReport:
        """
        Execute the query read-only and report the plan it used and what
        it cost. Leaves the collection and its indexes untouched.
        """
        started = time.perf_counter()
        docs, ctx, plan = self.execute(spec)
        elapsed = (time.perf_counter() - started) * 1000.0

        return ExplainReport(
            used_index=plan.used_index,
            index_name=plan.index_name,
            stage=plan.stage,
            scanned_count=ctx.stats.docs_examined,
            keys_examined=ctx.stats.keys_examined,
            returned_count=len(docs),
            cost_class=plan.cost_class,
            estimated_duration_class=self.config.duration_class(ctx.stats.docs_examined),
            execution_time_millis=round(elapsed, 3),
        )
