"""
MiniDoc Physical Planner
========================
Maps a QuerySpec + QueryPlan (or a pipeline stage list) to a tree of
Volcano operators.

Query tree, bottom to top:
    CollectionScan | IndexScan  → Filter → Sort → Skip → Limit → Projection

  - The Filter is always present: index bounds only narrow candidates.
  - When the index already yields rows in sort order (sort_covered), the
    Sort operator is omitted. Otherwise IndexScan returns candidates in
    insertion order, so Sort ties fall back to insertion order.
  - Range operands are checked against the whole collection before any
    row is produced, so the access path never changes the outcome.

Pipeline tree: ValuesExec over a snapshot, then one operator per stage.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from execution.context import ExecutionContext
from execution.expression_evaluator import ExpressionEvaluator
from execution.physical_plan import (
    PhysicalNode, CollectionScanExec, IndexScanExec, ValuesExec, FilterExec,
    SortExec, SkipExec, LimitExec, ProjectionExec, StageProjectExec, GroupExec, CountExec,
)
from execution.predicate_evaluator import PredicateEvaluator
from parser.ast_nodes import (
    Stage, ProjectStage, GroupStage, SortStage, LimitStage, SkipStage, MatchStage, CountStage,
)
from planning.query_plan import QueryPlan
from planning.query_spec import QuerySpec
from storage.errors import InvalidPipelineError

logger = logging.getLogger(__name__)


class PhysicalPlanner:
    """
    Builds physical plans for one ExecutionContext.
    """

    def __init__(self, context: ExecutionContext,
                 predicates: Optional[PredicateEvaluator] = None,
                 expressions: Optional[ExpressionEvaluator] = None):
        self.context = context
        self.predicates = predicates or PredicateEvaluator()
        self.expressions = expressions or ExpressionEvaluator()

    # ─── Queries ────────────────────────────────────────────────────

    def plan_query(self, spec: QuerySpec, plan: QueryPlan, project: bool = True) -> PhysicalNode:
        self._check_range_operands(spec)
        node = self._plan_scan(plan, keep_index_order=plan.sort_covered)
        node = FilterExec(node, spec.predicate, self.predicates)
        if spec.sort and not plan.sort_covered:
            node = SortExec(node, spec.sort)
        if spec.skip:
            node = SkipExec(node, spec.skip)
        if spec.limit:
            node = LimitExec(node, spec.limit)
        if project:
            node = ProjectionExec(node, spec.projection)
        return node

    def plan_candidates(self, spec: QuerySpec, plan: QueryPlan) -> PhysicalNode:
        """Matching documents in insertion order (mutations use this)."""
        self._check_range_operands(spec)
        return FilterExec(self._plan_scan(plan, keep_index_order=False),
                          spec.predicate, self.predicates)

    def _check_range_operands(self, spec: QuerySpec) -> None:
        """Caller holds the collection lock."""
        docs = (doc for _, _, doc in self.context.collection.entries())
        self.predicates.check_range_operands(spec.predicate, docs)

    def _plan_scan(self, plan: QueryPlan, keep_index_order: bool) -> PhysicalNode:
        ctx = self.context
        if not plan.used_index:
            return CollectionScanExec(ctx.collection, ctx.stats)
        ctx.index_name = plan.index_name
        index = ctx.collection.indexes.get(plan.index_name)
        return IndexScanExec(ctx.collection, index, plan.bounds,
                             order_by_seq=not keep_index_order, stats=ctx.stats)

    # ─── Pipelines ──────────────────────────────────────────────────

    def plan_pipeline(self, stages: Sequence[Stage], records: Sequence[Dict[str, Any]]) -> PhysicalNode:
        node: PhysicalNode = ValuesExec(records)
        for stage in stages:
            node = self._plan_stage(node, stage)
        logger.debug("Pipeline plan: %s", " → ".join(s.name for s in stages) or "(empty)")
        return node

    def _plan_stage(self, child: PhysicalNode, stage: Stage) -> PhysicalNode:
        if isinstance(stage, ProjectStage):
            return StageProjectExec(child, stage, self.expressions)
        if isinstance(stage, GroupStage):
            return GroupExec(child, stage, self.expressions)
        if isinstance(stage, SortStage):
            return SortExec(child, stage.keys)
        if isinstance(stage, LimitStage):
            return LimitExec(child, stage.count)
        if isinstance(stage, SkipStage):
            return SkipExec(child, stage.count)
        if isinstance(stage, MatchStage):
            return FilterExec(child, stage.predicate, self.predicates)
        if isinstance(stage, CountStage):
            return CountExec(child, stage.output)
        raise InvalidPipelineError(f"Unsupported aggregation stage: {type(stage).__name__}")
