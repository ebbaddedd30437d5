"""
MiniDoc Aggregation Pipeline Engine
===================================
Runs a list of stages over a consistent snapshot of a collection.

  run([{"$group": {"_id": "$genre", "avgPrice": {"$avg": "$price"}}},
       {"$sort": {"avgPrice": -1}}], books)

Stages run strictly in order; each stage's output records feed the
next. The snapshot is copied under the read lock, so writers only wait
for the copy, never for the pipeline itself.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from execution.context import EngineConfig, ExecutionContext, ScanStats
from execution.expression_evaluator import ExpressionEvaluator
from execution.planner import PhysicalPlanner
from execution.predicate_evaluator import PredicateEvaluator
from parser import parse_pipeline
from parser.ast_nodes import MatchStage
from storage.collection import Collection

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class AggregationEngine:
    """
    Stateless apart from its configuration; one engine can serve many
    collections.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.predicates = PredicateEvaluator()
        self.expressions = ExpressionEvaluator()

    def run(self, stages: Iterable[Any], collection: Collection) -> List[Record]:
        """
        Parse and execute a pipeline. Stages may be Mongo-style dicts or
        Stage nodes. Raises InvalidPipelineError before reading anything
        if a stage is malformed, ExpressionError while running.
        """
        pipeline = parse_pipeline(stages)
        for stage in pipeline:
            if isinstance(stage, MatchStage):
                self.predicates.validate(stage.predicate)

        snapshot = collection.snapshot(self.config.lock_timeout)

        ctx = ExecutionContext(collection, self.config, ScanStats(docs_examined=len(snapshot)))
        planner = PhysicalPlanner(ctx, self.predicates, self.expressions)
        records = [row.values for row in planner.plan_pipeline(pipeline, snapshot)]

        logger.debug("aggregate on %s: %d stage(s), %d input, %d output",
                     collection.name, len(pipeline), len(snapshot), len(records))
        return records
