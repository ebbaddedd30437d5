"""
MiniDoc Planning
================
Request-scoped value objects: QuerySpec (what to read) and
QueryPlan / IndexBounds (how the index registry proposes to read it).
"""

from planning.query_spec import QuerySpec
from planning.query_plan import QueryPlan, IndexBounds, INDEXED, FULL_SCAN, FULL_SCAN_PLAN

__all__ = ["QuerySpec", "QueryPlan", "IndexBounds", "INDEXED", "FULL_SCAN", "FULL_SCAN_PLAN"]
