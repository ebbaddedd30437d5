"""
MiniDoc Request Parser
======================
Public API for turning Mongo-style request documents into AST nodes.

Usage:
    from parser import parse_filter, parse_pipeline

    predicate = parse_filter({"published_year": {"$gt": 2000}})
    stages = parse_pipeline([{"$group": {"_id": "$genre", "n": {"$sum": 1}}}])
"""

from parser.parser import (
    parse_filter, parse_projection, parse_sort, parse_update,
    parse_expression, parse_pipeline, parse_stage,
)

__all__ = [
    "parse_filter", "parse_projection", "parse_sort", "parse_update",
    "parse_expression", "parse_pipeline", "parse_stage",
]
