"""
MiniDoc Query Specification
===========================
Immutable description of one read: predicate + projection + sort +
skip/limit. Created per call and discarded after execution.
"""

from dataclasses import dataclass, replace
from typing import Any, Optional, Tuple

from parser import parse_filter, parse_projection, parse_sort
from parser.ast_nodes import Predicate, Projection, SortKey, MATCH_ALL
from storage.errors import InvalidQueryError


@dataclass(frozen=True)
class QuerySpec:
    """
    predicate:  filter tree (MATCH_ALL selects every document)
    projection: optional field selection
    sort:       sort keys, most significant first
    skip:       documents to drop after sorting
    limit:      max documents to return; 0 means no limit
    """
    predicate: Predicate = MATCH_ALL
    projection: Optional[Projection] = None
    sort: Tuple[SortKey, ...] = ()
    skip: int = 0
    limit: int = 0

    def __post_init__(self):
        for name in ("skip", "limit"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidQueryError(f"{name} must be a non-negative integer, got {value!r}")

    @classmethod
    def build(cls, filter: Any = None, projection: Any = None, sort: Any = None,
              skip: int = 0, limit: int = 0) -> "QuerySpec":
        """Build from Mongo-style dicts (or AST nodes)."""
        return cls(
            predicate=parse_filter(filter),
            projection=parse_projection(projection),
            sort=parse_sort(sort),
            skip=skip,
            limit=limit,
        )

    def for_page(self, page: int, page_size: int) -> "QuerySpec":
        """
        Same query restricted to one page. Pages are 1-based:
        skip = (page - 1) * page_size, limit = page_size.
        """
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidQueryError(f"page must be an integer >= 1, got {page!r}")
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise InvalidQueryError(f"page_size must be an integer >= 1, got {page_size!r}")
        return replace(self, skip=(page - 1) * page_size, limit=page_size)
