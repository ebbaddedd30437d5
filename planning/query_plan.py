"""
MiniDoc Query Plans
===================
Plan information produced by IndexRegistry.plan_for().
Pure values (frozen dataclasses); they never touch the collection.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

INDEXED = "indexed"
FULL_SCAN = "full-scan"


@dataclass(frozen=True)
class IndexBounds:
    """
    Key range inside one index, in encoded (byte) space.

    prefix: encoded components fixed by leading equality fields.
    lower/upper: optional range on the component right after the prefix.
    No prefix and no range means the whole index.
    """
    prefix: Tuple[bytes, ...] = ()
    lower: Optional[bytes] = None
    lower_inclusive: bool = True
    upper: Optional[bytes] = None
    upper_inclusive: bool = True

    @property
    def has_range(self) -> bool:
        return self.lower is not None or self.upper is not None

    @property
    def is_full(self) -> bool:
        return not self.prefix and not self.has_range


@dataclass(frozen=True)
class QueryPlan:
    """
    index_name:     index used for candidate selection, None for a full scan
    bounds:         key range scanned in that index
    serves_filter:  the index narrows the predicate's candidates
    sort_covered:   index order already equals the requested sort
    equality_fields / range_field: which predicate fields the index serves
    """
    index_name: Optional[str] = None
    bounds: Optional[IndexBounds] = None
    serves_filter: bool = False
    sort_covered: bool = False
    equality_fields: Tuple[str, ...] = ()
    range_field: Optional[str] = None

    @property
    def used_index(self) -> bool:
        return self.index_name is not None

    @property
    def cost_class(self) -> str:
        return INDEXED if self.used_index else FULL_SCAN

    @property
    def stage(self) -> str:
        return "IXSCAN" if self.used_index else "COLLSCAN"

    def describe(self) -> str:
        if not self.used_index:
            return "COLLSCAN"
        parts = [f"IXSCAN {self.index_name}"]
        if self.equality_fields:
            parts.append("eq=" + ",".join(self.equality_fields))
        if self.range_field:
            parts.append(f"range={self.range_field}")
        if self.sort_covered:
            parts.append("sorted")
        return " ".join(parts)


FULL_SCAN_PLAN = QueryPlan()
