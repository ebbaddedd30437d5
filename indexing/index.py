"""
MiniDoc Index
=============
One single-field or compound index over a collection.

Entries are kept sorted in a Python list:
    (key, seq, doc_id)
      key    → tuple of encoded components, one per indexed field
      seq    → the document's insertion sequence number
      doc_id → the document's _id

Sorting on (key, seq) means equal keys stay in insertion order, which
keeps index-ordered reads stable.

Concurrency: callers hold the owning collection's write lock for every
mutation and its read lock for scans.
"""

import bisect
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from indexing.key_encoding import IndexKey, encode_key
from planning.query_plan import IndexBounds
from storage.document import get_path
from storage.errors import DuplicateKeyError, IndexConflictError

Entry = Tuple[IndexKey, int, Any]


@dataclass(frozen=True)
class IndexSpec:
    """Ordered (field, direction) pairs plus options."""
    fields: Tuple[Tuple[str, int], ...]
    unique: bool = False

    @classmethod
    def from_keys(cls, keys: Union[str, Dict[str, int], Iterable], unique: bool = False) -> "IndexSpec":
        """
        Accepts "title", {"author": 1, "published_year": -1}
        or [("author", 1), ("published_year", -1)].
        """
        if isinstance(keys, str):
            pairs = [(keys, 1)]
        elif isinstance(keys, dict):
            pairs = list(keys.items())
        else:
            pairs = [tuple(p) for p in keys]

        if not pairs:
            raise IndexConflictError("Index needs at least one field")
        seen = set()
        for pair in pairs:
            if len(pair) != 2:
                raise IndexConflictError(f"Index key entry must be (field, direction), got {pair!r}")
            name, direction = pair
            if not isinstance(name, str) or not name:
                raise IndexConflictError(f"Index field must be a non-empty string, got {name!r}")
            if isinstance(direction, bool) or direction not in (1, -1):
                raise IndexConflictError(f"Index direction for '{name}' must be 1 or -1")
            if name in seen:
                raise IndexConflictError(f"Field '{name}' appears twice in index key")
            seen.add(name)
        return cls(tuple((n, int(d)) for n, d in pairs), unique)

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.fields)

    @property
    def directions(self) -> Tuple[int, ...]:
        return tuple(d for _, d in self.fields)

    def default_name(self) -> str:
        """Mongo-style name: author_1_published_year_-1."""
        return "_".join(f"{name}_{direction}" for name, direction in self.fields)


class Index:
    """Sorted (key, seq, doc_id) entries for one IndexSpec."""

    def __init__(self, name: str, spec: IndexSpec):
        self.name = name
        self.spec = spec
        self._entries: List[Entry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self):
        return f"Index({self.name!r}, fields={self.spec.fields}, unique={self.spec.unique})"

    @property
    def unique(self) -> bool:
        return self.spec.unique

    def covers(self, field_names: Iterable[str]) -> bool:
        """True if any of the given fields is part of this index key."""
        mine = set(self.spec.field_names)
        return any(name in mine for name in field_names)

    def key_for(self, doc: Dict[str, Any]) -> IndexKey:
        values = [get_path(doc, name) for name in self.spec.field_names]
        return encode_key(values, self.spec.directions)

    # ─── Maintenance ────────────────────────────────────────────────

    def check_unique(self, key: IndexKey, doc_id: Any) -> None:
        """Raise DuplicateKeyError if another document already holds key."""
        if not self.unique:
            return
        pos = bisect.bisect_left(self._entries, (key,))
        if pos < len(self._entries):
            other_key, _, other_id = self._entries[pos]
            if other_key == key and other_id != doc_id:
                raise DuplicateKeyError(
                    f"Duplicate key in unique index '{self.name}' "
                    f"for fields {self.spec.field_names}"
                )

    def insert(self, doc_id: Any, seq: int, doc: Dict[str, Any]) -> None:
        key = self.key_for(doc)
        self.check_unique(key, doc_id)
        bisect.insort(self._entries, (key, seq, doc_id))

    def remove(self, doc_id: Any, seq: int, doc: Dict[str, Any]) -> None:
        key = self.key_for(doc)
        pos = bisect.bisect_left(self._entries, (key, seq))
        if pos < len(self._entries) and self._entries[pos][1] == seq and self._entries[pos][0] == key:
            del self._entries[pos]
        else:
            raise KeyError(f"Index '{self.name}' has no entry for _id={doc_id!r}")

    def replace(self, doc_id: Any, seq: int,
                old_doc: Optional[Dict[str, Any]], new_doc: Optional[Dict[str, Any]]) -> bool:
        """
        Move a document's entry from old_doc's key to new_doc's key.
        old_doc None = insert, new_doc None = delete.
        The unique check runs before anything changes.
        Returns True if the index changed.
        """
        old_key = self.key_for(old_doc) if old_doc is not None else None
        new_key = self.key_for(new_doc) if new_doc is not None else None
        if old_key == new_key:
            return False
        if new_key is not None:
            self.check_unique(new_key, doc_id)
        if old_doc is not None:
            self.remove(doc_id, seq, old_doc)
        if new_doc is not None:
            bisect.insort(self._entries, (new_key, seq, doc_id))
        return True

    # ─── Lookup ─────────────────────────────────────────────────────

    def scan(self, bounds: Optional[IndexBounds] = None) -> Tuple[List[Tuple[int, Any]], int]:
        """
        Walk the entries inside bounds in index order.
        Returns ([(seq, doc_id), ...], keys_examined).
        """
        bounds = bounds or IndexBounds()
        prefix = bounds.prefix
        depth = len(prefix)

        probe = prefix + ((bounds.lower,) if bounds.lower is not None else ())
        start = bisect.bisect_left(self._entries, (probe,)) if probe else 0

        out: List[Tuple[int, Any]] = []
        examined = 0
        for i in range(start, len(self._entries)):
            key, seq, doc_id = self._entries[i]
            examined += 1
            if key[:depth] != prefix:
                break
            if bounds.has_range:
                component = key[depth]
                if bounds.lower is not None and not bounds.lower_inclusive and component == bounds.lower:
                    continue
                if bounds.upper is not None:
                    if component > bounds.upper or (component == bounds.upper and not bounds.upper_inclusive):
                        break
            out.append((seq, doc_id))
        return out, examined

    def doc_ids(self) -> List[Any]:
        """All indexed _ids in index order."""
        return [doc_id for _, _, doc_id in self._entries]
