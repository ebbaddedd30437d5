"""
MiniDoc Collection
==================
Insertion-ordered, mutable set of documents keyed by _id, with its
index registry and readers/writer lock.

Ownership:
  - The collection owns its documents. Every read hands out copies.
  - Documents change only through insert / replace / remove, which the
    executors call while holding the write lock.

Atomicity:
  - Each mutation updates the document map and every affected index as
    one step under the write lock. If index maintenance fails, the
    document map is left untouched (indexes roll themselves back).

Each document gets an insertion sequence number. Updates keep both the
sequence number and the position, so "first match" and stable-sort tie
breaks always follow original insertion order.
"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

from concurrency.rw_lock import ReadWriteLock
from indexing.registry import IndexRegistry, DocEntry
from storage.document import ID_FIELD, Document, generate_object_id, validate_document
from storage.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


class Collection:
    """
    Usage:
        books = Collection("books")
        books.insert_one({"title": "1984", "author": "George Orwell"})
        with books.read_locked():
            for doc_id, seq, doc in books.entries():
                ...
    """

    def __init__(self, name: str = "books", *, lock_timeout: float = 5.0):
        self.name = name
        self.indexes = IndexRegistry()
        self._lock = ReadWriteLock(timeout=lock_timeout)
        self._docs: Dict[Any, Document] = {}
        self._seqs: Dict[Any, int] = {}
        self._next_seq = 0

    def __len__(self) -> int:
        return len(self._docs)

    def __repr__(self):
        return f"Collection({self.name!r}, documents={len(self._docs)}, indexes={len(self.indexes)})"

    # ─── Locking ────────────────────────────────────────────────────

    def read_locked(self, timeout: Optional[float] = None):
        return self._lock.read_locked(timeout)

    def write_locked(self, timeout: Optional[float] = None):
        return self._lock.write_locked(timeout)

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock

    # ─── Reads (caller holds at least the read lock) ────────────────

    def entries(self) -> Iterator[DocEntry]:
        """Yield (doc_id, seq, doc) in insertion order. Docs are live references."""
        for doc_id, doc in self._docs.items():
            yield doc_id, self._seqs[doc_id], doc

    def get(self, doc_id: Any) -> Optional[Document]:
        return self._docs.get(doc_id)

    def snapshot(self, timeout: Optional[float] = None) -> List[Document]:
        """Copies of all documents, in insertion order. Takes the read lock."""
        with self.read_locked(timeout):
            return [dict(doc) for doc in self._docs.values()]

    # ─── Mutations (caller holds the write lock) ────────────────────

    def insert(self, document: Document) -> Any:
        """
        Validate, assign _id if absent, and store a copy.
        Returns the _id. Raises InvalidDocumentError / DuplicateKeyError.
        """
        doc = dict(document)
        if ID_FIELD not in doc:
            doc[ID_FIELD] = generate_object_id()
        validate_document(doc)
        doc_id = doc[ID_FIELD]
        if doc_id in self._docs:
            raise DuplicateKeyError(f"Duplicate _id {doc_id!r} in collection '{self.name}'")

        seq = self._next_seq
        self.indexes.apply(doc_id, seq, None, doc)
        self._next_seq += 1
        self._docs[doc_id] = doc
        self._seqs[doc_id] = seq
        return doc_id

    def replace(self, doc_id: Any, new_doc: Document, changed_fields: Iterable[str]) -> None:
        """Swap in new_doc for the stored document, keeping its position."""
        validate_document(new_doc)
        old_doc = self._docs[doc_id]
        seq = self._seqs[doc_id]
        self.indexes.apply(doc_id, seq, old_doc, new_doc, changed_fields=list(changed_fields))
        self._docs[doc_id] = new_doc

    def remove(self, doc_id: Any) -> Document:
        old_doc = self._docs[doc_id]
        seq = self._seqs[doc_id]
        self.indexes.apply(doc_id, seq, old_doc, None)
        del self._docs[doc_id]
        del self._seqs[doc_id]
        return old_doc

    # ─── Convenience (takes the lock itself) ────────────────────────

    def insert_one(self, document: Document) -> Any:
        with self.write_locked():
            doc_id = self.insert(document)
        logger.debug("Inserted _id=%r into %s", doc_id, self.name)
        return doc_id

    def insert_many(self, documents: Iterable[Document]) -> List[Any]:
        """
        Insert in order as one step. If any document is rejected, the
        ones this call already inserted are removed again.
        """
        ids = []
        with self.write_locked():
            try:
                for document in documents:
                    ids.append(self.insert(document))
            except Exception:
                for doc_id in reversed(ids):
                    self.remove(doc_id)
                logger.warning("insert_many into %s rolled back %d document(s)", self.name, len(ids))
                raise
        logger.debug("Inserted %d documents into %s", len(ids), self.name)
        return ids

    def create_index(self, keys: Any, name: Optional[str] = None, unique: bool = False) -> str:
        """Declare an index and build it from the current documents."""
        with self.write_locked():
            return self.indexes.declare_index(keys, name=name, unique=unique,
                                              documents=list(self.entries()))

    def drop_index(self, name: str) -> None:
        with self.write_locked():
            self.indexes.drop_index(name)

    def list_indexes(self) -> List[Dict[str, Any]]:
        with self.read_locked():
            return self.indexes.list_indexes()

    def clear(self) -> None:
        """Remove every document (indexes stay declared)."""
        with self.write_locked():
            for doc_id in list(self._docs):
                self.remove(doc_id)
