"""
MiniDoc Executor
================
End-to-end entry point for one collection.
Pipeline: Mongo-style dicts -> Parser -> QuerySpec / stages -> Index plan
-> Physical operators -> results.

Usage:
    books = Collection("books")
    db = Executor(books)
    db.insert_many(SAMPLE_BOOKS)
    db.find({"genre": "Fiction"}, projection={"_id": 0, "title": 1})
    db.update_one({"title": "The Great Gatsby"}, {"$set": {"price": 15.99}})
    db.aggregate([{"$group": {"_id": "$genre", "avgPrice": {"$avg": "$price"}}}])
"""

from typing import Any, Dict, Iterable, List, Optional

from execution.aggregation import AggregationEngine
from execution.context import EngineConfig
from execution.mutation_executor import MutationExecutor, UpdateResult, DeleteResult, InsertResult
from execution.query_executor import QueryExecutor, ExplainReport
from planning.query_spec import QuerySpec
from storage.collection import Collection
from storage.document import Document


class Executor:
    """
    Facade over the query, mutation and aggregation executors.
    Every method accepts either Mongo-style dicts or AST nodes.
    """

    def __init__(self, collection: Collection, config: Optional[EngineConfig] = None):
        self.collection = collection
        self.config = config or EngineConfig()
        self.queries = QueryExecutor(collection, self.config)
        self.mutations = MutationExecutor(collection, self.config)
        self.aggregation = AggregationEngine(self.config)

    # ─── Reads ──────────────────────────────────────────────────────

    def find(self, filter: Any = None, projection: Any = None, sort: Any = None,
             skip: int = 0, limit: int = 0) -> List[Document]:
        return self.queries.find(QuerySpec.build(filter, projection, sort, skip, limit))

    def find_one(self, filter: Any = None, projection: Any = None, sort: Any = None) -> Optional[Document]:
        return self.queries.find_one(QuerySpec.build(filter, projection, sort))

    def find_page(self, filter: Any = None, page: int = 1, page_size: Optional[int] = None,
                  projection: Any = None, sort: Any = None) -> List[Document]:
        """One 1-based page of results (page_size defaults to the config)."""
        return self.queries.find_page(QuerySpec.build(filter, projection, sort), page, page_size)

    def count_documents(self, filter: Any = None) -> int:
        return self.queries.count_documents(QuerySpec.build(filter))

    def distinct(self, field_name: str, filter: Any = None) -> List[Any]:
        return self.queries.distinct(field_name, QuerySpec.build(filter))

    def explain(self, filter: Any = None, projection: Any = None, sort: Any = None,
                skip: int = 0, limit: int = 0) -> ExplainReport:
        return self.queries.explain(QuerySpec.build(filter, projection, sort, skip, limit))

    # ─── Writes ─────────────────────────────────────────────────────

    def insert_one(self, document: Document) -> InsertResult:
        return self.mutations.insert_one(document)

    def insert_many(self, documents: Iterable[Document]) -> InsertResult:
        return self.mutations.insert_many(documents)

    def update_one(self, filter: Any, update: Any) -> UpdateResult:
        return self.mutations.update_one(filter, update)

    def update_many(self, filter: Any, update: Any) -> UpdateResult:
        return self.mutations.update_many(filter, update)

    def delete_one(self, filter: Any) -> DeleteResult:
        return self.mutations.delete_one(filter)

    def delete_many(self, filter: Any) -> DeleteResult:
        return self.mutations.delete_many(filter)

    # ─── Aggregation ────────────────────────────────────────────────

    def aggregate(self, pipeline: Iterable[Any]) -> List[Dict[str, Any]]:
        return self.aggregation.run(pipeline, self.collection)

    # ─── Indexes ────────────────────────────────────────────────────

    def create_index(self, keys: Any, name: Optional[str] = None, unique: bool = False) -> str:
        return self.collection.create_index(keys, name=name, unique=unique)

    def drop_index(self, name: str) -> None:
        self.collection.drop_index(name)

    def list_indexes(self) -> List[Dict[str, Any]]:
        return self.collection.list_indexes()
