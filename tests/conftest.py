"""
Shared fixtures: a books collection seeded with the built-in sample, and
the three-document scenario collection used by the aggregation and
update examples.
"""

import pytest

from cli.sample_data import SAMPLE_BOOKS
from execution.executor import Executor
from storage.collection import Collection


@pytest.fixture
def books():
    collection = Collection("books")
    collection.insert_many(SAMPLE_BOOKS)
    return collection


@pytest.fixture
def db(books):
    return Executor(books)


@pytest.fixture
def abc():
    collection = Collection("abc")
    collection.insert_many([
        {"title": "A", "price": 10, "genre": "F"},
        {"title": "B", "price": 5, "genre": "F"},
        {"title": "C", "price": 20, "genre": "G"},
    ])
    return Executor(collection)