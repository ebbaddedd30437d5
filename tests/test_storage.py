"""
MiniDoc Storage Tests
=====================
Type tags, equality and ordering rules, document validation, and the
Collection's insert / replace / remove bookkeeping.
"""

from datetime import date, datetime, timezone, timedelta
from decimal import Decimal

import pytest

from storage.collection import Collection
from storage.document import (
    ID_FIELD, MISSING, generate_object_id, get_path, validate_document,
)
from storage.errors import DuplicateKeyError, InvalidDocumentError
from storage.types import (
    DataType, type_of, is_number, values_equal, same_family, compare_values,
    sort_key, equality_key, tag_changed, normalize_date,
)


# ═══════════════════════════════════════════════════════════════════
# Type tags
# ═══════════════════════════════════════════════════════════════════

class TestTypeTags:

    def test_scalar_tags(self):
        assert type_of("x") == DataType.STRING
        assert type_of(3) == DataType.INT
        assert type_of(3.5) == DataType.FLOAT
        assert type_of(Decimal("1.25")) == DataType.FLOAT
        assert type_of(date(2020, 1, 1)) == DataType.DATE
        assert type_of(datetime(2020, 1, 1, 8)) == DataType.DATE

    def test_bool_is_not_int(self):
        assert type_of(True) == DataType.BOOLEAN
        assert not is_number(True)
        assert is_number(0)

    def test_unsupported_values(self):
        assert type_of(None) is None
        assert type_of([1, 2]) is None
        assert type_of({"a": 1}) is None


# ═══════════════════════════════════════════════════════════════════
# Equality & ordering
# ═══════════════════════════════════════════════════════════════════

class TestEquality:

    def test_int_float_equal(self):
        assert values_equal(1, 1.0)
        assert values_equal(Decimal("2.5"), 2.5)

    def test_bool_never_equals_number(self):
        assert not values_equal(True, 1)
        assert not values_equal(0, False)

    def test_strings_case_sensitive(self):
        assert not values_equal("Fiction", "fiction")

    def test_date_and_midnight_datetime_equal(self):
        assert values_equal(date(2020, 5, 1), datetime(2020, 5, 1))

    def test_aware_datetime_normalized_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        assert normalize_date(datetime(2020, 1, 1, 12, tzinfo=plus_two)) == datetime(2020, 1, 1, 10)

    def test_equality_key_matches_values_equal(self):
        assert equality_key(1) == equality_key(1.0)
        assert equality_key(True) != equality_key(1)
        assert equality_key({"a": 1}) == equality_key({"a": 1.0})


class TestOrdering:

    def test_same_family(self):
        assert same_family(1, 2.5)
        assert not same_family(1, "1")
        assert not same_family(True, 1)

    def test_compare_values(self):
        assert compare_values(1, 2) == -1
        assert compare_values("b", "a") == 1
        assert compare_values(date(2020, 1, 1), datetime(2020, 1, 1)) == 0

    def test_bracket_order(self):
        values = [date(2001, 1, 1), True, "b", 2, None, 1.5, False]
        ordered = sorted(values, key=sort_key)
        assert ordered == [None, 1.5, 2, "b", False, True, date(2001, 1, 1)]

    def test_tag_changed(self):
        assert not tag_changed(15.99, 15.99)
        assert tag_changed(15, 15.0)
        assert tag_changed(MISSING, 1)
        assert not tag_changed(MISSING, MISSING)


# ═══════════════════════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════════════════════

class TestDocuments:

    def test_object_id_shape(self):
        oid = generate_object_id()
        assert len(oid) == 24
        int(oid, 16)
        assert generate_object_id() != oid

    def test_get_path(self):
        record = {"_id": {"author": "Jane Austen"}, "count": 1}
        assert get_path(record, "count") == 1
        assert get_path(record, "_id.author") == "Jane Austen"
        assert get_path(record, "_id.genre") is MISSING
        assert get_path(record, "pages") is MISSING

    def test_missing_is_falsy_and_not_none(self):
        assert not MISSING
        assert MISSING is not None

    @pytest.mark.parametrize("doc", [
        {"tags": ["a", "b"]},
        {"$title": "x"},
        {"a.b": 1},
        {"": 1},
        {"price": float("nan")},
        {"price": None},
        {ID_FIELD: True},
        {ID_FIELD: 1.5},
    ])
    def test_invalid_documents(self, doc):
        with pytest.raises(InvalidDocumentError):
            validate_document(doc)

    def test_valid_document(self):
        validate_document({ID_FIELD: 7, "title": "Emma", "price": Decimal("9.99"),
                           "in_stock": False, "released": date(1815, 12, 23)})


# ═══════════════════════════════════════════════════════════════════
# Collection
# ═══════════════════════════════════════════════════════════════════

class TestCollection:

    def test_insert_assigns_id(self):
        books = Collection()
        doc = {"title": "Emma"}
        doc_id = books.insert_one(doc)
        assert ID_FIELD not in doc
        with books.read_locked():
            assert books.get(doc_id)[ID_FIELD] == doc_id

    def test_caller_supplied_id(self):
        books = Collection()
        assert books.insert_one({ID_FIELD: 42, "title": "Emma"}) == 42

    def test_duplicate_id_rejected(self):
        books = Collection()
        books.insert_one({ID_FIELD: "x", "title": "Emma"})
        with pytest.raises(DuplicateKeyError):
            books.insert_one({ID_FIELD: "x", "title": "Persuasion"})
        assert len(books) == 1

    def test_insert_many_is_all_or_nothing(self):
        books = Collection()
        with pytest.raises(InvalidDocumentError):
            books.insert_many([{"title": "Emma"}, {"title": ["not", "scalar"]}])
        assert len(books) == 0
        assert len(books.indexes.get("_id_")) == 0

    def test_snapshot_returns_copies(self, books):
        snap = books.snapshot()
        snap[0]["title"] = "changed"
        assert books.snapshot()[0]["title"] == "To Kill a Mockingbird"

    def test_replace_keeps_position(self, books):
        with books.write_locked():
            doc_id, seq, doc = next(books.entries())
            books.replace(doc_id, dict(doc, price=1.0), ["price"])
        with books.read_locked():
            first_id, first_seq, first = next(books.entries())
        assert (first_id, first_seq) == (doc_id, seq)
        assert first["price"] == 1.0

    def test_remove(self, books):
        with books.write_locked():
            doc_id = next(books.entries())[0]
            books.remove(doc_id)
            assert books.get(doc_id) is None
        assert len(books) == 13
