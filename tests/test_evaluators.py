"""
MiniDoc Evaluator Tests
=======================
PredicateEvaluator (filters over documents) and ExpressionEvaluator
(pipeline expressions over records).
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from execution.expression_evaluator import ExpressionEvaluator, format_value
from execution.predicate_evaluator import PredicateEvaluator
from parser import parse_expression, parse_filter
from parser.ast_nodes import And, Comparison, ComparisonOp, Or, eq
from storage.errors import ExpressionError, InvalidPredicateError

BOOK = {
    "_id": 1,
    "title": "The Great Gatsby",
    "author": "F. Scott Fitzgerald",
    "genre": "Fiction",
    "published_year": 1925,
    "price": 9.99,
    "in_stock": True,
    "released": date(1925, 4, 10),
}


@pytest.fixture
def predicates():
    return PredicateEvaluator()


@pytest.fixture
def expressions():
    return ExpressionEvaluator()


def matches(predicates, spec, doc=BOOK):
    pred = parse_filter(spec)
    predicates.validate(pred)
    return predicates.evaluate(pred, doc)


# ═══════════════════════════════════════════════════════════════════
# Predicates
# ═══════════════════════════════════════════════════════════════════

class TestComparisons:

    def test_equality(self, predicates):
        assert matches(predicates, {"genre": "Fiction"})
        assert not matches(predicates, {"genre": "fiction"})
        assert matches(predicates, {"published_year": 1925.0})

    def test_bool_never_matches_number(self, predicates):
        assert not matches(predicates, {"in_stock": 1})
        assert matches(predicates, {"in_stock": True})

    def test_ranges(self, predicates):
        assert matches(predicates, {"published_year": {"$gt": 1900, "$lte": 1925}})
        assert not matches(predicates, {"published_year": {"$lt": 1925}})
        assert matches(predicates, {"price": {"$gte": Decimal("9.99")}})

    def test_date_range(self, predicates):
        assert matches(predicates, {"released": {"$gte": datetime(1925, 1, 1)}})
        assert not matches(predicates, {"released": {"$gt": date(1925, 4, 10)}})

    def test_in_nin(self, predicates):
        assert matches(predicates, {"genre": {"$in": ["Fiction", "Fantasy"]}})
        assert not matches(predicates, {"genre": {"$nin": ["Fiction"]}})
        assert not matches(predicates, {"genre": {"$in": []}})

    def test_ne(self, predicates):
        assert matches(predicates, {"genre": {"$ne": "Fantasy"}})
        assert not matches(predicates, {"genre": {"$ne": "Fiction"}})

    def test_regex(self, predicates):
        assert matches(predicates, {"title": {"$regex": "Gats"}})
        assert matches(predicates, {"title": {"$regex": "^the", "$options": "i"}})
        assert not matches(predicates, {"published_year": {"$regex": "19"}})


class TestAbsentFields:
    """Only $exists can select a document lacking the field."""

    @pytest.mark.parametrize("cond", [
        "x", {"$ne": "x"}, {"$nin": ["x"]}, {"$gt": 0}, {"$regex": "."}, {"$in": ["x"]},
    ])
    def test_absent_is_false(self, predicates, cond):
        assert not matches(predicates, {"isbn": cond})

    def test_exists(self, predicates):
        assert matches(predicates, {"isbn": {"$exists": False}})
        assert matches(predicates, {"title": {"$exists": True}})
        assert not matches(predicates, {"title": {"$exists": False}})


class TestLogical:

    def test_and_or(self, predicates):
        assert matches(predicates, {"$or": [{"genre": "Fantasy"}, {"price": {"$lt": 10}}]})
        assert not matches(predicates, {"$and": [{"genre": "Fiction"}, {"in_stock": False}]})

    def test_clause_order_does_not_matter(self, predicates):
        a = Or((eq("genre", "Fantasy"), eq("in_stock", True)))
        b = Or((eq("in_stock", True), eq("genre", "Fantasy")))
        assert predicates.evaluate(a, BOOK) == predicates.evaluate(b, BOOK)

    def test_empty_and_matches(self, predicates):
        assert matches(predicates, {})

    def test_range_error_ignores_clause_order(self, predicates):
        doc = dict(BOOK, published_year="n/a")
        year_gt = Comparison("published_year", ComparisonOp.GT, 2000)
        for pred in (And((eq("author", "George Orwell"), year_gt)),
                     And((year_gt, eq("author", "George Orwell"))),
                     Or((eq("genre", "Fiction"), year_gt)),
                     Or((year_gt, eq("genre", "Fiction")))):
            with pytest.raises(InvalidPredicateError, match="published_year"):
                predicates.evaluate(pred, doc)

    def test_collection_check_covers_every_document(self, predicates):
        pred = parse_filter({"author": "Nobody", "published_year": {"$gt": 2000}})
        predicates.check_range_operands(pred, [BOOK, {"title": "No Year"}])
        with pytest.raises(InvalidPredicateError):
            predicates.check_range_operands(pred, [BOOK, dict(BOOK, published_year="unknown")])


class TestPredicateErrors:

    def test_range_across_families(self, predicates):
        with pytest.raises(InvalidPredicateError, match="title"):
            matches(predicates, {"title": {"$gt": 5}})

    def test_equality_across_families_is_false(self, predicates):
        assert not matches(predicates, {"title": 5})

    @pytest.mark.parametrize("pred", [
        Comparison("title", ComparisonOp.REGEX, "("),
        Comparison("title", ComparisonOp.EXISTS, 1),
        Comparison("price", ComparisonOp.GT, float("nan")),
        Comparison("price", ComparisonOp.EQ, [1]),
        Comparison("", ComparisonOp.EQ, 1),
        Or(()),
    ])
    def test_validate_rejects(self, predicates, pred):
        with pytest.raises(InvalidPredicateError):
            predicates.validate(pred)


# ═══════════════════════════════════════════════════════════════════
# Expressions
# ═══════════════════════════════════════════════════════════════════

def run(expressions, spec, record=BOOK):
    return expressions.evaluate(parse_expression(spec), record)


class TestExpressions:

    def test_field_and_path(self, expressions):
        assert run(expressions, "$price") == 9.99
        assert run(expressions, "$_id.author", {"_id": {"author": "Austen"}}) == "Austen"

    def test_arithmetic(self, expressions):
        assert run(expressions, {"$add": ["$published_year", 5, 0.5]}) == 1930.5
        assert run(expressions, {"$subtract": ["$published_year", 25]}) == 1900
        assert run(expressions, {"$multiply": [2, 3]}) == 6
        assert run(expressions, {"$divide": [9, 2]}) == 4.5

    def test_mod_is_truncated(self, expressions):
        assert run(expressions, {"$mod": [1925, 10]}) == 5
        assert run(expressions, {"$mod": [-7, 3]}) == -1

    def test_decade_label(self, expressions):
        spec = {"$concat": [
            {"$toString": {"$subtract": ["$published_year", {"$mod": ["$published_year", 10]}]}},
            "s",
        ]}
        assert run(expressions, spec) == "1920s"

    def test_null_propagation(self, expressions):
        assert run(expressions, {"$add": ["$pages", 1]}) is None
        assert run(expressions, {"$concat": ["$subtitle", "x"]}) is None
        assert run(expressions, "$pages") is None

    def test_conversions(self, expressions):
        assert run(expressions, {"$toString": 1920.0}) == "1920"
        assert run(expressions, {"$toString": True}) == "true"
        assert run(expressions, {"$toInt": "42"}) == 42
        assert run(expressions, {"$toDouble": "2.5"}) == 2.5
        assert run(expressions, {"$toUpper": "$genre"}) == "FICTION"
        assert run(expressions, {"$toLower": "$genre"}) == "fiction"

    @pytest.mark.parametrize("spec", [
        {"$divide": ["$price", 0]},
        {"$mod": [5, 0]},
        {"$toInt": "forty"},
        {"$add": ["$title", 1]},
        {"$concat": ["$title", 1]},
    ])
    def test_runtime_errors(self, expressions, spec):
        with pytest.raises(ExpressionError):
            run(expressions, spec)

    def test_format_value(self):
        assert format_value(False) == "false"
        assert format_value(2.5) == "2.5"
        assert format_value(date(2020, 1, 2)) == "2020-01-02"
