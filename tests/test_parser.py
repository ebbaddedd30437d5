"""
MiniDoc Parser Tests
====================
Mongo-style request documents → AST nodes: filters, projections, sorts,
updates, expressions and pipeline stages.
"""

import pytest

from parser import (
    parse_filter, parse_projection, parse_sort, parse_update,
    parse_expression, parse_pipeline, parse_stage,
)
from parser.ast_nodes import (
    Comparison, ComparisonOp, And, Or, MATCH_ALL, SortKey, Projection, UpdateSpec,
    FieldRef, Literal, OperatorExpr, DocumentExpr,
    ProjectStage, GroupStage, SortStage, LimitStage, SkipStage, MatchStage, CountStage,
    Accumulator, INCLUDE, eq,
)
from storage.errors import (
    InvalidPredicateError, InvalidQueryError, InvalidUpdateError, InvalidPipelineError,
)


# ═══════════════════════════════════════════════════════════════════
# Filters
# ═══════════════════════════════════════════════════════════════════

class TestParseFilter:

    def test_empty_matches_all(self):
        assert parse_filter(None) == MATCH_ALL
        assert parse_filter({}) == MATCH_ALL

    def test_implicit_equality(self):
        assert parse_filter({"genre": "Fiction"}) == eq("genre", "Fiction")

    def test_operator_dict(self):
        pred = parse_filter({"published_year": {"$gt": 2000}})
        assert pred == Comparison("published_year", ComparisonOp.GT, 2000)

    def test_multiple_fields_are_conjunction(self):
        pred = parse_filter({"in_stock": True, "published_year": {"$gt": 2010}})
        assert isinstance(pred, And)
        assert pred.clauses == (
            eq("in_stock", True),
            Comparison("published_year", ComparisonOp.GT, 2010),
        )

    def test_range_on_one_field(self):
        pred = parse_filter({"price": {"$gte": 5, "$lt": 10}})
        assert [c.op for c in pred.clauses] == [ComparisonOp.GTE, ComparisonOp.LT]

    def test_or(self):
        pred = parse_filter({"$or": [{"genre": "Romance"}, {"price": {"$lt": 9}}]})
        assert isinstance(pred, Or)
        assert len(pred.clauses) == 2

    def test_in_operand_becomes_tuple(self):
        pred = parse_filter({"author": {"$in": ["Jane Austen", "George Orwell"]}})
        assert pred.value == ("Jane Austen", "George Orwell")

    def test_regex_options_inlined(self):
        pred = parse_filter({"title": {"$regex": "^the", "$options": "i"}})
        assert pred.value == "(?i)^the"

    def test_ast_passthrough(self):
        node = eq("title", "Emma")
        assert parse_filter(node) is node

    @pytest.mark.parametrize("spec", [
        ["genre", "Fiction"],
        {"$nor": [{"a": 1}]},
        {"price": {"$between": [1, 2]}},
        {"author": {"name": "Orwell"}},
        {"$or": []},
        {"author": {"$in": "Orwell"}},
        {"title": {"$options": "i"}},
    ])
    def test_malformed(self, spec):
        with pytest.raises(InvalidPredicateError):
            parse_filter(spec)


# ═══════════════════════════════════════════════════════════════════
# Projection & Sort
# ═══════════════════════════════════════════════════════════════════

class TestParseProjection:

    def test_none(self):
        assert parse_projection(None) is None

    def test_inclusion_without_id(self):
        proj = parse_projection({"_id": 0, "title": 1, "author": 1, "price": 1})
        assert proj == Projection(include=("title", "author", "price"), include_id=False)

    def test_list_form(self):
        assert parse_projection(["title"]) == Projection(include=("title",))

    def test_exclusion(self):
        proj = parse_projection({"pages": 0, "publisher": False})
        assert proj.exclude == ("pages", "publisher")
        assert not proj.include

    def test_mixed_rejected(self):
        with pytest.raises(InvalidQueryError):
            parse_projection({"title": 1, "pages": 0})

    def test_bad_flag(self):
        with pytest.raises(InvalidQueryError):
            parse_projection({"title": "yes"})


class TestParseSort:

    def test_dict(self):
        assert parse_sort({"price": -1, "title": 1}) == (SortKey("price", -1), SortKey("title", 1))

    def test_pairs_and_name(self):
        assert parse_sort([("price", 1)]) == (SortKey("price", 1),)
        assert parse_sort("title") == (SortKey("title", 1),)

    @pytest.mark.parametrize("spec", [{"price": 0}, {"price": True}, [("price",)], 5])
    def test_malformed(self, spec):
        with pytest.raises(InvalidQueryError):
            parse_sort(spec)


# ═══════════════════════════════════════════════════════════════════
# Updates
# ═══════════════════════════════════════════════════════════════════

class TestParseUpdate:

    def test_plain_mapping_is_set(self):
        assert parse_update({"price": 15}) == UpdateSpec(set=(("price", 15),))

    def test_operator_form(self):
        spec = parse_update({"$set": {"price": 15.99}, "$unset": {"pages": ""},
                             "$inc": {"stock": 2}, "$mul": {"price": 2}})
        assert spec.set == (("price", 15.99),)
        assert spec.unset == ("pages",)
        assert spec.inc == (("stock", 2),)
        assert spec.touched_fields() == ("price", "pages", "stock")

    @pytest.mark.parametrize("spec", [
        {},
        None,
        {"$set": {"a": 1}, "b": 2},
        {"$rename": {"a": "b"}},
        {"$inc": {"price": "1"}},
        {"$set": {}},
    ])
    def test_malformed(self, spec):
        with pytest.raises(InvalidUpdateError):
            parse_update(spec)


# ═══════════════════════════════════════════════════════════════════
# Expressions & Pipelines
# ═══════════════════════════════════════════════════════════════════

class TestParseExpression:

    def test_field_ref_and_literal(self):
        assert parse_expression("$price") == FieldRef("price")
        assert parse_expression("s") == Literal("s")
        assert parse_expression({"$literal": "$price"}) == Literal("$price")

    def test_nested_operator(self):
        expr = parse_expression({"$subtract": ["$published_year", {"$mod": ["$published_year", 10]}]})
        assert expr == OperatorExpr("$subtract", (
            FieldRef("published_year"),
            OperatorExpr("$mod", (FieldRef("published_year"), Literal(10))),
        ))

    def test_single_argument_without_list(self):
        assert parse_expression({"$toString": "$price"}) == OperatorExpr("$toString", (FieldRef("price"),))

    def test_document_expression(self):
        expr = parse_expression({"author": "$author", "genre": "$genre"})
        assert isinstance(expr, DocumentExpr)

    @pytest.mark.parametrize("spec", [
        {"$pow": [2, 3]},
        {"$divide": [1]},
        {"$add": [1], "x": 2},
        "$",
        [1, 2],
    ])
    def test_malformed(self, spec):
        with pytest.raises(InvalidPipelineError):
            parse_expression(spec)


class TestParsePipeline:

    def test_all_stages(self):
        stages = parse_pipeline([
            {"$match": {"in_stock": True}},
            {"$project": {"title": 1, "price": "$price"}},
            {"$group": {"_id": "$genre", "n": {"$sum": 1}, "c": {"$count": {}}}},
            {"$sort": {"n": -1}},
            {"$skip": 0},
            {"$limit": 3},
            {"$count": "total"},
        ])
        assert [type(s) for s in stages] == [
            MatchStage, ProjectStage, GroupStage, SortStage, SkipStage, LimitStage, CountStage,
        ]
        assert stages[1].fields == (("title", INCLUDE), ("price", FieldRef("price")))
        assert stages[2].accumulators == (
            Accumulator("n", "$sum", Literal(1)),
            Accumulator("c", "$count"),
        )

    def test_project_exclusion(self):
        stage = parse_stage({"$project": {"pages": 0}})
        assert stage == ProjectStage(exclude=("pages",))

    @pytest.mark.parametrize("stages", [
        {"$limit": 1},
        [{"$lookup": {}}],
        [{"$limit": 0}],
        [{"$skip": -1}],
        [{"$limit": 1, "$skip": 1}],
        [{"$group": {"n": {"$sum": 1}}}],
        [{"$group": {"_id": None, "n": {"$median": "$price"}}}],
        [{"$group": {"_id": None, "n": {"$count": "$price"}}}],
        [{"$project": {"title": 1, "pages": 0}}],
        [{"$count": "$n"}],
        [{"$sort": {}}],
    ])
    def test_malformed(self, stages):
        with pytest.raises(InvalidPipelineError):
            parse_pipeline(stages)
