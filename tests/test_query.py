"""測試 query string 解析"""

import datetime as dt
import logging

import pytest

from crudflow.model import ModelSpec
from crudflow.query import RESERVED, parse_sort, resolve_query
from crudflow.types import (
    Cursor,
    ExpandPath,
    IndexHint,
    IndexHintMode,
    Pagination,
    SortClause,
)
from tests.models import Category, Shop, User


@pytest.fixture
def user_spec():
    return ModelSpec(User)


@pytest.fixture
def category_spec():
    return ModelSpec(Category)


class TestDefaults:
    def test_empty_query(self, user_spec):
        q = resolve_query({}, user_spec)
        assert q.filters == {}
        assert q.pagination == Pagination(page=1, size=1000)
        assert q.cursor is None
        assert q.expands == ()
        assert q.select == ()
        assert q.index is None
        assert q.time_range is None
        assert q.cache is False  # _nocache 預設為 true
        assert q.nototal is False
        assert q.needs_total
        assert q.config.allow_empty is True

    def test_same_input_same_output(self, user_spec):
        params = [("name", "alice"), ("size", "10"), ("_sortby", "age desc")]
        assert resolve_query(params, user_spec) == resolve_query(params, user_spec)

    def test_custom_default_size(self, user_spec):
        q = resolve_query({}, user_spec, default_size=50)
        assert q.pagination == Pagination(page=1, size=50)


class TestPagination:
    def test_page_and_size(self, user_spec):
        q = resolve_query({"page": "3", "size": "20"}, user_spec)
        assert q.pagination == Pagination(page=3, size=20)
        assert q.pagination.offset == 40

    @pytest.mark.parametrize("size", ["0", "-5", "abc"])
    def test_non_positive_size_uses_default(self, user_spec, size):
        q = resolve_query({"size": size}, user_spec)
        assert q.pagination.size == 1000

    def test_page_below_one(self, user_spec):
        q = resolve_query({"page": "0"}, user_spec)
        assert q.pagination.page == 1

    def test_cursor_replaces_pagination(self, user_spec):
        q = resolve_query(
            {"_cursor_value": "user05", "page": "2", "size": "5"}, user_spec
        )
        assert q.pagination is None
        assert q.cursor == Cursor(value="user05", field="id", forward=False, size=5)
        assert not q.needs_total

    def test_cursor_fields_and_direction(self, user_spec):
        q = resolve_query(
            {
                "_cursor_value": "30",
                "_cursor_fields": "age,name",
                "_cursor_next": "true",
            },
            user_spec,
        )
        assert q.cursor.field == "age"
        assert q.cursor.forward is True

    def test_nototal(self, user_spec):
        q = resolve_query({"_nototal": "1"}, user_spec)
        assert q.nototal
        assert not q.needs_total


class TestFilters:
    def test_equality_filter_is_typed(self, user_spec):
        q = resolve_query({"name": "alice", "age": "30", "active": "true"}, user_spec)
        assert q.filters == {"name": ("alice",), "age": (30,), "active": (True,)}

    def test_comma_separated_means_any_of(self, user_spec):
        q = resolve_query({"name": "alice,bob"}, user_spec)
        assert q.filters["name"] == ("alice", "bob")

    def test_reserved_keys_are_not_filters(self, user_spec):
        params = {key: "1" for key in RESERVED}
        q = resolve_query(params, user_spec)
        assert q.filters == {}

    def test_unknown_keys_ignored(self, user_spec):
        q = resolve_query({"nope": "x"}, user_spec)
        assert q.filters == {}

    def test_bad_filter_value_is_dropped(self, user_spec, caplog):
        with caplog.at_level(logging.WARNING):
            q = resolve_query({"age": "old"}, user_spec)
        assert "age" not in q.filters
        assert "invalid value for filter age" in caplog.text

    def test_fuzzy_and_or(self, user_spec):
        q = resolve_query({"_fuzzy": "true", "_or": "yes"}, user_spec)
        assert q.config.fuzzy
        assert q.config.use_or

    def test_nested_fields_not_queryable(self):
        q = resolve_query({"address": "x", "name": "shop"}, ModelSpec(Shop))
        assert q.filters == {"name": ("shop",)}


class TestExpand:
    def test_expand_all_with_depth(self, category_spec):
        q = resolve_query({"_expand": "all", "_depth": "3"}, category_spec)
        assert q.expands == (
            ExpandPath(relation="Children", depth=3, is_collection=True),
        )
        assert q.expands[0].path == "Children.Children.Children"

    def test_relation_name_case_insensitive(self, category_spec):
        q = resolve_query({"_expand": "children"}, category_spec)
        assert q.expands[0].relation == "Children"
        assert q.expands[0].depth == 1

    @pytest.mark.parametrize("depth", ["0", "100", "-1", "abc"])
    def test_out_of_range_depth_is_one(self, category_spec, depth):
        q = resolve_query({"_expand": "all", "_depth": depth}, category_spec)
        assert q.expands[0].depth == 1

    def test_max_depth_boundary(self, category_spec):
        q = resolve_query({"_expand": "all", "_depth": "99"}, category_spec)
        assert q.expands[0].depth == 99

    def test_single_relation_ignores_depth(self):
        q = resolve_query({"_expand": "Owner", "_depth": "5"}, ModelSpec(Shop))
        assert q.expands == (ExpandPath(relation="Owner"),)
        assert q.expands[0].path == "Owner"

    def test_unknown_relation_skipped(self, category_spec):
        q = resolve_query({"_expand": "Parent"}, category_spec)
        assert q.expands == ()


class TestMisc:
    def test_select(self, user_spec):
        q = resolve_query({"_select": "name, email"}, user_spec)
        assert q.select == ("name", "email")

    def test_index_hint(self, user_spec):
        q = resolve_query({"_index": "idx_name", "_index_mode": "FORCE"}, user_spec)
        assert q.index == IndexHint(name="idx_name", mode=IndexHintMode.force)

    def test_invalid_index_mode_falls_back(self, user_spec):
        q = resolve_query({"_index": "idx_name", "_index_mode": "bogus"}, user_spec)
        assert q.index.mode == IndexHintMode.use

    def test_nocache_false_enables_cache(self, user_spec):
        assert resolve_query({"_nocache": "false"}, user_spec).cache is True

    def test_malformed_bool_keeps_default(self, user_spec):
        assert resolve_query({"_nocache": "maybe"}, user_spec).cache is False

    def test_time_range(self, user_spec):
        q = resolve_query(
            {
                "_column_name": "created_at",
                "_start_time": "2024-01-01T00:00:00",
                "_end_time": "not-a-time",
            },
            user_spec,
        )
        assert q.time_range.column == "created_at"
        assert q.time_range.start == dt.datetime(2024, 1, 1)
        assert q.time_range.end is None

    def test_time_range_needs_a_bound(self, user_spec):
        q = resolve_query({"_column_name": "created_at"}, user_spec)
        assert q.time_range is None

    def test_pairs_keep_first_value(self, user_spec):
        q = resolve_query([("name", "alice"), ("name", "bob")], user_spec)
        assert q.filters["name"] == ("alice",)


def test_parse_sort():
    assert parse_sort("name desc, age") == [
        SortClause(field="name", descending=True),
        SortClause(field="age"),
    ]
    assert parse_sort("") == []
