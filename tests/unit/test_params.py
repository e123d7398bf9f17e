"""Unit tests for parameter expansion and normalization."""

from __future__ import annotations

import pytest

from row_orm.core.exceptions import ParameterMissingError
from row_orm.core.params import expand_params, normalize_params, referenced_params


class TestExpandParams:
    def test_scalar_params_pass_through(self) -> None:
        sql, params = expand_params("SELECT * FROM post WHERE id = :id", {"id": 1, "unused": 2})
        assert sql == "SELECT * FROM post WHERE id = :id"
        assert params == {"id": 1}

    def test_list_param_expanded(self) -> None:
        sql, params = expand_params("SELECT * FROM post WHERE id IN (:...ids)", {"ids": [1, 2, 3]})
        assert sql == "SELECT * FROM post WHERE id IN (:ids_0, :ids_1, :ids_2)"
        assert params == {"ids_0": 1, "ids_1": 2, "ids_2": 3}

    def test_empty_list_becomes_null(self) -> None:
        sql, params = expand_params("SELECT * FROM post WHERE id IN (:...ids)", {"ids": []})
        assert sql == "SELECT * FROM post WHERE id IN (NULL)"
        assert params == {}

    def test_missing_param_raises(self) -> None:
        with pytest.raises(ParameterMissingError):
            expand_params("SELECT * FROM post WHERE id = :id", {})

    def test_string_literal_untouched(self) -> None:
        sql, params = expand_params("SELECT ':id' FROM post WHERE id = :id", {"id": 5})
        assert sql == "SELECT ':id' FROM post WHERE id = :id"
        assert params == {"id": 5}

    def test_typecast_is_not_a_param(self) -> None:
        sql, params = expand_params("SELECT value::integer FROM t WHERE id = :id", {"id": 1})
        assert sql == "SELECT value::integer FROM t WHERE id = :id"
        assert params == {"id": 1}

    def test_referenced_params(self) -> None:
        assert referenced_params("a = :a AND b IN (:...b) AND c = ':c'") == ["a", "b"]


class TestNormalizeParams:
    def test_named_passthrough(self) -> None:
        sql = "SELECT * FROM users WHERE id = :user_id"
        assert normalize_params(sql, "named") == sql

    def test_pyformat_conversion(self) -> None:
        sql = "SELECT * FROM users WHERE id = :user_id"
        expected = "SELECT * FROM users WHERE id = %(user_id)s"
        assert normalize_params(sql, "pyformat") == expected

    def test_multiple_params(self) -> None:
        sql = "SELECT * FROM users WHERE id = :id AND name = :name"
        expected = "SELECT * FROM users WHERE id = %(id)s AND name = %(name)s"
        assert normalize_params(sql, "pyformat") == expected

    def test_typecast_exclusion(self) -> None:
        sql = "SELECT value::integer FROM t WHERE id = :id"
        expected = "SELECT value::integer FROM t WHERE id = %(id)s"
        assert normalize_params(sql, "pyformat") == expected

    def test_string_literal_exclusion(self) -> None:
        sql = "SELECT * FROM t WHERE col = ':not_a_param' AND id = :id"
        expected = "SELECT * FROM t WHERE col = ':not_a_param' AND id = %(id)s"
        assert normalize_params(sql, "pyformat") == expected

    def test_percent_signs_doubled(self) -> None:
        sql = "SELECT * FROM t WHERE name LIKE 'a%' AND id = :id"
        expected = "SELECT * FROM t WHERE name LIKE 'a%%' AND id = %(id)s"
        assert normalize_params(sql, "pyformat") == expected

    def test_duplicate_param_names(self) -> None:
        sql = "SELECT * FROM t WHERE a = :val OR b = :val"
        expected = "SELECT * FROM t WHERE a = %(val)s OR b = %(val)s"
        assert normalize_params(sql, "pyformat") == expected

    def test_no_params(self) -> None:
        sql = "SELECT 1"
        assert normalize_params(sql, "pyformat") == sql
