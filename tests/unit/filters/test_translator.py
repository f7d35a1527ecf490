"""Tests for filter expressions and their translations."""

import pytest

from ragcache.core.errors import ValidationError
from ragcache.filters import And, Equality, FilterTranslator, Or, ScopeKey, and_, eq, or_, to_wire_string


class TestExpressions:
    """Tests for expression construction."""

    def test_equality_requires_field(self):
        with pytest.raises(ValueError):
            Equality("", "x")

    def test_and_requires_operands(self):
        with pytest.raises(ValueError):
            And(())

    def test_or_requires_operands(self):
        with pytest.raises(ValueError):
            Or(())

    def test_builders(self):
        expr = and_(eq("refnum1", 1), eq("refnum2", 2))
        assert expr == And((Equality("refnum1", 1), Equality("refnum2", 2)))
        assert or_(eq("a", 1)).operands == (Equality("a", 1),)

    def test_expressions_are_hashable(self):
        assert hash(eq("refnum1", 100001)) == hash(eq("refnum1", 100001))


class TestScopeKeyExtraction:
    """Tests for scope key extraction."""

    def test_equality_yields_scope_key(self):
        key = FilterTranslator.extract_scope_key(eq("refnum1", 100001))
        assert key == ScopeKey("refnum1", "100001")
        assert str(key) == "refnum1=100001"

    def test_string_value_kept_literally(self):
        key = FilterTranslator.extract_scope_key(eq("sourcePath", "policies/a.pdf"))
        assert key == ScopeKey("sourcePath", "policies/a.pdf")

    @pytest.mark.parametrize(
        "expression",
        [
            None,
            and_(eq("refnum1", 1), eq("refnum2", 2)),
            or_(eq("refnum1", 1), eq("refnum1", 2)),
            and_(eq("refnum1", 1)),
            "refnum1 == 1",
            {"refnum1": 1},
        ],
    )
    def test_no_scope_key_without_raising(self, expression):
        assert FilterTranslator.extract_scope_key(expression) is None


class TestCachePredicate:
    """Tests for the cache service predicate format."""

    def test_equality(self):
        assert FilterTranslator.to_cache_predicate(eq("refnum1", 100001)) == "refnum1:100001"

    def test_boolean_value(self):
        assert FilterTranslator.to_cache_predicate(eq("active", True)) == "active:true"

    def test_and(self):
        expr = and_(eq("refnum1", 1), eq("refnum2", 2))
        assert FilterTranslator.to_cache_predicate(expr) == "refnum1:1 AND refnum2:2"

    def test_or(self):
        expr = or_(eq("refnum1", 1), eq("refnum1", 2))
        assert FilterTranslator.to_cache_predicate(expr) == "refnum1:1 OR refnum1:2"

    def test_nested_composites_are_grouped(self):
        expr = and_(eq("refnum1", 1), or_(eq("refnum2", 2), eq("refnum2", 3)))
        assert FilterTranslator.to_cache_predicate(expr) == "refnum1:1 AND (refnum2:2 OR refnum2:3)"

    def test_invalid_field_rejected(self):
        with pytest.raises(ValidationError):
            FilterTranslator.to_cache_predicate(eq("refnum1 OR 1", 1))

    def test_unsupported_expression(self):
        with pytest.raises(TypeError):
            FilterTranslator.to_cache_predicate("refnum1:1")


class TestSqlTranslation:
    """Tests for the SQL WHERE fragment."""

    def test_equality_binds_field_and_value(self):
        sql, params = FilterTranslator.to_sql(eq("refnum1", 100001))
        assert sql == "metadata->>:f0 = :v0"
        assert params == {"f0": "refnum1", "v0": "100001"}

    def test_and_wraps_operands(self):
        sql, params = FilterTranslator.to_sql(and_(eq("refnum1", 1), eq("refnum2", 2)))
        assert sql == "(metadata->>:f0 = :v0) AND (metadata->>:f1 = :v1)"
        assert params == {"f0": "refnum1", "v0": "1", "f1": "refnum2", "v1": "2"}

    def test_nested_or(self):
        sql, params = FilterTranslator.to_sql(
            and_(eq("refnum1", 1), or_(eq("refnum2", 2), eq("refnum2", 3)))
        )
        assert sql == "(metadata->>:f0 = :v0) AND ((metadata->>:f1 = :v1) OR (metadata->>:f2 = :v2))"
        assert params["v2"] == "3"

    def test_custom_column(self):
        sql, _ = FilterTranslator.to_sql(eq("refnum1", 1), column="cmetadata")
        assert sql.startswith("cmetadata->>")

    def test_injection_in_field_rejected(self):
        with pytest.raises(ValidationError):
            FilterTranslator.to_sql(eq("refnum1' OR '1'='1", 1))


class TestMatches:
    """Tests for in-memory evaluation."""

    def test_none_matches_everything(self):
        assert FilterTranslator.matches(None, {})

    def test_string_comparison(self):
        assert FilterTranslator.matches(eq("refnum1", 100001), {"refnum1": "100001"})
        assert FilterTranslator.matches(eq("refnum1", "100001"), {"refnum1": 100001})

    def test_missing_field(self):
        assert not FilterTranslator.matches(eq("refnum1", 1), {"refnum2": 1})
        assert not FilterTranslator.matches(eq("refnum1", 1), {"refnum1": None})

    def test_composites(self):
        metadata = {"refnum1": 1, "refnum2": 3}
        assert FilterTranslator.matches(and_(eq("refnum1", 1), or_(eq("refnum2", 2), eq("refnum2", 3))), metadata)
        assert not FilterTranslator.matches(and_(eq("refnum1", 1), eq("refnum2", 2)), metadata)

    def test_fields(self):
        expr = and_(eq("refnum1", 1), or_(eq("refnum2", 2), eq("sourcePath", "x")))
        assert FilterTranslator.fields(expr) == {"refnum1", "refnum2", "sourcePath"}


class TestWireString:
    """Tests for scalar rendering."""

    @pytest.mark.parametrize(
        "value,expected",
        [("abc", "abc"), (1, "1"), (1.5, "1.5"), (True, "true"), (False, "false")],
    )
    def test_rendering(self, value, expected):
        assert to_wire_string(value) == expected
