"""Tests for OData filter building."""

from decimal import Decimal

import pytest

from acto_mcp.data.filters import all_of, any_of, eq, escape_value


class TestEscapeValue:
    """Tests for literal escaping."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("Acme", "'Acme'"),
            ("O'Brien", "'O''Brien'"),
            ("''", "''''''"),
            (42, "42"),
            (Decimal("10.50"), "10.50"),
            (True, "true"),
            (False, "false"),
            (None, "null"),
        ],
    )
    def test_escape(self, value, expected):
        """Test each value type renders as the right literal."""
        assert escape_value(value) == expected

    def test_injection_stays_inside_literal(self):
        """Test a quote cannot terminate the literal early."""
        rendered = eq("Name", "x' or 1 eq 1 or Name eq 'y")

        assert rendered == "Name eq 'x'' or 1 eq 1 or Name eq ''y'"


class TestClauses:
    """Tests for clause builders."""

    def test_eq(self):
        """Test a single equality clause."""
        assert eq("Email", "a@x.com") == "Email eq 'a@x.com'"

    def test_any_of(self):
        """Test a disjunction over several values."""
        assert any_of("Email", ["a@x.com", "b@x.com"]) == (
            "Email eq 'a@x.com' or Email eq 'b@x.com'"
        )

    def test_any_of_requires_values(self):
        """Test an empty disjunction is rejected."""
        with pytest.raises(ValueError):
            any_of("Email", [])

    def test_all_of_parenthesizes_disjunctions(self):
        """Test conjunctions keep disjunctions grouped."""
        clause = all_of(eq("SourceSystem", "QBO"), any_of("SourceId", ["1", "2"]))

        assert clause == "SourceSystem eq 'QBO' and (SourceId eq '1' or SourceId eq '2')"

    @pytest.mark.parametrize("field", ["", "Name eq 'x' or Id", "1Name", "Na-me"])
    def test_invalid_field_names(self, field):
        """Test field names that are not identifiers are rejected."""
        with pytest.raises(ValueError):
            eq(field, "x")

    def test_navigation_path_field(self):
        """Test slash-separated navigation paths are accepted."""
        assert eq("Customer/Name", "Acme") == "Customer/Name eq 'Acme'"
