"""OData filter expressions with central value escaping.

    >>> any_of("Email", ["a@x.com", "o'brien@x.com"])
    "Email eq 'a@x.com' or Email eq 'o''brien@x.com'"
"""

import re
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(/[A-Za-z_][A-Za-z0-9_]*)*$")


def escape_value(value: Any) -> str:
    """Render a value as an OData literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    # Everything else is compared as a string; quotes are doubled
    return "'" + str(value).replace("'", "''") + "'"


def _check_field(field: str) -> str:
    if not _FIELD_NAME.match(field):
        raise ValueError(f"Invalid field name for filter: {field!r}")
    return field


def eq(field: str, value: Any) -> str:
    """`field eq value`"""
    return f"{_check_field(field)} eq {escape_value(value)}"


def any_of(field: str, values: Iterable[Any]) -> str:
    """Disjunction matching any of `values`."""
    clauses = [eq(field, value) for value in values]
    if not clauses:
        raise ValueError("any_of() needs at least one value")
    return " or ".join(clauses)


def all_of(*clauses: str) -> str:
    """Conjunction of clauses. Disjunctions are parenthesized."""
    parts = [f"({c})" if " or " in c else c for c in clauses if c]
    if not parts:
        raise ValueError("all_of() needs at least one clause")
    return " and ".join(parts)
