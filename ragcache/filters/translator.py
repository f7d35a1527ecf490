"""Translate filter expressions for the scope-key path and each backend.

- Scope key: the exact-match (field, value) pair used for tenant warming.
  Only a bare Equality yields one.
- Cache predicate: ``field:value`` clauses joined with AND / OR. The cache
  service rejects every other form (``field==value``, JSON filter objects).
- SQL: a WHERE fragment over the JSON metadata column with bound parameters.
- In-memory: direct evaluation against a metadata dict.
"""

from __future__ import annotations

import itertools
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, Set, Tuple

from ragcache.core.errors import ValidationError
from ragcache.filters.expressions import And, Equality, FilterExpression, Or

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")


def to_wire_string(value: Any) -> str:
    """Render a scalar the way the cache stores and matches it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class ScopeKey:
    """Exact-match tenant scope (e.g. refnum1=100001)."""

    field: str
    value: str

    def __str__(self) -> str:
        return f"{self.field}={self.value}"


class FilterTranslator:
    """Stateless translations of a FilterExpression tree."""

    @staticmethod
    def extract_scope_key(expression: Optional[FilterExpression]) -> Optional[ScopeKey]:
        """Return the scope key of a bare Equality, else None. Never raises."""
        match expression:
            case Equality(field=field, value=value):
                return ScopeKey(field, to_wire_string(value))
            case _:
                return None

    @staticmethod
    def fields(expression: FilterExpression) -> Set[str]:
        """All field names referenced by the expression."""
        match expression:
            case Equality(field=field):
                return {field}
            case And(operands=operands) | Or(operands=operands):
                found: Set[str] = set()
                for operand in operands:
                    found |= FilterTranslator.fields(operand)
                return found
            case _:
                raise TypeError(f"Unsupported filter expression: {expression!r}")

    @staticmethod
    def to_cache_predicate(expression: FilterExpression) -> str:
        """Render as the cache service's ``field:value`` predicate."""
        match expression:
            case Equality(field=field, value=value):
                _check_field(field)
                return f"{field}:{to_wire_string(value)}"
            case And(operands=operands):
                return " AND ".join(_group(op, FilterTranslator.to_cache_predicate) for op in operands)
            case Or(operands=operands):
                return " OR ".join(_group(op, FilterTranslator.to_cache_predicate) for op in operands)
            case _:
                raise TypeError(f"Unsupported filter expression: {expression!r}")

    @staticmethod
    def to_sql(expression: FilterExpression, column: str = "metadata") -> Tuple[str, Dict[str, str]]:
        """Render as a SQL WHERE fragment over a JSON metadata column.

        Field names and values are both bound parameters; ``column`` is
        interpolated and must come from configuration, never from input.
        """
        params: Dict[str, str] = {}
        sql = _render_sql(expression, column, params, itertools.count())
        return sql, params

    @staticmethod
    def matches(expression: Optional[FilterExpression], metadata: Mapping[str, Any]) -> bool:
        """Evaluate against a metadata mapping using string comparison."""
        match expression:
            case None:
                return True
            case Equality(field=field, value=value):
                if field not in metadata or metadata[field] is None:
                    return False
                return to_wire_string(metadata[field]) == to_wire_string(value)
            case And(operands=operands):
                return all(FilterTranslator.matches(op, metadata) for op in operands)
            case Or(operands=operands):
                return any(FilterTranslator.matches(op, metadata) for op in operands)
            case _:
                raise TypeError(f"Unsupported filter expression: {expression!r}")


def _check_field(field: str) -> None:
    if not FIELD_NAME_PATTERN.match(field):
        raise ValidationError(f"Invalid filter field name: {field!r}", field="field", value=field)


def _group(expression: FilterExpression, render) -> str:
    rendered = render(expression)
    match expression:
        case Equality():
            return rendered
        case _:
            return f"({rendered})"


def _render_sql(
    expression: FilterExpression,
    column: str,
    params: Dict[str, str],
    counter: Iterator[int],
) -> str:
    match expression:
        case Equality(field=field, value=value):
            _check_field(field)
            n = next(counter)
            params[f"f{n}"] = field
            params[f"v{n}"] = to_wire_string(value)
            return f"{column}->>:f{n} = :v{n}"
        case And(operands=operands):
            return " AND ".join(f"({_render_sql(op, column, params, counter)})" for op in operands)
        case Or(operands=operands):
            return " OR ".join(f"({_render_sql(op, column, params, counter)})" for op in operands)
        case _:
            raise TypeError(f"Unsupported filter expression: {expression!r}")
