"""Filter expressions and their backend translations."""

from ragcache.filters.expressions import And, Equality, FilterExpression, Or, and_, eq, or_
from ragcache.filters.translator import FilterTranslator, ScopeKey, to_wire_string

__all__ = [
    "And",
    "Equality",
    "FilterExpression",
    "Or",
    "and_",
    "eq",
    "or_",
    "FilterTranslator",
    "ScopeKey",
    "to_wire_string",
]
