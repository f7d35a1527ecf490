"""Filter expression tree.

A closed set of node types. Translators match on these three classes and
nothing else:

    Equality(field, value)     field == value
    And(operands)              all operands hold
    Or(operands)               any operand holds

Build trees with the helpers::

    expr = and_(eq("refnum1", 100001), eq("sourcePath", "policy.pdf"))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

Scalar = Union[str, int, float, bool]


@dataclass(frozen=True)
class Equality:
    """Exact match of a metadata field against a scalar value."""

    field: str
    value: Scalar

    def __post_init__(self) -> None:
        if not self.field:
            raise ValueError("Equality requires a field name")


@dataclass(frozen=True)
class And:
    """Conjunction of one or more expressions."""

    operands: Tuple["FilterExpression", ...]

    def __post_init__(self) -> None:
        if not self.operands:
            raise ValueError("And requires at least one operand")


@dataclass(frozen=True)
class Or:
    """Disjunction of one or more expressions."""

    operands: Tuple["FilterExpression", ...]

    def __post_init__(self) -> None:
        if not self.operands:
            raise ValueError("Or requires at least one operand")


FilterExpression = Union[Equality, And, Or]


def eq(field: str, value: Scalar) -> Equality:
    return Equality(field, value)


def and_(*operands: FilterExpression) -> And:
    return And(tuple(operands))


def or_(*operands: FilterExpression) -> Or:
    return Or(tuple(operands))
