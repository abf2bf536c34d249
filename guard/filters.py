"""
Filter expression tree.

A closed set of node types produced by the parser and consumed read-only by
the evaluator:

    Predicate(field_ref, operator, value)
    And(left, right)
    Or(left, right)
    Group(inner)

All nodes are frozen dataclasses. A Predicate using `matches` also carries
the regular expression compiled at parse time.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Pattern, Union

# ==============================================================================
# LEAF TYPES
# ==============================================================================

class Operator(Enum):
    IS = "is"
    CONTAINS = "contains"
    MATCHES = "matches"


@dataclass(frozen=True)
class FieldRef:
    """
    Left-hand side of a predicate.

    Either a field key, or the name wildcard (written `.` or `$name`) which
    compares against the record's own name.
    """

    key: Optional[str] = None

    @property
    def is_name(self) -> bool:
        return self.key is None

    @classmethod
    def record_name(cls) -> "FieldRef":
        return cls(None)

    def __str__(self) -> str:
        return "." if self.is_name else self.key


# ==============================================================================
# EXPRESSION NODES
# ==============================================================================

@dataclass(frozen=True)
class Predicate:
    field_ref: FieldRef
    operator: Operator
    value: str
    # Compiled only for Operator.MATCHES; excluded from equality
    pattern: Optional[Pattern] = field(default=None, compare=False, repr=False)

    @classmethod
    def build(cls, field_ref: FieldRef, operator: Operator, value: str) -> "Predicate":
        """Build a predicate, compiling the pattern for `matches`.

        Raises re.error if the pattern does not compile; the parser turns that
        into InvalidPattern with a position.
        """
        pattern = re.compile(value) if operator is Operator.MATCHES else None
        return cls(field_ref, operator, value, pattern)


@dataclass(frozen=True)
class And:
    left: "FilterExpr"
    right: "FilterExpr"


@dataclass(frozen=True)
class Or:
    left: "FilterExpr"
    right: "FilterExpr"


@dataclass(frozen=True)
class Group:
    inner: "FilterExpr"


FilterExpr = Union[Predicate, And, Or, Group]


def describe(expr: FilterExpr) -> str:
    """Render an expression back to filter text (used in logs and errors)."""
    if isinstance(expr, Predicate):
        return f"{expr.field_ref} {expr.operator.value} '{expr.value}'"
    if isinstance(expr, And):
        return f"{describe(expr.left)} and {describe(expr.right)}"
    if isinstance(expr, Or):
        return f"{describe(expr.left)} or {describe(expr.right)}"
    if isinstance(expr, Group):
        return f"({describe(expr.inner)})"
    raise TypeError(f"not a filter expression: {expr!r}")
