"""
Royalguard Filter Evaluator

Decides whether a single record satisfies a filter expression.

Case policy:
- `is` compares exactly (case-sensitive)
- `contains` compares case-insensitively (both sides case-folded)
- `matches` runs re.search with the pattern as written; use (?i) for
  case-insensitive patterns

A predicate on a field the record does not have is simply false.
"""

import re
from typing import Optional

from .filters import And, FilterExpr, Group, Operator, Or, Predicate
from .records import Record


def matches(expr: FilterExpr, record: Record) -> bool:
    """
    Evaluate a filter expression against one record.

    Args:
        expr (FilterExpr): Parsed filter
        record (Record): Record to test

    Returns:
        bool: True if the record satisfies the expression
    """
    if isinstance(expr, Predicate):
        return _test_predicate(expr, record)
    if isinstance(expr, And):
        return matches(expr.left, record) and matches(expr.right, record)
    if isinstance(expr, Or):
        return matches(expr.left, record) or matches(expr.right, record)
    if isinstance(expr, Group):
        return matches(expr.inner, record)
    raise TypeError(f"not a filter expression: {expr!r}")


def _resolve(predicate: Predicate, record: Record) -> Optional[str]:
    if predicate.field_ref.is_name:
        return record.name
    field = record.fields.get(predicate.field_ref.key)
    return field.value if field is not None else None


def _test_predicate(predicate: Predicate, record: Record) -> bool:
    subject = _resolve(predicate, record)
    if subject is None:
        return False

    if predicate.operator is Operator.IS:
        return subject == predicate.value
    if predicate.operator is Operator.CONTAINS:
        return predicate.value.casefold() in subject.casefold()
    if predicate.operator is Operator.MATCHES:
        pattern = predicate.pattern or re.compile(predicate.value)
        return pattern.search(subject) is not None
    raise TypeError(f"unknown operator: {predicate.operator!r}")
