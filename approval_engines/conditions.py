"""
approval_engines.conditions -- Branch condition evaluation.

Responsibility:
    Evaluate edge conditions against a request's typed fields and pick the
    edge to follow out of a node.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Never raises: a NaN operand compares False.
    - No coercion: a condition only matches a field of the same
      ``ValueKind``.  A missing field or a kind mismatch evaluates to False.
    - ``greater_than`` / ``less_than`` apply to Number and Date only;
      ``contains`` is a substring test on String only.
    - Edge selection: conditioned edges are tried in declaration order and
      the first whose conditions all hold wins; the unconditional edge is
      the fallback, tried last.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from approval_kernel.domain.graph import Condition, ConditionOperator, Edge
from approval_kernel.domain.values import ORDERED_KINDS, TypedValue, ValueKind


def _is_nan(value: object) -> bool:
    return isinstance(value, Decimal) and value.is_nan()


def evaluate_condition(condition: Condition, fields: Mapping[str, TypedValue]) -> bool:
    """True iff ``condition`` holds for ``fields``."""
    actual = fields.get(condition.field)
    if actual is None:
        return False
    expected = condition.value
    if actual.kind is not expected.kind:
        return False

    if _is_nan(actual.value) or _is_nan(expected.value):
        return False

    op = condition.operator
    if op is ConditionOperator.EQUALS:
        return actual.value == expected.value
    if op is ConditionOperator.GREATER_THAN:
        return actual.kind in ORDERED_KINDS and actual.value > expected.value
    if op is ConditionOperator.LESS_THAN:
        return actual.kind in ORDERED_KINDS and actual.value < expected.value
    if op is ConditionOperator.CONTAINS:
        return actual.kind is ValueKind.STRING and expected.value in actual.value
    return False


def evaluate_conditions(
    conditions: Iterable[Condition],
    fields: Mapping[str, TypedValue],
) -> bool:
    """AND of all ``conditions``; an empty set holds."""
    return all(evaluate_condition(c, fields) for c in conditions)


def select_edge(
    edges: Iterable[Edge],
    fields: Mapping[str, TypedValue],
) -> Edge | None:
    """
    Choose the edge to follow out of a node.

    Returns:
        The first conditioned edge whose conditions all hold, else the
        unconditional edge, else None (the caller blocks the instance).
    """
    fallback: Edge | None = None
    for edge in edges:
        if edge.is_unconditional:
            if fallback is None:
                fallback = edge
            continue
        if evaluate_conditions(edge.conditions, fields):
            return edge
    return fallback
