"""
Module: approval_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by the
    execution engine: definition validation, condition evaluation and
    decision policy math.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel.domain (and sibling engine modules).
    MUST NOT import approval_services or approval_api.

Invariants enforced:
    - Purity: engines never read the clock; timestamps are passed in.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine`` (see
    ``approval_engines.tracer``), emitting APPROVAL_ENGINE_TRACE records.
"""

from approval_engines.conditions import evaluate_condition, evaluate_conditions, select_edge
from approval_engines.decision_policy import (
    PolicyEvaluation,
    StepOutcome,
    credited_principals,
    evaluate_step,
)
from approval_engines.validation import ValidationIssue, ValidationResult, validate_definition

__all__ = [
    "PolicyEvaluation",
    "StepOutcome",
    "ValidationIssue",
    "ValidationResult",
    "credited_principals",
    "evaluate_condition",
    "evaluate_conditions",
    "evaluate_step",
    "select_edge",
    "validate_definition",
]
