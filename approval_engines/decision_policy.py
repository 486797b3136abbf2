"""
approval_engines.decision_policy -- Decision policy evaluation for approval steps.

Responsibility:
    Given a step's policy, its approver sets and the decisions recorded so
    far, decide whether the step is still pending, has completed, or has
    been rejected.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Called by the execution
    engine after every decision while it holds the instance lock.

Policies:
    ALL_REQUIRED
        Any Reject rejects the step.  Completes once every required
        principal is credited with an approval.
    ANY_REJECT_BLOCKS
        Any Reject rejects the step, regardless of pending approvers.
        Completes on the first approval credited to a required principal.
    QUORUM(n)
        Completes when ``n`` distinct required principals are credited with
        an approval; optional approvers never count towards the quorum.  A
        Reject is recorded but only rejects the step once ``n`` approvals
        can no longer be reached.  ``n`` is capped at the number of required
        principals (two references may resolve to the same person).

Delegation credit:
    When A delegates to B, an approval from B is credited to A as well, so
    a required A is satisfied by B.  Delegation chains (A -> B -> C) are
    followed transitively.  A principal who delegated no longer holds a
    vote of their own.
"""

from __future__ import annotations

from collections.abc import Iterable, Set
from dataclasses import dataclass
from enum import Enum

from approval_engines.tracer import traced_engine
from approval_kernel.domain.graph import DecisionPolicy, DecisionPolicyKind
from approval_kernel.domain.instance import Decision, DecisionAction


class StepOutcome(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class PolicyEvaluation:
    """Result of ``evaluate_step``."""

    outcome: StepOutcome
    approvals: int
    needed: int
    credited: frozenset[str]
    reason: str = ""


def _delegators_of(decisions: Iterable[Decision]) -> dict[str, set[str]]:
    """Map each delegate to every principal whose authority reached them."""
    direct: dict[str, set[str]] = {}
    for d in decisions:
        if d.action is DecisionAction.DELEGATE and d.delegate_to:
            direct.setdefault(d.delegate_to, set()).add(d.principal)

    closure: dict[str, set[str]] = {}
    for delegate in direct:
        seen: set[str] = set()
        stack = list(direct[delegate])
        while stack:
            p = stack.pop()
            if p in seen or p == delegate:
                continue
            seen.add(p)
            stack.extend(direct.get(p, ()))
        closure[delegate] = seen
    return closure


def _credited_with(decisions: list[Decision], action: DecisionAction) -> frozenset[str]:
    delegators = _delegators_of(decisions)
    credited: set[str] = set()
    for d in decisions:
        if d.action is action:
            credited.add(d.principal)
            credited.update(delegators.get(d.principal, ()))
    return frozenset(credited)


def credited_principals(decisions: Iterable[Decision]) -> frozenset[str]:
    """Principals credited with an approval, directly or through delegation."""
    return _credited_with(list(decisions), DecisionAction.APPROVE)


@traced_engine("decision_policy", "1.0", fingerprint_fields=("policy",))
def evaluate_step(
    policy: DecisionPolicy,
    resolved_approvers: Set[str],
    required_approvers: Set[str],
    decisions: Iterable[Decision],
) -> PolicyEvaluation:
    """Evaluate the step's decisions under ``policy``."""
    decisions = list(decisions)
    credited = credited_principals(decisions)
    required = set(required_approvers)
    rejecters = [d.principal for d in decisions if d.action is DecisionAction.REJECT]

    if policy.kind is DecisionPolicyKind.QUORUM:
        needed = min(policy.threshold or 0, len(required)) or 1
        approvals = len(required & credited)
        refused = _credited_with(decisions, DecisionAction.REJECT) - credited
        undecided = len(required - credited - refused)
        if approvals >= needed:
            return PolicyEvaluation(
                StepOutcome.COMPLETED, approvals, needed, credited,
                f"Quorum of {needed} reached",
            )
        if approvals + undecided < needed:
            return PolicyEvaluation(
                StepOutcome.REJECTED, approvals, needed, credited,
                f"Quorum of {needed} no longer reachable",
            )
        return PolicyEvaluation(StepOutcome.PENDING, approvals, needed, credited)

    approvals = len(required & credited)
    if rejecters:
        return PolicyEvaluation(
            StepOutcome.REJECTED, approvals, len(required), credited,
            f"Rejected by {rejecters[0]}",
        )

    if policy.kind is DecisionPolicyKind.ANY_REJECT_BLOCKS:
        if approvals >= 1:
            return PolicyEvaluation(
                StepOutcome.COMPLETED, approvals, 1, credited, "Approved"
            )
        return PolicyEvaluation(StepOutcome.PENDING, approvals, 1, credited)

    # ALL_REQUIRED
    if required and required <= credited:
        return PolicyEvaluation(
            StepOutcome.COMPLETED, approvals, len(required), credited,
            "All required approvers approved",
        )
    return PolicyEvaluation(StepOutcome.PENDING, approvals, len(required), credited)
