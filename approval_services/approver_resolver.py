"""
approval_services.approver_resolver -- Approver reference resolution.

Responsibility:
    Turns abstract ``ApproverRef`` values into concrete principals through
    the Directory collaborator.

Architecture position:
    Services layer.  Called by the execution engine OUTSIDE the instance
    lock, since Directory lookups are external I/O.

Resolution rules:
    - USER resolves to itself (no Directory call).
    - ROLE and DEPARTMENT resolve through ``Directory.lookup(kind, value)``.
    - MANAGER resolves through ``Directory.lookup(MANAGER, requester)``,
      i.e. the requester's reporting line.

Failure modes:
    - DirectoryUnavailableError propagates; the engine defers and retries.
    - An empty result is returned as-is; the engine blocks the step.  An
      empty approver set is never treated as approval.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from approval_kernel.domain.collaborators import Directory
from approval_kernel.domain.graph import ApproverKind, ApproverRef
from approval_kernel.logging_config import get_logger

logger = get_logger("services.approver_resolver")


@dataclass(frozen=True)
class ResolutionContext:
    """Request-scoped inputs to resolution."""

    requester: str
    instance_id: str = ""
    step_id: str = ""


@dataclass(frozen=True)
class ResolvedApprovers:
    """Principals for a group of refs, split by ``required`` flag."""

    principals: frozenset[str]
    required: frozenset[str]
    empty_required_refs: tuple[ApproverRef, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.principals


class ApproverResolver:
    """Resolves approver references against a Directory."""

    def __init__(self, directory: Directory):
        self._directory = directory

    def resolve(self, ref: ApproverRef, context: ResolutionContext) -> frozenset[str]:
        """
        Resolve a single reference.

        Raises:
            DirectoryUnavailableError: If the Directory cannot answer.
        """
        if ref.kind is ApproverKind.USER:
            principals = {ref.value} if ref.value else set()
        elif ref.kind is ApproverKind.MANAGER:
            principals = self._directory.lookup(ApproverKind.MANAGER, context.requester)
        else:
            principals = self._directory.lookup(ref.kind, ref.value)

        result = frozenset(p for p in principals if p)
        if not result:
            logger.warning(
                "approver_ref_resolved_empty",
                extra={
                    "ref_kind": ref.kind.value,
                    "ref_value": ref.value,
                    "step_id": context.step_id,
                },
            )
        return result

    def resolve_all(
        self,
        refs: Iterable[ApproverRef],
        context: ResolutionContext,
    ) -> ResolvedApprovers:
        """
        Resolve every reference of a step.

        If no reference is marked required, every resolved principal counts
        as required.

        Raises:
            DirectoryUnavailableError: If any lookup fails; no partial result.
        """
        principals: set[str] = set()
        required: set[str] = set()
        empty_required: list[ApproverRef] = []
        any_required = False
        for ref in refs:
            resolved = self.resolve(ref, context)
            principals |= resolved
            if ref.required:
                any_required = True
                required |= resolved
                if not resolved:
                    empty_required.append(ref)
        if not any_required:
            required = set(principals)
        return ResolvedApprovers(
            principals=frozenset(principals),
            required=frozenset(required),
            empty_required_refs=tuple(empty_required),
        )
