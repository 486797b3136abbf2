"""Request instance endpoints: submit, decide, cancel, timeout, inspect."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from approval_api.dependencies import get_engine
from approval_api.schemas import (
    CancelRequest,
    DecisionRequest,
    ReassignRequest,
    StatusResponse,
    SubmitRequest,
    SubmitResponse,
)
from approval_kernel.domain.instance import InstanceStatus
from approval_kernel.domain.snapshot import audit_entry_to_dict
from approval_services.execution_engine import ExecutionEngine

router = APIRouter(prefix="/instances", tags=["instances"])


@router.post("", response_model=SubmitResponse, status_code=201)
def submit_instance(
    body: SubmitRequest,
    engine: ExecutionEngine = Depends(get_engine),
) -> SubmitResponse:
    instance_id = engine.submit(
        body.definition_id,
        body.fields,
        body.requester,
        title=body.title,
        priority=body.priority,
        version=body.version,
    )
    return SubmitResponse(instance_id=instance_id, status=engine.get_instance(instance_id).status)


@router.get("", response_model=list[UUID])
def list_instances(
    status: Optional[InstanceStatus] = None,
    engine: ExecutionEngine = Depends(get_engine),
) -> list[UUID]:
    return engine.list_instances(status)


@router.get("/{instance_id}")
def get_instance(
    instance_id: UUID,
    engine: ExecutionEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Instance snapshot: status, step states, decisions and audit trail."""
    return engine.snapshot(instance_id)


@router.get("/{instance_id}/audit")
def get_audit_trail(
    instance_id: UUID,
    engine: ExecutionEngine = Depends(get_engine),
) -> list[dict[str, Any]]:
    return [audit_entry_to_dict(e) for e in engine.get_audit_trail(instance_id)]


@router.post("/{instance_id}/decisions", response_model=StatusResponse)
def record_decision(
    instance_id: UUID,
    body: DecisionRequest,
    engine: ExecutionEngine = Depends(get_engine),
) -> StatusResponse:
    status = engine.record_decision(
        instance_id,
        body.step_id,
        body.principal,
        body.action,
        comment=body.comment,
        delegate_to=body.delegate_to,
    )
    return StatusResponse(instance_id=instance_id, status=status)


@router.post("/{instance_id}/cancel", response_model=StatusResponse)
def cancel_instance(
    instance_id: UUID,
    body: Optional[CancelRequest] = None,
    engine: ExecutionEngine = Depends(get_engine),
) -> StatusResponse:
    actor = body.actor if body is not None else None
    return StatusResponse(instance_id=instance_id, status=engine.cancel(instance_id, actor))


@router.post("/{instance_id}/steps/{step_id}/timeout", response_model=StatusResponse)
def deliver_timeout(
    instance_id: UUID,
    step_id: str,
    engine: ExecutionEngine = Depends(get_engine),
) -> StatusResponse:
    """Timer callback; repeated deliveries are no-ops."""
    return StatusResponse(
        instance_id=instance_id,
        status=engine.handle_timeout(instance_id, step_id),
    )


@router.post("/{instance_id}/steps/{step_id}/reassign", response_model=StatusResponse)
def reassign_step(
    instance_id: UUID,
    step_id: str,
    body: ReassignRequest,
    engine: ExecutionEngine = Depends(get_engine),
) -> StatusResponse:
    status = engine.reassign(instance_id, step_id, body.principals, body.actor)
    return StatusResponse(instance_id=instance_id, status=status)
