"""Request and response models for the HTTP surface."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from approval_kernel.domain.instance import DecisionAction, InstanceStatus, Priority


class SubmitRequest(BaseModel):
    definition_id: str = Field(..., description="Published definition id")
    fields: dict[str, Any] = Field(default_factory=dict, description="Request field values")
    requester: str = Field(..., min_length=1)
    title: str = ""
    priority: Priority = Priority.MEDIUM
    version: Optional[int] = Field(default=None, description="Pin a definition version")


class SubmitResponse(BaseModel):
    instance_id: UUID
    status: InstanceStatus


class DecisionRequest(BaseModel):
    step_id: str
    principal: str = Field(..., min_length=1)
    action: DecisionAction
    comment: Optional[str] = None
    delegate_to: Optional[str] = None


class CancelRequest(BaseModel):
    actor: Optional[str] = None


class ReassignRequest(BaseModel):
    principals: list[str] = Field(..., min_length=1)
    actor: str = Field(..., min_length=1)


class StatusResponse(BaseModel):
    instance_id: UUID
    status: InstanceStatus


class DefinitionSummary(BaseModel):
    id: str
    name: str
    category: str = ""
    description: str = ""
    latest_version: int
    versions: list[int]


class PublishResponse(BaseModel):
    id: str
    version: int
    checksum: str
