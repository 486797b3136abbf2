"""
Exception handlers mapping ``ApprovalEngineError`` codes to HTTP responses.

Status mapping:
    404  DefinitionNotFoundError, InstanceNotFoundError
    403  AuthorizationError
    409  ConflictError, DefinitionVersionError
    422  DefinitionValidationError, SubmissionError, ResolutionError
    503  CollaboratorError
    500  anything else (AuditError, EngineInvariantError, ...)

Body shape::

    {"error": {"code": "...", "message": "...", "details": [...]}}
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from approval_kernel.exceptions import (
    ApprovalEngineError,
    AuthorizationError,
    CollaboratorError,
    ConflictError,
    DefinitionNotFoundError,
    DefinitionValidationError,
    DefinitionVersionError,
    InstanceNotFoundError,
    ResolutionError,
    SubmissionError,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("api.errors")

_STATUS_BY_TYPE: tuple[tuple[type[ApprovalEngineError], int], ...] = (
    (DefinitionNotFoundError, 404),
    (InstanceNotFoundError, 404),
    (AuthorizationError, 403),
    (DefinitionVersionError, 409),
    (ConflictError, 409),
    (DefinitionValidationError, 422),
    (SubmissionError, 422),
    (ResolutionError, 422),
    (CollaboratorError, 503),
)


def status_for(exc: ApprovalEngineError) -> int:
    for exc_type, status in _STATUS_BY_TYPE:
        if isinstance(exc, exc_type):
            return status
    return 500


def _details(exc: ApprovalEngineError) -> list[dict[str, Any]]:
    if isinstance(exc, DefinitionValidationError):
        return [
            {
                "code": issue.code,
                "message": issue.message,
                "node_id": issue.node_id,
                "edge_id": issue.edge_id,
            }
            for issue in exc.errors
        ]
    return []


async def approval_error_handler(request: Request, exc: ApprovalEngineError) -> JSONResponse:
    status = status_for(exc)
    body: dict[str, Any] = {"error": {"code": exc.code, "message": str(exc)}}
    details = _details(exc)
    if details:
        body["error"]["details"] = details
    if status >= 500:
        logger.error(
            "request_failed",
            extra={"path": request.url.path, "error_code": exc.code},
            exc_info=exc,
        )
    else:
        logger.info(
            "request_rejected",
            extra={"path": request.url.path, "error_code": exc.code, "http_status": status},
        )
    return JSONResponse(status_code=status, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApprovalEngineError, approval_error_handler)
