"""Workflow definition endpoints: list, inspect, publish."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from approval_api.dependencies import get_engine
from approval_api.schemas import DefinitionSummary, PublishResponse
from approval_config.loader import compute_checksum, definition_to_dict, parse_definition
from approval_kernel.logging_config import get_logger
from approval_services.execution_engine import ExecutionEngine

logger = get_logger("api.definitions")

router = APIRouter(prefix="/definitions", tags=["definitions"])


@router.get("", response_model=list[DefinitionSummary])
def list_definitions(engine: ExecutionEngine = Depends(get_engine)) -> list[DefinitionSummary]:
    store = engine.definitions
    summaries = []
    for definition_id in store.definition_ids():
        latest = store.latest(definition_id)
        summaries.append(DefinitionSummary(
            id=latest.id,
            name=latest.name,
            category=latest.category,
            description=latest.description,
            latest_version=latest.version,
            versions=list(store.versions(definition_id)),
        ))
    return summaries


@router.get("/{definition_id}")
def get_definition(
    definition_id: str,
    version: Optional[int] = None,
    engine: ExecutionEngine = Depends(get_engine),
) -> dict[str, Any]:
    return definition_to_dict(engine.definitions.get(definition_id, version))


@router.post("", response_model=PublishResponse, status_code=201)
def publish_definition(
    payload: dict[str, Any] = Body(...),
    engine: ExecutionEngine = Depends(get_engine),
) -> PublishResponse:
    """Publish a definition given in the YAML template shape (as JSON)."""
    try:
        definition = parse_definition(payload)
    except (KeyError, ValueError, TypeError) as exc:
        logger.info("definition_parse_failed", extra={"reason": str(exc)})
        raise HTTPException(status_code=422, detail=f"Malformed definition: {exc}") from exc
    engine.definitions.publish(definition)
    return PublishResponse(
        id=definition.id,
        version=definition.version,
        checksum=compute_checksum(definition),
    )
