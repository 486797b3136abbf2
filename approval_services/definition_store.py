"""
approval_services.definition_store -- Versioned, immutable workflow definitions.

Responsibility:
    Publishes validated workflow definitions and serves them by id and
    version, together with a cached ``GraphIndex`` per version.

Architecture position:
    Services layer.  Imports the pure validation engine from
    ``approval_engines`` and domain types from ``approval_kernel``.

Invariants enforced:
    - Invalid definitions never become visible: ``publish`` validates first
      and raises ``DefinitionValidationError`` with every issue found.
    - Versions per definition id strictly increase.
    - Published definitions are frozen; readers get the same object for the
      lifetime of the store, so caching per version needs no invalidation.

Failure modes:
    - DefinitionValidationError, DefinitionVersionError on publish.
    - DefinitionNotFoundError on lookup of an unknown id or version.
"""

from __future__ import annotations

import threading

from approval_engines.validation import validate_definition
from approval_kernel.domain.graph import GraphIndex, WorkflowDefinition
from approval_kernel.exceptions import (
    DefinitionNotFoundError,
    DefinitionValidationError,
    DefinitionVersionError,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("services.definition_store")


class DefinitionStore:
    """Thread-safe, read-mostly registry of published definitions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._versions: dict[str, dict[int, WorkflowDefinition]] = {}
        self._indexes: dict[tuple[str, int], GraphIndex] = {}

    def publish(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Validate and publish ``definition``.

        Raises:
            DefinitionValidationError: If structural validation fails.
            DefinitionVersionError: If the version is not greater than the
                latest published version of the same id.
        """
        result = validate_definition(definition)
        if not result.is_valid:
            logger.warning(
                "definition_rejected",
                extra={
                    "definition_id": definition.id,
                    "version": definition.version,
                    "error_codes": sorted(result.codes()),
                },
            )
            raise DefinitionValidationError(
                definition.id, definition.version, list(result.errors)
            )

        index = GraphIndex(definition)
        with self._lock:
            versions = self._versions.setdefault(definition.id, {})
            latest = max(versions) if versions else 0
            if definition.version <= latest:
                raise DefinitionVersionError(definition.id, definition.version, latest)
            versions[definition.version] = definition
            self._indexes[definition.key] = index

        logger.info(
            "definition_published",
            extra={
                "definition_id": definition.id,
                "version": definition.version,
                "node_count": len(definition.nodes),
                "edge_count": len(definition.edges),
            },
        )
        return definition

    def get(self, definition_id: str, version: int | None = None) -> WorkflowDefinition:
        """
        Return a specific version, or the latest when ``version`` is None.

        Raises:
            DefinitionNotFoundError: If the id or version is unknown.
        """
        with self._lock:
            versions = self._versions.get(definition_id)
            if not versions:
                raise DefinitionNotFoundError(definition_id, version)
            if version is None:
                return versions[max(versions)]
            try:
                return versions[version]
            except KeyError:
                raise DefinitionNotFoundError(definition_id, version) from None

    def latest(self, definition_id: str) -> WorkflowDefinition:
        return self.get(definition_id)

    def index(self, definition_id: str, version: int) -> GraphIndex:
        """Cached ``GraphIndex`` for a published version."""
        with self._lock:
            index = self._indexes.get((definition_id, version))
        if index is None:
            raise DefinitionNotFoundError(definition_id, version)
        return index

    def versions(self, definition_id: str) -> tuple[int, ...]:
        with self._lock:
            return tuple(sorted(self._versions.get(definition_id, {})))

    def definition_ids(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._versions))
