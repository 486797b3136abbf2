"""
approval_services.wiring -- Assembles a ready-to-use ExecutionEngine.

Responsibility:
    Single place where settings, definition templates, persistence and
    collaborators are put together.  Callers that need a different
    Directory, Notifier or Timer pass their own; everything else falls back
    to the in-process implementations.

Architecture position:
    Services layer, outermost module.  Used by ``approval_api`` and tests.
"""

from __future__ import annotations

from approval_config.loader import load_builtin_templates, publish_directory
from approval_config.settings import EngineSettings, get_settings
from approval_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.collaborators import Directory, Notifier, Timer
from approval_kernel.logging_config import get_logger
from approval_kernel.services.instance_repository import InstanceRepository
from approval_services.collaborators import InMemoryTimer, LoggingNotifier, StaticDirectory
from approval_services.definition_store import DefinitionStore
from approval_services.execution_engine import ExecutionEngine

logger = get_logger("services.wiring")


def build_engine(
    settings: EngineSettings | None = None,
    *,
    definitions: DefinitionStore | None = None,
    directory: Directory | None = None,
    notifier: Notifier | None = None,
    timer: Timer | None = None,
    clock: Clock | None = None,
) -> ExecutionEngine:
    """
    Build an engine from ``settings`` (``get_settings()`` when omitted).

    The timer's callback is bound to ``engine.handle_timeout``.  When
    ``settings.database_url`` is set, tables are created and every mutating
    operation is persisted through ``InstanceRepository``.
    """
    settings = settings or get_settings()
    definitions = definitions if definitions is not None else DefinitionStore()
    if settings.load_builtin_templates:
        load_builtin_templates(definitions)
    if settings.template_dir is not None:
        publish_directory(definitions, settings.template_dir)

    repository = None
    if settings.database_url:
        init_engine_from_url(settings.database_url)
        create_tables()
        repository = InstanceRepository(get_session_factory())

    timer = timer if timer is not None else InMemoryTimer()
    engine = ExecutionEngine(
        definitions,
        directory if directory is not None else StaticDirectory(),
        notifier if notifier is not None else LoggingNotifier(),
        timer,
        clock=clock,
        repository=repository,
        retry_base_seconds=settings.directory_retry_seconds,
        retry_limit=settings.directory_retry_limit,
    )
    timer.set_callback(engine.handle_timeout)
    logger.info(
        "engine_built",
        extra={
            "definition_count": len(definitions.definition_ids()),
            "persistent": repository is not None,
        },
    )
    return engine
