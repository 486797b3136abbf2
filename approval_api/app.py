"""FastAPI application factory.

Creates the approval HTTP surface around one ``ExecutionEngine``: request
tracing (correlation id bound into ``LogContext``), structured error
responses, the instance and definition routers, and a scheduler loop that
calls ``engine.run_due()`` every ``settings.tick_seconds`` while the app
is running.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Any, Optional
from uuid import uuid4

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from approval_api.errors import register_exception_handlers
from approval_api.routes import definitions, instances
from approval_config.settings import EngineSettings, get_settings
from approval_kernel import __version__
from approval_kernel.logging_config import LogContext, configure_logging, get_logger
from approval_services.execution_engine import ExecutionEngine
from approval_services.wiring import build_engine

logger = get_logger("api.app")

REQUEST_ID_HEADER = "X-Request-ID"


async def run_scheduler(engine: ExecutionEngine, interval: float) -> None:
    """Fire expired deadlines and retry deferred resolutions every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            processed = await asyncio.to_thread(engine.run_due)
        except Exception:
            logger.exception("scheduler_pass_failed")
            continue
        if processed:
            logger.debug("scheduler_pass", extra={"processed": processed})


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id for the request and echoes it back."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        with LogContext.bind(correlation_id=request_id):
            logger.debug(
                "request_started",
                extra={"method": request.method, "path": request.url.path},
            )
            response = await call_next(request)
            logger.debug(
                "request_finished",
                extra={"path": request.url.path, "http_status": response.status_code},
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def create_app(
    engine: Optional[ExecutionEngine] = None,
    settings: Optional[EngineSettings] = None,
) -> FastAPI:
    """Create the application.

    Args:
        engine: Engine to serve.  Built with ``build_engine(settings)`` when
            omitted.
        settings: Deployment settings; ``get_settings()`` when omitted.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(level=settings.log_level)
        logger.info("approval_api_started", extra={"version": __version__})
        scheduler = None
        if settings.tick_seconds > 0:
            scheduler = asyncio.create_task(
                run_scheduler(app.state.engine, settings.tick_seconds)
            )
            logger.info("scheduler_started", extra={"interval_seconds": settings.tick_seconds})
        yield
        if scheduler is not None:
            scheduler.cancel()
            with suppress(asyncio.CancelledError):
                await scheduler
            logger.info("scheduler_stopped")
        logger.info("approval_api_stopped")

    app = FastAPI(
        title="Approval Workflow Engine",
        version=__version__,
        description="Submit requests, record decisions and inspect audit trails.",
        lifespan=lifespan,
    )
    app.state.engine = engine if engine is not None else build_engine(settings)

    register_exception_handlers(app)
    app.add_middleware(RequestTracingMiddleware)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "definitions": len(app.state.engine.definitions.definition_ids()),
        }

    app.include_router(instances.router)
    app.include_router(definitions.router)
    return app
