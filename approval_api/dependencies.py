"""FastAPI dependencies.

The engine lives on ``app.state.engine``; ``create_app`` installs it.
"""

from __future__ import annotations

from fastapi import Request

from approval_services.execution_engine import ExecutionEngine


def get_engine(request: Request) -> ExecutionEngine:
    """Return the ExecutionEngine bound to the running application."""
    return request.app.state.engine
