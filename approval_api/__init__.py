"""
approval_api -- HTTP surface for the approval engine (FastAPI).

Outermost layer: translates JSON requests into ``ExecutionEngine`` calls
and ``ApprovalEngineError`` codes into HTTP statuses.  Nothing below this
package imports it.
"""

from approval_api.app import create_app

__all__ = ["create_app"]
