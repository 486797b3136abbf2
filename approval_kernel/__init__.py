"""
Approval Kernel

Domain types, persistence, and kernel services for the approval-workflow
execution engine:
- Immutable, versioned workflow definitions
- Request instances with per-step decision state
- Ordered, hash-chained audit trail per instance
- Typed errors with machine-readable codes
"""

__version__ = "0.1.0"
