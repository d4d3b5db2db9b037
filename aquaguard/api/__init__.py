"""
Operator-facing operations for the alerting core.

Components:
    operations: Typed requests and the AlertOperations router
"""

from aquaguard.api.operations import (
    AlertOperation,
    AlertOperations,
    OperationError,
    OperationResponse,
    parse_request,
)

__all__ = [
    "AlertOperation",
    "AlertOperations",
    "OperationError",
    "OperationResponse",
    "parse_request",
]
