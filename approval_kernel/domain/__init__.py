"""
Pure domain layer.

Value objects and pure functions with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time
- I/O

All domain objects are immutable.
"""

from approval_kernel.domain.approval import (
    OPEN_STEP_STATUSES,
    STEP_TRANSITIONS,
    Actor,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStep,
    AuditAction,
    AuditEntry,
    EscalationTarget,
    RequestState,
    RequestStatus,
    StepStatus,
    derive_status,
    validate_chain,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.notifications import (
    Notifier,
    WorkflowEvent,
    WorkflowEventType,
)
from approval_kernel.domain.org import (
    Department,
    OrgDirectory,
    OrgNode,
    normalize_email,
    normalize_name,
)

__all__ = [
    "Actor",
    "ApprovalDecision",
    "ApprovalRequest",
    "ApprovalStep",
    "AuditAction",
    "AuditEntry",
    "Clock",
    "Department",
    "DeterministicClock",
    "EscalationTarget",
    "Notifier",
    "OPEN_STEP_STATUSES",
    "OrgDirectory",
    "OrgNode",
    "RequestState",
    "RequestStatus",
    "STEP_TRANSITIONS",
    "StepStatus",
    "SystemClock",
    "WorkflowEvent",
    "WorkflowEventType",
    "derive_status",
    "normalize_email",
    "normalize_name",
    "validate_chain",
]
