"""Services for the approval kernel (write side)."""

from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.locks import RequestLockRegistry
from approval_kernel.services.notifier import LoggingNotifier, NotificationDispatcher
from approval_kernel.services.request_store import RequestStore
from approval_kernel.services.retry import retry_on_conflict
from approval_kernel.services.workflow_engine import WorkflowEngine

__all__ = [
    "AuditTrail",
    "LoggingNotifier",
    "NotificationDispatcher",
    "RequestLockRegistry",
    "RequestStore",
    "WorkflowEngine",
    "retry_on_conflict",
]
