"""SQLAlchemy ORM models for approval persistence."""

from approval_kernel.models.approval import (
    ApprovalRequestModel,
    ApprovalStepModel,
    AuditEntryModel,
)

__all__ = [
    "ApprovalRequestModel",
    "ApprovalStepModel",
    "AuditEntryModel",
]
