"""
Module: approval_kernel.selectors.request_selector
Responsibility: Read-side queries over approval requests: an approver's
    queue of pending steps and a requester's own requests.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from approval_kernel.domain.approval import ApprovalRequest, StepStatus
from approval_kernel.domain.org import normalize_email
from approval_kernel.models.approval import ApprovalRequestModel, ApprovalStepModel
from approval_kernel.selectors.base import BaseSelector


def _email_matches(column, email: str):
    return func.lower(func.trim(column)) == normalize_email(email)


@dataclass(frozen=True)
class PendingApproval:
    """One step waiting for a given approver's decision."""

    request_id: UUID
    category: str
    requester_name: str
    requester_email: str
    level: int
    role: str
    assigned_at: datetime | None
    is_escalated: bool


class RequestSelector(BaseSelector):
    """Queries for approver queues and requester dashboards."""

    def pending_for_approver(self, email: str) -> list[PendingApproval]:
        """Steps currently PENDING for ``email``, oldest assignment first."""
        rows = self.session.execute(
            select(ApprovalStepModel, ApprovalRequestModel)
            .join(
                ApprovalRequestModel,
                ApprovalRequestModel.request_id == ApprovalStepModel.request_id,
            )
            .where(
                ApprovalStepModel.status == StepStatus.PENDING.value,
                _email_matches(ApprovalStepModel.approver_email, email),
            )
            .order_by(ApprovalStepModel.assigned_at, ApprovalRequestModel.created_at)
        ).all()
        return [
            PendingApproval(
                request_id=request.request_id,
                category=request.category,
                requester_name=request.requester_name,
                requester_email=request.requester_email,
                level=step.level,
                role=step.role,
                assigned_at=step.assigned_at,
                is_escalated=step.is_escalated,
            )
            for step, request in rows
        ]

    def for_requester(self, email: str) -> list[ApprovalRequest]:
        """All requests raised by ``email``, newest first, without history."""
        rows = self.session.execute(
            select(ApprovalRequestModel)
            .where(_email_matches(ApprovalRequestModel.requester_email, email))
            .order_by(ApprovalRequestModel.created_at.desc())
        ).scalars().all()
        return [row.to_dto() for row in rows]
