"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests, their chain steps,
    and the append-only audit trail.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Level uniqueness: UNIQUE(request_id, level) on approval_steps.
    - Audit ordering: UNIQUE(request_id, seq) on approval_audit_entries;
      seq is assigned monotonically per request by AuditTrail.
    - Audit immutability: ORM listeners reject UPDATE and DELETE of audit
      rows with ImmutabilityViolationError.
    - Optimistic concurrency: ``version`` on approval_requests is bumped by
      every save and checked against the version read at load time.

Failure modes:
    - IntegrityError on a duplicate level or audit seq.
    - ImmutabilityViolationError on audit entry UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalRequest,
        ApprovalStep,
        AuditEntry,
    )
    from approval_kernel.domain.org import OrgNode


class ApprovalRequestModel(Base):
    """Persistent approval request header.

    Contract:
        ``status`` is a denormalized copy of the status derived from the
        chain at the last save.  It exists for queries only and is never
        read back as the source of truth.

    Guarantees:
        - The requester is stored as a snapshot; later directory changes do
          not alter persisted requests.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        Index("ix_approval_requests_requester", "requester_email", "created_at"),
        Index("ix_approval_requests_status", "status"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    requester_name: Mapped[str] = mapped_column(String(200), nullable=False)
    requester_email: Mapped[str] = mapped_column(String(254), nullable=False, default="")
    requester_title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    requester_department: Mapped[str | None] = mapped_column(String(200), nullable=True)
    requester_reports_to: Mapped[str | None] = mapped_column(String(254), nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        back_populates="request",
        primaryjoin="ApprovalRequestModel.request_id == ApprovalStepModel.request_id",
        order_by="ApprovalStepModel.level",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} {self.category} "
            f"status={self.status} v{self.version}>"
        )

    def requester_node(self) -> OrgNode:
        from approval_kernel.domain.org import OrgNode

        return OrgNode(
            name=self.requester_name,
            email=self.requester_email,
            title=self.requester_title,
            department=self.requester_department,
            reports_to_email=self.requester_reports_to,
        )

    def to_dto(self, audit_log: tuple[AuditEntry, ...] = ()) -> ApprovalRequest:
        """Convert ORM model to frozen domain snapshot."""
        from approval_kernel.domain.approval import ApprovalRequest as ApprovalRequestDTO

        return ApprovalRequestDTO(
            request_id=self.request_id,
            requester=self.requester_node(),
            category=self.category,
            chain=tuple(step.to_dto() for step in self.steps),
            created_at=self.created_at,
            audit_log=audit_log,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalRequest) -> ApprovalRequestModel:
        requester = dto.requester
        return cls(
            request_id=dto.request_id,
            requester_name=requester.name,
            requester_email=requester.email or "",
            requester_title=requester.title or "",
            requester_department=requester.department,
            requester_reports_to=requester.reports_to_email,
            category=dto.category,
            status=dto.status.label,
            version=dto.version,
            created_at=dto.created_at,
        )


class ApprovalStepModel(Base):
    """One persisted level of a request's approval chain."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint("request_id", "level", name="uq_approval_steps_level"),
        Index("ix_approval_steps_approver_status", "approver_email", "status"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    level: Mapped[int] = mapped_column(nullable=False)
    approver_name: Mapped[str] = mapped_column(String(200), nullable=False)
    approver_email: Mapped[str] = mapped_column(String(254), nullable=False)
    approver_title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    approver_department: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approver_reports_to: Mapped[str | None] = mapped_column(String(254), nullable=True)
    role: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(254), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_by: Mapped[str | None] = mapped_column(String(254), nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_escalated: Mapped[bool] = mapped_column(nullable=False, default=False)
    escalated_from_level: Mapped[int | None] = mapped_column(nullable=True)
    bypassed_by: Mapped[str | None] = mapped_column(String(254), nullable=True)
    bypass_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_override: Mapped[bool] = mapped_column(nullable=False, default=False)

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel",
        back_populates="steps",
        foreign_keys=[request_id],
        primaryjoin="ApprovalStepModel.request_id == ApprovalRequestModel.request_id",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.request_id} L{self.level} "
            f"{self.approver_email} {self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        from approval_kernel.domain.approval import ApprovalStep as ApprovalStepDTO
        from approval_kernel.domain.approval import StepStatus
        from approval_kernel.domain.org import OrgNode

        return ApprovalStepDTO(
            level=self.level,
            approver=OrgNode(
                name=self.approver_name,
                email=self.approver_email,
                title=self.approver_title,
                department=self.approver_department,
                reports_to_email=self.approver_reports_to,
            ),
            role=self.role,
            status=StepStatus(self.status),
            comments=self.comments,
            decided_by=self.decided_by,
            assigned_at=self.assigned_at,
            decided_at=self.decided_at,
            escalated_by=self.escalated_by,
            escalation_reason=self.escalation_reason,
            is_escalated=self.is_escalated,
            escalated_from_level=self.escalated_from_level,
            bypassed_by=self.bypassed_by,
            bypass_reason=self.bypass_reason,
            is_override=self.is_override,
        )

    def apply_dto(self, request_id: UUID, dto: ApprovalStep) -> None:
        """Copy a domain step onto this row (insert or update)."""
        self.request_id = request_id
        self.level = dto.level
        self.approver_name = dto.approver.name
        self.approver_email = dto.approver.email
        self.approver_title = dto.approver.title or ""
        self.approver_department = dto.approver.department
        self.approver_reports_to = dto.approver.reports_to_email
        self.role = dto.role
        self.status = dto.status.value
        self.comments = dto.comments
        self.decided_by = dto.decided_by
        self.assigned_at = dto.assigned_at
        self.decided_at = dto.decided_at
        self.escalated_by = dto.escalated_by
        self.escalation_reason = dto.escalation_reason
        self.is_escalated = dto.is_escalated
        self.escalated_from_level = dto.escalated_from_level
        self.bypassed_by = dto.bypassed_by
        self.bypass_reason = dto.bypass_reason
        self.is_override = dto.is_override

    @classmethod
    def from_dto(cls, request_id: UUID, dto: ApprovalStep) -> ApprovalStepModel:
        model = cls()
        model.apply_dto(request_id, dto)
        return model


class AuditEntryModel(Base):
    """Persistent audit trail entry. Append-only.

    Contract:
        Entries are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "approval_audit_entries"

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_approval_audit_seq"),
        Index("ix_approval_audit_timestamp", "timestamp"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(254), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<AuditEntry {self.request_id} #{self.seq} {self.action}>"

    def to_dto(self) -> AuditEntry:
        from approval_kernel.domain.approval import AuditAction
        from approval_kernel.domain.approval import AuditEntry as AuditEntryDTO

        return AuditEntryDTO(
            request_id=self.request_id,
            action=AuditAction(self.action),
            performed_by=self.performed_by,
            timestamp=self.timestamp,
            reason=self.reason,
            previous_status=self.previous_status,
            new_status=self.new_status,
            details=dict(self.details or {}),
            seq=self.seq,
        )

    @classmethod
    def from_dto(cls, dto: AuditEntry, seq: int) -> AuditEntryModel:
        return cls(
            request_id=dto.request_id,
            seq=seq,
            action=dto.action.value,
            performed_by=dto.performed_by,
            timestamp=dto.timestamp,
            reason=dto.reason,
            previous_status=dto.previous_status,
            new_status=dto.new_status,
            details=dict(dto.details),
        )


# =============================================================================
# ORM-Level Immutability for Audit Entries (Append-Only)
# =============================================================================


@event.listens_for(AuditEntryModel, "before_update")
def prevent_audit_update(mapper, connection, target):
    """Prevent updates to audit entries."""
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=f"{target.request_id}#{target.seq}",
        reason="Audit entries are immutable -- cannot modify",
    )


@event.listens_for(AuditEntryModel, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    """Prevent deletion of audit entries."""
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=f"{target.request_id}#{target.seq}",
        reason="Audit entries are immutable -- cannot delete",
    )
