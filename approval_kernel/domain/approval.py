"""
Approval workflow domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the sequential approval workflow: step and
request status, the approval chain, audit entries, and the actors
that drive transitions.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import
only from ``domain/org`` and ``exceptions``.

Invariants enforced
-------------------
* Step lifecycle -- ``STEP_TRANSITIONS`` lists the only valid step
  status changes; closed statuses have no outgoing edges.
* Levels are contiguous 1..N and at most one step is PENDING
  (``validate_chain``).
* Request status is derived -- ``ApprovalRequest.status`` is computed
  from the chain by ``derive_status`` and has no setter.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from approval_kernel.domain.org import OrgNode, normalize_email
from approval_kernel.exceptions import InvalidChainError


# =========================================================================
# Step lifecycle
# =========================================================================


class StepStatus(str, Enum):
    """Status of a single approval step.

    WAITING marks a step that has not been reached yet; it carries no
    ``assigned_at``.
    """

    WAITING = "waiting"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BYPASSED = "bypassed"
    ESCALATED = "escalated"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.WAITING: frozenset({
        StepStatus.PENDING,
        StepStatus.BYPASSED,
    }),
    StepStatus.PENDING: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.ESCALATED,
        StepStatus.BYPASSED,
    }),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.BYPASSED: frozenset(),
    StepStatus.ESCALATED: frozenset(),
}

OPEN_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.WAITING,
    StepStatus.PENDING,
})


class ApprovalDecision(str, Enum):
    """Decisions an approver can make on the pending step."""

    APPROVE = "approve"
    REJECT = "reject"


class EscalationTarget(str, Enum):
    NEXT_LEVEL = "next_level"
    DESIGNATED_AUTHORITY = "designated_authority"


class AuditAction(str, Enum):
    """Kinds of audited workflow transitions."""

    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    OVERRIDDEN = "overridden"


# =========================================================================
# Request status (derived)
# =========================================================================


class RequestState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class RequestStatus:
    """Tagged request status: ``PendingLevel(n)``, Approved or Rejected.

    ``level`` and ``role`` are set only for the pending variant and mirror
    the currently pending step.
    """

    state: RequestState
    level: int | None = None
    role: str | None = None

    @classmethod
    def pending_level(cls, level: int, role: str) -> RequestStatus:
        return cls(RequestState.PENDING, level, role)

    @classmethod
    def approved(cls) -> RequestStatus:
        return cls(RequestState.APPROVED)

    @classmethod
    def rejected(cls) -> RequestStatus:
        return cls(RequestState.REJECTED)

    @property
    def is_terminal(self) -> bool:
        return self.state is not RequestState.PENDING

    @property
    def label(self) -> str:
        """Stable string form, e.g. ``pending_level_2`` or ``approved``."""
        if self.state is RequestState.PENDING:
            return f"pending_level_{self.level}"
        return self.state.value

    def __str__(self) -> str:
        return self.label


# =========================================================================
# Actors, steps, audit entries
# =========================================================================


@dataclass(frozen=True)
class Actor:
    """Whoever drives a transition: an approver, HR, an administrator."""

    email: str
    role: str = ""
    name: str = ""

    @property
    def key(self) -> str:
        return normalize_email(self.email)


@dataclass(frozen=True)
class ApprovalStep:
    """One level of an approval chain. Immutable; transitions replace it."""

    level: int
    approver: OrgNode
    role: str
    status: StepStatus = StepStatus.WAITING
    comments: str | None = None
    decided_by: str | None = None
    assigned_at: datetime | None = None
    decided_at: datetime | None = None
    # Escalation: set on the step that was escalated away from ...
    escalated_by: str | None = None
    escalation_reason: str | None = None
    # ... and on the step that received the escalation.
    is_escalated: bool = False
    escalated_from_level: int | None = None
    # Override / jump-over
    bypassed_by: str | None = None
    bypass_reason: str | None = None
    is_override: bool = False

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STEP_STATUSES

    def is_bound_to(self, email: str | None) -> bool:
        return bool(email) and self.approver.key == normalize_email(email)


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of one workflow transition.

    ``seq`` is assigned by the audit trail when the entry is appended.
    """

    request_id: UUID
    action: AuditAction
    performed_by: str
    timestamp: datetime
    reason: str | None = None
    previous_status: str | None = None
    new_status: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)
    seq: int | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Snapshot of an approval request.

    ``version`` is the optimistic-concurrency token read at load time.
    ``status`` is always computed from ``chain``.
    """

    request_id: UUID
    requester: OrgNode
    category: str
    chain: tuple[ApprovalStep, ...]
    created_at: datetime | None = None
    audit_log: tuple[AuditEntry, ...] = ()
    version: int = 0

    @property
    def status(self) -> RequestStatus:
        return derive_status(self.chain)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def pending_step(self) -> ApprovalStep | None:
        for step in self.chain:
            if step.status is StepStatus.PENDING:
                return step
        return None

    def step_at(self, level: int) -> ApprovalStep:
        return self.chain[level - 1]


# =========================================================================
# Pure chain functions
# =========================================================================


def derive_status(chain: Sequence[ApprovalStep]) -> RequestStatus:
    """Compute the request status from its chain.

    Rejected if any step was rejected; ``PendingLevel(n)`` while a step is
    pending; Approved once the final step is approved.

    Raises:
        InvalidChainError: the chain is empty, has several pending steps,
            or is neither pending nor resolved.
    """
    if not chain:
        raise InvalidChainError("chain is empty")
    if any(s.status is StepStatus.REJECTED for s in chain):
        return RequestStatus.rejected()
    pending = [s for s in chain if s.status is StepStatus.PENDING]
    if len(pending) > 1:
        raise InvalidChainError(
            f"levels {[s.level for s in pending]} are pending at once"
        )
    if pending:
        return RequestStatus.pending_level(pending[0].level, pending[0].role)
    if chain[-1].status is StepStatus.APPROVED:
        return RequestStatus.approved()
    raise InvalidChainError("no step is pending and the final step is not approved")


def validate_chain(
    chain: Sequence[ApprovalStep],
    *,
    requester: OrgNode | None = None,
    unique_approvers: bool = True,
) -> None:
    """Check the structural invariants of a chain.

    Levels must run 1..N without gaps and at most one step may be
    pending.  With ``unique_approvers`` no two steps may share an
    approver email, and when ``requester`` is given no step may be bound
    to the requester.

    Raises:
        InvalidChainError: on the first violated invariant.
    """
    if not chain:
        raise InvalidChainError("chain is empty")
    levels = [s.level for s in chain]
    if levels != list(range(1, len(chain) + 1)):
        raise InvalidChainError(f"levels {levels} are not contiguous from 1")
    pending = [s.level for s in chain if s.status is StepStatus.PENDING]
    if len(pending) > 1:
        raise InvalidChainError(f"levels {pending} are pending at once")
    if unique_approvers:
        seen: set[str] = set()
        for step in chain:
            if step.approver.key in seen:
                raise InvalidChainError(
                    f"approver {step.approver.email} appears more than once"
                )
            seen.add(step.approver.key)
    if requester is not None:
        for step in chain:
            if step.approver.is_same_contact(requester):
                raise InvalidChainError(
                    f"requester {requester.email} cannot approve level {step.level}"
                )
