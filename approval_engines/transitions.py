"""
approval_engines.transitions -- Pure approval workflow state machine.

Responsibility:
    Compute the next request snapshot, its audit entry, and the
    notifications to send for each workflow transition: open, decide,
    escalate, override.  Also derives progress summaries.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types and exceptions.
    Persistence, locking and dispatch live in
    ``approval_kernel.services.workflow_engine``.

Invariants enforced:
    - Exactly one step is PENDING while the request is open; none once
      it is terminal.
    - Levels stay contiguous 1..N; escalation and override append at N+1.
    - Terminal requests (approved/rejected) admit no transition.
    - Every transition yields exactly one audit entry.
    - Purity: ``now`` is always passed in; nothing reads the clock.

Failure modes:
    - InvalidTransitionError: terminal request, actor not bound to the
      pending step, the requester deciding or overriding their own
      request, missing reason, or escalation with nowhere to go.
    - ForbiddenError: override by a role outside ``override_roles``.
    - ApproverNotFoundError: escalation needs a terminal authority that
      the directory does not define.
    - InvalidChainError: a chain handed to ``open_request`` is malformed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any
from uuid import UUID

from approval_kernel.domain.approval import (
    Actor,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStep,
    AuditAction,
    AuditEntry,
    EscalationTarget,
    StepStatus,
    validate_chain,
)
from approval_kernel.domain.notifications import WorkflowEvent, WorkflowEventType
from approval_kernel.domain.org import OrgNode
from approval_kernel.exceptions import (
    ApproverNotFoundError,
    ForbiddenError,
    InvalidChainError,
    InvalidTransitionError,
)

DEFAULT_OVERRIDE_ROLE = "Emergency Override"
DESIGNATED_AUTHORITY_ROLE = "Designated Authority"


def _roles(values: Iterable[str]) -> frozenset[str]:
    return frozenset(v.strip().lower() for v in values if v and v.strip())


@dataclass(frozen=True)
class WorkflowPolicy:
    """Which actor roles may take exceptional actions.

    Roles are compared case-insensitively.
    """

    override_roles: frozenset[str] = frozenset({"hr", "compliance", "admin"})
    on_behalf_roles: frozenset[str] = frozenset({"hr", "admin"})
    escalation_roles: frozenset[str] = frozenset({"hr", "admin", "compliance"})
    override_role_label: str = DEFAULT_OVERRIDE_ROLE

    def __post_init__(self) -> None:
        object.__setattr__(self, "override_roles", _roles(self.override_roles))
        object.__setattr__(self, "on_behalf_roles", _roles(self.on_behalf_roles))
        object.__setattr__(self, "escalation_roles", _roles(self.escalation_roles))

    def may_override(self, role: str) -> bool:
        return (role or "").strip().lower() in self.override_roles

    def may_act_on_behalf(self, role: str) -> bool:
        return (role or "").strip().lower() in self.on_behalf_roles

    def may_escalate(self, role: str) -> bool:
        return (role or "").strip().lower() in self.escalation_roles


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a transition: new snapshot, its audit entry, notifications."""

    request: ApprovalRequest
    entry: AuditEntry
    events: tuple[WorkflowEvent, ...] = ()


@dataclass(frozen=True)
class WorkflowProgress:
    """Counts over the chain, for dashboards and list views."""

    status: str
    total: int
    approved: int
    pending: int
    waiting: int
    bypassed: int
    escalated: int
    rejected: int
    percent_complete: int
    current_level: int | None


# =========================================================================
# Helpers
# =========================================================================


def _step_ref(step: ApprovalStep) -> dict[str, Any]:
    return {"level": step.level, "email": step.approver.email, "role": step.role}


def _replace_steps(
    chain: tuple[ApprovalStep, ...], *updated: ApprovalStep,
) -> tuple[ApprovalStep, ...]:
    by_level = {s.level: s for s in updated}
    return tuple(by_level.get(s.level, s) for s in chain)


def _require_open(request: ApprovalRequest) -> ApprovalStep:
    status = request.status
    if status.is_terminal:
        raise InvalidTransitionError(
            str(request.request_id), f"request is already {status.label}",
        )
    pending = request.pending_step()
    if pending is None:
        raise InvalidTransitionError(str(request.request_id), "no step is pending")
    return pending


def _event(
    request: ApprovalRequest,
    event_type: WorkflowEventType,
    recipient: str,
    actor: str | None,
    now: datetime,
    **details: Any,
) -> WorkflowEvent:
    return WorkflowEvent(
        event_type=event_type,
        request_id=request.request_id,
        category=request.category,
        recipient=recipient,
        status=request.status.label,
        actor=actor,
        occurred_at=now,
        details=details,
    )


def _finish(
    before: ApprovalRequest,
    chain: tuple[ApprovalStep, ...],
    *,
    action: AuditAction,
    actor: str,
    now: datetime,
    reason: str | None,
    details: dict[str, Any],
) -> tuple[ApprovalRequest, AuditEntry]:
    validate_chain(chain, unique_approvers=False)
    after = replace(before, chain=chain)
    entry = AuditEntry(
        request_id=before.request_id,
        action=action,
        performed_by=actor,
        timestamp=now,
        reason=reason,
        previous_status=before.status.label,
        new_status=after.status.label,
        details=details,
    )
    return replace(after, audit_log=before.audit_log + (entry,)), entry


# =========================================================================
# Transitions
# =========================================================================


def open_request(
    request_id: UUID,
    requester: OrgNode,
    category: str,
    chain: tuple[ApprovalStep, ...],
    now: datetime,
) -> TransitionOutcome:
    """Create a request with level 1 pending and the rest waiting.

    Raises:
        InvalidChainError: empty chain, gapped levels, duplicate
            approvers, a step bound to the requester, or a step that is
            not WAITING.
    """
    chain = tuple(chain)
    validate_chain(chain, requester=requester)
    started = [s.level for s in chain if s.status is not StepStatus.WAITING]
    if started:
        raise InvalidChainError(f"levels {started} are not waiting")

    first = replace(chain[0], status=StepStatus.PENDING, assigned_at=now)
    rest = tuple(replace(s, assigned_at=None) for s in chain[1:])
    request = ApprovalRequest(
        request_id=request_id,
        requester=requester,
        category=category,
        chain=(first,) + rest,
        created_at=now,
    )
    entry = AuditEntry(
        request_id=request_id,
        action=AuditAction.CREATED,
        performed_by=requester.email or requester.name,
        timestamp=now,
        previous_status=None,
        new_status=request.status.label,
        details={"category": category, "chain": [_step_ref(s) for s in request.chain]},
    )
    request = replace(request, audit_log=(entry,))
    events = (
        _event(
            request, WorkflowEventType.APPROVAL_REQUIRED, first.approver.email,
            requester.email, now, level=first.level, role=first.role,
        ),
    )
    return TransitionOutcome(request, entry, events)


def apply_decision(
    request: ApprovalRequest,
    actor: Actor,
    decision: ApprovalDecision,
    comments: str | None,
    now: datetime,
    policy: WorkflowPolicy,
) -> TransitionOutcome:
    """Approve or reject the pending step.

    The actor must be the pending step's approver, or hold a role in
    ``policy.on_behalf_roles``; the latter is recorded as ``on_behalf_of``.
    The requester never acts on behalf of an approver of their own request.
    Rejection at any level is final.
    """
    pending = _require_open(request)
    request_id = str(request.request_id)

    on_behalf_of = None
    if not pending.is_bound_to(actor.email):
        if actor.key == request.requester.key:
            raise InvalidTransitionError(
                request_id, "the requester may not decide their own request",
            )
        if policy.may_act_on_behalf(actor.role):
            on_behalf_of = pending.approver.email
        else:
            own = [s for s in request.chain if s.is_bound_to(actor.email)]
            if own:
                reason = f"level {own[0].level} is {own[0].status.value}, not pending"
            else:
                reason = (
                    f"{actor.email} is not the approver of pending level {pending.level}"
                )
            raise InvalidTransitionError(request_id, reason)

    details: dict[str, Any] = {**_step_ref(pending), "decision": decision.value}
    if on_behalf_of is not None:
        details["on_behalf_of"] = on_behalf_of

    next_step = None
    if decision is ApprovalDecision.APPROVE:
        decided = replace(
            pending, status=StepStatus.APPROVED, decided_by=actor.email,
            decided_at=now, comments=comments,
        )
        updated = [decided]
        if pending.level < len(request.chain):
            next_step = replace(
                request.step_at(pending.level + 1),
                status=StepStatus.PENDING, assigned_at=now,
            )
            updated.append(next_step)
        action = AuditAction.APPROVED
    else:
        decided = replace(
            pending, status=StepStatus.REJECTED, decided_by=actor.email,
            decided_at=now, comments=comments,
        )
        updated = [decided]
        action = AuditAction.REJECTED

    after, entry = _finish(
        request, _replace_steps(request.chain, *updated),
        action=action, actor=actor.email, now=now, reason=comments, details=details,
    )

    requester = request.requester.email
    events: list[WorkflowEvent] = []
    if next_step is not None:
        events.append(_event(
            after, WorkflowEventType.APPROVAL_REQUIRED, next_step.approver.email,
            actor.email, now, level=next_step.level, role=next_step.role,
        ))
        events.append(_event(
            after, WorkflowEventType.STEP_APPROVED, requester, actor.email, now,
            level=pending.level, role=pending.role,
        ))
    elif action is AuditAction.APPROVED:
        events.append(_event(
            after, WorkflowEventType.REQUEST_APPROVED, requester, actor.email, now,
        ))
    else:
        events.append(_event(
            after, WorkflowEventType.REQUEST_REJECTED, requester, actor.email, now,
            level=pending.level, comments=comments,
        ))
    return TransitionOutcome(after, entry, tuple(e for e in events if e.recipient))


def apply_escalation(
    request: ApprovalRequest,
    actor: Actor,
    reason: str,
    target: EscalationTarget,
    authority: OrgNode | None,
    now: datetime,
    policy: WorkflowPolicy,
) -> TransitionOutcome:
    """Move a stuck pending step to a higher authority.

    The pending step becomes ESCALATED.  NEXT_LEVEL activates the next
    level, or a new final step bound to ``authority`` when there is none.
    DESIGNATED_AUTHORITY activates the existing step bound to
    ``authority`` (or a new final one); waiting steps jumped over are
    BYPASSED.  The receiving step is tagged ``is_escalated``.
    """
    pending = _require_open(request)
    request_id = str(request.request_id)

    if not (pending.is_bound_to(actor.email) or policy.may_escalate(actor.role)):
        raise InvalidTransitionError(
            request_id, f"{actor.email} may not escalate level {pending.level}",
        )
    if not reason or not reason.strip():
        raise InvalidTransitionError(request_id, "an escalation reason is required")

    chain = request.chain
    escalated = replace(
        pending, status=StepStatus.ESCALATED, escalated_by=actor.email,
        escalation_reason=reason,
    )

    def _check_authority() -> OrgNode:
        if authority is None:
            raise ApproverNotFoundError("terminal authority")
        if pending.is_bound_to(authority.email):
            raise InvalidTransitionError(
                request_id, "pending level is already the designated authority",
            )
        if authority.is_same_contact(request.requester):
            raise InvalidTransitionError(
                request_id, "the designated authority is the requester",
            )
        return authority

    def _synthesize(node: OrgNode) -> ApprovalStep:
        return ApprovalStep(
            level=len(chain) + 1,
            approver=node,
            role=DESIGNATED_AUTHORITY_ROLE,
            status=StepStatus.PENDING,
            assigned_at=now,
            is_escalated=True,
            escalated_from_level=pending.level,
        )

    bypassed: list[ApprovalStep] = []
    synthesized = False
    if target is EscalationTarget.NEXT_LEVEL and pending.level < len(chain):
        destination = replace(
            request.step_at(pending.level + 1), status=StepStatus.PENDING,
            assigned_at=now, is_escalated=True, escalated_from_level=pending.level,
        )
    elif target is EscalationTarget.NEXT_LEVEL:
        destination = _synthesize(_check_authority())
        synthesized = True
    else:
        node = _check_authority()
        reuse = next(
            (s for s in chain[pending.level:] if s.is_bound_to(node.email) and s.is_open),
            None,
        )
        if reuse is not None:
            destination = replace(
                reuse, status=StepStatus.PENDING, assigned_at=now,
                is_escalated=True, escalated_from_level=pending.level,
            )
            skipped = chain[pending.level:reuse.level - 1]
        else:
            destination = _synthesize(node)
            synthesized = True
            skipped = chain[pending.level:]
        bypassed = [
            replace(
                s, status=StepStatus.BYPASSED, bypassed_by=actor.email,
                bypass_reason=f"escalated past: {reason}",
            )
            for s in skipped if s.status is StepStatus.WAITING
        ]

    new_chain = _replace_steps(chain, escalated, *bypassed)
    if synthesized:
        new_chain = new_chain + (destination,)
    else:
        new_chain = _replace_steps(new_chain, destination)

    details: dict[str, Any] = {
        "target": target.value,
        "source_level": pending.level,
        "source_approver": pending.approver.email,
        "destination_level": destination.level,
        "destination_approver": destination.approver.email,
        "synthesized": synthesized,
    }
    if bypassed:
        details["bypassed"] = [_step_ref(s) for s in bypassed]

    after, entry = _finish(
        request, new_chain, action=AuditAction.ESCALATED, actor=actor.email,
        now=now, reason=reason, details=details,
    )

    events = [
        _event(
            after, WorkflowEventType.APPROVAL_REQUIRED, destination.approver.email,
            actor.email, now, level=destination.level, role=destination.role,
            escalated_from_level=pending.level, reason=reason,
        ),
        _event(
            after, WorkflowEventType.REQUEST_ESCALATED, request.requester.email,
            actor.email, now, source_level=pending.level,
            destination_level=destination.level, reason=reason,
        ),
        _event(
            after, WorkflowEventType.REQUEST_ESCALATED, pending.approver.email,
            actor.email, now, source_level=pending.level,
            destination_level=destination.level, reason=reason,
        ),
    ]
    return TransitionOutcome(after, entry, tuple(e for e in events if e.recipient))


def apply_override(
    request: ApprovalRequest,
    actor: Actor,
    reason: str,
    override_approver: OrgNode | None,
    now: datetime,
    policy: WorkflowPolicy,
) -> TransitionOutcome:
    """Emergency bypass: close every open step and approve the request.

    Every PENDING/WAITING step becomes BYPASSED with the actor and reason;
    a new final step attributed to the actor is APPROVED with
    ``is_override=True``.

    Args:
        override_approver: Directory entry for the actor, when there is
            one; otherwise a node is made from the actor itself.
    """
    request_id = str(request.request_id)
    if not policy.may_override(actor.role):
        raise ForbiddenError(request_id, actor.role)
    _require_open(request)
    if actor.key == request.requester.key:
        raise InvalidTransitionError(
            request_id, "the requester may not override their own request",
        )
    if not reason or not reason.strip():
        raise InvalidTransitionError(request_id, "an override reason is required")

    bypassed = [
        replace(s, status=StepStatus.BYPASSED, bypassed_by=actor.email, bypass_reason=reason)
        for s in request.chain if s.is_open
    ]
    approver = override_approver or OrgNode(
        name=actor.name or actor.email, email=actor.email, title=actor.role,
    )
    override_step = ApprovalStep(
        level=len(request.chain) + 1,
        approver=approver,
        role=policy.override_role_label,
        status=StepStatus.APPROVED,
        comments=reason,
        decided_by=actor.email,
        assigned_at=now,
        decided_at=now,
        is_override=True,
    )
    new_chain = _replace_steps(request.chain, *bypassed) + (override_step,)

    after, entry = _finish(
        request, new_chain, action=AuditAction.OVERRIDDEN, actor=actor.email,
        now=now, reason=reason,
        details={
            "actor_role": actor.role,
            "override_level": override_step.level,
            "bypassed": [
                {**_step_ref(s), "previous_status": prev.status.value}
                for s, prev in zip(bypassed, (request.step_at(b.level) for b in bypassed))
            ],
        },
    )

    events = [
        _event(
            after, WorkflowEventType.REQUEST_OVERRIDDEN, request.requester.email,
            actor.email, now, reason=reason,
        ),
    ]
    events.extend(
        _event(
            after, WorkflowEventType.STEP_BYPASSED, s.approver.email, actor.email,
            now, level=s.level, reason=reason,
        )
        for s in bypassed
    )
    return TransitionOutcome(after, entry, tuple(e for e in events if e.recipient))


def summarize_progress(request: ApprovalRequest) -> WorkflowProgress:
    """Progress counters over a request's chain."""
    counts = {status: 0 for status in StepStatus}
    for step in request.chain:
        counts[step.status] += 1
    total = len(request.chain)
    status = request.status
    return WorkflowProgress(
        status=status.label,
        total=total,
        approved=counts[StepStatus.APPROVED],
        pending=counts[StepStatus.PENDING],
        waiting=counts[StepStatus.WAITING],
        bypassed=counts[StepStatus.BYPASSED],
        escalated=counts[StepStatus.ESCALATED],
        rejected=counts[StepStatus.REJECTED],
        percent_complete=round(counts[StepStatus.APPROVED] * 100 / total) if total else 0,
        current_level=status.level,
    )
