"""
approval_kernel.services.workflow_engine -- Approval workflow orchestration.

Responsibility:
    Drive approval requests through their lifecycle: start, decide,
    escalate, override.  Delegates every state change to the pure
    transition engine (``approval_engines.transitions``) and owns the
    surrounding I/O: locking, persistence, audit, notification.

Architecture position:
    Kernel > Services -- imperative shell.  May import from domain/,
    models/, db/, approval_engines.

Invariants enforced:
    - Serialization: every state-changing call holds the request's lock
      from load to commit.  Different requests proceed in parallel.
    - Optimistic concurrency: the save checks the version read at load;
      a stale writer gets ConcurrentModificationError and nothing is
      written.
    - One audit entry per successful transition, committed in the same
      transaction as the state change.
    - Notifications go out only after commit and outside the lock; a
      failed delivery never alters state.

Failure modes:
    - RequestNotFoundError / RequesterNotFoundError: unknown ids.
    - InvalidTransitionError: terminal request, wrong approver, missing
      reason.  Logged at INFO as a rejection, not a fault.
    - ForbiddenError: override without a privileged role.
    - ConcurrentModificationError: lost the version race; see
      ``retry_on_conflict``.

Audit relevance:
    The audit trail written here is the authoritative record of who did
    what to every request, and in which order.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from approval_engines.chain_builder import ChainBuilder, ChainPreview
from approval_engines.transitions import (
    TransitionOutcome,
    WorkflowPolicy,
    WorkflowProgress,
    apply_decision,
    apply_escalation,
    apply_override,
    open_request,
    summarize_progress,
)
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import (
    Actor,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStep,
    AuditEntry,
    EscalationTarget,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.org import OrgDirectory, OrgNode
from approval_kernel.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    RequesterNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.locks import RequestLockRegistry
from approval_kernel.services.notifier import LoggingNotifier, NotificationDispatcher
from approval_kernel.services.request_store import RequestStore

logger = get_logger("services.workflow_engine")


def _as_actor(actor: Actor | str) -> Actor:
    if isinstance(actor, Actor):
        return actor
    return Actor(email=actor)


class WorkflowEngine:
    """Per-request approval state machine with persistence and audit.

    Contract:
        Each call opens its own session from ``session_factory`` and
        commits before returning, so one engine instance can be shared by
        any number of threads.

    Guarantees:
        - Returned ``ApprovalRequest`` snapshots reflect committed state
          and carry the full audit history.
        - ``decide``/``escalate``/``override`` on one request never
          interleave.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        builder: ChainBuilder,
        *,
        policy: WorkflowPolicy | None = None,
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
        locks: RequestLockRegistry | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> None:
        self._session_factory = session_factory
        self._builder = builder
        self._policy = policy or WorkflowPolicy()
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher or NotificationDispatcher([LoggingNotifier()])
        self._locks = locks or RequestLockRegistry()
        self._id_factory = id_factory

    @property
    def directory(self) -> OrgDirectory:
        return self._builder.directory

    @property
    def builder(self) -> ChainBuilder:
        return self._builder

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def policy(self) -> WorkflowPolicy:
        return self._policy

    @property
    def locks(self) -> RequestLockRegistry:
        return self._locks

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def resolve_requester(self, identity: str) -> OrgNode:
        """Directory contact for ``identity``.

        An email address that is not in the directory is accepted as an
        external requester so it can still be notified.

        Raises:
            RequesterNotFoundError: a name (not an email) that does not
                resolve to exactly one contact.
        """
        node = self.directory.lookup(identity)
        if node is not None:
            return node
        if identity and "@" in identity:
            email = identity.strip()
            return OrgNode(name=email, email=email)
        raise RequesterNotFoundError(identity)

    def start(
        self,
        requester_identity: str,
        chain: tuple[ApprovalStep, ...],
        category: str,
    ) -> ApprovalRequest:
        """Create a request over ``chain`` with level 1 pending.

        Raises:
            RequesterNotFoundError: the requester cannot be resolved.
            InvalidChainError: the chain breaks a structural invariant.
        """
        requester = self.resolve_requester(requester_identity)
        request_id = self._id_factory()
        now = self._clock.now()

        with LogContext.bind(
            request_id=str(request_id), actor=requester.email, category=category,
        ):
            outcome = open_request(request_id, requester, category, tuple(chain), now)
            with self._locks.hold(request_id):
                with session_scope(self._session_factory) as session:
                    stored = RequestStore(session).add(outcome.request)
                    entry = AuditTrail(session).append(request_id, outcome.entry)

            request = replace(stored, audit_log=(entry,))
            logger.info(
                "approval_request_started",
                extra={
                    "requester": requester.email,
                    "levels": len(request.chain),
                    "first_approver": request.chain[0].approver.email,
                    "status": request.status.label,
                },
            )
        self._dispatcher.dispatch(outcome.events)
        return request

    def submit(
        self,
        requester_identity: str,
        category: str,
        department: str | None = None,
    ) -> ApprovalRequest:
        """Build the chain for ``category`` and start the request."""
        self.resolve_requester(requester_identity)
        chain = self._builder.build(requester_identity, category, department)
        logger.info(
            "chain_built",
            extra={
                "requester": requester_identity,
                "category": category,
                "approvers": [s.approver.email for s in chain],
            },
        )
        return self.start(requester_identity, chain, category)

    def preview(
        self,
        requester_identity: str,
        category: str,
        department: str | None = None,
    ) -> ChainPreview:
        return self._builder.preview(requester_identity, category, department)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def decide(
        self,
        request_id: UUID,
        actor: Actor | str,
        decision: ApprovalDecision | str,
        comments: str | None = None,
    ) -> ApprovalRequest:
        """Approve or reject the pending step of a request.

        Raises:
            RequestNotFoundError: no such request.
            InvalidTransitionError: terminal request, or the actor is not
                the pending approver and may not act on their behalf.
        """
        actor = _as_actor(actor)
        decision = ApprovalDecision(decision)

        request = self._transition(
            request_id,
            actor,
            lambda current, now: apply_decision(
                current, actor, decision, comments, now, self._policy,
            ),
        )
        logger.info(
            "approval_step_decided",
            extra={
                "request_id": str(request_id),
                "decision": decision.value,
                "decided_by": actor.email,
                "status": request.status.label,
            },
        )
        return request

    def escalate(
        self,
        request_id: UUID,
        actor: Actor | str,
        reason: str,
        target: EscalationTarget | str = EscalationTarget.NEXT_LEVEL,
    ) -> ApprovalRequest:
        """Move the pending step to the next level or the designated authority.

        Raises:
            RequestNotFoundError: no such request.
            InvalidTransitionError: nothing pending, actor not entitled,
                empty reason, or the authority is the current approver or
                the requester.
            ApproverNotFoundError: no terminal authority in the directory.
        """
        actor = _as_actor(actor)
        target = EscalationTarget(target)
        authority = self.directory.terminal_authority()

        request = self._transition(
            request_id,
            actor,
            lambda current, now: apply_escalation(
                current, actor, reason, target, authority, now, self._policy,
            ),
        )
        entry = request.audit_log[-1]
        logger.info(
            "approval_request_escalated",
            extra={
                "request_id": str(request_id),
                "target": target.value,
                "source_level": entry.details.get("source_level"),
                "destination_level": entry.details.get("destination_level"),
                "destination_approver": entry.details.get("destination_approver"),
            },
        )
        return request

    def override(
        self,
        request_id: UUID,
        actor: Actor | str,
        reason: str,
    ) -> ApprovalRequest:
        """Emergency bypass of every open step; the request becomes approved.

        Raises:
            RequestNotFoundError: no such request.
            ForbiddenError: the actor's role may not override.
            InvalidTransitionError: the request is already terminal.
        """
        actor = _as_actor(actor)
        override_node = self.directory.lookup(actor.email)

        request = self._transition(
            request_id,
            actor,
            lambda current, now: apply_override(
                current, actor, reason, override_node, now, self._policy,
            ),
        )
        entry = request.audit_log[-1]
        logger.warning(
            "approval_request_overridden",
            extra={
                "request_id": str(request_id),
                "overridden_by": actor.email,
                "actor_role": actor.role,
                "bypassed": [b["email"] for b in entry.details.get("bypassed", [])],
            },
        )
        return request

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        """Committed snapshot of a request, with its audit history."""
        with session_scope(self._session_factory) as session:
            return RequestStore(session).load(request_id)

    def history(self, request_id: UUID) -> list[AuditEntry]:
        with session_scope(self._session_factory) as session:
            RequestStore(session).load(request_id, with_history=False)
            return AuditTrail(session).history(request_id)

    def progress(self, request_id: UUID) -> WorkflowProgress:
        return summarize_progress(self.get_request(request_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        request_id: UUID,
        actor: Actor,
        compute: Callable[[ApprovalRequest, datetime], TransitionOutcome],
    ) -> ApprovalRequest:
        with LogContext.bind(request_id=str(request_id), actor=actor.email):
            try:
                with self._locks.hold(request_id):
                    with session_scope(self._session_factory) as session:
                        store = RequestStore(session)
                        current = store.load(request_id)
                        now = self._clock.now()
                        outcome = compute(current, now)
                        saved = store.save(outcome.request, current.version, now)
                        entry = AuditTrail(session).append(request_id, outcome.entry)
            except (InvalidTransitionError, ForbiddenError) as exc:
                logger.info(
                    "approval_transition_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                raise

        self._dispatcher.dispatch(outcome.events)
        return replace(saved, audit_log=current.audit_log + (entry,))
