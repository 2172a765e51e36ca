"""
approval_kernel.services.request_store -- Request persistence boundary.

Responsibility:
    Load and store ``ApprovalRequest`` snapshots: header row, chain steps,
    and (on load) the audit history.

Architecture position:
    Kernel > Services -- imperative shell.  May import from domain/,
    models/, db/.

Invariants enforced:
    - Optimistic concurrency: ``save()`` updates the header with
      ``WHERE version = :expected`` and bumps the version.  If no row
      matches, another writer got there first.
    - The stored status label is always recomputed from the chain.
    - Steps are upserted by (request_id, level); levels are never deleted.

Failure modes:
    - RequestNotFoundError: no header row for the id.
    - ConcurrentModificationError: version check failed on save.

Non-goals:
    - Does NOT call ``session.commit()``; the caller owns the transaction.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ApprovalRequest
from approval_kernel.exceptions import (
    ConcurrentModificationError,
    RequestNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import (
    ApprovalRequestModel,
    ApprovalStepModel,
)
from approval_kernel.services.audit_trail import AuditTrail

logger = get_logger("services.request_store")


class RequestStore:
    """Session-scoped repository for approval requests."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def exists(self, request_id: UUID) -> bool:
        return self._find(request_id) is not None

    def add(self, request: ApprovalRequest) -> ApprovalRequest:
        """Insert a new request and its chain at version 0."""
        request = replace(request, version=0)
        self._session.add(ApprovalRequestModel.from_dto(request))
        for step in request.chain:
            self._session.add(ApprovalStepModel.from_dto(request.request_id, step))
        self._session.flush()
        return request

    def load(self, request_id: UUID, *, with_history: bool = True) -> ApprovalRequest:
        """Load a request snapshot, including its audit history by default.

        Raises:
            RequestNotFoundError: no such request.
        """
        model = self._find(request_id)
        if model is None:
            raise RequestNotFoundError(str(request_id))
        audit_log = ()
        if with_history:
            audit_log = tuple(AuditTrail(self._session).history(request_id))
        return model.to_dto(audit_log=audit_log)

    def save(
        self,
        request: ApprovalRequest,
        expected_version: int,
        now: datetime,
    ) -> ApprovalRequest:
        """Persist the chain of ``request`` if nobody saved since it was read.

        Returns:
            The request carrying its new version.

        Raises:
            ConcurrentModificationError: the stored version is not
                ``expected_version``.
        """
        result = self._session.execute(
            update(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.request_id == request.request_id,
                ApprovalRequestModel.version == expected_version,
            )
            .values(
                version=expected_version + 1,
                status=request.status.label,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "request_version_conflict",
                extra={
                    "request_id": str(request.request_id),
                    "expected_version": expected_version,
                },
            )
            raise ConcurrentModificationError(str(request.request_id), expected_version)

        rows = {
            row.level: row
            for row in self._session.execute(
                select(ApprovalStepModel)
                .where(ApprovalStepModel.request_id == request.request_id)
            ).scalars()
        }
        for step in request.chain:
            row = rows.get(step.level)
            if row is None:
                self._session.add(ApprovalStepModel.from_dto(request.request_id, step))
            else:
                row.apply_dto(request.request_id, step)
        self._session.flush()

        return replace(request, version=expected_version + 1)

    def _find(self, request_id: UUID) -> ApprovalRequestModel | None:
        return self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.request_id == request_id)
        ).scalar_one_or_none()
