"""
approval_kernel.services.audit_trail -- Append-only workflow history.

Responsibility:
    Persist one audit entry per workflow transition and read a request's
    history back in order.

Architecture position:
    Kernel > Services -- imperative shell.  May import from domain/,
    models/, db/.

Invariants enforced:
    - Append-only: there is no update or delete operation here, and the
      ORM listeners on AuditEntryModel reject both.
    - Ordering: ``seq`` is 1, 2, 3... per request; history is returned in
      seq order, which is also chronological.

Failure modes:
    - IntegrityError if two writers assign the same seq to one request.
      The workflow engine serializes writers per request, so this only
      happens when the audit trail is used outside it.

Non-goals:
    - Does NOT call ``session.commit()``; the caller owns the transaction.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import AuditEntry
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import AuditEntryModel

logger = get_logger("services.audit_trail")


class AuditTrail:
    """Append-only audit log backed by ``approval_audit_entries``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def append(self, request_id: UUID, entry: AuditEntry) -> AuditEntry:
        """Append ``entry`` and return it with its assigned ``seq``."""
        if entry.request_id != request_id:
            raise ValueError(
                f"audit entry for {entry.request_id} appended to {request_id}"
            )
        seq = self._next_seq(request_id)
        self._session.add(AuditEntryModel.from_dto(entry, seq))
        self._session.flush()

        logger.info(
            "audit_entry_appended",
            extra={
                "request_id": str(request_id),
                "seq": seq,
                "action": entry.action.value,
                "performed_by": entry.performed_by,
                "previous_status": entry.previous_status,
                "new_status": entry.new_status,
            },
        )
        return replace(entry, seq=seq)

    def history(self, request_id: UUID) -> list[AuditEntry]:
        """All entries for ``request_id``, oldest first."""
        rows = self._session.execute(
            select(AuditEntryModel)
            .where(AuditEntryModel.request_id == request_id)
            .order_by(AuditEntryModel.seq)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def _next_seq(self, request_id: UUID) -> int:
        current = self._session.execute(
            select(func.max(AuditEntryModel.seq))
            .where(AuditEntryModel.request_id == request_id)
        ).scalar()
        return (current or 0) + 1
