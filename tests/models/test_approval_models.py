"""
Tests for the approval ORM models.

Covers:
- request/step/audit DTO round trips through the database
- UNIQUE(request_id, level) and UNIQUE(request_id, seq)
- audit entries reject UPDATE and DELETE at the ORM level
- timestamps come back timezone-aware UTC
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from approval_engines.transitions import open_request
from approval_kernel.domain.approval import AuditAction, AuditEntry
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.models.approval import (
    ApprovalRequestModel,
    ApprovalStepModel,
    AuditEntryModel,
)
from approval_kernel.services.request_store import RequestStore
from tests.sample_org import EMPLOYEE

T0 = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def stored_request(session, chain_builder):
    chain = chain_builder.build(EMPLOYEE.email, "leave")
    request = open_request(uuid4(), EMPLOYEE, "leave", chain, T0).request
    RequestStore(session).add(request)
    session.commit()
    return request


@pytest.fixture
def audit_row(session, stored_request):
    row = AuditEntryModel.from_dto(
        AuditEntry(
            request_id=stored_request.request_id,
            action=AuditAction.CREATED,
            performed_by=EMPLOYEE.email,
            timestamp=T0,
            new_status="pending_level_1",
            details={"category": "leave"},
        ),
        seq=1,
    )
    session.add(row)
    session.commit()
    return row


class TestRoundTrip:

    def test_request_round_trip(self, session, stored_request):
        session.expire_all()
        row = session.query(ApprovalRequestModel).filter_by(
            request_id=stored_request.request_id,
        ).one()

        dto = row.to_dto()
        assert dto.chain == stored_request.chain
        assert dto.requester == stored_request.requester
        assert [s.level for s in row.steps] == [1, 2, 3, 4]

    def test_timestamps_are_utc_aware(self, session, stored_request):
        session.expire_all()
        step = session.query(ApprovalStepModel).filter_by(
            request_id=stored_request.request_id, level=1,
        ).one()
        assert step.assigned_at.tzinfo is not None
        assert step.assigned_at == T0

    def test_non_utc_input_normalized(self, session, stored_request):
        plus_two = timezone(timedelta(hours=2))
        step = session.query(ApprovalStepModel).filter_by(
            request_id=stored_request.request_id, level=2,
        ).one()
        step.assigned_at = datetime(2024, 2, 1, 16, 0, tzinfo=plus_two)
        session.commit()
        session.expire_all()

        reloaded = session.query(ApprovalStepModel).filter_by(
            request_id=stored_request.request_id, level=2,
        ).one()
        assert reloaded.assigned_at == datetime(2024, 2, 1, 14, 0, tzinfo=timezone.utc)
        assert reloaded.assigned_at.utcoffset() == timedelta(0)


class TestConstraints:

    def test_duplicate_level_rejected(self, session, stored_request):
        session.add(
            ApprovalStepModel.from_dto(stored_request.request_id, stored_request.chain[0])
        )
        with pytest.raises(IntegrityError):
            session.flush()
        session.rollback()

    def test_duplicate_audit_seq_rejected(self, session, audit_row):
        session.add(AuditEntryModel(
            request_id=audit_row.request_id,
            seq=1,
            action="approved",
            performed_by="supervisor@corp.test",
            timestamp=T0,
            details={},
        ))
        with pytest.raises(IntegrityError):
            session.flush()
        session.rollback()


class TestAuditImmutability:

    def test_update_rejected(self, session, audit_row):
        audit_row.reason = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        session.rollback()

        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"
        assert exc_info.value.entity_type == "AuditEntry"
        assert exc_info.value.entity_id.endswith("#1")

    def test_delete_rejected(self, session, audit_row):
        session.delete(audit_row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        assert session.query(AuditEntryModel).count() == 1

    def test_audit_dto_round_trip(self, session, audit_row):
        session.expire_all()
        dto = session.query(AuditEntryModel).one().to_dto()
        assert dto.action is AuditAction.CREATED
        assert dto.seq == 1
        assert dto.details == {"category": "leave"}
        assert dto.timestamp == T0
