"""
Tests for RequestSelector -- approver queues and requester dashboards.
"""

from approval_kernel.selectors.request_selector import PendingApproval, RequestSelector
from tests.sample_org import ACCOUNTANT, EMPLOYEE


class TestPendingForApprover:

    def test_queue_follows_the_pending_step(self, workflow_engine, session):
        request = workflow_engine.submit(EMPLOYEE.email, "leave")
        selector = RequestSelector(session)

        (item,) = selector.pending_for_approver("supervisor@corp.test")
        assert isinstance(item, PendingApproval)
        assert item.request_id == request.request_id
        assert item.level == 1
        assert item.requester_email == EMPLOYEE.email
        assert selector.pending_for_approver("ops.head@corp.test") == []

        workflow_engine.decide(request.request_id, "supervisor@corp.test", "approve")
        session.expire_all()

        assert selector.pending_for_approver("supervisor@corp.test") == []
        (item,) = selector.pending_for_approver("OPS.HEAD@corp.test ")
        assert item.level == 2
        assert item.role == "Departmental Head"

    def test_oldest_assignment_first(self, workflow_engine, session, deterministic_clock):
        first = workflow_engine.submit(EMPLOYEE.email, "leave")
        deterministic_clock.advance(600)
        second = workflow_engine.submit(ACCOUNTANT.email, "leave")
        deterministic_clock.advance(600)
        workflow_engine.decide(second.request_id, "finance.head@corp.test", "approve")
        deterministic_clock.advance(600)
        workflow_engine.decide(first.request_id, "supervisor@corp.test", "approve")
        deterministic_clock.advance(600)
        workflow_engine.decide(first.request_id, "ops.head@corp.test", "approve")

        queue = RequestSelector(session).pending_for_approver("ceo@corp.test")
        assert [q.request_id for q in queue] == [second.request_id, first.request_id]

    def test_escalated_flag(self, workflow_engine, session):
        request = workflow_engine.submit(EMPLOYEE.email, "leave")
        workflow_engine.escalate(request.request_id, "supervisor@corp.test", "leave clash")

        (item,) = RequestSelector(session).pending_for_approver("ops.head@corp.test")
        assert item.is_escalated


class TestForRequester:

    def test_newest_first_without_history(self, workflow_engine, session, deterministic_clock):
        older = workflow_engine.submit(EMPLOYEE.email, "leave")
        deterministic_clock.advance(60)
        newer = workflow_engine.submit(EMPLOYEE.email, "invoice")
        workflow_engine.submit(ACCOUNTANT.email, "leave")

        requests = RequestSelector(session).for_requester(" Employee@Corp.Test")

        assert [r.request_id for r in requests] == [newer.request_id, older.request_id]
        assert all(r.audit_log == () for r in requests)
        assert requests[0].category == "invoice"
