"""
Concurrency tests for the workflow engine.

Threads race to act on the same request through one shared engine, and
separate engines race through the database.  Whatever the interleaving:

- each step is decided exactly once
- the audit trail has one entry per applied transition, seq 1..N
- the stored version equals the number of applied transitions
- stale writers get ConcurrentModificationError and change nothing
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from approval_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
)
from approval_kernel.services.locks import RequestLockRegistry
from approval_kernel.services.retry import retry_on_conflict
from approval_kernel.services.workflow_engine import WorkflowEngine
from tests.sample_org import EMPLOYEE, emails

pytestmark = pytest.mark.concurrency

THREADS = 8


def race(fn, n=THREADS):
    """Run ``fn(i)`` on ``n`` threads released together; collect outcomes."""
    barrier = threading.Barrier(n)

    def _run(i):
        barrier.wait(timeout=10)
        try:
            return ("ok", fn(i))
        except Exception as exc:
            return ("error", exc)

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(_run, range(n)))


class TestSameEngine:

    def test_duplicate_approvals_apply_once(self, workflow_engine):
        request = workflow_engine.submit(EMPLOYEE.email, "leave")

        results = race(
            lambda i: workflow_engine.decide(
                request.request_id, "supervisor@corp.test", "approve",
            )
        )

        ok = [r for kind, r in results if kind == "ok"]
        errors = [r for kind, r in results if kind == "error"]
        assert len(ok) == 1
        assert len(errors) == THREADS - 1
        assert all(isinstance(e, InvalidTransitionError) for e in errors)

        stored = workflow_engine.get_request(request.request_id)
        assert stored.version == 1
        assert [e.seq for e in stored.audit_log] == [1, 2]
        assert stored.status.label == "pending_level_2"
        assert len(workflow_engine.locks) == 0

    def test_approve_and_reject_race(self, workflow_engine):
        request = workflow_engine.submit(EMPLOYEE.email, "leave")

        results = race(
            lambda i: workflow_engine.decide(
                request.request_id,
                "supervisor@corp.test",
                "approve" if i % 2 else "reject",
            )
        )

        assert sum(1 for kind, _ in results if kind == "ok") == 1
        stored = workflow_engine.get_request(request.request_id)
        assert len(stored.audit_log) == 2
        assert stored.status.label in ("pending_level_2", "rejected")

    def test_decide_escalate_override_race(self, workflow_engine, hr_actor):
        request = workflow_engine.submit(EMPLOYEE.email, "leave")
        rid = request.request_id
        actions = [
            lambda: workflow_engine.decide(rid, "supervisor@corp.test", "approve"),
            lambda: workflow_engine.escalate(rid, "supervisor@corp.test", "away"),
            lambda: workflow_engine.override(rid, hr_actor, "urgent"),
            lambda: workflow_engine.decide(rid, "supervisor@corp.test", "reject"),
        ]

        results = race(lambda i: actions[i](), n=len(actions))

        applied = sum(1 for kind, _ in results if kind == "ok")
        stored = workflow_engine.get_request(rid)
        assert stored.version == applied
        assert len(stored.audit_log) == applied + 1
        assert [e.seq for e in stored.audit_log] == list(range(1, applied + 2))
        for kind, value in results:
            if kind == "error":
                assert isinstance(value, InvalidTransitionError)

    def test_independent_requests_proceed_in_parallel(self, workflow_engine):
        requests = [workflow_engine.submit(EMPLOYEE.email, "leave") for _ in range(THREADS)]

        def approve_all(i):
            rid = requests[i].request_id
            for approver in emails(requests[i].chain):
                workflow_engine.decide(rid, approver, "approve")
            return rid

        results = race(approve_all)

        assert all(kind == "ok" for kind, _ in results)
        for r in requests:
            stored = workflow_engine.get_request(r.request_id)
            assert stored.status.label == "approved"
            assert stored.version == 4
        assert len(workflow_engine.locks) == 0


class TestSeparateEngines:
    """Two engines with their own lock registries share only the database."""

    @pytest.fixture
    def second_engine(self, session_factory, chain_builder, policy, deterministic_clock, dispatcher):
        return WorkflowEngine(
            session_factory,
            chain_builder,
            policy=policy,
            clock=deterministic_clock,
            dispatcher=dispatcher,
            locks=RequestLockRegistry(),
        )

    def test_version_check_keeps_one_winner(self, workflow_engine, second_engine):
        request = workflow_engine.submit(EMPLOYEE.email, "leave")
        engines = [workflow_engine, second_engine]

        results = race(
            lambda i: engines[i % 2].decide(
                request.request_id, "supervisor@corp.test", "approve",
            ),
            n=4,
        )

        ok = [r for kind, r in results if kind == "ok"]
        assert len(ok) == 1
        for kind, value in results:
            if kind == "error":
                assert isinstance(
                    value, (InvalidTransitionError, ConcurrentModificationError)
                )

        stored = workflow_engine.get_request(request.request_id)
        assert stored.version == 1
        assert len(stored.audit_log) == 2

    def test_retry_resolves_conflict_into_transition_error(
        self, workflow_engine, second_engine,
    ):
        request = workflow_engine.submit(EMPLOYEE.email, "leave")
        engines = [workflow_engine, second_engine]

        results = race(
            lambda i: retry_on_conflict(
                lambda: engines[i % 2].decide(
                    request.request_id, "supervisor@corp.test", "approve",
                ),
                attempts=THREADS,
            ),
            n=4,
        )

        assert sum(1 for kind, _ in results if kind == "ok") == 1
        for kind, value in results:
            if kind == "error":
                assert isinstance(value, InvalidTransitionError)
