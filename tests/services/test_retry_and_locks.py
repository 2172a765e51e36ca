"""
Tests for retry_on_conflict and RequestLockRegistry.
"""

import threading
import time
from uuid import uuid4

import pytest

from approval_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
)
from approval_kernel.services.locks import RequestLockRegistry
from approval_kernel.services.retry import retry_on_conflict


class Flaky:
    """Conflicts ``failures`` times, then returns ``result``."""

    def __init__(self, failures, result="done"):
        self.failures = failures
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConcurrentModificationError("req-1", self.calls - 1)
        return self.result


class TestRetryOnConflict:

    def test_success_first_time(self):
        fn = Flaky(0)
        assert retry_on_conflict(fn) == "done"
        assert fn.calls == 1

    def test_one_conflict_then_success(self, captured_logs):
        fn = Flaky(1)
        assert retry_on_conflict(fn) == "done"
        assert fn.calls == 2

        (record,) = [r for r in captured_logs() if r["message"] == "transition_conflict_retry"]
        assert record["attempt"] == 1
        assert record["max_attempts"] == 2

    def test_gives_up_after_attempts(self):
        fn = Flaky(5)
        with pytest.raises(ConcurrentModificationError):
            retry_on_conflict(fn, attempts=3)
        assert fn.calls == 3

    def test_other_errors_not_retried(self):
        calls = []

        def fn():
            calls.append(1)
            raise InvalidTransitionError("req-1", "already approved")

        with pytest.raises(InvalidTransitionError):
            retry_on_conflict(fn, attempts=5)
        assert len(calls) == 1

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            retry_on_conflict(Flaky(0), attempts=0)


class TestRequestLockRegistry:

    def test_hold_marks_request_busy(self):
        locks = RequestLockRegistry()
        rid = uuid4()
        with locks.hold(rid):
            assert locks.is_held(rid)
            assert not locks.is_held(uuid4())
            assert len(locks) == 1
        assert not locks.is_held(rid)

    def test_entries_released_after_use(self):
        locks = RequestLockRegistry()
        for _ in range(50):
            with locks.hold(uuid4()):
                pass
        assert len(locks) == 0

    def test_hold_excludes_other_threads(self):
        locks = RequestLockRegistry()
        rid = uuid4()
        inside = []
        overlap = []

        def worker():
            with locks.hold(rid):
                inside.append(1)
                if len(inside) > 1:
                    overlap.append(1)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert overlap == []
        assert len(locks) == 0

    def test_hold_released_on_error(self):
        locks = RequestLockRegistry()
        rid = uuid4()
        with pytest.raises(RuntimeError):
            with locks.hold(rid):
                raise RuntimeError("boom")
        assert not locks.is_held(rid)
        assert len(locks) == 0
