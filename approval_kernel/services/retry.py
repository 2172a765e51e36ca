"""
approval_kernel.services.retry -- Conflict retry policy for callers.

A transition that loses the optimistic version race raises
ConcurrentModificationError.  The engine re-reads state on every call,
so retrying the same call once is safe: it either applies against the
new state or fails with the transition error that state implies.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from approval_kernel.exceptions import ConcurrentModificationError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def retry_on_conflict(fn: Callable[[], T], attempts: int = 2) -> T:
    """Call ``fn``, retrying on ConcurrentModificationError.

    Args:
        fn: Zero-argument callable, usually a lambda over an engine call.
        attempts: Total number of tries, including the first.

    Raises:
        ConcurrentModificationError: every attempt conflicted.
        ValueError: ``attempts`` is less than 1.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ConcurrentModificationError as exc:
            if attempt == attempts:
                raise
            logger.info(
                "transition_conflict_retry",
                extra={
                    "request_id": exc.request_id,
                    "attempt": attempt,
                    "max_attempts": attempts,
                },
            )
    raise AssertionError("unreachable")
