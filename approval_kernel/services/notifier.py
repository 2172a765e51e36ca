"""
approval_kernel.services.notifier -- Best-effort notification fan-out.

Responsibility:
    Deliver ``WorkflowEvent`` values to every registered ``Notifier`` after
    a transition has been committed.  One task per (notifier, event) runs
    on a thread pool; a supervisor marks tasks that outlive the timeout.

Architecture position:
    Kernel > Services -- imperative shell.  Imports domain/ only.

Invariants enforced:
    - Fire-and-forget: ``dispatch()`` returns as soon as tasks are queued.
    - Nothing raised by a notifier reaches the caller.  Failures and
      timeouts are logged and counted, never retried.
    - A task counts once: delivered, failed, or timed out.  A task that
      finishes after its timeout stays counted as timed out.

Failure modes:
    - None surfaced.  A dispatcher that has been shut down, even in the
      middle of a dispatch, drops the tasks it could not schedule and
      counts them as failed.

Timeouts start counting at dispatch at the earliest, so a task still queued
behind busy workers can time out before it starts.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from approval_kernel.domain.notifications import Notifier, WorkflowEvent
from approval_kernel.logging_config import get_logger

logger = get_logger("services.notifier")


class LoggingNotifier:
    """Notifier that writes each event to the structured log."""

    def __init__(self, name: str = "notifications") -> None:
        self._logger = get_logger(f"notifier.{name}")

    def send(self, event: WorkflowEvent) -> None:
        self._logger.info(
            "workflow_notification",
            extra={
                "event_type": event.event_type.value,
                "request_id": str(event.request_id),
                "category": event.category,
                "recipient": event.recipient,
                "status": event.status,
                "event_actor": event.actor,
                "details": dict(event.details),
            },
        )


def _notifier_name(notifier: Notifier) -> str:
    return getattr(notifier, "name", None) or type(notifier).__name__


class NotificationDispatcher:
    """Thread-pool fan-out of workflow events to notifiers.

    Contract:
        ``dispatch(events)`` schedules ``notifier.send(event)`` for every
        registered notifier and every event and returns immediately.

    Guarantees:
        - ``stats`` counts submitted, delivered, failed and timed_out tasks.
        - ``wait_idle()`` blocks until every scheduled task has settled
          (finished or been marked timed out).
    """

    def __init__(
        self,
        notifiers: Sequence[Notifier] = (),
        *,
        timeout_seconds: float = 5.0,
        max_workers: int = 4,
    ) -> None:
        self._notifiers = list(notifiers)
        self._timeout = timeout_seconds
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notify",
        )
        self._supervisor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notify-watch",
        )
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._outstanding = 0
        self._timed_out: set[Future] = set()
        self._closed = False
        self._stats = {"submitted": 0, "delivered": 0, "failed": 0, "timed_out": 0}

    @property
    def notifiers(self) -> tuple[Notifier, ...]:
        return tuple(self._notifiers)

    def register(self, notifier: Notifier) -> None:
        with self._lock:
            self._notifiers.append(notifier)

    @property
    def stats(self) -> dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def dispatch(self, events: Iterable[WorkflowEvent]) -> int:
        """Schedule delivery of ``events``; returns the number of tasks."""
        with self._lock:
            notifiers = list(self._notifiers)
            closed = self._closed
        tasks = [(n, e) for e in events for n in notifiers if e.recipient]
        if not tasks:
            return 0
        if closed:
            self._count("failed", len(tasks))
            logger.warning("notification_dispatcher_closed", extra={"dropped": len(tasks)})
            return 0

        futures: list[Future] = []
        with self._lock:
            self._outstanding += len(tasks)
            self._stats["submitted"] += len(tasks)
        for notifier, event in tasks:
            try:
                future = self._pool.submit(notifier.send, event)
            except RuntimeError:
                # shutdown() ran after the closed check above
                break
            future.add_done_callback(
                lambda f, n=notifier, e=event: self._settle(f, n, e)
            )
            futures.append(future)

        dropped = len(tasks) - len(futures)
        if dropped:
            with self._lock:
                self._stats["failed"] += dropped
                self._release_locked(dropped)
            logger.warning("notification_dispatcher_closed", extra={"dropped": dropped})
        if futures:
            try:
                self._supervisor.submit(self._watch, futures, tasks[: len(futures)])
            except RuntimeError:
                logger.debug("notification_watch_skipped", extra={"tasks": len(futures)})
        return len(futures)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no task is outstanding.  False if ``timeout`` expired."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._supervisor.shutdown(wait=wait)
        self._pool.shutdown(wait=wait)

    def _watch(self, futures: list[Future], tasks: list[tuple[Notifier, WorkflowEvent]]) -> None:
        _, not_done = wait(futures, timeout=self._timeout)
        if not not_done:
            return
        for future, (notifier, event) in zip(futures, tasks):
            if future not in not_done:
                continue
            with self._lock:
                if future.done():
                    continue
                self._timed_out.add(future)
                self._stats["timed_out"] += 1
                self._release_locked()
            logger.warning(
                "notification_timed_out",
                extra=self._log_fields(notifier, event, timeout_seconds=self._timeout),
            )

    def _settle(self, future: Future, notifier: Notifier, event: WorkflowEvent) -> None:
        with self._lock:
            if future in self._timed_out:
                self._timed_out.discard(future)
                return
            error = future.exception()
            self._stats["failed" if error is not None else "delivered"] += 1
            self._release_locked()
        if error is not None:
            logger.warning(
                "notification_failed",
                exc_info=(type(error), error, error.__traceback__),
                extra=self._log_fields(notifier, event),
            )
        else:
            logger.debug("notification_sent", extra=self._log_fields(notifier, event))

    def _release_locked(self, count: int = 1) -> None:
        self._outstanding -= count
        if self._outstanding == 0:
            self._idle.notify_all()

    def _count(self, key: str, amount: int) -> None:
        with self._lock:
            self._stats[key] += amount

    @staticmethod
    def _log_fields(notifier: Notifier, event: WorkflowEvent, **extra: Any) -> dict[str, Any]:
        return {
            "notifier": _notifier_name(notifier),
            "event_type": event.event_type.value,
            "request_id": str(event.request_id),
            "recipient": event.recipient,
            **extra,
        }
