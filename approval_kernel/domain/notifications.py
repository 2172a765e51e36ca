"""
Workflow notification types (``approval_kernel.domain.notifications``).

Events are produced after a transition has been committed and handed to
``Notifier`` implementations.  Delivery is best-effort; nothing a
notifier does can change request state.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID


class WorkflowEventType(str, Enum):
    APPROVAL_REQUIRED = "approval_required"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    STEP_APPROVED = "step_approved"
    REQUEST_ESCALATED = "request_escalated"
    REQUEST_OVERRIDDEN = "request_overridden"
    STEP_BYPASSED = "step_bypassed"


@dataclass(frozen=True)
class WorkflowEvent:
    """One notification addressed to one recipient."""

    event_type: WorkflowEventType
    request_id: UUID
    category: str
    recipient: str
    status: str
    actor: str | None = None
    occurred_at: datetime | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    """Delivery transport for workflow events (email, chat, webhook...)."""

    def send(self, event: WorkflowEvent) -> None:
        ...
