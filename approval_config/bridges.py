"""
Config -> Kernel Bridges.

Functions that turn a ``WorkflowConfig`` into kernel and engine objects.
They live in approval_config (the producer) because the kernel must
never import approval_config.

Usage:
    from approval_config import load_workflow_config
    from approval_config.bridges import build_workflow_engine

    config = load_workflow_config()
    engine = build_workflow_engine(config, get_session_factory())
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.orm import Session, sessionmaker

from approval_config.schema import PersonDef, WorkflowConfig
from approval_engines.chain_builder import ChainBuilder, ChainRecipe, RecipeStep
from approval_engines.transitions import WorkflowPolicy
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.notifications import Notifier
from approval_kernel.domain.org import Department, OrgDirectory, OrgNode
from approval_kernel.services.locks import RequestLockRegistry
from approval_kernel.services.notifier import LoggingNotifier, NotificationDispatcher
from approval_kernel.services.workflow_engine import WorkflowEngine


def _node(person: PersonDef, department: str) -> OrgNode:
    return OrgNode(
        name=person.name,
        email=person.email,
        title=person.title,
        department=department,
        reports_to_email=person.reports_to,
    )


def build_directory(config: WorkflowConfig) -> OrgDirectory:
    """Build the immutable ``OrgDirectory`` from the ``directory`` section.

    Raises:
        DirectoryIntegrityError: duplicate emails with different names, or
            a department declared twice.
    """
    directory_def = config.directory
    return OrgDirectory(
        (
            Department(
                name=d.name,
                head=_node(d.head, d.name),
                positions=tuple(_node(p, d.name) for p in d.positions),
            )
            for d in directory_def.departments
        ),
        terminal_department=directory_def.terminal_department,
        executive_department=directory_def.executive_department,
        max_reporting_depth=config.settings.max_reporting_depth,
    )


def build_recipes(config: WorkflowConfig) -> tuple[ChainRecipe, ...]:
    return tuple(
        ChainRecipe(
            category=r.category,
            steps=tuple(RecipeStep(s.selector, s.role) for s in r.steps),
            description=r.description,
        )
        for r in config.recipes
    )


def build_policy(config: WorkflowConfig) -> WorkflowPolicy:
    settings = config.settings
    return WorkflowPolicy(
        override_roles=settings.override_roles,
        on_behalf_roles=settings.on_behalf_roles,
        escalation_roles=settings.escalation_roles,
        override_role_label=settings.override_role_label,
    )


def build_chain_builder(
    config: WorkflowConfig,
    directory: OrgDirectory | None = None,
) -> ChainBuilder:
    return ChainBuilder(
        directory or build_directory(config),
        build_recipes(config),
        terminal_role=config.settings.terminal_role_label,
        hours_per_level=config.settings.hours_per_level,
    )


def build_dispatcher(
    config: WorkflowConfig,
    notifiers: Sequence[Notifier] | None = None,
) -> NotificationDispatcher:
    """Dispatcher with the configured timeout and pool size.

    Without explicit ``notifiers`` events go to a ``LoggingNotifier``.
    """
    return NotificationDispatcher(
        list(notifiers) if notifiers is not None else [LoggingNotifier()],
        timeout_seconds=config.settings.notification_timeout_seconds,
        max_workers=config.settings.notification_max_workers,
    )


def build_workflow_engine(
    config: WorkflowConfig,
    session_factory: sessionmaker[Session],
    *,
    clock: Clock | None = None,
    notifiers: Sequence[Notifier] | None = None,
    locks: RequestLockRegistry | None = None,
) -> WorkflowEngine:
    """Wire a ``WorkflowEngine`` entirely from configuration."""
    return WorkflowEngine(
        session_factory,
        build_chain_builder(config),
        policy=build_policy(config),
        clock=clock,
        dispatcher=build_dispatcher(config, notifiers),
        locks=locks,
    )
