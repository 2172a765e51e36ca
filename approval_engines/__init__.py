"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines: chain construction and workflow transitions.
    This is the import surface for ``approval_kernel.services``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain and approval_kernel/exceptions.
    MUST NOT import approval_kernel.services, models or db.

Invariants enforced:
    - Purity: engines never read the clock; ``now`` is passed in.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from approval_engines import ChainBuilder, ChainRecipe, RecipeStep
    from approval_engines import apply_decision, WorkflowPolicy
"""

from approval_engines.chain_builder import (
    DEFAULT_TERMINAL_ROLE,
    FALLBACK_RECIPE,
    SELECTORS,
    TERMINAL_SELECTOR,
    ChainBuilder,
    ChainPreview,
    ChainRecipe,
    RecipeStep,
    head_of,
    resolve_selector,
)
from approval_engines.transitions import (
    DEFAULT_OVERRIDE_ROLE,
    DESIGNATED_AUTHORITY_ROLE,
    TransitionOutcome,
    WorkflowPolicy,
    WorkflowProgress,
    apply_decision,
    apply_escalation,
    apply_override,
    open_request,
    summarize_progress,
)

__all__ = [
    "ChainBuilder",
    "ChainPreview",
    "ChainRecipe",
    "DEFAULT_OVERRIDE_ROLE",
    "DEFAULT_TERMINAL_ROLE",
    "DESIGNATED_AUTHORITY_ROLE",
    "FALLBACK_RECIPE",
    "RecipeStep",
    "SELECTORS",
    "TERMINAL_SELECTOR",
    "TransitionOutcome",
    "WorkflowPolicy",
    "WorkflowProgress",
    "apply_decision",
    "apply_escalation",
    "apply_override",
    "head_of",
    "open_request",
    "resolve_selector",
    "summarize_progress",
]
