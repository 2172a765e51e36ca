"""
approval_engines.chain_builder -- Approval chain construction.

Responsibility:
    Turn a requester and a request category into an ordered,
    deduplicated tuple of ``ApprovalStep`` using a category-specific
    recipe of role selectors resolved against the ``OrgDirectory``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types and exceptions.

Invariants enforced:
    - Levels are renumbered 1..N over the final filtered list.
    - No two steps share an approver email; first occurrence wins and
      later duplicates are dropped silently.
    - The requester never approves their own request.
    - The terminal authority is always the last step, unless the
      requester is that authority, in which case it is omitted.  The
      authority is reserved for the last position: if another selector
      resolves to it earlier, that earlier candidate is dropped.
    - Purity: no clock access, no I/O; safe to call concurrently.

Failure modes:
    - UnknownCategoryError if no recipe exists for the category.
    - ChainResolutionError if neither the recipe nor the fallback recipe
      yields a single approver.
    - ValueError for recipes naming unknown selectors or placing the
      terminal authority anywhere but last.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Optional

from approval_kernel.domain.approval import ApprovalStep, StepStatus, validate_chain
from approval_kernel.domain.org import OrgDirectory, OrgNode, normalize_email
from approval_kernel.exceptions import (
    ChainResolutionError,
    InvalidChainError,
    UnknownCategoryError,
)

Selector = Callable[[OrgNode, OrgDirectory], Optional[OrgNode]]

DEFAULT_TERMINAL_ROLE = "HR - Final Approval & Compliance"
TERMINAL_SELECTOR = "terminal_authority"


# =========================================================================
# Selectors
# =========================================================================


def select_supervisor(requester: OrgNode, directory: OrgDirectory) -> OrgNode | None:
    """Immediate supervisor.  Department heads have no supervisor level."""
    if directory.is_department_head(requester):
        return None
    return directory.supervisor_of(requester)


def select_skip_level_supervisor(
    requester: OrgNode, directory: OrgDirectory,
) -> OrgNode | None:
    """The supervisor's supervisor."""
    if directory.is_department_head(requester):
        return None
    line = directory.reporting_line(requester)
    return line[1] if len(line) > 1 else None


def select_department_head(
    requester: OrgNode, directory: OrgDirectory,
) -> OrgNode | None:
    return directory.department_head(requester.department)


def select_executive(requester: OrgNode, directory: OrgDirectory) -> OrgNode | None:
    return directory.executive()


def select_terminal_authority(
    requester: OrgNode, directory: OrgDirectory,
) -> OrgNode | None:
    return directory.terminal_authority()


def head_of(department: str) -> Selector:
    """Selector for the head of a fixed department (Finance, IT, ...)."""

    def _select(requester: OrgNode, directory: OrgDirectory) -> OrgNode | None:
        return directory.department_head(department)

    _select.__name__ = f"head_of:{department}"
    return _select


SELECTORS: dict[str, Selector] = {
    "supervisor": select_supervisor,
    "skip_level_supervisor": select_skip_level_supervisor,
    "department_head": select_department_head,
    "executive": select_executive,
    TERMINAL_SELECTOR: select_terminal_authority,
}


def resolve_selector(name: str) -> Selector:
    """Look up a selector by its recipe name.

    ``head_of:<Department>`` builds a fixed-department selector.

    Raises:
        ValueError: if the name is not a known selector.
    """
    if name.startswith("head_of:"):
        department = name.split(":", 1)[1].strip()
        if not department:
            raise ValueError("head_of selector needs a department name")
        return head_of(department)
    try:
        return SELECTORS[name]
    except KeyError:
        raise ValueError(
            f"Unknown selector {name!r}; expected one of "
            f"{sorted(SELECTORS)} or head_of:<Department>"
        ) from None


# =========================================================================
# Recipes
# =========================================================================


@dataclass(frozen=True)
class RecipeStep:
    selector: str
    role: str


@dataclass(frozen=True)
class ChainRecipe:
    """Ordered role selectors for one request category.

    The terminal authority is appended automatically; a recipe only lists
    ``terminal_authority`` to give it a category-specific role label, and
    then only as its last step.
    """

    category: str
    steps: tuple[RecipeStep, ...]
    description: str = ""

    def __post_init__(self) -> None:
        for index, step in enumerate(self.steps):
            resolve_selector(step.selector)
            if step.selector == TERMINAL_SELECTOR and index != len(self.steps) - 1:
                raise ValueError(
                    f"Recipe {self.category!r}: {TERMINAL_SELECTOR} must be the last step"
                )

    @property
    def terminal_role(self) -> str | None:
        if self.steps and self.steps[-1].selector == TERMINAL_SELECTOR:
            return self.steps[-1].role
        return None

    def selector_steps(self) -> tuple[RecipeStep, ...]:
        return tuple(s for s in self.steps if s.selector != TERMINAL_SELECTOR)


FALLBACK_RECIPE = ChainRecipe(
    category="fallback",
    steps=(
        RecipeStep("department_head", "Departmental Head"),
        RecipeStep("executive", "Head of Business"),
    ),
    description="Used when the requester is not in the directory or the category recipe resolves nobody",
)


@dataclass(frozen=True)
class ChainPreview:
    """A chain as it would be built, with a rough completion estimate."""

    category: str
    requester: str
    steps: tuple[ApprovalStep, ...]
    used_fallback: bool
    estimated_hours: int
    estimated_business_days: int

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def display_text(self) -> str:
        days = self.estimated_business_days
        return f"{days}-{days + 2} business days"


# =========================================================================
# Builder
# =========================================================================


def _fold_candidates(
    candidates: Iterable[tuple[OrgNode | None, str]],
    excluded: frozenset[str],
) -> tuple[tuple[OrgNode, str], ...]:
    """Keep the first occurrence of each resolvable candidate.

    ``excluded`` holds keys that may not appear (the requester, the
    reserved terminal authority).  The seen set is threaded through the
    loop and never escapes it.
    """
    accepted: tuple[tuple[OrgNode, str], ...] = ()
    seen = excluded
    for node, role in candidates:
        if node is None or not node.key or node.key in seen:
            continue
        accepted = accepted + ((node, role),)
        seen = seen | {node.key}
    return accepted


class ChainBuilder:
    """Builds approval chains from the organization directory.

    Contract:
        ``build()`` is a pure read over the immutable directory snapshot;
        it never mutates builder or directory state.

    Guarantees:
        - The returned tuple satisfies level contiguity, approver
          uniqueness, no self-approval, and terminal-last.
        - All steps are WAITING; ``WorkflowEngine.start`` activates level 1.
    """

    def __init__(
        self,
        directory: OrgDirectory,
        recipes: Iterable[ChainRecipe] | Mapping[str, ChainRecipe],
        *,
        terminal_role: str = DEFAULT_TERMINAL_ROLE,
        hours_per_level: int = 24,
    ) -> None:
        if isinstance(recipes, Mapping):
            recipes = recipes.values()
        self._directory = directory
        self._recipes = {r.category.strip().lower(): r for r in recipes}
        self._terminal_role = terminal_role
        self._hours_per_level = hours_per_level

    @property
    def directory(self) -> OrgDirectory:
        return self._directory

    def categories(self) -> tuple[str, ...]:
        return tuple(sorted(self._recipes))

    def recipe_for(self, category: str) -> ChainRecipe:
        recipe = self._recipes.get((category or "").strip().lower())
        if recipe is None:
            raise UnknownCategoryError(category, self.categories())
        return recipe

    def build(
        self,
        requester_identity: str,
        category: str,
        department: str | None = None,
    ) -> tuple[ApprovalStep, ...]:
        """Resolve the approval chain for a requester and category.

        Args:
            requester_identity: Email or full name of the requester.
            category: Request category (``leave``, ``invoice``, ...).
            department: Department hint, used only by the fallback recipe
                when the requester is not in the directory.

        Returns:
            Steps numbered 1..N, all WAITING.

        Raises:
            UnknownCategoryError: no recipe for ``category``.
            ChainResolutionError: no approver could be resolved.
        """
        chain, _ = self._resolve(requester_identity, category, department)
        return chain

    def preview(
        self,
        requester_identity: str,
        category: str,
        department: str | None = None,
    ) -> ChainPreview:
        """Build the chain and estimate how long it takes to clear."""
        chain, used_fallback = self._resolve(requester_identity, category, department)
        hours = len(chain) * self._hours_per_level
        return ChainPreview(
            category=category,
            requester=requester_identity,
            steps=chain,
            used_fallback=used_fallback,
            estimated_hours=hours,
            estimated_business_days=math.ceil(hours / 8),
        )

    def _resolve(
        self,
        requester_identity: str,
        category: str,
        department: str | None,
    ) -> tuple[tuple[ApprovalStep, ...], bool]:
        recipe = self.recipe_for(category)
        requester = self._directory.lookup(requester_identity)
        used_fallback = requester is None

        if requester is None:
            # Unknown requester: a bare node carrying the department hint
            # lets the fallback selectors run like any other recipe.
            requester = OrgNode(
                name=requester_identity,
                email=requester_identity if "@" in (requester_identity or "") else "",
                department=department,
            )
            steps = FALLBACK_RECIPE.selector_steps()
        else:
            steps = recipe.selector_steps()

        requester_key = requester.key or normalize_email(requester_identity)
        authority = self._directory.terminal_authority()
        excluded = {requester_key}
        if authority is not None:
            excluded.add(authority.key)

        excluded_keys = frozenset(k for k in excluded if k)
        accepted = self._select(steps, requester, excluded_keys)
        if not accepted and not used_fallback:
            # The category recipe found nobody besides the requester.
            accepted = self._select(
                FALLBACK_RECIPE.selector_steps(), requester, excluded_keys,
            )
            used_fallback = bool(accepted)

        if authority is not None and authority.key != requester_key:
            accepted = accepted + ((authority, recipe.terminal_role or self._terminal_role),)

        if not accepted:
            raise ChainResolutionError(requester_identity, category)

        chain = tuple(
            ApprovalStep(level=level, approver=node, role=role, status=StepStatus.WAITING)
            for level, (node, role) in enumerate(accepted, start=1)
        )
        self._check(chain, requester, authority)
        return chain, used_fallback

    def _select(
        self,
        steps: Iterable[RecipeStep],
        requester: OrgNode,
        excluded: frozenset[str],
    ) -> tuple[tuple[OrgNode, str], ...]:
        candidates = (
            (resolve_selector(s.selector)(requester, self._directory), s.role)
            for s in steps
        )
        return _fold_candidates(candidates, excluded)

    @staticmethod
    def _check(
        chain: tuple[ApprovalStep, ...],
        requester: OrgNode,
        authority: OrgNode | None,
    ) -> None:
        validate_chain(chain, requester=requester if requester.key else None)
        if (
            authority is not None
            and not authority.is_same_contact(requester)
            and not chain[-1].approver.is_same_contact(authority)
        ):
            raise InvalidChainError("terminal authority is not the last step")
