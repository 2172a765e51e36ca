"""
Workflow configuration schema.

The human-authored, reviewable source artifact for the approval
workflow: who is in the organization, which approvers each request
category needs, and the workflow settings.  YAML files are parsed into
these types by the loader and turned into kernel objects by the bridges.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PersonDef:
    """A contact as declared in YAML."""

    name: str
    email: str
    title: str = ""
    reports_to: str | None = None


@dataclass(frozen=True)
class DepartmentDef:
    name: str
    head: PersonDef
    positions: tuple[PersonDef, ...] = ()


@dataclass(frozen=True)
class DirectoryDef:
    """The organization snapshot plus the departments with special roles."""

    departments: tuple[DepartmentDef, ...]
    terminal_department: str
    executive_department: str | None = None


# ---------------------------------------------------------------------------
# Recipes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecipeStepDef:
    selector: str
    role: str


@dataclass(frozen=True)
class RecipeDef:
    """Ordered approver selectors for one request category."""

    category: str
    steps: tuple[RecipeStepDef, ...]
    description: str = ""


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowSettings:
    """Tunables for the workflow engine and notification dispatch.

    Role sets hold lower-cased role names.
    """

    override_roles: frozenset[str] = frozenset({"hr", "compliance", "admin"})
    on_behalf_roles: frozenset[str] = frozenset({"hr", "admin"})
    escalation_roles: frozenset[str] = frozenset({"hr", "admin", "compliance"})
    terminal_role_label: str = "HR - Final Approval & Compliance"
    override_role_label: str = "Emergency Override"
    notification_timeout_seconds: float = 5.0
    notification_max_workers: int = 4
    hours_per_level: int = 24
    max_reporting_depth: int = 10


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfig:
    """A complete, validated workflow configuration set."""

    config_id: str
    version: int
    directory: DirectoryDef
    recipes: tuple[RecipeDef, ...]
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    checksum: str = ""
    source_path: str | None = None

    def recipe(self, category: str) -> RecipeDef | None:
        key = category.strip().lower()
        for recipe in self.recipes:
            if recipe.category.strip().lower() == key:
                return recipe
        return None
