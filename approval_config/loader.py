"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a workflow configuration YAML file and parses it into typed
``approval_config.schema`` dataclass instances.  Runtime callers go
through ``approval_config.load_workflow_config()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the engines only
to validate selector names; the kernel never imports this package.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* Recipes name only known selectors, and ``terminal_authority`` appears
  only as a recipe's last step.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown selector, misplaced terminal step, empty recipe  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    DepartmentDef,
    DirectoryDef,
    PersonDef,
    RecipeDef,
    RecipeStepDef,
    WorkflowConfig,
    WorkflowSettings,
)
from approval_engines.chain_builder import TERMINAL_SELECTOR, resolve_selector


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _roles(values: Any, field_name: str) -> frozenset[str]:
    if values is None:
        raise KeyError(field_name)
    if isinstance(values, str):
        values = [values]
    return frozenset(str(v).strip().lower() for v in values if str(v).strip())


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


def parse_person(data: dict[str, Any]) -> PersonDef:
    return PersonDef(
        name=data["name"],
        email=data["email"],
        title=data.get("title", ""),
        reports_to=data.get("reports_to"),
    )


def parse_department(data: dict[str, Any]) -> DepartmentDef:
    """Parse a ``DepartmentDef``; ``head`` is required, ``positions`` optional."""
    return DepartmentDef(
        name=data["name"],
        head=parse_person(data["head"]),
        positions=tuple(parse_person(p) for p in data.get("positions", []) or []),
    )


def parse_directory(data: dict[str, Any]) -> DirectoryDef:
    """
    Parse the ``directory`` section.

    Raises:
        KeyError: ``departments`` or ``terminal_department`` missing.
        ValueError: the terminal or executive department is not declared.
    """
    departments = tuple(parse_department(d) for d in data["departments"])
    names = {d.name.strip().lower() for d in departments}
    terminal = data["terminal_department"]
    if terminal.strip().lower() not in names:
        raise ValueError(f"terminal_department {terminal!r} is not a declared department")
    executive = data.get("executive_department")
    if executive and executive.strip().lower() not in names:
        raise ValueError(f"executive_department {executive!r} is not a declared department")
    return DirectoryDef(
        departments=departments,
        terminal_department=terminal,
        executive_department=executive,
    )


# ---------------------------------------------------------------------------
# Recipes
# ---------------------------------------------------------------------------


def parse_recipe(category: str, data: dict[str, Any]) -> RecipeDef:
    """
    Parse and validate one recipe.

    Raises:
        ValueError: no steps, an unknown selector, or ``terminal_authority``
            anywhere but last.
    """
    steps = tuple(
        RecipeStepDef(selector=s["selector"], role=s["role"])
        for s in data.get("steps", []) or []
    )
    if not steps:
        raise ValueError(f"Recipe {category!r} has no steps")
    for index, step in enumerate(steps):
        resolve_selector(step.selector)
        if step.selector == TERMINAL_SELECTOR and index != len(steps) - 1:
            raise ValueError(
                f"Recipe {category!r}: {TERMINAL_SELECTOR} must be the last step"
            )
    return RecipeDef(
        category=category,
        steps=steps,
        description=data.get("description", ""),
    )


def parse_recipes(data: dict[str, Any]) -> tuple[RecipeDef, ...]:
    """Parse the ``recipes`` mapping (category -> recipe)."""
    seen: set[str] = set()
    recipes = []
    for category, body in data.items():
        key = str(category).strip().lower()
        if key in seen:
            raise ValueError(f"Recipe {category!r} is declared twice")
        seen.add(key)
        recipes.append(parse_recipe(str(category), body or {}))
    return tuple(recipes)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def parse_settings(data: dict[str, Any] | None) -> WorkflowSettings:
    """Parse the optional ``settings`` section; absent keys keep defaults."""
    defaults = WorkflowSettings()
    if not data:
        return defaults

    def _get(key: str) -> Any:
        return data.get(key, getattr(defaults, key))

    settings = WorkflowSettings(
        override_roles=_roles(_get("override_roles"), "override_roles"),
        on_behalf_roles=_roles(_get("on_behalf_roles"), "on_behalf_roles"),
        escalation_roles=_roles(_get("escalation_roles"), "escalation_roles"),
        terminal_role_label=str(_get("terminal_role_label")),
        override_role_label=str(_get("override_role_label")),
        notification_timeout_seconds=float(_get("notification_timeout_seconds")),
        notification_max_workers=int(_get("notification_max_workers")),
        hours_per_level=int(_get("hours_per_level")),
        max_reporting_depth=int(_get("max_reporting_depth")),
    )
    if settings.notification_timeout_seconds <= 0:
        raise ValueError("notification_timeout_seconds must be positive")
    if settings.notification_max_workers < 1:
        raise ValueError("notification_max_workers must be at least 1")
    if settings.max_reporting_depth < 1:
        raise ValueError("max_reporting_depth must be at least 1")
    return settings


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


def parse_workflow_config(
    data: dict[str, Any],
    source_path: str | None = None,
) -> WorkflowConfig:
    """
    Parse a whole configuration document.

    The checksum covers the raw document, so any edit to the YAML yields a
    new checksum.
    """
    return WorkflowConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        directory=parse_directory(data["directory"]),
        recipes=parse_recipes(data["recipes"]),
        settings=parse_settings(data.get("settings")),
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
