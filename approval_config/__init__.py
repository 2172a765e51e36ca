"""
approval_config -- single public entrypoint for workflow configuration.

Responsibility:
    ``load_workflow_config()`` reads a configuration set (organization
    directory, category recipes, workflow settings) from YAML and returns
    a validated ``WorkflowConfig``.  Bridges in ``approval_config.bridges``
    turn it into kernel objects.

Architecture position:
    Configuration -- YAML-driven, validated at load.  Sits above
    ``approval_kernel`` and ``approval_engines``; the kernel MUST NEVER
    import from ``approval_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- schema or recipe validation failures.

Audit relevance:
    Every successful load emits a ``workflow_config_loaded`` log entry
    with the config id, version and checksum, tying requests to the
    configuration that built their chains.
"""

from __future__ import annotations

from pathlib import Path

from approval_config.bridges import (
    build_chain_builder,
    build_directory,
    build_dispatcher,
    build_policy,
    build_recipes,
    build_workflow_engine,
)
from approval_config.loader import load_yaml_file, parse_workflow_config
from approval_config.schema import WorkflowConfig
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_PATH = _DEFAULT_CONFIG_DIR / "default.yaml"


def load_workflow_config(path: Path | str | None = None) -> WorkflowConfig:
    """Load and validate a workflow configuration set.

    Args:
        path: YAML file to load.  Defaults to ``approval_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: the file does not exist.
        KeyError: a required section or field is missing.
        ValueError: recipe, directory or settings validation failed.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_workflow_config(load_yaml_file(source), source_path=str(source))

    _logger.info(
        "workflow_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source_path": str(source),
            "department_count": len(config.directory.departments),
            "recipe_count": len(config.recipes),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "WorkflowConfig",
    "build_chain_builder",
    "build_directory",
    "build_dispatcher",
    "build_policy",
    "build_recipes",
    "build_workflow_engine",
    "load_workflow_config",
]
