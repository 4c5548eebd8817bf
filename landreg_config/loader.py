"""
Configuration Loader (``landreg_config.loader``).

Responsibility
--------------
Loads a workflow configuration YAML file and parses it into the frozen
dataclasses of ``landreg_config.schema``.  Runtime callers go through
``landreg_config.get_active_config()``; tests call the parse functions
directly with in-memory dicts.

Invariants enforced
-------------------
* Every parse error raises ``ConfigurationError`` naming the offending
  key; required keys never get silent defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.

Failure modes
-------------
* Missing file        -> ``ConfigurationError``.
* Malformed YAML      -> ``ConfigurationError`` chained to ``yaml.YAMLError``.
* Missing/invalid key -> ``ConfigurationError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from landreg_config.schema import (
    ApprovalConfig,
    ApprovalRule,
    DatabaseConfig,
    DocumentConfig,
    LoggingConfig,
    WizardConfig,
    WorkflowConfig,
)
from landreg_kernel.exceptions import ConfigurationError

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        ConfigurationError: if the file is missing, unreadable, not valid
            YAML, or its top level is not a mapping.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}", source=str(path)) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}", source=str(path)) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration root must be a mapping, got {type(data).__name__}",
            source=str(path),
        )
    return data


def _section(data: dict[str, Any], key: str, *, required: bool = True) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        if required:
            raise ConfigurationError(f"Missing configuration section '{key}'")
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping")
    return value


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError(f"Missing required key '{where}.{key}'")
    return value


def _positive_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"'{where}' must be a positive integer, got {value!r}")
    return value


def parse_approval(data: dict[str, Any]) -> ApprovalConfig:
    """Parse the ``approval`` section.

    ``hierarchy`` maps entity type to a mapping of maker role -> approver
    role.
    """
    default_role = str(_require(data, "default_approver_role", "approval")).upper()
    hierarchy = data.get("hierarchy") or {}
    if not isinstance(hierarchy, dict):
        raise ConfigurationError("'approval.hierarchy' must be a mapping")

    rules: list[ApprovalRule] = []
    for entity_type, makers in hierarchy.items():
        if not isinstance(makers, dict):
            raise ConfigurationError(
                f"'approval.hierarchy.{entity_type}' must map maker roles to approver roles"
            )
        for maker_role, approver_role in makers.items():
            if not approver_role:
                raise ConfigurationError(
                    f"Missing approver role for approval.hierarchy.{entity_type}.{maker_role}"
                )
            rules.append(
                ApprovalRule(
                    entity_type=str(entity_type).upper(),
                    maker_role=str(maker_role).upper(),
                    approver_role=str(approver_role).upper(),
                )
            )
    return ApprovalConfig(default_approver_role=default_role, rules=tuple(rules))


def parse_wizard(data: dict[str, Any]) -> WizardConfig:
    ttl = data.get("session_ttl_hours", WizardConfig.session_ttl_hours)
    return WizardConfig(session_ttl_hours=_positive_int(ttl, "wizard.session_ttl_hours"))


def parse_documents(data: dict[str, Any]) -> DocumentConfig:
    attempts = data.get("max_promotion_attempts", DocumentConfig.max_promotion_attempts)
    return DocumentConfig(
        storage_root=str(data.get("storage_root", DocumentConfig.storage_root)),
        max_promotion_attempts=_positive_int(attempts, "documents.max_promotion_attempts"),
    )


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=str(_require(data, "url", "database")),
        echo=bool(data.get("echo", False)),
        pool_size=_positive_int(data.get("pool_size", 10), "database.pool_size"),
        max_overflow=int(data.get("max_overflow", 5)),
        pool_timeout=_positive_int(data.get("pool_timeout", 30), "database.pool_timeout"),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", LoggingConfig.level)).upper()
    if level not in _LOG_LEVELS:
        raise ConfigurationError(f"'logging.level' must be one of {sorted(_LOG_LEVELS)}")
    return LoggingConfig(level=level)


def parse_workflow_config(data: dict[str, Any]) -> WorkflowConfig:
    """Parse a whole configuration document."""
    return WorkflowConfig(
        config_id=str(_require(data, "config_id", "root")),
        version=_positive_int(data.get("version", 1), "version"),
        approval=parse_approval(_section(data, "approval")),
        database=parse_database(_section(data, "database")),
        wizard=parse_wizard(_section(data, "wizard", required=False)),
        documents=parse_documents(_section(data, "documents", required=False)),
        logging=parse_logging(_section(data, "logging", required=False)),
    )


def load_workflow_config(path: Path) -> WorkflowConfig:
    try:
        return parse_workflow_config(load_yaml_file(path))
    except ConfigurationError as exc:
        if exc.source is None:
            exc.source = str(path)
        raise
