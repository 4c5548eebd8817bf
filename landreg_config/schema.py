"""
Workflow configuration schema.

Typed, frozen view of a configuration YAML file.  The loader parses files
into these types; bridges turn them into kernel inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ApprovalRule:
    """One row of the approval hierarchy."""

    entity_type: str
    maker_role: str
    approver_role: str


@dataclass(frozen=True)
class ApprovalConfig:
    default_approver_role: str
    rules: tuple[ApprovalRule, ...] = ()


@dataclass(frozen=True)
class WizardConfig:
    session_ttl_hours: int = 24


@dataclass(frozen=True)
class DocumentConfig:
    storage_root: str = "var/documents"
    max_promotion_attempts: int = 3


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 5
    pool_timeout: int = 30


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class WorkflowConfig:
    """The complete runtime configuration."""

    config_id: str
    version: int
    approval: ApprovalConfig
    database: DatabaseConfig
    wizard: WizardConfig = field(default_factory=WizardConfig)
    documents: DocumentConfig = field(default_factory=DocumentConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
