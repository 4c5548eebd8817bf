"""
landreg_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``landreg_kernel`` and below
    ``landreg_services``.  The kernel MUST NEVER import from
    ``landreg_config``; ``bridges`` translates configuration into
    kernel-compatible inputs.

Environment:
    LANDREG_CONFIG        path of an alternate configuration file.
    LANDREG_DATABASE_URL  overrides ``database.url``.

Failure modes:
    - ``ConfigurationError`` -- file missing, malformed, or invalid.

Audit relevance:
    Every successful ``get_active_config()`` call logs
    ``workflow_config_loaded`` with the config id, version and source
    path, tying workflow decisions to the configuration that governed them.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from landreg_config.loader import load_workflow_config
from landreg_config.schema import WorkflowConfig
from landreg_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_CONFIG_FILE = _DEFAULT_CONFIG_DIR / "default.yaml"

CONFIG_PATH_ENV = "LANDREG_CONFIG"
DATABASE_URL_ENV = "LANDREG_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``path`` argument, then the
    ``LANDREG_CONFIG`` environment variable, then ``sets/default.yaml``.
    ``LANDREG_DATABASE_URL`` replaces the database URL when set.

    Raises:
        ConfigurationError: if the file is missing or invalid.
    """
    source = Path(path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE)
    config = load_workflow_config(source)

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "workflow_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "source": str(source),
            "approval_rules": len(config.approval.rules),
        },
    )
    return config


__all__ = ["WorkflowConfig", "get_active_config"]
