"""
Config -> Kernel Bridges.

Functions that convert ``WorkflowConfig`` sections into kernel inputs.
They live here because the kernel must never import ``landreg_config``.

Usage:
    from landreg_config.bridges import build_approval_hierarchy

    config = get_active_config()
    hierarchy = build_approval_hierarchy(config)
"""

from __future__ import annotations

from landreg_config.schema import WorkflowConfig
from landreg_kernel.domain.approval import ApprovalHierarchy


def build_approval_hierarchy(config: WorkflowConfig) -> ApprovalHierarchy:
    """Build the (entity type, maker role) -> approver role table."""
    rules = {
        (rule.entity_type, rule.maker_role): rule.approver_role
        for rule in config.approval.rules
    }
    return ApprovalHierarchy(
        rules=rules,
        default_approver_role=config.approval.default_approver_role,
    )
