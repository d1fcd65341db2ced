"""
Workflows: commit, history reset, disk provisioning and deployment.

Every workflow takes a `RunContext`, returns a `WorkflowOutcome` on success
or graceful decline, and raises a `NixcfgError` subclass on failure.
"""

from __future__ import annotations

from .base import StagingGuard, WorkflowOutcome, require_host
from .commit import CommitMode, CommitState, CommitWorkflow, can_transition
from .deploy import DeploymentWorkflow
from .provision import DiskInspector, ProvisioningWorkflow, passphrase_problems
from .reset import HistoryResetWorkflow

__all__ = [
    "StagingGuard",
    "WorkflowOutcome",
    "require_host",
    # Commit
    "CommitMode",
    "CommitState",
    "CommitWorkflow",
    "can_transition",
    # Others
    "DeploymentWorkflow",
    "DiskInspector",
    "HistoryResetWorkflow",
    "ProvisioningWorkflow",
    "passphrase_problems",
]
