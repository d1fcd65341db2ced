"""Commit, deploy and provision commands."""

from __future__ import annotations

from pathlib import Path

from ..workflows.commit import CommitMode, CommitWorkflow
from ..workflows.deploy import DeploymentWorkflow
from ..workflows.provision import ProvisioningWorkflow
from .common import execute


def run_commit(repo: Path, mode: CommitMode = CommitMode.NORMAL) -> int:
    """Format, validate, commit, verify and push.

    Args:
        repo: Repository root
        mode: NORMAL, AMEND (rewrite the previous commit) or RESET (discard history)

    Returns:
        Exit code (0 = success or declined)
    """
    return execute(repo, lambda ctx: CommitWorkflow(ctx, mode).run())


def run_deploy(repo: Path, host: str | None = None) -> int:
    return execute(repo, lambda ctx: DeploymentWorkflow(ctx, host).run())


def run_provision(repo: Path, host: str | None = None) -> int:
    return execute(repo, lambda ctx: ProvisioningWorkflow(ctx, host).run())
