"""
Shared workflow pieces: outcomes, host gating and scoped compensation.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType

from rich.console import Console

from ..errors import GitError, HostEnvironmentError
from ..git import Git
from ..hosts import Host, HostKind, validate_host_platform
from ..secrets.filter import ContentFilter, FilterStatus
from ..secrets.keys import KeyInstaller


@dataclass(frozen=True)
class WorkflowOutcome:
    """Non-error result of a workflow run. Declines are outcomes, not errors."""

    exit_code: int = 0
    message: str = ""
    state: str | None = None  # final state reached, for workflows that track one
    declined: bool = False

    @classmethod
    def done(cls, message: str, state: str | None = None) -> WorkflowOutcome:
        return cls(exit_code=0, message=message, state=state)

    @classmethod
    def decline(cls, message: str, state: str | None = None) -> WorkflowOutcome:
        return cls(exit_code=0, message=message, state=state, declined=True)


def require_host(ctx, *, allow_known: bool = True, allow_live_installer: bool = True) -> Host:
    """
    Refuse to continue on an unknown host, a platform mismatch, or a host
    kind the workflow does not support.
    """
    host: Host = ctx.host
    registry = ctx.settings.registry
    supported = ", ".join([registry.live_installer_name + " (live installer)", *registry.names])

    if host.kind is HostKind.UNKNOWN:
        raise HostEnvironmentError(
            f"Unknown hostname '{host.name}'",
            remediation=[f"Supported hosts: {supported}", "To add a host, list it under [hosts] in nixcfg.toml."],
        )

    if host.is_live_installer:
        if not allow_live_installer:
            raise HostEnvironmentError("This operation is not available on the live installer")
        return host

    if not allow_known:
        raise HostEnvironmentError(
            f"This operation only runs on the live installer, not on {host.name}",
            remediation=["Boot the installer image and run it from there."],
        )

    if not validate_host_platform(host, ctx.platform):
        raise HostEnvironmentError(
            f"{host.name} is a {host.platform.label} host but you are on {ctx.platform.label}",
        )
    return host


def prepare_layer_a(ctx) -> bool:
    """
    Make sure the Layer A key exists and the content filter is registered.

    Returns False when the operator declined to continue with a key whose
    public half is not a configured recipient.
    """
    settings = ctx.settings
    key_path = settings.keys.layer_a_key_path
    installer = KeyInstaller(ctx.prompter, ctx.console, ctx.runner)
    if not installer.ensure(
        settings.secrets.filter_name,
        key_path,
        settings.keys.key_prefix,
        ctx.repo_root / settings.secrets.layer_a_recipients,
    ):
        return False

    ctx.console.print(f"Checking {settings.secrets.filter_name} configuration...", style="dim")
    status = ContentFilter(ctx.git, settings, ctx.runner).ensure(key_path)
    if status is FilterStatus.STALE:
        ctx.console.print("Existing filter registration was stale; reconfigured", style="yellow")
    elif status is FilterStatus.MISSING:
        ctx.console.print("Content filter registered", style="yellow")
    ctx.console.print(f"{settings.secrets.filter_name} configured correctly", style="green")
    return True


class StagingGuard:
    """
    Unstage everything if the block exits with an exception.

    Covers errors and interrupts alike (`KeyboardInterrupt` is a
    BaseException and reaches `__exit__` too). Once the commit exists,
    `disarm()` stops the compensation; the exception still propagates.
    """

    def __init__(self, git: Git, console: Console):
        self.git = git
        self.console = console
        self.armed = True

    def __enter__(self) -> StagingGuard:
        return self

    def disarm(self) -> None:
        self.armed = False

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc_type is None or not self.armed:
            return False
        self.console.print("Error encountered; unstaging changes...", style="bold red")
        try:
            self.git.unstage()
        except GitError as e:
            # Report, but never mask the original failure
            self.console.print(f"Unstage failed: {e}", style="bold red")
        return False
