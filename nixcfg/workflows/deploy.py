"""
Deployment: build and activate the configuration for a host.

On installed hosts the tree must be committed (Layer A files excepted,
since they are always decrypted locally). On the live installer the build
reads the working directory directly.
"""

from __future__ import annotations

import os
from pathlib import Path

from ..audit_log import log_operation
from ..errors import HostEnvironmentError, ValidationError
from ..hosts import Host, HostKind, Platform, normalise_name
from ..prompt import choose_host
from ..secrets.filter import ContentFilter
from ..secrets.keys import KeyInstaller, privileged_key_present
from ..secrets.layers import Layer, classify, layer_specs
from ..secrets.verify import verify_decrypted
from .base import WorkflowOutcome, prepare_layer_a, require_host


def point_symlink(link: Path, target: Path) -> str:
    """
    Point `link` at `target` unless a real directory is in the way.

    Returns "unchanged", "updated" or "blocked".
    """
    if link.is_dir() and not link.is_symlink():
        return "blocked"
    if link.is_symlink() and Path(os.readlink(link)) == target:
        return "unchanged"
    link.parent.mkdir(parents=True, exist_ok=True)
    tmp = link.with_name(link.name + ".nixcfg-tmp")
    if tmp.is_symlink() or tmp.exists():
        tmp.unlink()
    tmp.symlink_to(target)
    os.replace(tmp, link)
    return "updated"


class DeploymentWorkflow:
    def __init__(self, ctx, host_arg: str | None = None, config_link: Path | None = None):
        self.ctx = ctx
        self.host_arg = host_arg
        self.git = ctx.git
        self.settings = ctx.settings
        self.console = ctx.console
        self.config_link = config_link or Path.home() / ".config" / "nixos"

    def resolve_target(self, host: Host) -> Host:
        registry = self.settings.registry
        if host.is_live_installer:
            linux_hosts = registry.names_for(Platform.LINUX)
            if self.host_arg:
                match = registry.lookup(self.host_arg)
                if match is None or match[1] is not Platform.LINUX:
                    raise ValidationError(
                        f"'{self.host_arg}' is not a valid Linux host",
                        remediation=[f"Available hosts: {', '.join(linux_hosts)}"],
                    )
                name = match[0]
            else:
                name = choose_host(self.ctx.prompter, self.console, linux_hosts)
            return Host(kind=HostKind.KNOWN, name=name, platform=Platform.LINUX)

        if self.host_arg and normalise_name(self.host_arg) != host.name.lower():
            raise ValidationError(
                f"Argument '{self.host_arg}' does not match hostname '{host.name}'",
                remediation=[f"On installed systems, omit the argument or use: nixcfg deploy {host.name}"],
            )
        return host

    def _ensure_runtime_key(self, host: Host) -> bool:
        keys = self.settings.keys
        if host.is_live_installer:
            path = self.settings.provision.target_root.rstrip("/") + keys.layer_b_key
            if not privileged_key_present(path, keys.key_prefix, self.ctx.runner):
                raise HostEnvironmentError(
                    f"sops-nix key not found at {path}",
                    remediation=["Run nixcfg provision first (it copies the staged key)."],
                )
            self.console.print(f"sops-nix key found at {path}", style="green")
            return True
        return KeyInstaller(self.ctx.prompter, self.console, self.ctx.runner).ensure(
            "sops-nix",
            Path(keys.layer_b_key),
            keys.key_prefix,
            self.ctx.repo_root / self.settings.secrets.layer_b_recipients,
            root_owned=True,
        )

    def _require_clean_tree(self) -> None:
        def relevant(paths: list[str]) -> list[str]:
            return [p for p in paths if classify(p, self.settings.secrets) is not Layer.A]

        staged = relevant(self.git.staged_names())
        unstaged = relevant(self.git.unstaged_names())
        untracked = self.git.untracked()
        if staged or unstaged or untracked:
            lines: list[str] = []
            for label, paths in (("Staged", staged), ("Unstaged", unstaged), ("Untracked", untracked)):
                lines.extend(f"{label}: {p}" for p in paths)
            lines.append("Run nixcfg commit first, or use 'git stash' to set changes aside.")
            raise HostEnvironmentError("You have uncommitted changes", remediation=lines)

    def run(self) -> WorkflowOutcome:
        host = require_host(self.ctx)
        target = self.resolve_target(host)
        self.console.print(f"Target: {target.name}", style="green")

        if not prepare_layer_a(self.ctx):
            return WorkflowOutcome.decline("Aborted at key check")
        if not self._ensure_runtime_key(host):
            return WorkflowOutcome.decline("Aborted at key check")

        self.console.print("Verifying secrets are decrypted...", style="dim")
        spec = layer_specs(self.settings.secrets)[Layer.A]
        paths = ContentFilter(self.git, self.settings, self.ctx.runner).layer_a_paths()
        verify_decrypted(self.ctx.repo_root, paths, spec, self.settings)
        self.console.print("Secrets decrypted", style="green")

        if host.is_live_installer:
            self.console.print("Live installer: building from the working directory", style="yellow")
            self.git.unstage()
        else:
            self._require_clean_tree()

        platform = Platform.LINUX if host.is_live_installer else self.ctx.platform
        if not self.ctx.config_builder.activate(
            target,
            platform,
            live_installer=host.is_live_installer,
            target_root=self.settings.provision.target_root,
        ):
            raise ValidationError(
                f"Activation of {target.build_target} failed",
                remediation=["Fix the errors above and rerun nixcfg deploy."],
            )

        log_operation(
            self.ctx.repo_root,
            "deploy",
            metadata={"host": target.name, "live_installer": host.is_live_installer},
        )

        if host.is_live_installer:
            self.console.print("Installation complete! Reboot into the installed system.", style="green")
            return WorkflowOutcome.done(f"Installed {target.name}")

        status = point_symlink(self.config_link, self.ctx.repo_root)
        if status == "blocked":
            self.console.print(
                f"{self.config_link} is a directory, not a symlink; remove it for automatic symlinking",
                style="yellow",
            )
        elif status == "updated":
            self.console.print(f"Symlink: {self.config_link} -> {self.ctx.repo_root}", style="dim")

        self.console.print(f"Success! System is live as: {target.build_target}", style="green")
        return WorkflowOutcome.done(f"Deployed {target.name}")
