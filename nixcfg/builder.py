"""
Configuration builder adapter.

How a system image is evaluated and produced is delegated to Nix; this
module only knows which command to run for a host and whether it
succeeded.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from rich.console import Console

from .hosts import Host, Platform
from .system import Runner, privileged, run_command, which

NIX = ["nix", "--extra-experimental-features", "nix-command flakes"]


class ConfigurationBuilder(Protocol):
    """The external builder contract: each call reports success or failure."""

    def format(self) -> bool:
        ...

    def build(self, host: Host, platform: Platform) -> bool:
        ...

    def activate(self, host: Host, platform: Platform, *, live_installer: bool, target_root: str) -> bool:
        ...


def build_attribute(host: Host, platform: Platform) -> str:
    """Flake output built to validate `host` on `platform`."""
    target = host.build_target
    if platform is Platform.DARWIN:
        return f".#darwinConfigurations.{target}.system"
    return f".#nixosConfigurations.{target}.config.system.build.toplevel"


class NixBuilder:
    def __init__(self, repo: Path, console: Console, runner: Runner = run_command):
        self.repo = repo
        self.console = console
        self.runner = runner

    def format(self) -> bool:
        result = self.runner([*NIX, "fmt"], cwd=self.repo, capture=True)
        output = "\n".join(
            line
            for line in ((result.stdout or "") + (result.stderr or "")).splitlines()
            if line and not line.startswith("warning: Git tree")
        )
        if output:
            self.console.print(output, style="dim", markup=False, highlight=False)
        return result.returncode == 0

    def build(self, host: Host, platform: Platform) -> bool:
        attr = build_attribute(host, platform)
        self.console.print(f"Building {attr}...", style="dim")
        result = self.runner([*NIX, "build", "--no-link", attr], cwd=self.repo, capture=False)
        return result.returncode == 0

    def activate(self, host: Host, platform: Platform, *, live_installer: bool, target_root: str) -> bool:
        target = host.build_target
        if live_installer:
            # path: reads the working directory, where Layer A files are decrypted;
            # the git index only holds their ciphertext
            cmd = privileged([
                "nixos-install", "--root", target_root,
                "--flake", f"path:{self.repo}#{target}", "--no-root-passwd",
            ])
        elif platform is Platform.DARWIN:
            flake = f"{self.repo}#{target}"
            if which("darwin-rebuild"):
                cmd = privileged(["darwin-rebuild", "switch", "--flake", flake])
            else:
                self.console.print("darwin-rebuild not found, bootstrapping nix-darwin...", style="yellow")
                cmd = privileged([*NIX, "run", "nix-darwin", "--", "switch", "--flake", flake])
        else:
            cmd = privileged(["nixos-rebuild", "switch", "--flake", f"{self.repo}#{target}", "--show-trace"])

        self.console.print(" ".join(cmd), style="dim", markup=False)
        result = self.runner(cmd, cwd=self.repo, capture=False)
        return result.returncode == 0
