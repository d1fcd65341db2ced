"""
Content filter adapter.

The filter is registered per repository (`filter.<name>.clean/smudge` in git
config) and bound to an identity file. Registration points at an absolute
binary path that can disappear when the tool is garbage collected, so a
registered filter is only trusted when that binary still exists.
"""

from __future__ import annotations

import os
import shutil
from enum import Enum
from pathlib import Path

from ..config import Settings
from ..errors import HostEnvironmentError, ValidationError
from ..git import Git
from ..system import Runner
from .layers import Layer, SecretState, UnrecognisedContent, layer_specs, working_state


class FilterStatus(str, Enum):
    OK = "ok"
    MISSING = "missing"
    STALE = "stale"


def _binary_usable(binary: str) -> bool:
    if "/" in binary:
        return os.path.isfile(binary) and os.access(binary, os.X_OK)
    return shutil.which(binary) is not None


class ContentFilter:
    def __init__(self, git: Git, settings: Settings, runner: Runner):
        self.git = git
        self.settings = settings
        self.runner = runner
        self.name = settings.secrets.filter_name

    def status(self) -> FilterStatus:
        smudge = self.git.config_get(f"filter.{self.name}.smudge")
        if not smudge:
            return FilterStatus.MISSING
        binary = smudge.split()[0]
        if not _binary_usable(binary):
            return FilterStatus.STALE
        return FilterStatus.OK

    def _tool(self, *args: str):
        try:
            return self.runner([self.name, *args], cwd=self.git.repo, capture=True)
        except FileNotFoundError as e:
            raise HostEnvironmentError(
                f"{self.name} is not installed",
                remediation=[f"Install {self.name} or run from a shell that provides it (nix-shell -p {self.name})."],
            ) from e

    def init(self) -> None:
        result = self._tool("init")
        if result.returncode != 0:
            raise HostEnvironmentError(
                f"{self.name} init failed",
                remediation=[(result.stderr or "").strip() or f"Run {self.name} init manually in {self.git.repo}"],
            )

    def identity_configured(self, key_path: Path) -> bool:
        result = self._tool("config", "list", "--identity")
        return result.returncode == 0 and str(key_path) in (result.stdout or "")

    def add_identity(self, key_path: Path) -> None:
        if self.identity_configured(key_path):
            return
        result = self._tool("config", "add", "-i", str(key_path))
        if result.returncode != 0:
            raise HostEnvironmentError(
                f"Failed to add {self.name} identity",
                remediation=[(result.stderr or "").strip() or f"{self.name} config add -i {key_path}"],
            )

    def ensure(self, key_path: Path) -> FilterStatus:
        """
        Register the filter and bind the identity when needed.

        Returns the status found before any repair so callers can report a
        stale registration.
        """
        before = self.status()
        if before is FilterStatus.OK:
            return before
        self.rebind(key_path)
        if self.git.config_get(f"filter.{self.name}.smudge") is None:
            raise HostEnvironmentError(
                f"{self.name} configuration failed",
                remediation=[f"Configure it manually: {self.name} init && {self.name} config add -i {key_path}"],
            )
        return before

    def rebind(self, key_path: Path) -> None:
        """Register the filter and bind `key_path`, whatever the current state."""
        self.init()
        self.add_identity(key_path)

    # -------------------------------------------------------------------------
    # Working copy
    # -------------------------------------------------------------------------

    def layer_a_paths(self) -> list[str]:
        spec = layer_specs(self.settings.secrets)[Layer.A]
        return sorted(
            p.relative_to(self.git.repo).as_posix()
            for p in self.git.repo.glob(spec.pattern)
            if p.is_file()
        )

    def encrypted_paths(self) -> list[str]:
        """Layer A working-copy files that still hold ciphertext."""
        spec = layer_specs(self.settings.secrets)[Layer.A]
        encrypted: list[str] = []
        for path in self.layer_a_paths():
            try:
                state = working_state(self.git.repo, path, spec)
            except UnrecognisedContent as e:
                raise ValidationError(
                    f"{path}: neither encrypted nor readable text",
                    remediation=["Restore the file from history or fix it by hand."],
                ) from e
            if state is SecretState.CIPHERTEXT:
                encrypted.append(path)
        return encrypted

    def decrypt_working_copy(self) -> list[str]:
        """
        Re-check out encrypted Layer A files so the smudge filter decrypts them.

        Returns the paths that were decrypted.

        Raises:
            HostEnvironmentError: If any file is still ciphertext afterwards.
        """
        encrypted = self.encrypted_paths()
        if not encrypted:
            return []

        for path in encrypted:
            # An unchanged index entry would make checkout a no-op
            (self.git.repo / path).unlink()
        self.git.checkout_paths(*encrypted)

        still = [p for p in self.encrypted_paths() if p in encrypted]
        if still:
            raise HostEnvironmentError(
                "Decryption failed: " + ", ".join(still),
                remediation=[
                    f"Check the key at {self.settings.keys.layer_a_key} matches {self.settings.secrets.layer_a_recipients}",
                    f"Rebind the identity: {self.name} config add -i {self.settings.keys.layer_a_key}",
                ],
            )
        return encrypted
