"""
External command seam.

Every external tool (git, nix, the content filter, the partitioner) is run
through a `Runner` so workflows can be exercised with fakes.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Protocol


class Runner(Protocol):
    """Callable with the subset of `subprocess.run` keyword arguments we use."""

    def __call__(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        input: str | None = None,
        capture: bool = True,
        check: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        ...


def run_command(
    args: list[str],
    *,
    cwd: Path | None = None,
    input: str | None = None,
    capture: bool = True,
    check: bool = False,
) -> subprocess.CompletedProcess[str]:
    """
    Run a command and return the completed process.

    `input` is written to the child's stdin. Passphrases travel this way so
    they never appear in the process argument list. Output is decoded with
    replacement so binary ciphertext bodies do not break header checks.
    When `capture` is False the child inherits the terminal.
    """
    return subprocess.run(
        args,
        cwd=str(cwd) if cwd is not None else None,
        input=input,
        capture_output=capture,
        text=True,
        errors="replace",
        check=check,
    )


def is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def privileged(args: list[str]) -> list[str]:
    """Prefix `sudo` unless already running as root."""
    return list(args) if is_root() else ["sudo", *args]


def which(name: str) -> str | None:
    return shutil.which(name)
