"""
Fixed-path private key files.

Keys are never generated or rotated here. When a key is missing the
operator pastes it; it is validated, checked against the committed recipient
configuration, and written with mode 0600. Key material is never logged.
"""

from __future__ import annotations

import os
from pathlib import Path

from rich.console import Console

from ..confirm import ConfirmationGate
from ..errors import HostEnvironmentError
from ..prompt import Prompter
from ..system import Runner, privileged

# Bech32 body of an age identity is 59 chars; shorter than this is truncated
MIN_KEY_BODY = 52


def key_problem(text: str, prefix: str) -> str | None:
    """Return why `text` is not a usable private key, or None."""
    key = text.strip()
    if not key:
        return "No key provided"
    if not key.startswith(prefix):
        return f"Key must start with {prefix}"
    if len(key) - len(prefix) < MIN_KEY_BODY:
        return "Key appears truncated (too short)"
    return None


def key_file_valid(path: Path, prefix: str) -> bool:
    if not path.is_file():
        return False
    try:
        return prefix in path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False


def privileged_key_present(path: str, prefix: str, runner: Runner) -> bool:
    """Check a root-owned key file without reading it into this process."""
    result = runner(privileged(["grep", "-q", prefix, path]), capture=True)
    return result.returncode == 0


def derive_public_key(key_text: str, runner: Runner) -> str | None:
    """Public half of an age identity via `age-keygen -y`, or None when invalid."""
    try:
        result = runner(["age-keygen", "-y"], input=key_text.strip() + "\n", capture=True)
    except FileNotFoundError:
        return None
    public = (result.stdout or "").strip()
    if result.returncode != 0 or not public.startswith("age1"):
        return None
    return public


def recipients_contain(recipients_file: Path, public_key: str) -> bool:
    """True when the recipient configuration lists `public_key` (or does not exist)."""
    if not recipients_file.is_file():
        return True
    return public_key in recipients_file.read_text(encoding="utf-8", errors="replace")


def write_key(path: Path, key_text: str) -> None:
    """Write a user-owned key file with mode 0600."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(key_text.strip() + "\n")
    os.chmod(path, 0o600)


def write_privileged_key(path: str, key_text: str, runner: Runner) -> None:
    """Install a root-owned key file with mode 0600, content passed on stdin."""
    result = runner(
        privileged(["install", "-D", "-m", "600", "/dev/stdin", path]),
        input=key_text.strip() + "\n",
        capture=True,
    )
    if result.returncode != 0:
        raise HostEnvironmentError(
            f"Failed to write key to {path}",
            remediation=[(result.stderr or "").strip() or f"Check permissions on {Path(path).parent}"],
        )


class KeyInstaller:
    """Make sure a layer's private key is present, asking the operator when it is not."""

    def __init__(self, prompter: Prompter, console: Console, runner: Runner):
        self.prompter = prompter
        self.console = console
        self.runner = runner

    def ensure(
        self,
        label: str,
        path: Path,
        prefix: str,
        recipients_file: Path,
        *,
        root_owned: bool = False,
    ) -> bool:
        """
        Ensure the key at `path` exists.

        Returns:
            True when the key is present (or was installed); False when the
            operator declined to continue after a recipient mismatch.

        Raises:
            HostEnvironmentError: If the pasted key is invalid.
        """
        if root_owned:
            present = privileged_key_present(str(path), prefix, self.runner)
        else:
            present = key_file_valid(path, prefix)
        if present:
            self.console.print(f"{label} key found at {path}", style="green")
            return True

        self.console.print(f"{label} key missing or invalid at {path}", style="yellow")
        key_text = self.prompter.ask_secret(f"Paste your {label} age private key (starts with {prefix}): ")

        problem = key_problem(key_text, prefix)
        if problem:
            raise HostEnvironmentError(problem, remediation=[f"Paste the {label} private key from your password manager."])

        public = derive_public_key(key_text, self.runner)
        if public is None:
            raise HostEnvironmentError(
                "Invalid age key (could not derive public key)",
                remediation=["Check that the age tooling is installed and the key was pasted completely."],
            )

        if not recipients_contain(recipients_file, public):
            self.console.print(
                f"Your key's public key does not match {recipients_file.name}: {public}",
                style="bold red",
            )
            self.console.print("Decryption will fail. Check you pasted the correct key.", style="dim")
            if not ConfirmationGate(self.prompter, self.console).confirm("continue", "Continue anyway?"):
                return False

        if root_owned:
            write_privileged_key(str(path), key_text, self.runner)
        else:
            write_key(path, key_text)
        self.console.print(f"{label} key saved to {path}", style="green")
        return True
