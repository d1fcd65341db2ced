"""
Error taxonomy for nixcfg workflows.

Each class maps to one failure family and carries its own exit code and
remediation lines. Nothing in this module retries; a clear stop is always
preferred over automatic recovery.

Confirmation declines are deliberately absent: a declined prompt is a
graceful outcome (exit 0), not an error.
"""

from __future__ import annotations


class NixcfgError(Exception):
    """Base class for every fatal workflow error."""

    exit_code = 1
    title = "Error"

    def __init__(self, message: str, *, remediation: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.remediation = list(remediation or [])


class HostEnvironmentError(NixcfgError):
    """Wrong platform, unknown host, not a repository, no terminal, missing key."""

    exit_code = 2
    title = "Environment error"


class SyncError(NixcfgError):
    """Rebase or stash conflict. Never auto-resolved."""

    exit_code = 3
    title = "Sync error"


class ValidationError(NixcfgError):
    """Format, build or input validation failure (triggers unstage compensation)."""

    exit_code = 4
    title = "Validation error"


class IntegrityError(NixcfgError):
    """
    A committed secret is not ciphertext.

    This is the most severe class: it is treated as a security incident and
    must never be downgraded to a warning.
    """

    exit_code = 5
    title = "SECRETS ARE NOT ENCRYPTED"

    def __init__(
        self,
        message: str,
        *,
        offending: list[str] | None = None,
        remediation: list[str] | None = None,
    ):
        super().__init__(message, remediation=remediation)
        self.offending = list(offending or [])


class PartialDeviceStateError(NixcfgError):
    """Provisioning failed after the block device was mutated."""

    exit_code = 6
    title = "DEVICE IN PARTIAL STATE"

    def __init__(self, message: str, *, device: str, remediation: list[str] | None = None):
        super().__init__(message, remediation=remediation)
        self.device = device


class GitError(Exception):
    """A git invocation exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"git {' '.join(self.args_list)} failed ({returncode}){detail}")
