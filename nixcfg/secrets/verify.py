"""
Encryption state verification.

`verify_committed` is the gate that keeps plaintext Layer A secrets out of
history: it inspects the stored blobs of a commit, never the working copy,
and every push path runs it first. `verify_decrypted` is the mirror check
used before a build, where the files must be readable plaintext.
"""

from __future__ import annotations

from pathlib import Path

from ..config import Settings
from ..errors import HostEnvironmentError, IntegrityError
from ..git import Git
from .layers import (
    Layer,
    LayerSpec,
    SecretState,
    UnrecognisedContent,
    detect_state,
    layer_specs,
    read_working_copy,
)


def integrity_remediation(settings: Settings, rev: str = "HEAD") -> list[str]:
    key = settings.keys.layer_a_key
    name = settings.secrets.filter_name
    return [
        f"Undo the commit, keeping your changes: git reset {rev}~1  (root commit: git update-ref -d HEAD)",
        f"Re-register the content filter: {name} init",
        f"Bind the identity: {name} config add -i {key}",
        "Retry: nixcfg commit",
        "Do NOT push until verification passes.",
    ]


def committed_state(git: Git, spec: LayerSpec, path: str, rev: str = "HEAD") -> SecretState:
    return detect_state(git.show_blob(rev, path), spec)


def verify_committed(git: Git, settings: Settings, rev: str = "HEAD") -> list[str]:
    """
    Prove every Layer A secret stored in `rev` is ciphertext.

    All matching paths are checked before failing so the report names every
    offender. On failure the commit is left in place.

    Returns:
        The verified paths (empty when the commit holds no Layer A files).

    Raises:
        IntegrityError: If any stored blob is not ciphertext.
    """
    spec = layer_specs(settings.secrets)[Layer.A]
    paths = git.ls_files(spec.pattern, rev=rev)

    offending: list[str] = []
    for path in paths:
        try:
            state = committed_state(git, spec, path, rev)
        except UnrecognisedContent:
            offending.append(path)
            continue
        if state is not SecretState.CIPHERTEXT:
            offending.append(path)

    if offending:
        raise IntegrityError(
            f"{len(offending)} of {len(paths)} Layer A secret file(s) in {rev} are not encrypted",
            offending=offending,
            remediation=integrity_remediation(settings, rev),
        )
    return paths


def verify_commits(git: Git, settings: Settings, revs: list[str]) -> int:
    """Run `verify_committed` over several commits; returns how many were checked."""
    for rev in revs:
        verify_committed(git, settings, rev)
    return len(revs)


def verify_decrypted(repo_root: Path, paths: list[str], spec: LayerSpec, settings: Settings) -> None:
    """
    Require working-copy files to be readable plaintext.

    Missing files pass; the build reports those on its own.

    Raises:
        HostEnvironmentError: If any file still carries the ciphertext marker.
    """
    encrypted: list[str] = []
    for path in paths:
        try:
            state = detect_state(read_working_copy(repo_root / path), spec)
        except UnrecognisedContent:
            encrypted.append(path)
            continue
        if state is SecretState.CIPHERTEXT:
            encrypted.append(path)

    if encrypted:
        key = settings.keys.layer_a_key
        name = settings.secrets.filter_name
        raise HostEnvironmentError(
            "Secret files are still encrypted in the working copy: " + ", ".join(encrypted),
            remediation=[
                f"Ensure the key exists: {key}",
                f"Register the content filter: {name} init && {name} config add -i {key}",
                "Decrypt the working copy: nixcfg unlock",
            ],
        )
