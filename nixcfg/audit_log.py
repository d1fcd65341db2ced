"""
Audit log of irreversible and history-producing operations.

Every commit, amend, reset, force push and disk operation appends one JSON
object per line. The log lives inside the git directory so it never shows up
as a working-copy change. Secret values and passphrases are never recorded.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

AUDIT_DIR = "nixcfg"
AUDIT_FILE = "audit.log"


@dataclass
class ErasureCost:
    """What an operation discarded: commits, branches, block devices, files."""
    commits: int = 0
    branches: int = 0
    devices: int = 0
    files: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    def summary(self) -> str:
        return _counts(commits=self.commits, branches=self.branches, devices=self.devices, files=self.files)


@dataclass
class CreationSummary:
    """What an operation produced."""
    commits: int = 0
    files: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    def summary(self) -> str:
        return _counts(commits=self.commits, files=self.files)


@dataclass
class AuditEntry:
    timestamp: str
    operation: str
    erased: ErasureCost
    created: CreationSummary
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> AuditEntry:
        return cls(
            timestamp=data["timestamp"],
            operation=data["operation"],
            erased=ErasureCost(**data.get("erased", {})),
            created=CreationSummary(**data.get("created", {})),
            metadata=data.get("metadata", {}),
        )


def _counts(**counts: int) -> str:
    return ", ".join(f"{n} {label}" for label, n in counts.items() if n)


def get_audit_log_path(repo_root: Path) -> Path:
    return repo_root / ".git" / AUDIT_DIR / AUDIT_FILE


def ensure_audit_dir(repo_root: Path) -> Path:
    log_path = get_audit_log_path(repo_root)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return log_path


def log_operation(
    repo_root: Path,
    operation: str,
    erased: ErasureCost | None = None,
    created: CreationSummary | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditEntry:
    """
    Append an operation to the audit log.

    Args:
        repo_root: Repository root (the directory holding `.git`)
        operation: Operation name (e.g., "commit", "history.reset", "disk.wipe")
        erased: What was discarded
        created: What was produced
        metadata: Commit ids, remote URL, device path and similar context

    Returns:
        The appended entry
    """
    entry = AuditEntry(
        timestamp=datetime.now(timezone.utc).isoformat(),
        operation=operation,
        erased=erased or ErasureCost(),
        created=created or CreationSummary(),
        metadata=dict(metadata or {}),
    )
    with ensure_audit_dir(repo_root).open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry.to_dict(), sort_keys=True) + "\n")
    return entry


def _parse(line: str) -> AuditEntry | None:
    try:
        return AuditEntry.from_dict(json.loads(line))
    except (json.JSONDecodeError, KeyError, TypeError):
        return None


def read_audit_log(repo_root: Path, last_n: int | None = None) -> list[AuditEntry]:
    """
    Entries in the order they were written. Malformed lines are skipped.

    `last_n` keeps only the most recent entries; zero or less gives none.
    """
    log_path = get_audit_log_path(repo_root)
    if not log_path.is_file():
        return []

    lines = log_path.read_text(encoding="utf-8").splitlines()
    entries = [e for e in (_parse(line) for line in lines if line.strip()) if e is not None]
    if last_n is None:
        return entries
    return entries[-last_n:] if last_n > 0 else []


def format_audit_entry(entry: AuditEntry) -> str:
    lines = [f"[{entry.timestamp}] {entry.operation}"]
    if erased := entry.erased.summary():
        lines.append(f"  Erased: {erased}")
    if created := entry.created.summary():
        lines.append(f"  Created: {created}")
    lines.extend(f"  {key}: {value}" for key, value in entry.metadata.items())
    return "\n".join(lines)
