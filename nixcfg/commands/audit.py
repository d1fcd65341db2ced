"""Audit command - print the log of irreversible operations."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from ..audit_log import format_audit_entry, get_audit_log_path, read_audit_log


def run_audit(repo: Path, last_n: int | None = None) -> int:
    console = Console()
    entries = read_audit_log(repo, last_n=last_n)
    if not entries:
        Console(stderr=True).print(f"No audit entries ({get_audit_log_path(repo)})", style="dim")
        return 0
    for entry in entries:
        console.print(format_audit_entry(entry), markup=False, highlight=False)
    return 0
