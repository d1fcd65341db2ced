"""
Risk-tiered confirmation.

Required confirmation strength is computed from the operation, not chosen by
the caller. Any answer that does not exactly satisfy the tier is a decline;
there is no retry prompt.
"""

from __future__ import annotations

from enum import Enum

from rich.console import Console
from rich.panel import Panel

from .prompt import Prompter

YES_TOKEN = "YES"


class Reversibility(str, Enum):
    REVERSIBLE = "reversible"  # rebase, ordinary push
    DESTRUCTIVE_LOCAL = "destructive_local"  # discards local history or device contents
    DESTRUCTIVE_REMOTE = "destructive_remote"  # overwrites shared history


def classify_operation(operation: str) -> tuple[Reversibility, list[str]]:
    """
    Classify an operation and return a short explanation list.

    Unknown operations are treated as DESTRUCTIVE_LOCAL so that a new call
    site can never silently get a weaker gate.
    """
    op = (operation or "").strip().lower()

    if op in {"git.rebase", "git.push", "git.push.upstream", "remote.select", "continue"}:
        return (Reversibility.REVERSIBLE, ["recoverable with ordinary git commands"])

    if op in {"history.reset", "disk.wipe"}:
        return (Reversibility.DESTRUCTIVE_LOCAL, ["local state is discarded and cannot be recovered"])

    if op in {"git.push.force"}:
        return (Reversibility.DESTRUCTIVE_REMOTE, ["shared history on the remote is overwritten"])

    return (Reversibility.DESTRUCTIVE_LOCAL, ["unknown operation; treated as destructive"])


def accepts(reversibility: Reversibility, answer: str) -> bool:
    """Decide whether `answer` satisfies the tier."""
    if reversibility is Reversibility.REVERSIBLE:
        return answer.strip().lower() in {"y", "yes"}
    return answer == YES_TOKEN


class ConfirmationGate:
    """Ask the operator, at the strength the operation demands."""

    def __init__(self, prompter: Prompter, console: Console):
        self.prompter = prompter
        self.console = console

    def confirm(
        self,
        operation: str,
        question: str,
        *,
        destination: str | None = None,
        warning: str | None = None,
    ) -> bool:
        reversibility, reasons = classify_operation(operation)

        if reversibility is Reversibility.REVERSIBLE:
            answer = self.prompter.ask(f"{question} (y/n) ")
            return accepts(reversibility, answer)

        body = [warning or question]
        if destination is not None:
            body.append(f"Destination: {destination}")
        body.extend(f"- {r}" for r in reasons)
        title = "DESTRUCTIVE (remote)" if reversibility is Reversibility.DESTRUCTIVE_REMOTE else "DESTRUCTIVE"
        self.console.print(Panel("\n".join(body), title=title, border_style="bold red"))

        answer = self.prompter.ask(f"{question} Type {YES_TOKEN} to confirm: ")
        accepted = accepts(reversibility, answer)
        if not accepted:
            self.console.print("Aborted.", style="yellow")
        return accepted
