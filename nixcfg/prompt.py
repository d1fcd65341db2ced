"""
Injectable prompt capability.

Workflows never read input directly; they ask a `Prompter`. The terminal
implementation reads from the controlling terminal (`/dev/tty`), not from
stdin, so redirected or piped input cannot answer a confirmation.
"""

from __future__ import annotations

import getpass
import sys
from collections.abc import Iterable
from typing import Protocol

from rich.console import Console

from .errors import HostEnvironmentError, ValidationError

TTY_PATH = "/dev/tty"


class Prompter(Protocol):
    """Source of interactive answers."""

    def ask(self, question: str) -> str:
        """Ask a question and return the raw answer (without trailing newline)."""
        ...

    def ask_secret(self, question: str) -> str:
        """Ask for a value that must not be echoed."""
        ...


class TerminalPrompter:
    """Read answers from the controlling terminal."""

    def __init__(self, tty_path: str = TTY_PATH):
        self.tty_path = tty_path

    def ask(self, question: str) -> str:
        try:
            with open(self.tty_path, "r+", encoding="utf-8") as tty:
                tty.write(question)
                tty.flush()
                line = tty.readline()
        except OSError as e:
            raise HostEnvironmentError(
                "No controlling terminal available for confirmation",
                remediation=["Run nixcfg from an interactive terminal session."],
            ) from e
        if line == "":
            # EOF on the terminal; treat as an empty (declining) answer
            return ""
        return line.rstrip("\r\n")

    def ask_secret(self, question: str) -> str:
        # getpass opens /dev/tty itself and only falls back to stdin when
        # there is no terminal, which require_interactive() already refuses
        return getpass.getpass(question)


class ScriptedPrompter:
    """
    Canned answers for tests and non-terminal drivers.

    Every question asked is recorded in `asked` so tests can assert which
    gates were reached.
    """

    def __init__(self, answers: Iterable[str] = ()):
        self._answers = list(answers)
        self.asked: list[str] = []

    def _next(self, question: str) -> str:
        self.asked.append(question)
        if not self._answers:
            raise RuntimeError(f"No scripted answer left for: {question!r}")
        return self._answers.pop(0)

    def ask(self, question: str) -> str:
        return self._next(question)

    def ask_secret(self, question: str) -> str:
        return self._next(question)

    @property
    def remaining(self) -> int:
        return len(self._answers)


def require_interactive(stream=None) -> None:
    """Refuse to run without a terminal on stdin."""
    stream = stream if stream is not None else sys.stdin
    isatty = getattr(stream, "isatty", None)
    if isatty is None or not isatty():
        raise HostEnvironmentError(
            "nixcfg must be run from an interactive terminal",
            remediation=["Several steps need typed confirmation; piped input is refused."],
        )


def choose_host(prompter: Prompter, console: Console, names: list[str]) -> str:
    """Present a numbered list of host names and return the selected one."""
    if not names:
        raise HostEnvironmentError("No hosts are configured for this platform")

    console.print("Select host to install:", style="bold")
    for i, name in enumerate(names, 1):
        console.print(f"  {i}) {name}")

    answer = prompter.ask(f"Enter choice [1-{len(names)}]: ").strip()
    if answer.isdigit() and 1 <= int(answer) <= len(names):
        return names[int(answer) - 1]
    raise ValidationError(f"Invalid selection: {answer!r}")
