"""
Run context.

Everything a workflow needs to know about its environment is decided once
at startup and carried in an immutable `RunContext`. There is no ambient
module-level state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console

from .builder import ConfigurationBuilder, NixBuilder
from .confirm import ConfirmationGate
from .config import Settings, load_settings
from .errors import HostEnvironmentError
from .git import Git
from .hosts import Host, Platform, classify, detect_machine
from .prompt import Prompter, TerminalPrompter
from .system import Runner, run_command


@dataclass(frozen=True)
class RunContext:
    repo_root: Path
    settings: Settings
    host: Host
    platform: Platform
    console: Console
    prompter: Prompter
    runner: Runner = run_command
    builder: ConfigurationBuilder | None = field(default=None)

    @property
    def git(self) -> Git:
        return Git(self.repo_root, self.runner)

    @property
    def gate(self) -> ConfirmationGate:
        return ConfirmationGate(self.prompter, self.console)

    @property
    def config_builder(self) -> ConfigurationBuilder:
        if self.builder is not None:
            return self.builder
        return NixBuilder(self.repo_root, self.console, self.runner)


def find_repo_root(start: Path) -> Path | None:
    """Walk up from `start` to the directory that contains `.git`."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        if (p / ".git").exists():
            return p
    return None


def build_context(
    repo_root: Path,
    *,
    console: Console | None = None,
    prompter: Prompter | None = None,
    runner: Runner = run_command,
    machine: tuple[str, Platform] | None = None,
) -> RunContext:
    """
    Construct the context for one invocation.

    Raises:
        HostEnvironmentError: If `nixcfg.toml` is malformed.
    """
    try:
        settings = load_settings(repo_root)
    except ValueError as e:
        raise HostEnvironmentError(str(e), remediation=[f"Fix {repo_root / 'nixcfg.toml'}"]) from e

    name, platform = machine if machine is not None else detect_machine()
    return RunContext(
        repo_root=repo_root,
        settings=settings,
        host=classify(name, settings.registry),
        platform=platform,
        console=console or Console(stderr=True),
        prompter=prompter or TerminalPrompter(),
        runner=runner,
    )
