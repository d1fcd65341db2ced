"""Pytest configuration and fixtures."""

from __future__ import annotations

import io
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Callable

import pytest
from rich.console import Console

from nixcfg.config import GitSettings, KeySettings, Settings
from nixcfg.context import RunContext
from nixcfg.hosts import Platform, classify
from nixcfg.prompt import ScriptedPrompter
from nixcfg.system import run_command

MAGIC = "age-encryption.org/v1"
TEST_KEY = "AGE-SECRET-KEY-" + "1QYQSZQGPQYQSZQGPQYQSZQGPQYQSZQGPQYQSZQGPQYQSZQGPQYQSZ"

CLEAN_SCRIPT = """\
import base64, sys
data = sys.stdin.buffer.read()
header = b"age-encryption.org/v1\\n"
if data.startswith(header):
    sys.stdout.buffer.write(data)
else:
    sys.stdout.buffer.write(header + base64.b64encode(data) + b"\\n")
"""

SMUDGE_SCRIPT = """\
import base64, sys
data = sys.stdin.buffer.read()
header = b"age-encryption.org/v1\\n"
if data.startswith(header):
    sys.stdout.buffer.write(base64.b64decode(data[len(header):].strip()))
else:
    sys.stdout.buffer.write(data)
"""

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


# -----------------------------------------------------------------------------
# Environment isolation
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_git_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's global and system git config out of test repos."""
    global_cfg = tmp_path / "gitconfig-global"
    global_cfg.write_text("", encoding="utf-8")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_cfg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


# -----------------------------------------------------------------------------
# Git helpers
# -----------------------------------------------------------------------------


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=repo, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def commit_count(repo: Path, rev: str = "HEAD") -> int:
    result = subprocess.run(["git", "rev-list", "--count", rev], cwd=repo, capture_output=True, text=True)
    return int(result.stdout.strip()) if result.returncode == 0 else 0


def write(repo: Path, rel: str, content: str) -> Path:
    path = repo / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def init_repo(path: Path, filters: Path, *, attributes: str | None = "Private/*/git-agecrypt.nix filter=git-agecrypt") -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q", "-b", "main")
    git(path, "config", "user.name", "Test User")
    git(path, "config", "user.email", "test@example.com")
    git(path, "config", "commit.gpgsign", "false")
    git(path, "config", "filter.git-agecrypt.clean", f"{sys.executable} {filters / 'clean.py'}")
    git(path, "config", "filter.git-agecrypt.smudge", f"{sys.executable} {filters / 'smudge.py'}")
    git(path, "config", "filter.git-agecrypt.required", "true")
    if attributes is not None:
        write(path, ".gitattributes", attributes + "\n")
    return path


@pytest.fixture
def filters(tmp_path: Path) -> Path:
    """Directory holding a reversible test content filter."""
    d = tmp_path / "filters"
    d.mkdir()
    (d / "clean.py").write_text(CLEAN_SCRIPT, encoding="utf-8")
    (d / "smudge.py").write_text(SMUDGE_SCRIPT, encoding="utf-8")
    return d


@pytest.fixture
def repo(tmp_path: Path, filters: Path) -> Path:
    """Empty repository with the content filter registered."""
    return init_repo(tmp_path / "repo", filters)


@pytest.fixture
def remote(tmp_path: Path) -> Path:
    """Bare repository used as origin."""
    path = tmp_path / "remote.git"
    subprocess.run(["git", "init", "-q", "--bare", "-b", "main", str(path)], check=True)
    return path


@pytest.fixture
def key_file(tmp_path: Path) -> Path:
    path = tmp_path / "keys" / "keys.txt"
    path.parent.mkdir()
    path.write_text(TEST_KEY + "\n", encoding="utf-8")
    return path


@pytest.fixture
def settings(key_file: Path) -> Settings:
    return Settings(
        keys=KeySettings(layer_a_key=str(key_file)),
        git=GitSettings(require_signed_commits=False),
    )


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------


class FakeBuilder:
    """Configuration builder that records calls and returns canned results."""

    def __init__(self) -> None:
        self.format_ok = True
        self.build_ok = True
        self.activate_ok = True
        self.build_error: BaseException | None = None
        self.calls: list[tuple] = []

    def format(self) -> bool:
        self.calls.append(("format",))
        return self.format_ok

    def build(self, host, platform) -> bool:
        self.calls.append(("build", host.build_target, platform))
        if self.build_error is not None:
            raise self.build_error
        return self.build_ok

    def activate(self, host, platform, *, live_installer: bool, target_root: str) -> bool:
        self.calls.append(("activate", host.build_target, platform, live_installer))
        return self.activate_ok


class FakeRunner:
    """
    Run git for real; record every other command and answer it from
    `responses` (program name -> (returncode, stdout)).
    """

    def __init__(self, responses: dict[str, tuple[int, str]] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[dict] = []

    def __call__(self, args, *, cwd=None, input=None, capture=True, check=False):
        if args and args[0] == "git":
            return run_command(args, cwd=cwd, input=input, capture=capture, check=check)
        self.calls.append({"args": list(args), "input": input})
        program = args[1] if args[0] == "sudo" and len(args) > 1 else args[0]
        key = " ".join(a for a in args if a != "sudo")
        rc, out = self.responses.get(key, self.responses.get(program, (0, "")))
        return subprocess.CompletedProcess(args, rc, out, "")

    def commands(self) -> list[str]:
        return [" ".join(c["args"]) for c in self.calls]


@pytest.fixture
def builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def runner(key_file: Path) -> FakeRunner:
    return FakeRunner({"git-agecrypt config list --identity": (0, str(key_file))})


@pytest.fixture
def make_ctx(settings: Settings, builder: FakeBuilder, runner: FakeRunner) -> Callable[..., RunContext]:
    """Factory for a RunContext over a test repository."""

    def factory(
        repo_root: Path,
        answers: list[str] | tuple[str, ...] = (),
        *,
        host: str = "Nithra",
        platform: Platform = Platform.LINUX,
        settings_override: Settings | None = None,
    ) -> RunContext:
        effective = settings_override or settings
        return RunContext(
            repo_root=repo_root,
            settings=effective,
            host=classify(host, effective.registry),
            platform=platform,
            console=Console(file=io.StringIO(), width=300),
            prompter=ScriptedPrompter(answers),
            runner=runner,
            builder=builder,
        )

    return factory


def output(ctx: RunContext) -> str:
    return ctx.console.file.getvalue()
