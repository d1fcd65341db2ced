"""Tests for the click entry point and command plumbing."""

import io

import pytest
from click.testing import CliRunner
from rich.console import Console

from conftest import git, write
from nixcfg.audit_log import log_operation
from nixcfg.cli import cli
from nixcfg.commands.common import execute, render_error
from nixcfg.errors import IntegrityError, SyncError, ValidationError
from nixcfg.workflows.base import WorkflowOutcome


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def committed(repo):
    write(repo, "flake.nix", "{ }\n")
    write(repo, "Private/nithra/git-agecrypt.nix", "{ a = 1; }\n")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "base")
    return repo


class TestCli:
    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "nixcfg" in result.output

    def test_amend_and_reset_are_exclusive(self, cli_runner, repo):
        result = cli_runner.invoke(cli, ["--repo", str(repo), "commit", "--amend", "--reset"])
        assert result.exit_code == 2
        assert "Cannot use --amend and --reset together" in result.output

    def test_commit_refuses_without_terminal(self, cli_runner, committed):
        result = cli_runner.invoke(cli, ["--repo", str(committed), "commit"])
        assert result.exit_code == 2

    def test_verify(self, cli_runner, committed):
        result = cli_runner.invoke(cli, ["--repo", str(committed), "verify"])
        assert result.exit_code == 0

    def test_verify_detects_plaintext(self, cli_runner, committed):
        (committed / ".gitattributes").unlink()
        write(committed, "Private/maldoria/git-agecrypt.nix", "{ b = 2; }\n")
        git(committed, "add", "-A")
        git(committed, "commit", "-q", "-m", "leak")

        result = cli_runner.invoke(cli, ["--repo", str(committed), "verify"])
        assert result.exit_code == 5

    def test_status(self, cli_runner, committed):
        result = cli_runner.invoke(cli, ["--repo", str(committed), "status"])
        assert result.exit_code == 0

    def test_audit(self, cli_runner, repo):
        log_operation(repo, "history.reset", metadata={"branch": "main"})
        result = cli_runner.invoke(cli, ["--repo", str(repo), "audit", "--last", "5"])
        assert result.exit_code == 0
        assert "history.reset" in result.output


# -----------------------------------------------------------------------------
# Error rendering and exit codes
# -----------------------------------------------------------------------------


def _console():
    return Console(file=io.StringIO(), width=200)


class TestExecute:
    def test_outcome_exit_code(self, repo):
        console = _console()
        code = execute(repo, lambda ctx: WorkflowOutcome.decline("Push declined"), interactive=False, console=console)
        assert code == 0
        assert "Push declined" in console.file.getvalue()

    @pytest.mark.parametrize(
        "error,code",
        [
            (SyncError("conflict"), 3),
            (ValidationError("build failed"), 4),
            (IntegrityError("leak", offending=["Private/x/git-agecrypt.nix"]), 5),
        ],
    )
    def test_error_exit_codes(self, repo, error, code):
        def fail(ctx):
            raise error

        assert execute(repo, fail, interactive=False, console=_console()) == code

    def test_interrupt(self, repo):
        def interrupted(ctx):
            raise KeyboardInterrupt()

        assert execute(repo, interrupted, interactive=False, console=_console()) == 130

    def test_integrity_error_panel(self):
        console = _console()
        render_error(
            console,
            IntegrityError("1 of 1 not encrypted", offending=["Private/x/git-agecrypt.nix"], remediation=["Undo it"]),
        )
        out = console.file.getvalue()
        assert "SECRETS ARE NOT ENCRYPTED" in out
        assert "Private/x/git-agecrypt.nix: NOT encrypted" in out
        assert "1. Undo it" in out
