"""CLI entrypoint for nixcfg."""

import sys
from pathlib import Path

import click

from . import __version__
from .context import find_repo_root


@click.group()
@click.version_option(__version__, prog_name="nixcfg")
@click.option(
    "--repo",
    "-r",
    type=click.Path(exists=False, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Path to the configuration repository (defaults to the enclosing git repository)",
)
@click.pass_context
def cli(ctx: click.Context, repo: Path | None) -> None:
    """nixcfg - secrets-safe commit, deploy and provisioning workflows.

    Keeps build-time secrets encrypted in history, validates every commit
    against the host's configuration build, and gates destructive steps
    behind typed confirmation.
    """
    ctx.ensure_object(dict)
    if repo is None:
        detected = find_repo_root(Path.cwd())
        if detected is None:
            raise click.ClickException("Not a git repository. Pass --repo /path/to/repo or run from inside it.")
        repo = detected

    if not repo.exists() or not repo.is_dir():
        raise click.BadParameter(f"Directory '{repo}' does not exist.", param_hint="--repo / -r")

    ctx.obj["repo"] = repo.resolve()


@cli.command()
@click.option("--amend", is_flag=True, help="Amend the previous commit instead of creating a new one")
@click.option(
    "--reset",
    is_flag=True,
    help="Clear all git history and create a fresh initial commit",
)
@click.pass_context
def commit(ctx: click.Context, amend: bool, reset: bool) -> None:
    """Format, validate, commit, verify encryption, and push.

    Examples:

        nixcfg commit

        nixcfg commit --amend

        nixcfg commit --reset
    """
    if amend and reset:
        raise click.UsageError("Cannot use --amend and --reset together")

    from .commands.workflow_cmd import run_commit
    from .workflows.commit import CommitMode

    mode = CommitMode.AMEND if amend else CommitMode.RESET if reset else CommitMode.NORMAL
    sys.exit(run_commit(ctx.obj["repo"], mode))


@cli.command()
@click.argument("host", required=False)
@click.pass_context
def deploy(ctx: click.Context, host: str | None) -> None:
    """Build and activate the configuration for this machine.

    HOST is optional: on installed systems it must match the machine; on
    the live installer it selects which Linux host to install.
    """
    from .commands.workflow_cmd import run_deploy

    sys.exit(run_deploy(ctx.obj["repo"], host))


@cli.command()
@click.argument("host", required=False)
@click.pass_context
def provision(ctx: click.Context, host: str | None) -> None:
    """Wipe, encrypt and partition the target disk (live installer only)."""
    from .commands.workflow_cmd import run_provision

    sys.exit(run_provision(ctx.obj["repo"], host))


@cli.command()
@click.option("--rev", default="HEAD", show_default=True, help="Commit to verify")
@click.pass_context
def verify(ctx: click.Context, rev: str) -> None:
    """Check every committed build-time secret is encrypted."""
    from .commands.inspect_cmd import run_verify

    sys.exit(run_verify(ctx.obj["repo"], rev))


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show host classification and the state of every secret file."""
    from .commands.inspect_cmd import run_status

    sys.exit(run_status(ctx.obj["repo"]))


@cli.command()
@click.pass_context
def unlock(ctx: click.Context) -> None:
    """Decrypt build-time secrets in the working copy after a clone."""
    from .commands.inspect_cmd import run_unlock

    sys.exit(run_unlock(ctx.obj["repo"]))


@cli.command()
@click.option("--last", "last_n", type=int, default=None, help="Show only the last N entries")
@click.pass_context
def audit(ctx: click.Context, last_n: int | None) -> None:
    """Print the log of irreversible operations."""
    from .commands.audit import run_audit

    sys.exit(run_audit(ctx.obj["repo"], last_n))


def main() -> None:
    """Main entrypoint."""
    cli()


if __name__ == "__main__":
    main()
