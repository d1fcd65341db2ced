"""Read-mostly commands: verify, status, unlock."""

from __future__ import annotations

from pathlib import Path

from rich.table import Table

from ..context import RunContext
from ..secrets.filter import ContentFilter
from ..secrets.layers import UnrecognisedContent, classify, detect_state, discover, layer_specs, read_working_copy
from ..secrets.verify import verify_committed
from ..workflows.base import WorkflowOutcome, prepare_layer_a
from .common import execute


def _verify(ctx: RunContext, rev: str) -> WorkflowOutcome:
    ctx.console.print(f"Verifying secrets are encrypted in {rev}...", style="dim")
    paths = verify_committed(ctx.git, ctx.settings, rev)
    for path in paths:
        ctx.console.print(f"{path}: Encrypted", style="green")
    if not paths:
        return WorkflowOutcome.done(f"No Layer A secret files in {rev}")
    return WorkflowOutcome.done(f"{len(paths)} secret file(s) verified")


def run_verify(repo: Path, rev: str = "HEAD") -> int:
    """Check every committed Layer A secret in `rev` is ciphertext."""
    return execute(repo, lambda ctx: _verify(ctx, rev), interactive=False)


def _state_label(content: str | None, spec) -> str:
    try:
        return detect_state(content, spec).value
    except UnrecognisedContent:
        return "unrecognised"


def _status(ctx: RunContext) -> WorkflowOutcome:
    settings = ctx.settings.secrets
    specs = layer_specs(settings)
    has_head = ctx.git.has_commits()

    paths = dict(discover(ctx.repo_root, settings))
    if has_head:
        for spec in specs.values():
            for path in ctx.git.ls_files(spec.pattern, rev="HEAD"):
                paths.setdefault(path, spec.layer)

    table = Table(title="Secret files")
    table.add_column("path", style="cyan", no_wrap=True)
    table.add_column("layer")
    table.add_column("working copy")
    table.add_column("committed (HEAD)")

    for path in sorted(paths):
        layer = classify(path, settings) or paths[path]
        spec = specs[layer]
        working = _state_label(read_working_copy(ctx.repo_root / path), spec)
        committed = _state_label(ctx.git.show_blob("HEAD", path), spec) if has_head else "-"
        table.add_row(path, layer.value, working, committed)

    ctx.console.print(table)
    ctx.console.print(f"Content filter: {ContentFilter(ctx.git, ctx.settings, ctx.runner).status().value}", style="dim")
    return WorkflowOutcome.done("")


def run_status(repo: Path) -> int:
    """Show host classification and the state of every secret file."""
    return execute(repo, _status, interactive=False)


def _unlock(ctx: RunContext) -> WorkflowOutcome:
    if not prepare_layer_a(ctx):
        return WorkflowOutcome.decline("Aborted at key check")
    ctx.console.print("Decrypting secrets...", style="dim")
    decrypted = ContentFilter(ctx.git, ctx.settings, ctx.runner).decrypt_working_copy()
    for path in decrypted:
        ctx.console.print(f"{path}: Decrypted successfully", style="green")
    if not decrypted:
        return WorkflowOutcome.done("All secret files already decrypted")
    return WorkflowOutcome.done(f"{len(decrypted)} file(s) decrypted")


def run_unlock(repo: Path) -> int:
    """Decrypt Layer A working-copy files that are still ciphertext."""
    return execute(repo, _unlock)
