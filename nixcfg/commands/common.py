"""Shared command plumbing: context construction and error rendering."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from ..context import RunContext, build_context
from ..errors import GitError, IntegrityError, NixcfgError, PartialDeviceStateError
from ..hosts import describe
from ..prompt import require_interactive
from ..workflows.base import WorkflowOutcome

INTERRUPTED = 130


def render_error(console: Console, err: NixcfgError) -> None:
    if isinstance(err, (IntegrityError, PartialDeviceStateError)):
        body = [err.message]
        if isinstance(err, IntegrityError):
            body.extend(f"  {path}: NOT encrypted" for path in err.offending)
        if isinstance(err, PartialDeviceStateError):
            body.append(f"Device {err.device} may be in a partial state.")
        if err.remediation:
            body.append("")
            body.append("To fix:")
            body.extend(f"  {i}. {step}" for i, step in enumerate(err.remediation, 1))
        console.print(Panel("\n".join(body), title=err.title, border_style="bold red"))
        return

    console.print(f"Error: {err.message}", style="bold red")
    for line in err.remediation:
        console.print(f"   {line}", style="dim", markup=False, highlight=False)


def execute(
    repo: Path,
    action: Callable[[RunContext], WorkflowOutcome],
    *,
    interactive: bool = True,
    console: Console | None = None,
) -> int:
    """
    Build the run context, run `action`, and map the result to an exit code.

    Returns:
        0 on success or decline, the error's exit code on failure, 130 on
        interrupt.
    """
    console = console or Console(stderr=True)
    try:
        if interactive:
            require_interactive()
        ctx = build_context(repo, console=console)
        console.print(describe(ctx.host, ctx.platform), style="dim")
        outcome = action(ctx)
    except NixcfgError as e:
        render_error(console, e)
        return e.exit_code
    except GitError as e:
        console.print(f"Error: {e}", style="bold red")
        return 1
    except KeyboardInterrupt:
        console.print("\nInterrupted.", style="yellow")
        return INTERRUPTED

    if outcome.message:
        style = "yellow" if outcome.declined else "green"
        console.print(outcome.message, style=style)
    return outcome.exit_code
