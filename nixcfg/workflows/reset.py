"""
History reset: discard all history and start again from one root commit.

The orphan branch is a fresh-repository state, so the first commit on it
goes through the same bootstrap as a brand-new repository. Two independent
YES confirmations bracket the work: one before local history is touched and
one, after the destination is shown, before the remote is overwritten.
"""

from __future__ import annotations

from ..audit_log import CreationSummary, ErasureCost, log_operation
from ..bootstrap import BootstrapSequencer
from ..errors import GitError, HostEnvironmentError, SyncError
from ..secrets.filter import ContentFilter
from .base import WorkflowOutcome

RESET_WARNING = (
    "This will PERMANENTLY DELETE all local git history!\n"
    "All local commits on the primary branch will be removed and a new\n"
    "initial commit will be created. You will be asked again before\n"
    "anything is pushed."
)

REMOTE_WARNING = (
    "This will OVERWRITE all history on the remote repository!\n"
    "All existing commits, branches, and tags on it will be LOST."
)


class HistoryResetWorkflow:
    def __init__(self, ctx):
        self.ctx = ctx
        self.git = ctx.git
        self.settings = ctx.settings
        self.console = ctx.console

    def preflight(self) -> None:
        """Refuse to start while HEAD is still on a temporary branch from an earlier run."""
        orphan = self.settings.git.orphan_branch
        if self.git.current_branch() == orphan:
            primary = self.settings.git.primary_branch
            raise HostEnvironmentError(
                f"HEAD is on the temporary branch {orphan} left by an interrupted reset",
                remediation=[f"git checkout {primary}", f"git branch -D {orphan}", "Rerun nixcfg commit --reset."],
            )

    def confirm(self) -> bool:
        """Destructive-local gate. Nothing has been touched when this returns False."""
        return self.ctx.gate.confirm("history.reset", "Reset local history?", warning=RESET_WARNING)

    def rewrite(self, message: str) -> int:
        """
        Replace the primary branch with a single bootstrapped root commit.

        Any failure before the primary branch is replaced puts HEAD back on
        the starting branch and removes the temporary one.

        Returns the number of commits discarded.
        """
        primary = self.settings.git.primary_branch
        orphan = self.settings.git.orphan_branch
        start = self.git.current_branch() or primary
        discarded = len(self.git.rev_list("HEAD")) if self.git.has_commits() else 0

        if self.git.branch_exists(orphan):
            self.console.print(f"Removing leftover branch {orphan}...", style="yellow")
            self.git.branch_delete(orphan)

        self.console.print("Creating orphan branch with clean history...", style="dim")
        self.git.checkout_orphan(orphan)
        try:
            self.console.print("Creating initial commit (secrets folded in after the anchor)...", style="dim")
            result = BootstrapSequencer(self.git, self.settings).run(message)
            for path in result.folded:
                self.console.print(f"  {path}", style="dim")

            self.console.print("Rebinding content filter identity on the new branch...", style="dim")
            ContentFilter(self.git, self.settings, self.ctx.runner).rebind(self.settings.keys.layer_a_key_path)

            self.console.print(f"Replacing {primary} branch...", style="dim")
            self.git.branch_rename(primary, force=True)
        except BaseException:
            self._restore(start, orphan)
            raise

        log_operation(
            self.ctx.repo_root,
            "history.reset",
            erased=ErasureCost(commits=discarded, branches=1),
            created=CreationSummary(commits=1, files=len(result.folded)),
            metadata={"branch": primary, "head": self.git.head()},
        )
        self.console.print("Local history reset complete", style="green")
        return discarded

    def _restore(self, start: str, orphan: str) -> None:
        self.console.print(f"Reset failed; returning to {start}...", style="bold red")
        try:
            self.git.attach_head(start)
            if self.git.branch_exists(orphan):
                self.git.branch_delete(orphan)
        except GitError as e:
            self.console.print(f"Restore failed: {e}", style="bold red")
            self.console.print(f"  git checkout -f {start} && git branch -D {orphan}", style="dim")

    def resolve_destination(self) -> str | None:
        """Pick the push destination: keep the existing remote, or enter a new URL."""
        remote = self.settings.git.remote
        url = self.git.remote_url(remote)

        if url is None:
            self.console.print("No remote configured. Enter your repository SSH URL (leave empty to skip).", style="yellow")
            new_url = self.ctx.prompter.ask("Remote URL: ").strip()
            if not new_url:
                return None
            self.git.remote_add(remote, new_url)
            self.console.print(f"Remote configured: {new_url}", style="green")
            return new_url

        self.console.print(f"Current remote: {url}", style="yellow")
        if self.ctx.gate.confirm("remote.select", "Use this remote?"):
            return url

        new_url = self.ctx.prompter.ask("Remote URL: ").strip()
        if not new_url:
            return None
        self.git.remote_set_url(remote, new_url)
        self.console.print(f"Remote updated: {new_url}", style="green")
        return new_url

    def publish(self, destination: str | None) -> WorkflowOutcome:
        """Destructive-remote gate, then force push the new history."""
        remote = self.settings.git.remote
        primary = self.settings.git.primary_branch

        if destination is None:
            self.console.print("No remote configured. To add one and push:", style="yellow")
            self.console.print(f"  git remote add {remote} <url>\n  git push -u {remote} {primary}", style="dim")
            return WorkflowOutcome.done("Local history reset; nothing pushed", state="verified")

        if not self.ctx.gate.confirm(
            "git.push.force",
            "Force push and overwrite remote?",
            destination=destination,
            warning=REMOTE_WARNING,
        ):
            self.console.print(f"Push skipped. To push later: git push --force -u {remote} {primary}", style="dim")
            return WorkflowOutcome.decline("Local history reset; remote left unchanged", state="verified")

        self.console.print("Force pushing to remote...", style="dim")
        try:
            self.git.push(remote, primary, force=True, set_upstream=True)
        except GitError as e:
            raise SyncError("Force push failed", remediation=[e.stderr or str(e)]) from e

        log_operation(
            self.ctx.repo_root,
            "git.push.force",
            metadata={"remote": destination, "branch": primary, "head": self.git.head()},
        )
        self.console.print("Push complete", style="green")
        return WorkflowOutcome.done("History reset and pushed", state="pushed")
