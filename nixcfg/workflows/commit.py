"""
Commit workflow.

    Idle -> SyncedOrBehind -> Staged -> Validated -> MessageCaptured
         -> Committed -> Verified -> Pushed

Orderings are fixed: fetch/rebase precedes staging, the build precedes the
commit, and encryption verification precedes every push. Any failure
between Staged and Committed unstages everything before the error
propagates; once the commit exists it is left in place.

Amend mode rewrites the previous commit and therefore force pushes. Reset
mode hands the commit step to `HistoryResetWorkflow`.
"""

from __future__ import annotations

from enum import Enum

from ..audit_log import CreationSummary, ErasureCost, log_operation
from ..bootstrap import BootstrapSequencer
from ..errors import GitError, HostEnvironmentError, SyncError, ValidationError
from ..git import Git
from ..secrets.verify import verify_commits, verify_committed
from .base import StagingGuard, WorkflowOutcome, prepare_layer_a, require_host
from .reset import HistoryResetWorkflow


class CommitState(str, Enum):
    IDLE = "idle"
    SYNCED_OR_BEHIND = "synced_or_behind"
    STAGED = "staged"
    VALIDATED = "validated"
    MESSAGE_CAPTURED = "message_captured"
    COMMITTED = "committed"
    VERIFIED = "verified"
    PUSHED = "pushed"


class CommitMode(str, Enum):
    NORMAL = "normal"
    AMEND = "amend"
    RESET = "reset"


# Forward transitions. Every state may also fall back to IDLE on error.
TRANSITIONS: dict[CommitState, frozenset[CommitState]] = {
    CommitState.IDLE: frozenset({CommitState.SYNCED_OR_BEHIND}),
    # VERIFIED directly: nothing to commit, existing unpushed commits checked
    CommitState.SYNCED_OR_BEHIND: frozenset({CommitState.STAGED, CommitState.VERIFIED}),
    CommitState.STAGED: frozenset({CommitState.VALIDATED}),
    CommitState.VALIDATED: frozenset({CommitState.MESSAGE_CAPTURED}),
    CommitState.MESSAGE_CAPTURED: frozenset({CommitState.COMMITTED}),
    CommitState.COMMITTED: frozenset({CommitState.VERIFIED}),
    CommitState.VERIFIED: frozenset({CommitState.PUSHED}),
    CommitState.PUSHED: frozenset(),
}


def can_transition(current: CommitState, target: CommitState) -> bool:
    if target is CommitState.IDLE:
        return True
    return target in TRANSITIONS[current]


def check_git_identity(git: Git, settings) -> list[str]:
    """
    Validate remote transport, author identity and commit signing.

    Returns display lines for the checks that passed.

    Raises:
        HostEnvironmentError: On the first failing check, with the fix command.
    """
    passed: list[str] = []
    remote = settings.git.remote

    url = git.remote_url(remote)
    if url is not None:
        if url.startswith("https://"):
            raise HostEnvironmentError(
                f"Remote '{remote}' uses HTTPS, expected SSH (current: {url})",
                remediation=[f"git remote set-url {remote} git@<host>:<owner>/<repo>.git"],
            )
        passed.append("Remote URL: SSH")

    name = git.config_get("user.name")
    if not name:
        raise HostEnvironmentError("git user.name not configured", remediation=['git config user.name "Your Name"'])
    passed.append(f"user.name: {name}")

    email = git.config_get("user.email")
    if not email:
        raise HostEnvironmentError("git user.email not configured", remediation=['git config user.email "you@example.com"'])
    passed.append(f"user.email: {email}")

    if settings.git.require_signed_commits:
        if git.config_get("commit.gpgsign") != "true":
            raise HostEnvironmentError("Commit signing not enabled", remediation=["git config commit.gpgsign true"])
        passed.append("Commit signing: enabled")
        if not git.config_get("user.signingkey"):
            raise HostEnvironmentError("No signing key configured", remediation=["git config user.signingkey <your-key>"])
        passed.append("Signing key: configured")
        fmt = git.config_get("gpg.format")
        if fmt != "ssh":
            raise HostEnvironmentError(
                f"gpg.format not set to 'ssh' (current: {fmt or '<not set>'})",
                remediation=["git config gpg.format ssh"],
            )
        passed.append("gpg.format: ssh")

    return passed


class CommitWorkflow:
    def __init__(self, ctx, mode: CommitMode = CommitMode.NORMAL):
        self.ctx = ctx
        self.mode = mode
        self.git = ctx.git
        self.settings = ctx.settings
        self.console = ctx.console
        self.state = CommitState.IDLE
        self.fresh = False
        self.has_changes = True

    def _advance(self, target: CommitState) -> None:
        if not can_transition(self.state, target):
            raise RuntimeError(f"Illegal commit transition {self.state.value} -> {target.value}")
        self.state = target

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def run(self) -> WorkflowOutcome:
        try:
            return self._run()
        except BaseException:
            self.state = CommitState.IDLE
            raise

    def _run(self) -> WorkflowOutcome:
        host = require_host(self.ctx, allow_live_installer=False)
        if not self.git.is_repository():
            raise HostEnvironmentError("Not a git repository", remediation=["Run nixcfg from the repository root."])

        reset = HistoryResetWorkflow(self.ctx) if self.mode is CommitMode.RESET else None
        if reset is not None:
            if not self.git.has_commits():
                raise ValidationError("Nothing to reset: the repository has no commits")
            reset.preflight()
            if not reset.confirm():
                return WorkflowOutcome.decline("Aborted. No changes made.", state=self.state.value)

        if self.mode is CommitMode.AMEND and not self.git.has_commits():
            raise ValidationError("Nothing to amend: the repository has no commits")

        if not prepare_layer_a(self.ctx):
            return WorkflowOutcome.decline("Aborted at key check", state=self.state.value)

        if reset is None:
            self.console.print("Validating git configuration...", style="dim")
            for line in check_git_identity(self.git, self.settings):
                self.console.print(line, style="green")
            declined = self._sync()
            if declined is not None:
                return declined
        else:
            self.console.print("Skipping git configuration and sync (--reset mode)", style="yellow")
        self._advance(CommitState.SYNCED_OR_BEHIND)

        self.console.print("Checking for changes...", style="dim")
        self.has_changes = self.git.has_changes()
        if not self.has_changes and self.mode is CommitMode.NORMAL:
            self.console.print("No changes to commit", style="yellow")
            return self._push_unpushed()
        if not self.has_changes and self.mode is CommitMode.AMEND:
            self.console.print("No new changes; --amend will only rewrite the message", style="yellow")

        with StagingGuard(self.git, self.console) as guard:
            self._format()
            self._stage()
            self._validate(host)
            message = self._capture_message()
            self._commit(message, reset)
            guard.disarm()

        destination = reset.resolve_destination() if reset is not None else None
        self._verify()

        if reset is not None:
            outcome = reset.publish(destination)
            if outcome.state == CommitState.PUSHED.value:
                self._advance(CommitState.PUSHED)
            return WorkflowOutcome(
                exit_code=outcome.exit_code,
                message=outcome.message,
                state=self.state.value,
                declined=outcome.declined,
            )
        return self._push()

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _sync(self) -> WorkflowOutcome | None:
        """Fetch and offer to rebase. Returns an outcome only when the operator declines."""
        upstream = self.git.upstream()
        if upstream is None:
            return None

        self.console.print("Fetching from remote...", style="dim")
        try:
            self.git.fetch()
            behind = self.git.behind_count(upstream)
        except GitError as e:
            raise SyncError("Fetch failed", remediation=[e.stderr or str(e)]) from e
        if behind == 0:
            return None

        self.console.print(f"Remote has {behind} new commit(s)", style="yellow")
        if not self.ctx.gate.confirm("git.rebase", "Rebase local changes on top?"):
            self.console.print("Aborted. Run 'git pull --rebase' manually when ready", style="yellow")
            return WorkflowOutcome.decline("Rebase declined", state=self.state.value)

        stashed = self.git.is_dirty()
        if stashed:
            self.console.print("Stashing local changes...", style="dim")
            self.git.stash_push()
        try:
            self.git.pull_rebase()
        except GitError as e:
            steps = ["Resolve the conflicts, finish or abort the rebase, then rerun nixcfg commit."]
            if stashed:
                steps.append("Your changes are stashed. Run 'git stash pop' after resolving.")
            raise SyncError("Rebase failed", remediation=steps) from e
        if stashed:
            self.console.print("Restoring stashed changes...", style="dim")
            try:
                self.git.stash_pop()
            except GitError as e:
                raise SyncError(
                    "Stash pop failed (conflict with rebased changes)",
                    remediation=["Resolve manually: git stash show -p | git apply"],
                ) from e
        self.console.print("Rebased successfully", style="green")
        return None

    def _push_unpushed(self) -> WorkflowOutcome:
        upstream = self.git.upstream()
        if upstream is None:
            return WorkflowOutcome.done("Nothing to commit", state=self.state.value)

        revs = self.git.rev_list(f"{upstream}..HEAD")
        if not revs:
            return WorkflowOutcome.done("Nothing to commit; up to date with remote", state=self.state.value)

        self.console.print(f"{len(revs)} unpushed commit(s) found", style="yellow")
        self.console.print("Verifying secrets are encrypted in unpushed commits...", style="dim")
        verify_commits(self.git, self.settings, revs)
        self._advance(CommitState.VERIFIED)

        if not self.ctx.gate.confirm("git.push", "Push to remote?"):
            return WorkflowOutcome.decline("Push declined", state=self.state.value)
        self._do_push()
        log_operation(self.ctx.repo_root, "git.push", metadata={"upstream": upstream, "commits": len(revs)})
        self._advance(CommitState.PUSHED)
        return WorkflowOutcome.done("Pushed", state=self.state.value)

    def _format(self) -> None:
        self.console.print("Formatting Nix files...", style="dim")
        if not self.ctx.config_builder.format():
            raise ValidationError("Formatting failed")

    def _stage(self) -> None:
        self.console.print("Staging changes...", style="dim")
        bootstrap = BootstrapSequencer(self.git, self.settings)
        self.fresh = self.mode is not CommitMode.RESET and bootstrap.needs_bootstrap()
        try:
            if self.fresh:
                self.console.print("Fresh repo detected; using two-step commit for the content filter", style="yellow")
                bootstrap.stage_anchor()
            else:
                self.git.add_all()
        except GitError as e:
            raise ValidationError("Staging failed", remediation=[e.stderr or str(e), "Fix the problem above, then rerun nixcfg commit."]) from e
        self._advance(CommitState.STAGED)

        prefix = self.settings.secrets.secrets_dir.rstrip("/") + "/"
        if any(p.startswith(prefix) for p in self.git.staged_names()):
            self.console.print(
                f"Note: {prefix} files staged; encryption will be verified after commit",
                style="yellow",
            )
        for line in self.git.status_short():
            self.console.print(f"  {line}", style="dim", markup=False, highlight=False)

    def _validate(self, host) -> None:
        self.console.print(f"Validating configuration ({host.build_target})...", style="dim")
        if not self.ctx.config_builder.build(host, self.ctx.platform):
            raise ValidationError(
                "Configuration build failed. Aborting.",
                remediation=["Fix the build errors above, then rerun nixcfg commit."],
            )
        self.console.print("Configuration valid", style="green")
        self._advance(CommitState.VALIDATED)

    def _capture_message(self) -> str:
        message = self.ctx.prompter.ask("Commit message: ").strip()
        if not message:
            raise ValidationError("Commit message cannot be empty")
        self._advance(CommitState.MESSAGE_CAPTURED)
        return message

    def _commit(self, message: str, reset: HistoryResetWorkflow | None) -> None:
        try:
            self._write_commit(message, reset)
        except GitError as e:
            raise ValidationError(
                "Commit failed",
                remediation=[e.stderr or str(e), "Fix the problem above, then rerun nixcfg commit."],
            ) from e
        self._advance(CommitState.COMMITTED)

    def _write_commit(self, message: str, reset: HistoryResetWorkflow | None) -> None:
        if reset is not None:
            reset.rewrite(message)
        elif self.fresh:
            self.console.print("Creating initial commit (without secrets)...", style="dim")
            bootstrap = BootstrapSequencer(self.git, self.settings)
            bootstrap.commit_anchor(message)
            self.console.print("Adding secrets (content filter now active)...", style="dim")
            folded = bootstrap.fold_secrets()
            log_operation(
                self.ctx.repo_root,
                "commit.bootstrap",
                created=CreationSummary(commits=1, files=len(folded)),
                metadata={"head": self.git.head()},
            )
        elif self.mode is CommitMode.AMEND:
            self.console.print("Amending previous commit...", style="dim")
            previous = self.git.head()
            self.git.commit(message, amend=True, allow_empty=not self.has_changes)
            log_operation(
                self.ctx.repo_root,
                "commit.amend",
                erased=ErasureCost(commits=1),
                created=CreationSummary(commits=1),
                metadata={"replaced": previous, "head": self.git.head()},
            )
        else:
            self.console.print("Committing...", style="dim")
            self.git.commit(message)
            log_operation(
                self.ctx.repo_root,
                "commit",
                created=CreationSummary(commits=1),
                metadata={"head": self.git.head()},
            )

    def _verify(self) -> None:
        self.console.print("Verifying secrets are encrypted...", style="dim")
        for path in verify_committed(self.git, self.settings):
            self.console.print(f"{path}: Encrypted", style="green")
        self._advance(CommitState.VERIFIED)

    def _do_push(self, **kwargs) -> None:
        self.console.print("Pushing to remote...", style="dim")
        try:
            self.git.push(**kwargs)
        except GitError as e:
            raise SyncError("Push failed", remediation=[e.stderr or str(e), "git pull --rebase, then rerun nixcfg commit"]) from e
        self.console.print("Pushed successfully", style="green")

    def _push(self) -> WorkflowOutcome:
        remote = self.settings.git.remote
        url = self.git.remote_url(remote)
        branch = self.git.current_branch() or self.settings.git.primary_branch
        if url is None:
            self.console.print(f"No remote '{remote}' configured. To add one and push:", style="yellow")
            self.console.print(f"  git remote add {remote} <url>\n  git push -u {remote} {branch}", style="dim")
            return WorkflowOutcome.done("Committed; nothing pushed", state=self.state.value)

        upstream = self.git.upstream()
        if upstream is not None and self.mode is CommitMode.AMEND:
            if not self.ctx.gate.confirm(
                "git.push.force",
                "Force push amended commit?",
                destination=f"{url} ({upstream})",
                warning="The amended commit replaces one that may already be on the remote.",
            ):
                self.console.print("To push manually: git push --force-with-lease", style="dim")
                return WorkflowOutcome.decline("Force push declined", state=self.state.value)
            self._do_push(force_with_lease=True)
            log_operation(self.ctx.repo_root, "git.push.force", metadata={"remote": url, "upstream": upstream})
        elif upstream is not None:
            self._do_push()
            log_operation(self.ctx.repo_root, "git.push", metadata={"upstream": upstream})
        else:
            self.console.print("No upstream branch set", style="yellow")
            if not self.ctx.gate.confirm("git.push.upstream", f"Push and set upstream to {remote}/{branch}?"):
                self.console.print(f"To push manually: git push -u {remote} {branch}", style="dim")
                return WorkflowOutcome.decline("Push declined", state=self.state.value)
            self._do_push(remote=remote, branch=branch, set_upstream=True)
            log_operation(self.ctx.repo_root, "git.push.upstream", metadata={"remote": url, "branch": branch})

        self._advance(CommitState.PUSHED)
        return WorkflowOutcome.done("Done", state=self.state.value)
