"""
First-commit bootstrap for the content filter.

The filter only encrypts reliably once the repository has a commit to
anchor on. A brand-new repository (or an orphan branch) has none, so the
first commit is made in two phases:

1. Stage and commit everything except the secrets subtree (the anchor).
2. Stage the secrets subtree, now covered by the filter, and fold it into
   the anchor with `commit --amend --no-edit`.

The result is a single commit whose secret blobs are ciphertext. Phase 2
checks its preconditions and does nothing when there is nothing to fold,
so it can be re-run safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .config import Settings
from .errors import ValidationError
from .git import Git


@dataclass
class BootstrapResult:
    anchored: bool = False
    folded: list[str] = field(default_factory=list)


class BootstrapSequencer:
    def __init__(self, git: Git, settings: Settings):
        self.git = git
        self.secrets_dir = settings.secrets.secrets_dir

    def needs_bootstrap(self) -> bool:
        return not self.git.has_commits()

    def stage_anchor(self) -> None:
        """Phase 1a: stage everything except the secrets subtree."""
        self.git.rm_cached(self.secrets_dir)
        self.git.add_excluding(self.secrets_dir)

    def commit_anchor(self, message: str) -> None:
        """Phase 1b: create the anchor commit (empty if only secrets exist)."""
        self.git.commit(message, allow_empty=True)

    def fold_secrets(self) -> list[str]:
        """
        Phase 2: stage the secrets subtree and amend it into HEAD.

        Returns the secret paths folded in; an empty list means there was
        nothing to do and HEAD is unchanged.
        """
        if not self.git.has_commits():
            raise ValidationError(
                "Cannot fold secrets: no anchor commit exists",
                remediation=["Run the full bootstrap (nixcfg commit) instead of resuming it."],
            )
        if not (self.git.repo / self.secrets_dir).is_dir():
            return []

        self.git.add_paths(self.secrets_dir)
        prefix = self.secrets_dir.rstrip("/") + "/"
        staged = [p for p in self.git.staged_names() if p.startswith(prefix)]
        if not staged:
            return []

        self.git.commit(amend=True, no_edit=True)
        return staged

    def run(self, message: str) -> BootstrapResult:
        """All phases, for callers that have nothing to do between them."""
        self.stage_anchor()
        self.commit_anchor(message)
        return BootstrapResult(anchored=True, folded=self.fold_secrets())
