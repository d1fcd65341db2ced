"""
Thin git plumbing shared by every workflow.

Each method is one git invocation (or a short fixed sequence). Failures
raise `GitError`; workflows translate that into the error class that fits
the step where it happened.
"""

from __future__ import annotations

from fnmatch import fnmatch
from pathlib import Path

from .errors import GitError
from .system import Runner, run_command


class Git:
    def __init__(self, repo: Path, runner: Runner = run_command):
        self.repo = repo
        self.runner = runner

    # -------------------------------------------------------------------------
    # Invocation
    # -------------------------------------------------------------------------

    def run(self, *args: str, check: bool = True, input: str | None = None):
        cmd = ["git", *args]
        result = self.runner(cmd, cwd=self.repo, input=input, capture=True, check=False)
        if check and result.returncode != 0:
            raise GitError(list(args), result.returncode, result.stderr or "")
        return result

    def ok(self, *args: str) -> bool:
        return self.run(*args, check=False).returncode == 0

    def output(self, *args: str) -> str:
        return self.run(*args).stdout.strip()

    def lines(self, *args: str) -> list[str]:
        return [line for line in self.run(*args).stdout.splitlines() if line.strip()]

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_repository(self) -> bool:
        return self.ok("rev-parse", "--git-dir")

    def has_commits(self) -> bool:
        return self.ok("rev-parse", "--verify", "--quiet", "HEAD")

    def head(self) -> str:
        return self.output("rev-parse", "HEAD")

    def current_branch(self) -> str | None:
        result = self.run("symbolic-ref", "--short", "-q", "HEAD", check=False)
        name = result.stdout.strip()
        return name or None

    def upstream(self) -> str | None:
        result = self.run("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def behind_count(self, upstream: str) -> int:
        return int(self.output("rev-list", "--count", f"HEAD..{upstream}") or "0")

    def rev_list(self, rev_range: str) -> list[str]:
        return self.lines("rev-list", rev_range)

    def is_dirty(self) -> bool:
        """Tracked modifications in the working tree or the index."""
        if not self.has_commits():
            return bool(self.staged_names())
        return not self.ok("diff", "--quiet") or not self.ok("diff", "--cached", "--quiet")

    def untracked(self) -> list[str]:
        return self.lines("ls-files", "--others", "--exclude-standard")

    def has_changes(self) -> bool:
        return self.is_dirty() or bool(self.untracked())

    def staged_names(self) -> list[str]:
        return self.lines("diff", "--cached", "--name-only")

    def unstaged_names(self) -> list[str]:
        return self.lines("diff", "--name-only")

    def status_short(self) -> list[str]:
        return [line for line in self.run("status", "--porcelain").stdout.splitlines() if line]

    def ls_files(self, pattern: str, rev: str | None = None) -> list[str]:
        """Paths matching `pattern` in the index, or in the tree of `rev`."""
        if rev is None:
            paths = self.lines("ls-files", "--cached")
        else:
            paths = self.lines("ls-tree", "-r", "--name-only", rev)
        return sorted(p for p in paths if fnmatch(p, pattern))

    def show_blob(self, rev: str, path: str) -> str | None:
        """Raw stored content of `path` at `rev` (no smudge), or None when absent."""
        result = self.run("cat-file", "blob", f"{rev}:{path}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def config_get(self, key: str) -> str | None:
        result = self.run("config", "--get", key, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def remote_url(self, name: str) -> str | None:
        result = self.run("remote", "get-url", name, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def fetch(self) -> None:
        self.run("fetch", "--quiet")

    def stash_push(self) -> None:
        self.run("stash", "push", "--quiet", "-m", "nixcfg-autostash")

    def stash_pop(self) -> None:
        self.run("stash", "pop", "--quiet")

    def pull_rebase(self) -> None:
        self.run("pull", "--rebase", "--quiet")

    def add_all(self) -> None:
        self.run("add", "-A")

    def add_excluding(self, excluded: str) -> None:
        self.run("add", "-A", "--", ".", f":!{excluded}")

    def add_paths(self, *paths: str) -> None:
        self.run("add", "-A", "--", *paths)

    def rm_cached(self, path: str) -> None:
        self.run("rm", "-r", "--cached", "--quiet", "--ignore-unmatch", "--", path)

    def unstage(self) -> None:
        """Empty the index back to HEAD (or to nothing on an unborn branch)."""
        if self.has_commits():
            self.run("reset", "--quiet")
        else:
            self.rm_cached(".")

    def commit(
        self,
        message: str | None = None,
        *,
        amend: bool = False,
        no_edit: bool = False,
        allow_empty: bool = False,
    ) -> None:
        args = ["commit", "--quiet"]
        if amend:
            args.append("--amend")
        if no_edit:
            args.append("--no-edit")
        if allow_empty:
            args.append("--allow-empty")
        if message is not None:
            args.extend(["-m", message])
        self.run(*args)

    def checkout_orphan(self, name: str) -> None:
        self.run("checkout", "--quiet", "--orphan", name)

    def checkout_paths(self, *paths: str) -> None:
        self.run("checkout", "--", *paths)

    def branch_delete(self, name: str) -> None:
        self.run("branch", "-D", name)

    def branch_rename(self, new_name: str, *, force: bool = False) -> None:
        self.run("branch", "-M" if force else "-m", new_name)

    def attach_head(self, branch: str) -> None:
        """Point HEAD at `branch` and reset the index to it. The working tree is left alone."""
        self.run("symbolic-ref", "HEAD", f"refs/heads/{branch}")
        self.run("reset", "--quiet")

    def branch_exists(self, name: str) -> bool:
        return self.ok("rev-parse", "--verify", "--quiet", f"refs/heads/{name}")

    def remote_add(self, name: str, url: str) -> None:
        self.run("remote", "add", name, url)

    def remote_set_url(self, name: str, url: str) -> None:
        self.run("remote", "set-url", name, url)

    def push(
        self,
        remote: str | None = None,
        branch: str | None = None,
        *,
        force: bool = False,
        force_with_lease: bool = False,
        set_upstream: bool = False,
    ) -> None:
        args = ["push", "--quiet"]
        if force:
            args.append("--force")
        if force_with_lease:
            args.append("--force-with-lease")
        if set_upstream:
            args.append("-u")
        if remote is not None:
            args.append(remote)
        if branch is not None:
            args.append(branch)
        self.run(*args)
