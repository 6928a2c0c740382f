"""Thin wrapper around the ``git`` CLI for the output repository."""

from __future__ import annotations

import os
import subprocess
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from spkeeper.errors import RepoError

EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
ZERO_OID = "0" * 40


@dataclass(frozen=True)
class Signature:
    name: str
    email: str
    when: datetime

    @classmethod
    def now(cls, name: str, email: str) -> "Signature":
        return cls(name=name, email=email, when=datetime.now(timezone.utc))

    def git_date(self) -> str:
        return f"{int(self.when.timestamp())} {self.when.strftime('%z') or '+0000'}"


def run_git(repo_path: Path, args: list[str], stdin: str | None = None, env: dict[str, str] | None = None) -> str:
    """Run a git command in ``repo_path`` and return stdout, raising ``RepoError`` on failure."""
    cmd = ["git", "-C", str(repo_path), "-c", "core.quotepath=off", *args]
    try:
        proc = subprocess.run(
            cmd,
            input=stdin,
            capture_output=True,
            text=True,
            encoding="utf-8",
            check=False,
            env={**os.environ, **env} if env else None,
        )
    except OSError as exc:
        raise RepoError(f"Could not run git ({' '.join(cmd)}): {exc}") from exc
    if proc.returncode != 0:
        raise RepoError(f"git command failed ({' '.join(cmd)}): {proc.stderr.strip()}", returncode=proc.returncode)
    return proc.stdout


class GitRepository:
    """A non-bare repository whose work tree is the sync output root."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _git(self, args: list[str], **kwargs) -> str:
        return run_git(self.path, args, **kwargs)

    def stage_all(self, pathspec: str, on_change: Callable[[str], None], base: str | None = None) -> None:
        """Add files under ``pathspec`` to the index and report each new or modified path.

        Paths are compared against ``base`` (the branch tip, or the empty tree
        when the branch is unborn), so a rewritten file with identical content
        is not reported. Removed files are left in the index.
        """
        literal = f":(literal){pathspec}"
        self._git(["add", "--ignore-removal", "--", literal])
        output = self._git(
            [
                "diff",
                "--cached",
                "--name-only",
                "--no-renames",
                "--diff-filter=AM",
                "-z",
                base or EMPTY_TREE,
                "--",
                literal,
            ]
        )
        for path in output.split("\0"):
            if path:
                on_change(path)

    def write_tree(self, pathspec: str | None = None, base: str | None = None) -> str:
        """Write a tree object and return its id.

        Without ``pathspec`` the whole index is written. With it, the tree is
        ``base`` (a commit, or nothing) with only the index entries under
        ``pathspec`` replacing that subtree, so anything else staged in the
        index stays out of the commit.
        """
        if pathspec is None:
            return self._git(["write-tree"]).strip()

        literal = f":(literal){pathspec}"
        entries = self._git(["ls-files", "--stage", "-z", "--", literal])
        with tempfile.TemporaryDirectory(prefix="spkeeper-index-") as tmp:
            env = {"GIT_INDEX_FILE": str(Path(tmp) / "index")}
            if base:
                self._git(["read-tree", base], env=env)
                self._git(["rm", "--cached", "-f", "-r", "-q", "--ignore-unmatch", "--", literal], env=env)
            else:
                self._git(["read-tree", "--empty"], env=env)
            if entries:
                self._git(["update-index", "-z", "--index-info"], stdin=entries, env=env)
            return self._git(["write-tree"], env=env).strip()

    def _ref_exists(self, ref: str) -> bool:
        try:
            self._git(["show-ref", "--verify", "--quiet", ref])
        except RepoError as exc:
            if exc.returncode == 1:
                return False
            raise
        return True

    def _symbolic_head(self) -> str | None:
        try:
            return self._git(["symbolic-ref", "-q", "HEAD"]).strip()
        except RepoError as exc:
            if exc.returncode == 1:
                return None
            raise

    def resolve_head_commit(self, branch: str) -> str | None:
        """Return the commit id at the tip of ``branch``, or ``None`` while it is unborn.

        The branch only counts as unborn when HEAD points at it and has no
        commit yet. A missing branch in a repository whose HEAD is elsewhere
        raises ``RepoError`` instead of starting a disconnected history.
        """
        ref = f"refs/heads/{branch}"
        if self._ref_exists(ref):
            return self._git(["rev-parse", "--verify", f"{ref}^{{commit}}"]).strip()

        head = self._symbolic_head()
        if head == ref:
            return None
        raise RepoError(
            f"Branch {branch!r} does not exist and HEAD points at {head or 'a detached commit'}; "
            f"refusing to start a new history in {self.path}"
        )

    def create_commit(
        self,
        branch: str,
        signature: Signature,
        message: str,
        tree: str,
        parent: str | None = None,
    ) -> str:
        """Write a commit object and move ``branch`` to it.

        The ref update only succeeds if the branch still points at ``parent``.
        """
        date = signature.git_date()
        env = {
            "GIT_AUTHOR_NAME": signature.name,
            "GIT_AUTHOR_EMAIL": signature.email,
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": signature.name,
            "GIT_COMMITTER_EMAIL": signature.email,
            "GIT_COMMITTER_DATE": date,
        }
        args = ["commit-tree", tree]
        if parent:
            args.extend(["-p", parent])
        commit_id = self._git(args, stdin=message, env=env).strip()
        self._git(["update-ref", "-m", "spkeeper: commit", f"refs/heads/{branch}", commit_id, parent or ZERO_OID])
        return commit_id

    def head_commits(self, branch: str) -> list[str]:
        """List commit ids reachable from ``branch``, newest first."""
        if self.resolve_head_commit(branch) is None:
            return []
        return self._git(["rev-list", f"refs/heads/{branch}"]).split()

    def commit_message(self, commit_id: str) -> str:
        return self._git(["log", "-1", "--format=%B", commit_id])

    def tree_paths(self, commit_id: str) -> list[str]:
        output = self._git(["ls-tree", "-r", "--name-only", "-z", commit_id])
        return [path for path in output.split("\0") if path]


def open_or_init_repository(path: Path, branch: str = "master") -> GitRepository:
    """Open the repository at ``path``, creating an empty one when none exists.

    Existing history is never touched. A new repository gets HEAD pointed at
    ``branch`` so the first commit lands there.
    """
    path = Path(path)
    if not path.is_dir():
        raise RepoError(f"Repository path is not a directory: {path}")

    repo = GitRepository(path)
    if (path / ".git").exists():
        return repo

    run_git(path, ["init", "--quiet"])
    run_git(path, ["symbolic-ref", "HEAD", f"refs/heads/{branch}"])
    return repo
