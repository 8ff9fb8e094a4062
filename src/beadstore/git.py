"""Git subprocess helpers.

Every git invocation runs as ``git -C <dir> ...`` with captured output and a
non-interactive environment. ``run_git`` raises GitError on failure;
``try_git`` returns the result for callers that inspect the exit status.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass

from beadstore.errors import GitError, SyncError, classify_sync_error


logger = logging.getLogger(__name__)

MIN_GIT_VERSION = (2, 25)


@dataclass(frozen=True)
class GitResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, used for error classification."""
        return f"{self.stdout}\n{self.stderr}".strip()


def _git_env() -> dict[str, str]:
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["LC_ALL"] = "C"
    return env


def git_command(args: list[str] | tuple[str, ...], cwd: str) -> list[str]:
    """Build a git command line rooted at cwd."""
    return ["git", "-C", cwd, *args]


def try_git(*args: str, cwd: str, input: str | None = None) -> GitResult:
    cmd = git_command(args, cwd)
    logger.debug("$ %s", " ".join(cmd))
    try:
        completed = subprocess.run(
            cmd,
            input=input,
            capture_output=True,
            text=True,
            env=_git_env(),
            check=False,
        )
    except FileNotFoundError:
        raise GitError(list(args), 127, "git executable not found") from None
    return GitResult(
        args=tuple(args),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def run_git(*args: str, cwd: str, input: str | None = None) -> str:
    """Run git and return stdout without the trailing newline. Raises GitError."""
    result = try_git(*args, cwd=cwd, input=input)
    if not result.ok:
        raise GitError(list(args), result.returncode, result.stderr or result.stdout)
    return result.stdout.rstrip("\n")


# --- Queries ---

def git_version() -> tuple[int, ...] | None:
    """Installed git version as a tuple, or None when git is unavailable."""
    try:
        completed = subprocess.run(["git", "--version"], capture_output=True, text=True, check=False)
    except FileNotFoundError:
        return None
    match = re.search(r"(\d+)\.(\d+)(?:\.(\d+))?", completed.stdout)
    if completed.returncode != 0 or not match:
        return None
    return tuple(int(part) for part in match.groups() if part is not None)


def repo_root(cwd: str) -> str | None:
    result = try_git("rev-parse", "--show-toplevel", cwd=cwd)
    return result.stdout.strip() if result.ok else None


def rev_parse(ref: str, cwd: str) -> str | None:
    result = try_git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", cwd=cwd)
    return result.stdout.strip() if result.ok else None


def symbolic_head(cwd: str) -> str | None:
    """Full ref HEAD points at (``refs/heads/x``), or None when detached."""
    result = try_git("symbolic-ref", "--quiet", "HEAD", cwd=cwd)
    return result.stdout.strip() if result.ok else None


def ref_exists(ref: str, cwd: str) -> bool:
    return try_git("show-ref", "--verify", "--quiet", ref, cwd=cwd).ok


def is_ancestor(ancestor: str, descendant: str, cwd: str) -> bool:
    return try_git("merge-base", "--is-ancestor", ancestor, descendant, cwd=cwd).ok


def merge_base(a: str, b: str, cwd: str) -> str | None:
    result = try_git("merge-base", a, b, cwd=cwd)
    return result.stdout.strip() if result.ok else None


def rev_list_count(revision_range: str, cwd: str) -> int:
    return int(run_git("rev-list", "--count", revision_range, cwd=cwd) or 0)


def status_porcelain(cwd: str, pathspec: str | None = None) -> str:
    args = ["status", "--porcelain", "--untracked-files=all"]
    if pathspec:
        args += ["--", pathspec]
    return run_git(*args, cwd=cwd)


def remote_exists(remote: str, cwd: str) -> bool:
    return try_git("remote", "get-url", remote, cwd=cwd).ok


def remote_branch_exists(remote: str, branch: str, cwd: str) -> bool:
    """Ask the remote whether branch exists. Raises SyncError on transport failures."""
    result = try_git("ls-remote", "--exit-code", "--heads", remote, branch, cwd=cwd)
    if result.ok:
        return True
    if result.returncode == 2:
        return False
    raise SyncError(
        f"Could not query {remote}: {result.stderr.strip()}",
        classify_sync_error(result.output),
    )


def subjects(revision_range: str, cwd: str) -> list[str]:
    out = run_git("log", "--format=%s", revision_range, cwd=cwd)
    return [line for line in out.splitlines() if line]


# --- Worktrees ---

@dataclass
class WorktreeRecord:
    path: str
    head: str | None = None
    branch: str | None = None
    detached: bool = False
    prunable: bool = False
    bare: bool = False


def list_worktrees(cwd: str) -> list[WorktreeRecord]:
    """Parse ``git worktree list --porcelain``."""
    out = run_git("worktree", "list", "--porcelain", cwd=cwd)
    records: list[WorktreeRecord] = []
    current: WorktreeRecord | None = None
    for line in out.splitlines():
        if line.startswith("worktree "):
            current = WorktreeRecord(path=line[len("worktree "):])
            records.append(current)
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.head = line[len("HEAD "):]
        elif line.startswith("branch "):
            current.branch = line[len("branch "):]
        elif line == "detached":
            current.detached = True
        elif line == "bare":
            current.bare = True
        elif line.startswith("prunable"):
            current.prunable = True
    return records


def same_path(a: str, b: str) -> bool:
    return os.path.realpath(a) == os.path.realpath(b)
