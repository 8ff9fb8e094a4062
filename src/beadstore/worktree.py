"""Management of the secondary worktree bound to the sync branch.

The worktree at ``.beads/data-sync-worktree/`` is a cache of the sync
branch. It can always be rebuilt from the branch (local or remote), so the
state machine below only distinguishes situations by how safe it is to
rebuild without asking:

    healthy    nothing to do
    missing    git has no record of it: create it, no data at risk
    detached   HEAD is not on the sync branch: re-attach before committing
    prunable   git records it but the directory vanished: needs --fix
    corrupted  present but git metadata is inconsistent: needs --fix
"""

from __future__ import annotations

import enum
import logging
import os
import shutil
from dataclasses import dataclass

from beadstore import git
from beadstore.config import (
    ATTIC_DIR, ISSUES_DIR, MAPPINGS_DIR, META_FILE, SCHEMA_VERSION, BeadsPaths,
)
from beadstore.errors import (
    SyncError, WorktreeCorruptedError, WorktreeError, WorktreeMissingError,
)
from beadstore.models import format_timestamp, now_utc


logger = logging.getLogger(__name__)


class WorktreeStatus(str, enum.Enum):
    HEALTHY = "healthy"
    MISSING = "missing"
    PRUNABLE = "prunable"
    DETACHED = "detached"
    CORRUPTED = "corrupted"

    @property
    def auto_repairable(self) -> bool:
        """States that sync repairs without an explicit fix flag."""
        return self in (WorktreeStatus.MISSING, WorktreeStatus.DETACHED)


@dataclass
class WorktreeHealth:
    status: WorktreeStatus
    path: str
    branch: str
    head: str | None = None
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return self.status == WorktreeStatus.HEALTHY


@dataclass
class BranchState:
    local: str | None
    worktree_head: str | None
    remote_tracking: str | None
    ahead: int = 0
    behind: int = 0


def backup_timestamp() -> str:
    return format_timestamp(now_utc()).replace(":", "-")


class WorktreeManager:
    def __init__(self, paths: BeadsPaths, branch: str, remote: str) -> None:
        self.paths = paths
        self.repo_root = paths.root
        self.path = paths.worktree_dir
        self.branch = branch
        self.remote = remote

    @property
    def branch_ref(self) -> str:
        return f"refs/heads/{self.branch}"

    @property
    def remote_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    @property
    def fetch_refspec(self) -> str:
        return f"+{self.branch_ref}:{self.remote_ref}"

    # --- Detection ---

    def _record(self) -> git.WorktreeRecord | None:
        for record in git.list_worktrees(self.repo_root):
            if git.same_path(record.path, self.path):
                return record
        return None

    def check_health(self) -> WorktreeHealth:
        def health(status: WorktreeStatus, head: str | None = None,
                   error: str | None = None) -> WorktreeHealth:
            return WorktreeHealth(status, self.path, self.branch, head, error)

        record = self._record()
        exists = os.path.isdir(self.path)
        if record is None:
            if exists:
                return health(WorktreeStatus.CORRUPTED,
                              error="directory exists but git has no record of the worktree")
            return health(WorktreeStatus.MISSING)
        if record.prunable or not exists:
            return health(WorktreeStatus.PRUNABLE,
                          error="worktree directory was removed outside of bd")
        if not os.path.exists(os.path.join(self.path, ".git")):
            return health(WorktreeStatus.CORRUPTED, error="worktree has no .git link")
        head = git.rev_parse("HEAD", cwd=self.path)
        if head is None:
            return health(WorktreeStatus.CORRUPTED, error="worktree HEAD does not resolve")
        if git.symbolic_head(self.path) != self.branch_ref:
            return health(WorktreeStatus.DETACHED, head=head,
                          error=f"HEAD is not attached to {self.branch}")
        return health(WorktreeStatus.HEALTHY, head=head)

    # --- Creation ---

    def init(self) -> None:
        """Create the worktree, attached to the sync branch.

        The branch comes from the local ref when present, otherwise from the
        remote, otherwise a new orphan branch is created.
        """
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        root = self.repo_root
        if git.ref_exists(self.branch_ref, cwd=root):
            logger.info("Creating worktree from local branch %s", self.branch)
            git.run_git("worktree", "add", self.path, self.branch, cwd=root)
        elif self._remote_has_branch():
            logger.info("Creating worktree from %s/%s", self.remote, self.branch)
            git.run_git("fetch", self.remote, self.fetch_refspec, cwd=root)
            git.run_git("worktree", "add", "--no-track", "-b", self.branch, self.path,
                        self.remote_ref, cwd=root)
        else:
            logger.info("Creating orphan sync branch %s", self.branch)
            empty_tree = git.run_git("mktree", cwd=root, input="")
            commit = git.run_git("commit-tree", empty_tree, "-m",
                                 "bd sync: initialize sync branch", cwd=root)
            git.run_git("update-ref", self.branch_ref, commit, cwd=root)
            git.run_git("worktree", "add", self.path, self.branch, cwd=root)
        self.ensure_layout()

    def _remote_has_branch(self) -> bool:
        if not git.remote_exists(self.remote, cwd=self.repo_root):
            return False
        try:
            return git.remote_branch_exists(self.remote, self.branch, cwd=self.repo_root)
        except SyncError as e:
            logger.warning("Could not reach %s (%s); starting a local sync branch", self.remote, e)
            return False

    def ensure_layout(self) -> bool:
        """Create the data directory skeleton and commit it if anything was added."""
        data_dir = self.paths.data_dir
        for sub in (ISSUES_DIR, MAPPINGS_DIR, ATTIC_DIR):
            directory = os.path.join(data_dir, sub)
            os.makedirs(directory, exist_ok=True)
            keep = os.path.join(directory, ".gitkeep")
            if not os.listdir(directory):
                open(keep, "w").close()
        meta = os.path.join(data_dir, META_FILE)
        if not os.path.exists(meta):
            with open(meta, "w", encoding="utf-8") as f:
                f.write(f"schema_version: {SCHEMA_VERSION}\n")
        if not git.status_porcelain(self.path):
            return False
        git.run_git("add", "-A", cwd=self.path)
        git.run_git("commit", "--no-verify", "-m", "bd sync: initialize data layout", cwd=self.path)
        return True

    # --- Repair ---

    def ensure_attached(self) -> bool:
        """Put HEAD back on the sync branch without losing commits.

        Returns True when anything had to change.
        """
        cwd = self.path
        if git.symbolic_head(cwd) == self.branch_ref:
            return False
        head = git.rev_parse("HEAD", cwd=cwd)
        tip = git.rev_parse(self.branch_ref, cwd=cwd)
        logger.warning("Worktree HEAD is detached from %s; re-attaching", self.branch)
        if head is None:
            raise WorktreeCorruptedError(f"Worktree HEAD does not resolve: {self.path}")
        if tip is None or tip == head or git.is_ancestor(tip, head, cwd=cwd):
            # Branch is missing or behind: move it up to the detached commits.
            git.run_git("checkout", "-B", self.branch, head, cwd=cwd)
        elif git.is_ancestor(head, tip, cwd=cwd):
            git.run_git("checkout", self.branch, cwd=cwd)
        else:
            git.run_git("checkout", self.branch, cwd=cwd)
            result = git.try_git("merge", "--no-edit", "-m",
                                 "bd sync: merge commits made while detached", head, cwd=cwd)
            if not result.ok:
                git.try_git("merge", "--abort", cwd=cwd)
                raise WorktreeCorruptedError(
                    f"Could not merge detached worktree commit {head[:8]} into {self.branch}: "
                    f"{result.stderr.strip()}")
        return True

    def require_usable(self, fix: bool = False) -> WorktreeHealth:
        """Repair safe states, and unsafe ones only when fix is set.

        Returns the health observed before any repair.
        """
        health = self.check_health()
        if health.healthy:
            return health
        if health.status.auto_repairable or fix:
            self.repair(health.status)
            return health
        if health.status == WorktreeStatus.PRUNABLE:
            raise WorktreeMissingError(
                f"Worktree at {self.path} was deleted ({health.error}). "
                "Run 'bd sync --fix' or 'bd doctor --fix' to recreate it.")
        raise WorktreeCorruptedError(
            f"Worktree at {self.path} is corrupted ({health.error}). "
            "Run 'bd sync --fix' or 'bd doctor --fix' to rebuild it.")

    def repair(self, status: WorktreeStatus) -> str:
        """Bring the worktree back to healthy. Returns a description of what changed."""
        if status == WorktreeStatus.HEALTHY:
            return "nothing to repair"
        if status == WorktreeStatus.DETACHED:
            self.ensure_attached()
            return f"re-attached worktree HEAD to {self.branch}"
        changes = []
        if status == WorktreeStatus.CORRUPTED and os.path.exists(self.path):
            backup = os.path.join(self.paths.backups_dir, f"worktree-{backup_timestamp()}")
            os.makedirs(self.paths.backups_dir, exist_ok=True)
            shutil.move(self.path, backup)
            changes.append(f"moved corrupted worktree to {backup}")
        if status in (WorktreeStatus.PRUNABLE, WorktreeStatus.CORRUPTED):
            git.run_git("worktree", "prune", cwd=self.repo_root)
            changes.append("pruned stale worktree record")
        self.init()
        health = self.check_health()
        if not health.healthy:
            raise WorktreeError(f"Worktree repair failed: {health.status.value} ({health.error})")
        changes.append(f"created worktree at {self.path}")
        logger.warning("Repaired %s worktree: %s", status.value, "; ".join(changes))
        return "; ".join(changes)

    # --- Branch relationships ---

    def branch_state(self) -> BranchState:
        """Local, worktree and remote-tracking commits. Does not touch the network."""
        root = self.repo_root
        local = git.rev_parse(self.branch_ref, cwd=root)
        head = git.rev_parse("HEAD", cwd=self.path) if os.path.isdir(self.path) else None
        remote = git.rev_parse(self.remote_ref, cwd=root)
        state = BranchState(local=local, worktree_head=head, remote_tracking=remote)
        if local and remote:
            state.ahead = git.rev_list_count(f"{remote}..{local}", cwd=root)
            state.behind = git.rev_list_count(f"{local}..{remote}", cwd=root)
        elif local:
            state.ahead = git.rev_list_count(local, cwd=root)
        return state
