"""Project handle tying together config, worktree, store and attic."""

from __future__ import annotations

import logging
import os
import re

from beadstore import git
from beadstore.attic import Attic
from beadstore.config import (
    BEADS_DIR, DEFAULT_ID_PREFIX, GITIGNORE, GITIGNORE_ENTRIES, BeadsConfig, BeadsPaths,
    find_beads_dir,
)
from beadstore.errors import NotInitializedError, ValidationError
from beadstore.storage.file_store import FileStorage
from beadstore.worktree import WorktreeHealth, WorktreeManager, WorktreeStatus


logger = logging.getLogger(__name__)


class BeadsProject:
    def __init__(self, root: str, config: BeadsConfig | None = None) -> None:
        self.paths = BeadsPaths(os.path.abspath(root))
        self.config = config or BeadsConfig.load(self.paths.beads_dir)
        self.worktree = WorktreeManager(self.paths, self.config.sync_branch,
                                        self.config.sync_remote)
        self.store = FileStorage(self.paths.data_dir, self.config.id_prefix)
        self.attic = Attic(self.paths.data_dir)

    @classmethod
    def discover(cls, start: str | None = None) -> BeadsProject:
        beads_dir = find_beads_dir(start)
        if beads_dir is None:
            raise NotInitializedError(
                "not in a beads project (no .beads/ directory found); run 'bd init' to create one")
        return cls(os.path.dirname(beads_dir))

    @property
    def root(self) -> str:
        return self.paths.root

    def ensure_worktree(self, fix: bool = False) -> WorktreeHealth:
        """Make the data worktree usable before touching the store."""
        health = self.worktree.require_usable(fix=fix)
        self.worktree.ensure_attached()
        return health

    def sync(self, push: bool = False, pull: bool = False, status: bool = False,
             fix: bool = False):
        from beadstore.sync import SyncEngine
        return SyncEngine(self).sync(push=push, pull=pull, status=status, fix=fix)

    def doctor(self, fix: bool = False):
        from beadstore.doctor import run_doctor
        return run_doctor(self, fix=fix)


def default_prefix(root: str) -> str:
    name = re.sub(r"[^a-z0-9]", "", os.path.basename(os.path.abspath(root)).lower())
    name = name.lstrip("0123456789")
    return name[:8] or DEFAULT_ID_PREFIX


def write_gitignore(beads_dir: str) -> None:
    """Make sure every local-only path is ignored on the primary branch."""
    path = os.path.join(beads_dir, GITIGNORE)
    existing: list[str] = []
    if os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            existing = f.read().splitlines()
    missing = [entry for entry in GITIGNORE_ENTRIES if entry not in existing]
    if not missing:
        return
    with open(path, "a", encoding="utf-8") as f:
        if not existing:
            f.write("# Local-only beads files (data lives on the sync branch)\n")
        for entry in missing:
            f.write(entry + "\n")


def init_project(root: str, prefix: str | None = None, sync_branch: str | None = None,
                 sync_remote: str | None = None) -> BeadsProject:
    """Create .beads/ in root and set up the data worktree."""
    if git.repo_root(root) is None:
        raise ValidationError(f"{root} is not inside a git repository")
    beads_dir = os.path.join(root, BEADS_DIR)
    os.makedirs(beads_dir, exist_ok=True)

    config_path = os.path.join(beads_dir, "config.yaml")
    if os.path.exists(config_path):
        config = BeadsConfig.load(beads_dir)
    else:
        config = BeadsConfig(id_prefix=prefix or default_prefix(root))
        if sync_branch:
            config.sync_branch = sync_branch
        if sync_remote:
            config.sync_remote = sync_remote
        config.validate()
        config.save(beads_dir)
    write_gitignore(beads_dir)

    project = BeadsProject(root, config)
    health = project.worktree.check_health()
    if health.status == WorktreeStatus.MISSING:
        project.worktree.init()
    elif not health.healthy:
        project.worktree.repair(health.status)
    logger.info("Initialized beads in %s (branch %s)", beads_dir, config.sync_branch)
    return project
