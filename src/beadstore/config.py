"""Configuration management for beadstore.

Handles:
- .beads/config.yaml parsing (shared, committed on the primary branch)
- .beads/state.yaml (local-only bookkeeping such as the last sync time)
- Environment variable overrides
- .beads/ directory discovery and the on-disk layout
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any

import yaml

from beadstore.errors import ValidationError


logger = logging.getLogger(__name__)

BEADS_DIR = ".beads"
CONFIG_YAML = "config.yaml"
STATE_YAML = "state.yaml"
GITIGNORE = ".gitignore"

WORKTREE_DIR = "data-sync-worktree"
DATA_SYNC_DIR = "data-sync"
BACKUPS_DIR = "backups"

ISSUES_DIR = "issues"
MAPPINGS_DIR = "mappings"
IDS_FILE = "ids.yml"
ATTIC_DIR = "attic"
META_FILE = "meta.yml"

SCHEMA_VERSION = 1

DEFAULT_ID_PREFIX = "bd"
DEFAULT_SYNC_BRANCH = "beads-sync"
DEFAULT_SYNC_REMOTE = "origin"

MAPPING_POLICIES = ("local", "remote")

_BRANCH_RE = re.compile(r"^(?!-)(?!.*\.\.)(?!.*//)[A-Za-z0-9._/-]+(?<![./])$")
_REMOTE_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_PREFIX_RE = re.compile(r"^[a-z][a-z0-9]*$")

GITIGNORE_ENTRIES = [
    f"{WORKTREE_DIR}/",
    f"{DATA_SYNC_DIR}/",
    f"{BACKUPS_DIR}/",
    STATE_YAML,
]


@dataclass
class BeadsConfig:
    """User-facing config from config.yaml."""
    id_prefix: str = DEFAULT_ID_PREFIX
    sync_branch: str = DEFAULT_SYNC_BRANCH
    sync_remote: str = DEFAULT_SYNC_REMOTE
    mapping_conflict_policy: str = "local"

    @classmethod
    def load(cls, beads_dir: str) -> BeadsConfig:
        """Load config.yaml from beads directory."""
        config_path = os.path.join(beads_dir, CONFIG_YAML)
        cfg = cls()
        if os.path.exists(config_path):
            with open(config_path, encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ValidationError(f"Invalid config file {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ValidationError(f"Invalid config file {config_path}: expected a mapping")
            cfg.id_prefix = str(data.get("id-prefix", cfg.id_prefix))
            cfg.sync_branch = str(data.get("sync-branch", cfg.sync_branch))
            cfg.sync_remote = str(data.get("sync-remote", cfg.sync_remote))
            cfg.mapping_conflict_policy = str(
                data.get("mapping-conflict-policy", cfg.mapping_conflict_policy))

        # Environment variable overrides
        if os.environ.get("BD_ID_PREFIX"):
            cfg.id_prefix = os.environ["BD_ID_PREFIX"]
        if os.environ.get("BD_SYNC_BRANCH"):
            cfg.sync_branch = os.environ["BD_SYNC_BRANCH"]
        if os.environ.get("BD_SYNC_REMOTE"):
            cfg.sync_remote = os.environ["BD_SYNC_REMOTE"]

        cfg.validate()
        return cfg

    def validate(self) -> None:
        if not _PREFIX_RE.match(self.id_prefix):
            raise ValidationError(
                f"Invalid id-prefix {self.id_prefix!r}: use lowercase letters and digits")
        if not _BRANCH_RE.match(self.sync_branch):
            raise ValidationError(f"Invalid sync-branch name {self.sync_branch!r}")
        if not _REMOTE_RE.match(self.sync_remote):
            raise ValidationError(f"Invalid sync-remote name {self.sync_remote!r}")
        if self.mapping_conflict_policy not in MAPPING_POLICIES:
            raise ValidationError(
                f"Invalid mapping-conflict-policy {self.mapping_conflict_policy!r}: "
                f"expected one of {', '.join(MAPPING_POLICIES)}")

    def save(self, beads_dir: str) -> None:
        """Save config to config.yaml."""
        config_path = os.path.join(beads_dir, CONFIG_YAML)
        data: dict[str, Any] = {
            "id-prefix": self.id_prefix,
            "sync-branch": self.sync_branch,
            "sync-remote": self.sync_remote,
        }
        if self.mapping_conflict_policy != "local":
            data["mapping-conflict-policy"] = self.mapping_conflict_policy
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


@dataclass
class BeadsPaths:
    """Absolute paths of the on-disk layout, derived from the project root."""
    root: str

    @property
    def beads_dir(self) -> str:
        return os.path.join(self.root, BEADS_DIR)

    @property
    def worktree_dir(self) -> str:
        return os.path.join(self.beads_dir, WORKTREE_DIR)

    @property
    def data_dir(self) -> str:
        """Data directory inside the worktree; the only home of issue files."""
        return os.path.join(self.worktree_dir, BEADS_DIR, DATA_SYNC_DIR)

    @property
    def data_dir_relative(self) -> str:
        """Data directory relative to the worktree root, with forward slashes."""
        return f"{BEADS_DIR}/{DATA_SYNC_DIR}"

    @property
    def legacy_data_dir(self) -> str:
        """Where older versions wrote data by mistake: directly in the primary tree."""
        return os.path.join(self.beads_dir, DATA_SYNC_DIR)

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.beads_dir, BACKUPS_DIR)

    @property
    def config_path(self) -> str:
        return os.path.join(self.beads_dir, CONFIG_YAML)


def find_beads_dir(start: str | None = None) -> str | None:
    """Walk up from start directory to find .beads/ directory.

    Returns absolute path to .beads/ directory, or None if not found.
    """
    if start is None:
        start = os.getcwd()
    current = os.path.abspath(start)
    while True:
        candidate = os.path.join(current, BEADS_DIR)
        if os.path.isdir(candidate):
            return candidate
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def load_state(beads_dir: str) -> dict[str, Any]:
    """Load local-only state. A missing or unreadable file yields an empty dict."""
    path = os.path.join(beads_dir, STATE_YAML)
    if not os.path.exists(path):
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def save_state(beads_dir: str, state: dict[str, Any]) -> None:
    path = os.path.join(beads_dir, STATE_YAML)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        yaml.safe_dump(state, f, default_flow_style=False, sort_keys=True)
    os.replace(tmp, path)
