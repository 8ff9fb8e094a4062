"""Tests for configuration loading and project discovery."""

import os

import pytest

from beadstore.config import BeadsConfig, BeadsPaths, find_beads_dir, load_state, save_state
from beadstore.errors import ValidationError


@pytest.fixture
def beads_dir(tmp_path) -> str:
    path = tmp_path / ".beads"
    path.mkdir()
    return str(path)


def _write_config(beads_dir: str, text: str) -> None:
    with open(os.path.join(beads_dir, "config.yaml"), "w") as f:
        f.write(text)


def test_defaults(beads_dir):
    cfg = BeadsConfig.load(beads_dir)
    assert cfg.id_prefix == "bd"
    assert cfg.sync_branch == "beads-sync"
    assert cfg.sync_remote == "origin"
    assert cfg.mapping_conflict_policy == "local"


def test_save_and_load(beads_dir):
    BeadsConfig(id_prefix="proj", sync_branch="data/issues", sync_remote="upstream").save(beads_dir)
    cfg = BeadsConfig.load(beads_dir)
    assert (cfg.id_prefix, cfg.sync_branch, cfg.sync_remote) == ("proj", "data/issues", "upstream")


def test_hyphenated_keys(beads_dir):
    _write_config(beads_dir, "id-prefix: abc\nmapping-conflict-policy: remote\n")
    cfg = BeadsConfig.load(beads_dir)
    assert cfg.id_prefix == "abc"
    assert cfg.mapping_conflict_policy == "remote"


def test_env_overrides(beads_dir, monkeypatch):
    _write_config(beads_dir, "id-prefix: abc\n")
    monkeypatch.setenv("BD_ID_PREFIX", "env")
    monkeypatch.setenv("BD_SYNC_BRANCH", "env-branch")
    cfg = BeadsConfig.load(beads_dir)
    assert cfg.id_prefix == "env"
    assert cfg.sync_branch == "env-branch"


@pytest.mark.parametrize("text", [
    "id-prefix: Bad-Prefix\n",
    "sync-branch: ../escape\n",
    "sync-remote: 'has space'\n",
    "mapping-conflict-policy: newest\n",
    "- not\n- a mapping\n",
    "id-prefix: [unclosed\n",
])
def test_invalid_config(beads_dir, text):
    _write_config(beads_dir, text)
    with pytest.raises(ValidationError):
        BeadsConfig.load(beads_dir)


def test_paths(tmp_path):
    paths = BeadsPaths(str(tmp_path))
    assert paths.worktree_dir == os.path.join(str(tmp_path), ".beads", "data-sync-worktree")
    assert paths.data_dir == os.path.join(paths.worktree_dir, ".beads", "data-sync")
    assert paths.legacy_data_dir == os.path.join(str(tmp_path), ".beads", "data-sync")
    assert paths.data_dir_relative == ".beads/data-sync"


def test_find_beads_dir_walks_up(tmp_path, beads_dir):
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert find_beads_dir(str(nested)) == beads_dir


def test_state_round_trip(beads_dir):
    assert load_state(beads_dir) == {}
    save_state(beads_dir, {"last_sync_at": "2025-01-01T00:00:00.000Z"})
    assert load_state(beads_dir) == {"last_sync_at": "2025-01-01T00:00:00.000Z"}
