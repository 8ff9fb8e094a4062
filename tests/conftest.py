"""Shared fixtures: throwaway git repositories with a bare remote."""

import os
import subprocess

import pytest

from beadstore.project import BeadsProject, init_project


def git(cwd, *args: str, check: bool = True) -> str:
    result = subprocess.run(["git", *args], cwd=str(cwd), capture_output=True, text=True,
                            check=check)
    return result.stdout.strip()


@pytest.fixture(autouse=True)
def git_identity(monkeypatch, tmp_path_factory):
    """Keep tests independent of the developer's git config and BD_* variables."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    for var in ("BD_ID_PREFIX", "BD_SYNC_BRANCH", "BD_SYNC_REMOTE"):
        monkeypatch.delenv(var, raising=False)


def make_repo(path, remote=None) -> str:
    """Create a git repository with one commit on main, optionally wired to a remote."""
    os.makedirs(path)
    git(path, "init", "-q", "-b", "main")
    with open(os.path.join(path, "README.md"), "w") as f:
        f.write("test project\n")
    git(path, "add", "README.md")
    git(path, "commit", "-q", "-m", "initial commit")
    if remote is not None:
        git(path, "remote", "add", "origin", str(remote))
    return str(path)


@pytest.fixture
def remote(tmp_path) -> str:
    path = tmp_path / "remote.git"
    git(tmp_path, "init", "-q", "--bare", str(path))
    return str(path)


@pytest.fixture
def repo(tmp_path, remote) -> str:
    return make_repo(tmp_path / "alice", remote)


@pytest.fixture
def project(repo) -> BeadsProject:
    return init_project(repo, prefix="test")


@pytest.fixture
def other_project(tmp_path, remote):
    """Factory for a second clone sharing the same remote."""
    def make(name: str = "bob") -> BeadsProject:
        path = make_repo(tmp_path / name, remote)
        return init_project(path, prefix="test")
    return make
