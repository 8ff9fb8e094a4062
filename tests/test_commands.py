"""Tests for CLI commands using Click's test runner."""

import json
import os
import shutil

import pytest
from click.testing import CliRunner

from beadstore.cli import cli
from conftest import make_repo


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def beads_repo(runner: CliRunner, repo: str, monkeypatch) -> str:
    """A git repository with beads initialized, used as the working directory."""
    monkeypatch.chdir(repo)
    result = runner.invoke(cli, ["init", "--prefix", "test"])
    assert result.exit_code == 0, result.output
    return repo


def _create(runner: CliRunner, title: str, *args: str) -> str:
    result = runner.invoke(cli, ["create", title, "--silent", *args])
    assert result.exit_code == 0, result.output
    return result.output.strip()


class TestInit:
    def test_init(self, runner: CliRunner, repo: str, monkeypatch):
        monkeypatch.chdir(repo)
        result = runner.invoke(cli, ["init", "--prefix", "myproj"])
        assert result.exit_code == 0, result.output
        assert "Initialized beads" in result.output
        assert "myproj" in result.output
        assert os.path.exists(".beads/config.yaml")
        assert os.path.isdir(".beads/data-sync-worktree/.beads/data-sync/issues")

    def test_init_twice(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 0
        assert "already initialized" in result.output

    def test_init_outside_git(self, runner: CliRunner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 2
        assert "not inside a git repository" in result.output

    def test_not_initialized(self, runner: CliRunner, tmp_path, monkeypatch):
        monkeypatch.chdir(make_repo(tmp_path / "plain"))
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 1
        assert "Error: not in a beads project" in result.output


class TestCreate:
    def test_create_basic(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["create", "--title", "Test Issue", "--type", "bug",
                                     "--priority", "1"])
        assert result.exit_code == 0, result.output
        assert "Created bug test-" in result.output

    def test_create_silent(self, runner: CliRunner, beads_repo: str):
        assert _create(runner, "Silent").startswith("test-")

    def test_create_requires_title(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["create"])
        assert result.exit_code == 2

    def test_create_json(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["--json", "create", "JSON issue", "-l", "b", "-l", "a"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["title"] == "JSON issue"
        assert data["labels"] == ["a", "b"]
        assert data["id"].startswith("is-")
        assert data["display_id"].startswith("test-")

    def test_create_with_unknown_dependency(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["create", "Blocked", "--deps", "test-zzzz"])
        assert result.exit_code == 1
        assert "Error:" in result.output


class TestListAndShow:
    def test_list_empty(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "No issues found." in result.output

    def test_list(self, runner: CliRunner, beads_repo: str):
        display = _create(runner, "Listed")
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert display in result.output
        assert "Listed" in result.output
        assert "1 issue(s)" in result.output

    def test_show(self, runner: CliRunner, beads_repo: str):
        display = _create(runner, "Shown", "-d", "Line one\n\nLine two")
        result = runner.invoke(cli, ["show", display])
        assert result.exit_code == 0, result.output
        assert "Shown" in result.output
        assert "Version:  1" in result.output
        assert "Line two" in result.output

    def test_show_unknown(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["show", "test-zzzz"])
        assert result.exit_code == 1
        assert "Error: Issue not found" in result.output

    def test_children_in_hint_order(self, runner: CliRunner, beads_repo: str):
        epic = _create(runner, "Epic", "--type", "epic")
        children = [_create(runner, f"Child {n}", "--parent", epic) for n in range(3)]
        result = runner.invoke(cli, ["--json", "list", "--parent", epic])
        assert result.exit_code == 0, result.output
        assert [i["display_id"] for i in json.loads(result.output)] == children


class TestUpdateCloseReopen:
    def test_update(self, runner: CliRunner, beads_repo: str):
        display = _create(runner, "Before")
        result = runner.invoke(cli, ["update", display, "--title", "After", "--add-label", "x"])
        assert result.exit_code == 0, result.output
        assert f"Updated {display}" in result.output
        shown = json.loads(runner.invoke(cli, ["--json", "show", display]).output)
        assert shown["title"] == "After"
        assert shown["labels"] == ["x"]
        assert shown["version"] == 2

    def test_notes_and_dates(self, runner: CliRunner, beads_repo: str):
        display = _create(runner, "Dated", "--notes", "First try", "--due", "2026-03-01")
        shown = json.loads(runner.invoke(cli, ["--json", "show", display]).output)
        assert shown["notes"] == "First try"
        assert shown["due_date"] == "2026-03-01T00:00:00.000Z"

        result = runner.invoke(cli, ["update", display, "--due", "", "--defer", "2026-02-01"])
        assert result.exit_code == 0, result.output
        shown = json.loads(runner.invoke(cli, ["--json", "show", display]).output)
        assert "due_date" not in shown
        assert shown["deferred_until"] == "2026-02-01T00:00:00.000Z"

    def test_bad_due_date(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["create", "Bad date", "--due", "someday"])
        assert result.exit_code == 2
        assert "Invalid value" in result.output

    def test_close_and_reopen(self, runner: CliRunner, beads_repo: str):
        display = _create(runner, "Closable")
        result = runner.invoke(cli, ["close", display, "--reason", "done"])
        assert result.exit_code == 0, result.output
        assert f"Closed {display}" in result.output
        assert "No issues found." in runner.invoke(cli, ["list"]).output
        assert display in runner.invoke(cli, ["list", "--all"]).output

        result = runner.invoke(cli, ["reopen", display])
        assert result.exit_code == 0, result.output
        assert display in runner.invoke(cli, ["list"]).output


class TestSyncAndDoctor:
    def test_sync(self, runner: CliRunner, beads_repo: str):
        _create(runner, "To push")
        result = runner.invoke(cli, ["sync"])
        assert result.exit_code == 0, result.output
        assert "Pushed" in result.output

        again = runner.invoke(cli, ["sync"])
        assert again.exit_code == 0
        assert "Already in sync." in again.output

    def test_sync_status_json(self, runner: CliRunner, beads_repo: str):
        _create(runner, "Pending")
        result = runner.invoke(cli, ["--json", "sync", "--status"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["worktree"] == "healthy"
        assert data["pending_files"] == 2
        assert data["in_sync"] is False

    def test_sync_without_remote_fails(self, runner: CliRunner, tmp_path, monkeypatch):
        monkeypatch.chdir(make_repo(tmp_path / "solo"))
        assert runner.invoke(cli, ["init"]).exit_code == 0
        _create(runner, "Stuck locally")
        result = runner.invoke(cli, ["sync"])
        assert result.exit_code == 1
        assert "push failed (permanent)" in result.output

    def test_doctor(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["doctor"])
        assert result.exit_code == 0, result.output
        assert "All checks passed!" in result.output

    def test_doctor_json(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["--json", "doctor"])
        assert result.exit_code == 0, result.output
        names = [c["name"] for c in json.loads(result.output)]
        assert names[0] == "git"
        assert "worktree" in names

    def test_doctor_reports_errors(self, runner: CliRunner, beads_repo: str):
        shutil.rmtree(".beads/data-sync-worktree")
        result = runner.invoke(cli, ["doctor"])
        assert result.exit_code == 1
        assert "[ERROR]" in result.output
        assert "worktree is prunable" in result.output

        fixed = runner.invoke(cli, ["doctor", "--fix"])
        assert fixed.exit_code == 0, fixed.output
        assert "fixed:" in fixed.output

    def test_invalid_config(self, runner: CliRunner, beads_repo: str):
        with open(".beads/config.yaml", "w") as f:
            f.write("id-prefix: NOT VALID\n")
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 2
        assert "Invalid id-prefix" in result.output

    def test_attic_empty(self, runner: CliRunner, beads_repo: str):
        result = runner.invoke(cli, ["attic", "list"])
        assert result.exit_code == 0, result.output
        assert "Attic is empty." in result.output
