"""End-to-end sync tests against a bare remote."""

import os
import shutil

import pytest

from beadstore import id_mapping
from beadstore.config import load_state
from beadstore.errors import MergeConflictError, SyncErrorType, WorktreeMissingError
from beadstore.project import init_project
from beadstore.sync import SyncEngine, SyncStatus
from beadstore.sync_summary import parse_commit_message
from beadstore.worktree import WorktreeStatus
from conftest import git, make_repo


def _remote_tip(project) -> str:
    out = git(project.root, "ls-remote", "--heads", "origin", "beads-sync")
    return out.split()[0] if out else ""


class TestFirstSync:
    def test_pushes_new_branch(self, project):
        project.store.create("First issue")
        result = project.sync()
        assert result.committed
        assert result.push.success
        assert result.summary.sent.new == 1
        assert _remote_tip(project) == git(project.root, "rev-parse", "beads-sync")

    def test_commit_message_format(self, project):
        project.store.create("Counted")
        project.sync()
        subject = git(project.root, "log", "-1", "--format=%s", "beads-sync")
        _, count = parse_commit_message(subject)
        assert count == 2  # issue file and ids.yml

    def test_records_last_sync(self, project):
        project.sync()
        assert "last_sync_at" in load_state(project.paths.beads_dir)

    def test_primary_branch_untouched(self, project):
        main_before = git(project.root, "rev-parse", "main")
        project.store.create("Not on main")
        project.sync()
        assert git(project.root, "rev-parse", "main") == main_before
        assert git(project.root, "symbolic-ref", "HEAD") == "refs/heads/main"


class TestIdempotence:
    def test_second_sync_is_noop(self, project):
        project.store.create("Once")
        assert project.sync().push.success
        for _ in range(2):
            result = project.sync()
            assert result.in_sync
            assert result.summary.is_empty
            assert not result.committed
            assert result.ahead == 0 and result.behind == 0
            assert not result.push.attempted


class TestStatus:
    def test_pending_changes(self, project):
        project.store.create("Pending")
        status = project.sync(status=True)
        assert isinstance(status, SyncStatus)
        assert status.pending_files == 2
        assert status.local_changes.new == 1
        assert not status.remote_branch_exists
        assert not status.in_sync

    def test_status_does_not_commit(self, project):
        project.store.create("Pending")
        head = git(project.root, "rev-parse", "beads-sync")
        project.sync(status=True)
        assert git(project.root, "rev-parse", "beads-sync") == head

    def test_in_sync_after_sync(self, project):
        project.store.create("Synced")
        project.sync()
        assert project.sync(status=True).in_sync

    def test_incoming_commits(self, project, other_project):
        project.sync()
        bob = other_project()
        project.store.create("Incoming")
        project.sync()
        status = bob.sync(status=True)
        assert status.behind == 1
        assert status.incoming[0].startswith("bd sync:")


class TestTwoClones:
    def test_second_clone_starts_from_remote(self, project, other_project):
        issue = project.store.create("Shared")
        project.sync()
        bob = other_project()
        assert bob.store.get(issue.id).title == "Shared"
        assert bob.store.display_id(issue.id) == project.store.display_id(issue.id)

    def test_pull_receives_new_issue(self, project, other_project):
        project.sync()
        bob = other_project()
        issue = project.store.create("From alice")
        project.sync()

        result = bob.sync()
        assert result.summary.received.new == 1
        assert bob.store.get(issue.id).title == "From alice"
        assert bob.store.display_id(issue.id) == project.store.display_id(issue.id)

    def test_both_sides_create(self, project, other_project):
        project.sync()
        bob = other_project()
        mine = project.store.create("Alice's")
        theirs = bob.store.create("Bob's")
        project.sync()

        result = bob.sync()
        assert result.push.success
        assert result.summary.conflicts == 0
        project.sync()

        for clone in (project, bob):
            assert {i.id for i in clone.store.list()} == {mine.id, theirs.id}
        # Short IDs already shown to each user keep their meaning.
        assert bob.store.display_id(mine.id) == project.store.display_id(mine.id)
        assert bob.store.display_id(theirs.id) == project.store.display_id(theirs.id)

    def test_pull_only_and_push_only(self, project, other_project):
        project.sync()
        bob = other_project()
        issue = project.store.create("Later")
        project.sync()

        pushed = bob.sync(push=True)
        assert pushed.behind == 1
        assert not bob.store.exists(issue.id)

        pulled = bob.sync(pull=True)
        assert pulled.summary.received.new == 1
        assert bob.store.exists(issue.id)

    def test_rejected_push_only_merges_before_retry(self, project, other_project):
        project.sync()
        bob = other_project()
        alices = project.store.create("Alice first")
        project.sync()
        bob.store.create("Bob second")

        result = bob.sync(push=True)
        assert result.push.success
        assert result.push.attempts == 2
        assert result.summary.received.new == 1
        assert bob.store.exists(alices.id)
        assert _remote_tip(bob) == git(bob.root, "rev-parse", "beads-sync")


class TestConflicts:
    @pytest.fixture
    def shared(self, project, other_project):
        issue = project.store.create("Original")
        project.sync()
        bob = other_project()
        return project, bob, issue

    def test_newer_local_edit_wins(self, shared):
        alice, bob, issue = shared
        alice.store.update(issue.id, title="Alice title")
        alice.sync()
        bob.store.update(issue.id, title="Bob title")

        result = bob.sync()
        assert result.summary.conflicts == 1
        assert result.push.success
        merged = bob.store.get(issue.id)
        assert merged.title == "Bob title"
        assert merged.version == 3

        entries = bob.attic.list(issue.id)
        assert len(entries) == 1
        assert entries[0].loser_source == "remote"
        assert entries[0].issue().title == "Alice title"

        alice.sync()
        assert alice.store.get(issue.id).title == "Bob title"
        assert len(alice.attic.list(issue.id)) == 1

    def test_newer_remote_edit_wins(self, shared):
        alice, bob, issue = shared
        bob.store.update(issue.id, title="Bob title")
        alice.store.update(issue.id, title="Alice title")
        alice.sync()

        result = bob.sync()
        assert result.summary.conflicts == 1
        assert bob.store.get(issue.id).title == "Alice title"
        entry = bob.attic.list(issue.id)[0]
        assert entry.loser_source == "local"
        assert entry.issue().title == "Bob title"

    def test_edit_beats_delete(self, shared):
        alice, bob, issue = shared
        os.remove(alice.store.issue_path(issue.id))
        alice.sync()
        bob.store.update(issue.id, title="Still needed")

        result = bob.sync()
        assert result.push.success
        assert bob.store.get(issue.id).title == "Still needed"

    def test_conflict_markers_never_committed(self, project):
        issue = project.store.create("Clean")
        project.sync()
        head = git(project.root, "rev-parse", "beads-sync")
        path = project.store.issue_path(issue.id)
        with open(path) as f:
            text = f.read()
        with open(path, "w") as f:
            f.write(text.replace(
                "---\n", "---\n<<<<<<< HEAD\nversion: 2\n=======\nversion: 3\n>>>>>>> origin\n", 1))

        with pytest.raises(MergeConflictError):
            project.sync()
        assert git(project.root, "rev-parse", "beads-sync") == head

    def test_markdown_underline_in_description_syncs(self, project, other_project):
        project.sync()
        bob = other_project()
        issue = project.store.create("Doc", description="Heading\n=======\n\nbody text")

        result = project.sync()
        assert result.push.success
        bob.sync()
        assert bob.store.get(issue.id).description == "Heading\n=======\n\nbody text"
        assert [i.id for i in bob.store.list()] == [issue.id]

    def test_short_id_collision_across_clones(self, project, other_project, monkeypatch):
        project.sync()
        bob = other_project()
        with monkeypatch.context() as mp:
            mp.setattr(id_mapping, "generate_short_id", lambda length: "abcd")
            alices = project.store.create("Alice's abcd")
            project.sync()
            bobs = bob.store.create("Bob's abcd")

        result = bob.sync()
        assert result.push.success
        # Bob's own short ID keeps its meaning; Alice's issue is given a new one.
        assert bob.store.display_id(bobs.id) == "test-abcd"
        moved = bob.store.display_id(alices.id)
        assert moved != "test-abcd"
        assert bob.store.resolve(moved) == alices.id
        mapping = bob.store.load_mapping()
        assert len(mapping) == 2


class TestPushFailures:
    def test_retry_after_remote_moved(self, project, other_project, monkeypatch):
        project.sync()
        bob = other_project()
        project.store.create("Alice raced ahead")
        project.sync()
        bob.store.create("Bob was slower")

        real_fetch = SyncEngine.fetch
        calls = []

        def stale_first_fetch(self):
            calls.append(self)
            if len(calls) == 1:
                return True
            return real_fetch(self)

        monkeypatch.setattr(SyncEngine, "fetch", stale_first_fetch)
        result = bob.sync()
        assert result.push.success
        assert result.push.attempts == 2
        assert result.summary.received.new == 1
        assert len(bob.store.list()) == 2

    def test_permanent_failure_keeps_local_commits(self, project, tmp_path):
        project.store.create("Unpushed")
        git(project.root, "remote", "set-url", "origin", str(tmp_path / "missing.git"))

        result = project.sync()
        assert result.committed
        assert not result.success
        assert result.push.error_type == SyncErrorType.PERMANENT
        assert not result.push.retryable
        assert result.push.unpushed_commits >= 1

    def test_no_remote(self, tmp_path):
        solo = init_project(make_repo(tmp_path / "solo"), prefix="solo")
        solo.store.create("Local only")
        result = solo.sync()
        assert result.committed
        assert result.push.error_type == SyncErrorType.PERMANENT
        assert "No remote" in result.push.error
        assert result.push.unpushed_commits == result.ahead


class TestWorktreeRecovery:
    def test_deleted_and_pruned_worktree_is_recreated(self, project):
        issue = project.store.create("Durable")
        project.sync()
        shutil.rmtree(project.paths.worktree_dir)
        git(project.root, "worktree", "prune")

        result = project.sync()
        assert result.repaired == WorktreeStatus.MISSING
        assert result.in_sync
        assert project.store.get(issue.id).title == "Durable"

    def test_deleted_worktree_needs_fix(self, project):
        issue = project.store.create("Durable")
        project.sync()
        shutil.rmtree(project.paths.worktree_dir)

        with pytest.raises(WorktreeMissingError):
            project.sync()
        result = project.sync(fix=True)
        assert result.repaired == WorktreeStatus.PRUNABLE
        assert project.store.get(issue.id).title == "Durable"

    def test_detached_head_is_reattached_before_commit(self, project):
        project.sync()
        git(project.paths.worktree_dir, "checkout", "-q", "--detach")
        project.store.create("Written while detached")

        result = project.sync()
        assert result.push.success
        assert git(project.paths.worktree_dir, "symbolic-ref", "HEAD") == "refs/heads/beads-sync"
        assert _remote_tip(project) == git(project.root, "rev-parse", "beads-sync")
