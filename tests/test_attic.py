"""Tests for the attic of losing versions."""

import logging
import os

import pytest

from beadstore.attic import Attic
from beadstore.errors import NotFoundError
from beadstore.storage import FileStorage


TS1 = "2025-01-01T00:00:00.000Z"
TS2 = "2025-01-02T00:00:00.000Z"


@pytest.fixture
def store(tmp_path) -> FileStorage:
    return FileStorage(str(tmp_path / "data"), "test")


@pytest.fixture
def attic(tmp_path) -> Attic:
    return Attic(str(tmp_path / "data"))


def _snapshot(root: str) -> dict[str, str]:
    files = {}
    for dirpath, _, names in os.walk(root):
        for name in names:
            path = os.path.join(dirpath, name)
            with open(path) as f:
                files[path] = f.read()
    return files


class TestArchive:
    def test_archive_and_list(self, store, attic):
        issue = store.create("Original")
        entry = attic.archive(issue, "remote", "local", local=issue, timestamp=TS1)
        assert os.path.basename(entry.path) == "2025-01-01T00-00-00.000Z.yml"
        assert os.path.basename(os.path.dirname(entry.path)) == issue.id

        entries = attic.list(issue.id)
        assert len(entries) == 1
        assert entries[0].winner_source == "remote"
        assert entries[0].loser_source == "local"
        assert entries[0].context["local_version"] == 1
        assert entries[0].issue() == issue

    def test_same_timestamp_does_not_overwrite(self, store, attic):
        issue = store.create("Twice")
        first = attic.archive(issue, "remote", "local", timestamp=TS1)
        second = attic.archive(issue, "remote", "local", timestamp=TS1)
        assert first.path != second.path
        assert len(attic.list(issue.id)) == 2

    def test_newest_first(self, store, attic):
        issue = store.create("Ordered")
        attic.archive(issue, "remote", "local", timestamp=TS1)
        attic.archive(issue, "remote", "local", timestamp=TS2)
        assert [e.timestamp for e in attic.list()] == [TS2, TS1]

    def test_empty(self, attic):
        assert attic.list() == []

    def test_corrupt_entry_skipped(self, store, attic, caplog):
        issue = store.create("Has junk")
        attic.archive(issue, "remote", "local", timestamp=TS1)
        junk = os.path.join(attic.root, issue.id, "junk.yml")
        with open(junk, "w") as f:
            f.write("just a string\n")
        with caplog.at_level(logging.WARNING):
            assert len(attic.list(issue.id)) == 1
        assert "junk.yml" in caplog.text


class TestShowAndRestore:
    def test_show_by_timestamp_or_key(self, store, attic):
        issue = store.create("Shown")
        entry = attic.archive(issue, "remote", "local", timestamp=TS1)
        assert attic.show(issue.id, TS1).path == entry.path
        assert attic.show(issue.id, entry.key).path == entry.path

    def test_show_unknown(self, store, attic):
        issue = store.create("Nothing archived")
        with pytest.raises(NotFoundError):
            attic.show(issue.id, TS1)

    def test_list_and_show_do_not_modify(self, store, attic):
        issue = store.create("Read only")
        attic.archive(issue, "remote", "local", timestamp=TS1)
        before = _snapshot(attic.root)
        attic.list()
        attic.show(issue.id, TS1)
        assert _snapshot(attic.root) == before

    def test_restore_creates_new_version(self, store, attic):
        issue = store.create("Old title")
        attic.archive(store.get(issue.id), "remote", "local", timestamp=TS1)
        store.update(issue.id, title="New title")
        before = _snapshot(attic.root)

        restored = attic.restore(store, issue.id, TS1)
        assert restored.title == "Old title"
        assert restored.version == 3
        assert store.get(issue.id).title == "Old title"
        # The entry stays where it was.
        assert _snapshot(attic.root) == before

    def test_restore_deleted_issue(self, store, attic):
        issue = store.create("Gone")
        attic.archive(issue, "remote", "local", timestamp=TS1)
        os.remove(store.issue_path(issue.id))
        restored = attic.restore(store, issue.id, TS1)
        assert restored.version == 1
        assert store.get(issue.id).title == "Gone"
