"""Tests for sync tallies and commit message formatting."""

from beadstore.sync_summary import (
    SyncSummary, SyncTallies, format_commit_message, format_sync_summary, parse_commit_message,
    parse_git_diff, parse_git_status,
)


DATA = ".beads/data-sync"


def test_parse_git_status_counts_only_issue_files():
    output = "\n".join([
        f"?? {DATA}/issues/is-new.md",
        f" M {DATA}/issues/is-changed.md",
        f"M  {DATA}/issues/is-staged.md",
        f" D {DATA}/issues/is-gone.md",
        f" M {DATA}/mappings/ids.yml",
        f"?? {DATA}/attic/is-x/2025-01-01T00-00-00.000Z.yml",
    ])
    tallies = parse_git_status(output)
    assert (tallies.new, tallies.updated, tallies.deleted) == (1, 2, 1)


def test_parse_git_diff():
    output = "\n".join([
        f"A\t{DATA}/issues/is-a.md",
        f"M\t{DATA}/issues/is-b.md",
        f"D\t{DATA}/issues/is-c.md",
        f"R100\t{DATA}/issues/is-d.md\t{DATA}/issues/is-e.md",
        f"M\t{DATA}/meta.yml",
    ])
    tallies = parse_git_diff(output)
    assert (tallies.new, tallies.updated, tallies.deleted) == (1, 2, 1)
    assert tallies.total == 4


def test_tallies_add():
    total = SyncTallies(1, 2, 3) + SyncTallies(1, 0, 1)
    assert total.to_dict() == {"new": 2, "updated": 2, "deleted": 4}


def test_commit_message_round_trip():
    message = format_commit_message("2025-01-01T00:00:00.000Z", 3)
    assert message == "bd sync: 2025-01-01T00:00:00.000Z (3 files)"
    assert parse_commit_message(message) == ("2025-01-01T00:00:00.000Z", 3)
    assert format_commit_message("merge origin/beads-sync", 1).endswith("(1 file)")


def test_parse_foreign_commit_message():
    assert parse_commit_message("Fix typo") is None


def test_format_summary():
    summary = SyncSummary(sent=SyncTallies(new=2), received=SyncTallies(updated=1), conflicts=1)
    text = format_sync_summary(summary)
    assert "Sent: 2 new" in text
    assert "Received: 1 updated" in text
    assert "Conflicts: 1" in text
    assert format_sync_summary(SyncSummary()) == ""
    assert SyncSummary().is_empty
