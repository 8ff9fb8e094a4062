"""Counting what a sync sent and received, and the sync commit message format."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from beadstore.config import ISSUES_DIR
from beadstore.utils import plural


COMMIT_PREFIX = "bd sync:"
_COMMIT_RE = re.compile(r"^bd sync: (?P<description>.*) \((?P<count>\d+) files?\)$")


@dataclass
class SyncTallies:
    new: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.new + self.updated + self.deleted

    def __add__(self, other: SyncTallies) -> SyncTallies:
        return SyncTallies(self.new + other.new, self.updated + other.updated,
                           self.deleted + other.deleted)

    def to_dict(self) -> dict:
        return {"new": self.new, "updated": self.updated, "deleted": self.deleted}


@dataclass
class SyncSummary:
    sent: SyncTallies = field(default_factory=SyncTallies)
    received: SyncTallies = field(default_factory=SyncTallies)
    conflicts: int = 0

    @property
    def is_empty(self) -> bool:
        return self.sent.total == 0 and self.received.total == 0 and self.conflicts == 0

    def to_dict(self) -> dict:
        return {
            "sent": self.sent.to_dict(),
            "received": self.received.to_dict(),
            "conflicts": self.conflicts,
        }


def _is_issue_path(path: str) -> bool:
    return f"/{ISSUES_DIR}/" in f"/{path}" and path.endswith(".md")


def _tally(tallies: SyncTallies, code: str) -> None:
    if code in ("A", "??") or code.startswith("A"):
        tallies.new += 1
    elif code.startswith("D") or code.endswith("D"):
        tallies.deleted += 1
    elif code:
        tallies.updated += 1


def parse_git_status(output: str) -> SyncTallies:
    """Tally issue files in ``git status --porcelain`` output."""
    tallies = SyncTallies()
    for line in output.splitlines():
        if len(line) < 4:
            continue
        code = line[:2].strip()
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if _is_issue_path(path.strip('"')):
            _tally(tallies, code)
    return tallies


def parse_git_diff(output: str) -> SyncTallies:
    """Tally issue files in ``git diff --name-status`` output."""
    tallies = SyncTallies()
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 2:
            continue
        code = parts[0].strip()
        if code.startswith("R"):
            code = "M"
        if _is_issue_path(parts[-1]):
            _tally(tallies, code)
    return tallies


def format_commit_message(description: str, file_count: int) -> str:
    return f"{COMMIT_PREFIX} {description} ({plural(file_count, 'file')})"


def parse_commit_message(message: str) -> tuple[str, int] | None:
    """Inverse of format_commit_message; None for foreign commits."""
    match = _COMMIT_RE.match(message.strip())
    if match is None:
        return None
    return match.group("description"), int(match.group("count"))


def format_sync_summary(summary: SyncSummary) -> str:
    def side(t: SyncTallies) -> str:
        parts = []
        if t.new:
            parts.append(f"{t.new} new")
        if t.updated:
            parts.append(f"{t.updated} updated")
        if t.deleted:
            parts.append(f"{t.deleted} deleted")
        return ", ".join(parts)

    lines = []
    if summary.sent.total:
        lines.append(f"Sent: {side(summary.sent)}")
    if summary.received.total:
        lines.append(f"Received: {side(summary.received)}")
    if summary.conflicts:
        lines.append(f"Conflicts: {summary.conflicts} resolved (losing versions in attic)")
    return "\n".join(lines)
