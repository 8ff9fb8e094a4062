"""Utility functions for the bd CLI."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from beadstore.models import Issue, Status


_DIGITS_RE = re.compile(r"(\d+)")


def natural_sort_key(s: str) -> list:
    """Sort key treating digit runs as numbers: a2 < a10."""
    return [(0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in _DIGITS_RE.split(s) if part]


def format_priority(priority: int) -> str:
    """Format priority as P0-P4."""
    return f"P{priority}"


def priority_label(priority: int) -> str:
    """Return human-readable priority label."""
    labels = {0: "critical", 1: "high", 2: "medium", 3: "low", 4: "backlog"}
    return labels.get(priority, f"P{priority}")


def status_symbol(status: str) -> str:
    symbols = {
        Status.OPEN: " ",
        Status.IN_PROGRESS: ">",
        Status.BLOCKED: "!",
        Status.DEFERRED: "~",
        Status.CLOSED: "x",
    }
    return symbols.get(status, "?")


def format_time_ago(dt: datetime) -> str:
    """Format a datetime as a relative time string."""
    now = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    seconds = int((now - dt).total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 30:
        return f"{days}d ago"
    if days < 365:
        return f"{days // 30}mo ago"
    return f"{days // 365}y ago"


def truncate(s: str, max_len: int = 60) -> str:
    """Truncate a string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[:max_len - 3] + "..."


def plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def format_issue_row(issue: Issue, display_id: str, long_format: bool = False) -> str:
    """Format an issue as a single-line row for list display."""
    sym = status_symbol(issue.status)
    pri = format_priority(issue.priority)
    title = truncate(issue.title, 50)

    if long_format:
        assignee = issue.assignee or "-"
        age = format_time_ago(issue.created_at)
        return f"[{sym}] {display_id:<10} {pri} {issue.kind:<8} {assignee:<15} {title}  ({age})"
    return f"[{sym}] {display_id:<10} {pri} {title}"
