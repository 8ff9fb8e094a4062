"""Frontmatter codec for issue files.

An issue file looks like::

    ---
    created_at: '2025-01-01T00:00:00.000Z'
    id: is-01hx...
    ...
    ---
    Description body starts on the line right after the delimiter.

    ## Notes

    Optional working notes.

Header keys are written in alphabetical order. There is never a blank line
between the closing delimiter and the body.

Only the header is checked for conflict markers. A conflicted merge of an
issue file always touches the header because ``version`` and ``updated_at``
differ on both sides, while the body is free Markdown where a line of
``=======`` is an ordinary heading underline.
"""

from __future__ import annotations

import os
import re
import tempfile

import yaml

from beadstore.errors import IssueParseError, MergeConflictError
from beadstore.models import Issue
from beadstore.yaml_utils import has_merge_conflict_markers


DELIMITER = "---"
NOTES_HEADING = "## Notes"

_NOTES_RE = re.compile(r"\n## Notes\n", re.IGNORECASE)


def serialize_issue(issue: Issue) -> str:
    header = yaml.safe_dump(
        issue.to_dict(),
        sort_keys=True,
        default_flow_style=False,
        allow_unicode=True,
        width=1000,
    )
    parts = [DELIMITER, header.rstrip("\n"), DELIMITER]
    body = issue.description.strip()
    if body:
        parts.append(body)
    notes = issue.notes.strip()
    if notes:
        parts.extend(["", NOTES_HEADING, "", notes])
    return "\n".join(parts) + "\n"


def split_frontmatter(text: str, path: str | None = None) -> tuple[str, str]:
    """Split text into (header, body). Raises IssueParseError on missing delimiters."""
    lines = text.split("\n")
    if not lines or lines[0].strip() != DELIMITER:
        raise IssueParseError(path, "missing opening '---' delimiter")
    for i in range(1, len(lines)):
        if lines[i].strip() == DELIMITER:
            header = "\n".join(lines[1:i])
            body = "\n".join(lines[i + 1:])
            return header, body
    raise IssueParseError(path, "missing closing '---' delimiter")


def split_body(body: str) -> tuple[str, str]:
    """Split a body into (description, notes) at the first ``## Notes`` heading."""
    match = _NOTES_RE.search(body)
    if match is None:
        return body.strip(), ""
    return body[:match.start()].strip(), body[match.end():].strip()


def header_region(text: str) -> str:
    """Text up to and including the closing delimiter; all of it when there is none."""
    lines = text.split("\n")
    for i in range(1, len(lines)):
        if lines[i].strip() == DELIMITER:
            return "\n".join(lines[:i + 1])
    return text


def has_header_conflict_markers(text: str) -> bool:
    return has_merge_conflict_markers(header_region(text))


def parse_issue(text: str, path: str | None = None) -> Issue:
    if has_header_conflict_markers(text):
        raise MergeConflictError(path)
    header, body = split_frontmatter(text, path)
    try:
        data = yaml.safe_load(header)
    except yaml.YAMLError as e:
        raise IssueParseError(path, f"invalid YAML header: {e}") from e
    if not isinstance(data, dict):
        raise IssueParseError(path, "header is not a mapping")
    if not data.get("id"):
        raise IssueParseError(path, "header has no 'id'")
    description, notes = split_body(body)
    try:
        return Issue.from_dict(data, description=description, notes=notes)
    except (KeyError, TypeError, ValueError) as e:
        raise IssueParseError(path, str(e)) from e


def read_issue_file(path: str) -> Issue:
    with open(path, encoding="utf-8") as f:
        text = f.read()
    return parse_issue(text, path)


def atomic_write_text(path: str, text: str) -> None:
    """Write text to path via a temp file in the same directory and a rename."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=directory, prefix=f".{os.path.basename(path)}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def write_issue_file(path: str, issue: Issue) -> None:
    atomic_write_text(path, serialize_issue(issue))
