"""Directory-backed issue storage: one frontmatter file per internal ID."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any

from beadstore.codec import read_issue_file, write_issue_file
from beadstore.config import DEFAULT_ID_PREFIX, ISSUES_DIR
from beadstore.errors import BeadsError, NotFoundError, ValidationError
from beadstore.id_gen import generate_internal_id, is_internal_id
from beadstore.id_mapping import (
    IdMapping, create_short_id_mapping, format_display_id, load_id_mapping,
    resolve_to_internal_id, save_id_mapping,
)
from beadstore.models import Dependency, Issue, IssueKind, Status, now_utc
from beadstore.storage.interface import ScanResult, Storage


logger = logging.getLogger(__name__)

ISSUE_SUFFIX = ".md"

_UPDATABLE_FIELDS = {
    "title", "description", "kind", "status", "priority", "labels",
    "dependencies", "assignee", "spec_path", "external_issue_url",
    "child_order_hints", "parent_id", "notes", "due_date", "deferred_until",
}


class FileStorage(Storage):
    """Issue store rooted at a data directory (``<data_dir>/issues/*.md``)."""

    def __init__(self, data_dir: str, id_prefix: str = DEFAULT_ID_PREFIX) -> None:
        self.data_dir = data_dir
        self.issues_dir = os.path.join(data_dir, ISSUES_DIR)
        self.id_prefix = id_prefix

    def path(self) -> str:
        return self.data_dir

    def issue_path(self, issue_id: str) -> str:
        if not is_internal_id(issue_id):
            raise ValidationError(f"Not an internal issue ID: {issue_id}")
        return os.path.join(self.issues_dir, issue_id + ISSUE_SUFFIX)

    # --- Mapping ---

    def load_mapping(self) -> IdMapping:
        return load_id_mapping(self.data_dir)

    def save_mapping(self, mapping: IdMapping) -> None:
        save_id_mapping(self.data_dir, mapping)

    # --- Issue CRUD ---

    def write(self, issue: Issue, bump_version: bool = True) -> Issue:
        issue.ensure_valid()
        if bump_version:
            issue.version += 1
            issue.updated_at = now_utc()
        write_issue_file(self.issue_path(issue.id), issue)
        logger.debug("Wrote %s (version %d)", issue.id, issue.version)
        return issue

    def get(self, issue_id: str) -> Issue:
        path = self.issue_path(issue_id)
        if not os.path.exists(path):
            raise NotFoundError(f"Issue not found: {issue_id}")
        return read_issue_file(path)

    def exists(self, issue_id: str) -> bool:
        return os.path.exists(self.issue_path(issue_id))

    def issue_files(self) -> list[str]:
        if not os.path.isdir(self.issues_dir):
            return []
        return sorted(
            os.path.join(self.issues_dir, name)
            for name in os.listdir(self.issues_dir)
            if name.endswith(ISSUE_SUFFIX) and not name.startswith(".")
        )

    def scan(self) -> ScanResult:
        result = ScanResult()
        for path in self.issue_files():
            try:
                result.issues.append(read_issue_file(path))
            except BeadsError as e:
                result.errors[path] = e
        result.issues.sort(key=lambda i: i.id)
        return result

    def list(self) -> list[Issue]:
        result = self.scan()
        for path, err in result.errors.items():
            logger.warning("Skipping unreadable issue file %s: %s", path, err)
        return result.issues

    # --- Higher-level operations ---

    def create(self, title: str, kind: str = IssueKind.TASK, priority: int = 2,
               description: str = "", labels: list[str] | None = None,
               dependencies: list[str] | None = None, parent_id: str | None = None,
               assignee: str | None = None, spec_path: str | None = None,
               external_issue_url: str | None = None, notes: str = "",
               due_date: datetime | None = None, deferred_until: datetime | None = None,
               created_by: str | None = None) -> Issue:
        """Create a new issue and register a short ID for it.

        When a parent is given, the child is appended to the parent's
        ``child_order_hints`` and inherits the parent's ``spec_path`` unless
        one is provided.
        """
        parent = self.get(parent_id) if parent_id else None
        for target in dependencies or []:
            if not self.exists(target):
                raise NotFoundError(f"Dependency target not found: {target}")

        now = now_utc()
        issue = Issue(
            id=generate_internal_id(),
            kind=IssueKind.normalize(kind),
            title=title,
            priority=priority,
            description=description,
            labels=list(labels or []),
            dependencies=[Dependency(target=t) for t in dependencies or []],
            created_at=now,
            updated_at=now,
            parent_id=parent.id if parent else None,
            assignee=assignee or None,
            spec_path=spec_path or (parent.spec_path if parent else None),
            external_issue_url=external_issue_url or None,
            notes=notes,
            due_date=due_date,
            deferred_until=deferred_until,
            created_by=created_by or None,
        )
        issue.ensure_valid()

        # The record goes first so the mapping never points at a missing file.
        mapping = self.load_mapping()
        create_short_id_mapping(issue.id, mapping)
        self.write(issue)
        self.save_mapping(mapping)

        if parent is not None:
            hints = list(parent.child_order_hints or [])
            if issue.id not in hints:
                hints.append(issue.id)
            parent.child_order_hints = hints
            self.write(parent)
        return issue

    def update(self, issue_id: str, **fields: Any) -> Issue:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        issue = self.get(issue_id)
        was_closed = issue.is_closed
        for name, value in fields.items():
            if name == "labels":
                value = sorted(set(value))
            setattr(issue, name, value)
        if issue.is_closed and not was_closed:
            issue.closed_at = now_utc()
        elif was_closed and not issue.is_closed:
            issue.closed_at = None
            issue.close_reason = None
        return self.write(issue)

    def close(self, issue_id: str, reason: str = "") -> Issue:
        issue = self.get(issue_id)
        if issue.is_closed:
            raise ValidationError(f"Issue already closed: {self.display_id(issue_id)}")
        issue.status = Status.CLOSED
        issue.closed_at = now_utc()
        issue.close_reason = reason or None
        return self.write(issue)

    def reopen(self, issue_id: str) -> Issue:
        issue = self.get(issue_id)
        if not issue.is_closed:
            raise ValidationError(f"Issue is not closed: {self.display_id(issue_id)}")
        issue.status = Status.OPEN
        issue.closed_at = None
        issue.close_reason = None
        return self.write(issue)

    def list_children(self, parent_id: str) -> list[Issue]:
        parent = self.get(parent_id)
        children = [i for i in self.list() if i.parent_id == parent.id]
        hints = {cid: pos for pos, cid in enumerate(parent.child_order_hints or [])}
        # Hinted children first in hint order; the rest by creation order.
        return sorted(children, key=lambda c: (c.id not in hints, hints.get(c.id, 0), c.id))

    # --- Identifiers ---

    def resolve(self, value: str) -> str:
        return resolve_to_internal_id(value, self.load_mapping())

    def display_id(self, issue_id: str) -> str:
        return format_display_id(issue_id, self.load_mapping(), self.id_prefix)
