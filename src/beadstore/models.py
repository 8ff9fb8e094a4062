"""Core data model for issue records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from beadstore.errors import ValidationError
from beadstore.id_gen import INTERNAL_ID_RE


MAX_TITLE_LENGTH = 500


# --- Status constants ---

class Status:
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CLOSED = "closed"

    _VALID = {OPEN, IN_PROGRESS, BLOCKED, DEFERRED, CLOSED}

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls._VALID


# --- Kind constants ---

class IssueKind:
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"

    _VALID = {BUG, FEATURE, TASK, EPIC, CHORE}

    @classmethod
    def is_valid(cls, k: str) -> bool:
        return k in cls._VALID

    @classmethod
    def normalize(cls, k: str) -> str:
        lower = k.lower()
        if lower in ("enhancement", "feat"):
            return cls.FEATURE
        return lower


class DepType:
    BLOCKS = "blocks"


# --- Helper: RFC3339 timestamp handling ---

def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC3339 timestamp (or a datetime from YAML) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            raise ValueError(f"Cannot parse timestamp: {value}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime | None) -> str | None:
    """Format datetime to RFC3339 string with a Z suffix."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    s = dt.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    if s.endswith("+00:00"):
        s = s[:-6] + "Z"
    return s


def now_utc() -> datetime:
    """Current time in UTC, truncated to milliseconds so it survives a round-trip."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


# --- Dataclasses ---

@dataclass
class Dependency:
    target: str
    type: str = DepType.BLOCKS

    def to_dict(self) -> dict:
        return {"type": self.type, "target": self.target}

    @classmethod
    def from_dict(cls, d: dict) -> Dependency:
        return cls(target=str(d["target"]), type=str(d.get("type", DepType.BLOCKS)))


@dataclass
class Issue:
    """A single issue record, stored as one file per internal ID."""

    id: str = ""
    version: int = 0
    kind: str = IssueKind.TASK
    title: str = ""
    status: str = Status.OPEN
    priority: int = 2
    labels: list[str] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)

    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    closed_at: datetime | None = None

    description: str = ""
    notes: str = ""
    parent_id: str | None = None
    child_order_hints: list[str] | None = None
    spec_path: str | None = None
    external_issue_url: str | None = None
    assignee: str | None = None
    close_reason: str | None = None
    due_date: datetime | None = None
    deferred_until: datetime | None = None
    created_by: str | None = None

    def __post_init__(self) -> None:
        # Labels are a set; keep a canonical order so files diff cleanly.
        self.labels = sorted(set(self.labels))

    @property
    def is_closed(self) -> bool:
        return self.status == Status.CLOSED

    def validate(self) -> list[str]:
        """Return a list of problems; empty when the record is well-formed."""
        problems: list[str] = []
        if not INTERNAL_ID_RE.match(self.id or ""):
            problems.append(f"invalid id {self.id!r}")
        if not self.title or not self.title.strip():
            problems.append("title is required")
        elif len(self.title) > MAX_TITLE_LENGTH:
            problems.append(f"title exceeds {MAX_TITLE_LENGTH} characters")
        if not Status.is_valid(self.status):
            problems.append(f"invalid status {self.status!r}")
        if not IssueKind.is_valid(self.kind):
            problems.append(f"invalid kind {self.kind!r}")
        if isinstance(self.priority, bool) or not isinstance(self.priority, int) \
                or not 0 <= self.priority <= 4:
            problems.append(f"priority must be 0-4, got {self.priority!r}")
        if not isinstance(self.version, int) or self.version < 0:
            problems.append(f"invalid version {self.version!r}")
        if self.parent_id is not None and not INTERNAL_ID_RE.match(self.parent_id):
            problems.append(f"invalid parent_id {self.parent_id!r}")
        for dep in self.dependencies:
            if not INTERNAL_ID_RE.match(dep.target):
                problems.append(f"invalid dependency target {dep.target!r}")
        return problems

    def ensure_valid(self) -> None:
        problems = self.validate()
        if problems:
            raise ValidationError(f"Invalid issue {self.id or '<new>'}: {'; '.join(problems)}")

    def to_dict(self) -> dict:
        """Serialize to a plain dict. Optional fields are omitted when unset."""
        d: dict[str, Any] = {
            "type": "is",
            "id": self.id,
            "version": self.version,
            "kind": self.kind,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "labels": list(self.labels),
            "dependencies": [dep.to_dict() for dep in self.dependencies],
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }
        if self.closed_at is not None:
            d["closed_at"] = format_timestamp(self.closed_at)
        if self.parent_id:
            d["parent_id"] = self.parent_id
        if self.child_order_hints is not None:
            d["child_order_hints"] = list(self.child_order_hints)
        if self.spec_path:
            d["spec_path"] = self.spec_path
        if self.external_issue_url:
            d["external_issue_url"] = self.external_issue_url
        if self.assignee:
            d["assignee"] = self.assignee
        if self.close_reason:
            d["close_reason"] = self.close_reason
        if self.due_date is not None:
            d["due_date"] = format_timestamp(self.due_date)
        if self.deferred_until is not None:
            d["deferred_until"] = format_timestamp(self.deferred_until)
        if self.created_by:
            d["created_by"] = self.created_by
        return d

    @classmethod
    def from_dict(cls, d: dict, description: str = "", notes: str = "") -> Issue:
        """Build from a header dict. The body fields come from outside the header."""
        hints = d.get("child_order_hints")
        return cls(
            id=str(d.get("id", "")),
            version=d.get("version", 0),
            kind=str(d.get("kind", IssueKind.TASK)),
            title=str(d.get("title", "")),
            status=str(d.get("status", Status.OPEN)),
            priority=d.get("priority", 2),
            labels=[str(label) for label in d.get("labels") or []],
            dependencies=[Dependency.from_dict(dep) for dep in d.get("dependencies") or []],
            created_at=parse_timestamp(d.get("created_at")) or now_utc(),
            updated_at=parse_timestamp(d.get("updated_at")) or now_utc(),
            closed_at=parse_timestamp(d.get("closed_at")),
            description=description,
            notes=notes,
            parent_id=d.get("parent_id") or None,
            child_order_hints=[str(h) for h in hints] if hints is not None else None,
            spec_path=d.get("spec_path") or None,
            external_issue_url=d.get("external_issue_url") or None,
            assignee=d.get("assignee") or None,
            close_reason=d.get("close_reason") or None,
            due_date=parse_timestamp(d.get("due_date")),
            deferred_until=parse_timestamp(d.get("deferred_until")),
            created_by=d.get("created_by") or None,
        )
