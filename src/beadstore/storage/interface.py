"""Storage interface (abstract base) for beadstore."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from beadstore.errors import BeadsError
from beadstore.models import Issue


@dataclass
class ScanResult:
    """Every parseable issue plus the files that failed, keyed by path."""
    issues: list[Issue] = field(default_factory=list)
    errors: dict[str, BeadsError] = field(default_factory=dict)


class Storage(ABC):
    """Abstract base class defining issue storage operations."""

    @abstractmethod
    def path(self) -> str:
        """Return the directory holding the data."""

    # --- Issue CRUD ---

    @abstractmethod
    def write(self, issue: Issue, bump_version: bool = True) -> Issue:
        """Persist an issue atomically. Bumps version and updated_at unless told not to."""

    @abstractmethod
    def get(self, issue_id: str) -> Issue:
        """Get an issue by internal ID. Raises NotFoundError if absent."""

    @abstractmethod
    def exists(self, issue_id: str) -> bool:
        """True when a record file exists for the internal ID."""

    @abstractmethod
    def list(self) -> list[Issue]:
        """All parseable issues. Unparseable files are skipped and logged."""

    @abstractmethod
    def scan(self) -> ScanResult:
        """All issues plus per-file parse errors."""

    # --- Higher-level operations ---

    @abstractmethod
    def create(self, title: str, **fields) -> Issue:
        """Create a new issue with a fresh internal ID and short ID."""

    @abstractmethod
    def update(self, issue_id: str, **fields) -> Issue:
        """Apply field updates to an existing issue."""

    @abstractmethod
    def close(self, issue_id: str, reason: str = "") -> Issue:
        """Close an issue with optional reason."""

    @abstractmethod
    def reopen(self, issue_id: str) -> Issue:
        """Reopen a closed issue."""

    @abstractmethod
    def list_children(self, parent_id: str) -> list[Issue]:
        """Children of parent, ordered by the parent's hints then creation order."""

    # --- Identifiers ---

    @abstractmethod
    def resolve(self, value: str) -> str:
        """Resolve a display, short or internal ID to an internal ID."""

    @abstractmethod
    def display_id(self, issue_id: str) -> str:
        """Human-facing ID (``<prefix>-<short>``) for an internal ID."""
