"""Error taxonomy for beadstore.

Every error raised by the core derives from BeadsError so the CLI can
report it uniformly. Sync failures carry a classification that tells the
caller whether retrying is safe.
"""

from __future__ import annotations

import enum
import re


class BeadsError(Exception):
    """Base class for all beadstore errors."""


class ValidationError(BeadsError):
    """Malformed caller input (bad ID, out-of-range priority, ...)."""


class NotFoundError(BeadsError):
    """Requested issue, mapping entry or archive entry does not exist."""


class NotInitializedError(BeadsError):
    """No .beads/ directory could be found."""


class CorruptionError(BeadsError):
    """Persisted data could not be parsed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class IssueParseError(CorruptionError):
    """An issue file has a broken frontmatter header."""

    def __init__(self, path: str | None, reason: str) -> None:
        where = path or "<string>"
        super().__init__(f"Failed to parse issue file {where}: {reason}", path)
        self.reason = reason


class MergeConflictError(BeadsError):
    """A persisted file contains literal unresolved git conflict markers."""

    def __init__(self, path: str | None, detail: str = "") -> None:
        where = path or "<string>"
        message = (
            f"Unresolved merge conflict markers in {where}. "
            "Resolve the conflict manually (remove the <<<<<<<, =======, "
            ">>>>>>> lines) and commit, or run 'bd doctor --fix'."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.path = path


class GitError(BeadsError):
    """A git subprocess exited with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        cmd = " ".join(args)
        detail = stderr.strip() or f"exit status {returncode}"
        super().__init__(f"git {cmd} failed: {detail}")
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr


class WorktreeError(BeadsError):
    """The data worktree is in a state that cannot be used."""


class WorktreeMissingError(WorktreeError):
    """The worktree directory was removed outside of beadstore."""


class WorktreeCorruptedError(WorktreeError):
    """The worktree exists but its git metadata is inconsistent."""


class SyncErrorType(str, enum.Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


class SyncError(BeadsError):
    """A fetch or push against the remote failed."""

    def __init__(self, message: str, error_type: SyncErrorType = SyncErrorType.UNKNOWN) -> None:
        super().__init__(message)
        self.error_type = error_type

    @property
    def retryable(self) -> bool:
        return self.error_type == SyncErrorType.TRANSIENT


# Authentication, authorization and branch protection. Never retried.
_PERMANENT_PATTERNS = [
    r"\b40[13]\b",
    r"permission denied",
    r"authentication failed",
    r"could not read username",
    r"could not read password",
    r"access denied",
    r"protected branch",
    r"pre-receive hook declined",
    r"repository not found",
    r"does not appear to be a git repository",
]

_TRANSIENT_PATTERNS = [
    r"timed out",
    r"timeout",
    r"could not resolve host",
    r"connection refused",
    r"connection reset",
    r"network is unreachable",
    r"temporary failure",
    r"\b50[0234]\b",
    r"early eof",
    r"remote end hung up",
    r"rpc failed",
    r"unable to access",
]

_NON_FAST_FORWARD_PATTERNS = [
    r"non-fast-forward",
    r"fetch first",
    r"\[rejected\]",
    r"updates were rejected",
]


def _matches_any(patterns: list[str], text: str) -> bool:
    return any(re.search(p, text, re.IGNORECASE) for p in patterns)


def classify_sync_error(text: str) -> SyncErrorType:
    """Classify git transport error output.

    Permanent patterns are checked first so that an authentication failure
    reported over an otherwise flaky connection is not retried.
    """
    if _matches_any(_PERMANENT_PATTERNS, text):
        return SyncErrorType.PERMANENT
    if _matches_any(_TRANSIENT_PATTERNS, text):
        return SyncErrorType.TRANSIENT
    return SyncErrorType.UNKNOWN


def is_non_fast_forward(text: str) -> bool:
    """True when a push was rejected because the remote moved ahead."""
    return _matches_any(_NON_FAST_FORWARD_PATTERNS, text)
