"""Health checks with optional, idempotent auto-fix.

Each check is a function registered with ``@register_check``. It receives
the project and the fix flag and returns a CheckResult. Checks only fix
what they can fix without destroying data; everything else is reported.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from beadstore import git
from beadstore.codec import read_issue_file
from beadstore.config import (
    GITIGNORE, GITIGNORE_ENTRIES, IDS_FILE, ISSUES_DIR, MAPPINGS_DIR, BeadsConfig,
)
from beadstore.errors import BeadsError, CorruptionError, MergeConflictError
from beadstore.id_gen import extract_ulid
from beadstore.id_mapping import (
    load_id_mapping, merge_id_mappings, parse_id_mapping_text, reconcile_mappings,
    save_id_mapping,
)
from beadstore.storage.file_store import ISSUE_SUFFIX
from beadstore.sync_summary import format_commit_message
from beadstore.worktree import WorktreeStatus, backup_timestamp

if TYPE_CHECKING:
    from beadstore.project import BeadsProject


logger = logging.getLogger(__name__)

OK = "ok"
WARN = "warn"
ERROR = "error"


@dataclass
class CheckResult:
    name: str
    status: str
    message: str
    suggestion: str | None = None
    details: list[str] = field(default_factory=list)
    fixable: bool = False
    fixed: bool = False
    changes: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == OK

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "fixable": self.fixable,
            "fixed": self.fixed,
        }
        if self.suggestion:
            d["suggestion"] = self.suggestion
        if self.details:
            d["details"] = list(self.details)
        if self.changes:
            d["changes"] = list(self.changes)
        return d


CheckFn = Callable[["BeadsProject", bool], CheckResult]

_CHECKS: list[tuple[str, CheckFn]] = []


def register_check(name: str) -> Callable[[CheckFn], CheckFn]:
    def decorator(fn: CheckFn) -> CheckFn:
        _CHECKS.append((name, fn))
        return fn
    return decorator


def registered_checks() -> list[str]:
    return [name for name, _ in _CHECKS]


def run_doctor(project: BeadsProject, fix: bool = False) -> list[CheckResult]:
    """Run every registered check in order."""
    results = []
    for name, fn in _CHECKS:
        try:
            result = fn(project, fix)
        except (BeadsError, OSError) as e:
            logger.debug("Check %s raised", name, exc_info=True)
            result = CheckResult(name, ERROR, f"check could not run: {e}")
        results.append(result)
    return results


def _data_readable(project: BeadsProject) -> bool:
    status = project.worktree.check_health().status
    return status in (WorktreeStatus.HEALTHY, WorktreeStatus.DETACHED)


def _skipped(name: str) -> CheckResult:
    return CheckResult(name, WARN, "skipped: data worktree is not available",
                       suggestion="Run 'bd doctor --fix' to repair the worktree")


# --- Environment ---

@register_check("git")
def check_git(project: BeadsProject, fix: bool) -> CheckResult:
    version = git.git_version()
    if version is None:
        return CheckResult("git", ERROR, "git is not installed or not on PATH")
    shown = ".".join(str(v) for v in version)
    if version < git.MIN_GIT_VERSION:
        needed = ".".join(str(v) for v in git.MIN_GIT_VERSION)
        return CheckResult("git", ERROR, f"git {shown} is too old", suggestion=f"Upgrade to git {needed}+")
    return CheckResult("git", OK, f"git {shown}")


@register_check("config")
def check_config(project: BeadsProject, fix: bool) -> CheckResult:
    try:
        cfg = BeadsConfig.load(project.paths.beads_dir)
    except BeadsError as e:
        return CheckResult("config", ERROR, str(e),
                           suggestion=f"Edit {project.paths.config_path}")
    return CheckResult("config", OK,
                       f"prefix {cfg.id_prefix}, branch {cfg.sync_remote}/{cfg.sync_branch}")


@register_check("gitignore")
def check_gitignore(project: BeadsProject, fix: bool) -> CheckResult:
    from beadstore.project import write_gitignore

    path = os.path.join(project.paths.beads_dir, GITIGNORE)
    lines: list[str] = []
    if os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            lines = f.read().splitlines()
    missing = [entry for entry in GITIGNORE_ENTRIES if entry not in lines]
    if not missing:
        return CheckResult("gitignore", OK, "local-only paths are ignored")
    result = CheckResult("gitignore", WARN, f"{len(missing)} local-only path(s) not ignored",
                         details=missing, fixable=True,
                         suggestion="Run 'bd doctor --fix' to update .beads/.gitignore")
    if fix:
        write_gitignore(project.paths.beads_dir)
        result.status, result.fixed = OK, True
        result.changes = [f"added {entry} to {path}" for entry in missing]
    return result


# --- Worktree and data location ---

@register_check("worktree")
def check_worktree(project: BeadsProject, fix: bool) -> CheckResult:
    health = project.worktree.check_health()
    if health.healthy:
        return CheckResult("worktree", OK, f"attached to {health.branch}")
    status = WARN if health.status.auto_repairable else ERROR
    message = f"worktree is {health.status.value}"
    if health.error:
        message += f": {health.error}"
    result = CheckResult("worktree", status, message, fixable=True,
                         suggestion="Run 'bd doctor --fix' or 'bd sync --fix'")
    if health.status.auto_repairable:
        result.suggestion = "Repaired automatically on the next 'bd sync'"
    if fix:
        change = project.worktree.repair(health.status)
        result.status, result.fixed, result.changes = OK, True, [change]
    return result


def _legacy_files(legacy_dir: str) -> tuple[list[str], str | None]:
    issues_dir = os.path.join(legacy_dir, ISSUES_DIR)
    issue_files = []
    if os.path.isdir(issues_dir):
        issue_files = sorted(os.path.join(issues_dir, n) for n in os.listdir(issues_dir)
                             if n.endswith(ISSUE_SUFFIX))
    mapping = os.path.join(legacy_dir, MAPPINGS_DIR, IDS_FILE)
    return issue_files, mapping if os.path.exists(mapping) else None


@register_check("data-location")
def check_data_location(project: BeadsProject, fix: bool) -> CheckResult:
    legacy_dir = project.paths.legacy_data_dir
    issue_files, legacy_mapping = _legacy_files(legacy_dir)
    if not issue_files and not legacy_mapping:
        return CheckResult("data-location", OK, "all data is inside the worktree")
    result = CheckResult(
        "data-location", ERROR,
        f"{len(issue_files)} issue file(s) outside the worktree in {legacy_dir}",
        details=[os.path.basename(p) for p in issue_files], fixable=True,
        suggestion="Run 'bd doctor --fix' to migrate them to the sync branch")
    if fix:
        result.changes = _migrate_legacy_data(project, issue_files, legacy_mapping)
        result.status, result.fixed = OK, True
    return result


def _migrate_legacy_data(project: BeadsProject, issue_files: list[str],
                         legacy_mapping: str | None) -> list[str]:
    project.ensure_worktree(fix=True)
    store, attic = project.store, project.attic
    changes = []
    for path in issue_files:
        legacy = read_issue_file(path)
        if not store.exists(legacy.id):
            store.write(legacy, bump_version=False)
            changes.append(f"migrated {legacy.id}")
            continue
        current = store.get(legacy.id)
        if current == legacy:
            continue
        attic.archive(legacy, winner_source="worktree", loser_source="legacy",
                      local=current, remote=legacy)
        changes.append(f"archived differing legacy copy of {legacy.id}")

    mapping = load_id_mapping(project.paths.data_dir)
    if legacy_mapping:
        with open(legacy_mapping, encoding="utf-8") as f:
            old = parse_id_mapping_text(f.read(), legacy_mapping)
        mapping = merge_id_mappings(mapping, old, prefer="local")
    reconcile_mappings([i.id for i in store.list()], mapping)
    save_id_mapping(project.paths.data_dir, mapping)

    backup = os.path.join(project.paths.backups_dir, f"data-sync-{backup_timestamp()}")
    os.makedirs(project.paths.backups_dir, exist_ok=True)
    shutil.move(project.paths.legacy_data_dir, backup)
    changes.append(f"moved legacy directory to {backup}")

    wt = project.paths.worktree_dir
    porcelain = git.status_porcelain(wt)
    if porcelain:
        git.run_git("add", "-A", cwd=wt)
        git.run_git("commit", "--no-verify", "-m",
                    format_commit_message("migrate legacy data", len(porcelain.splitlines())),
                    cwd=wt)
        changes.append(f"committed migration on {project.config.sync_branch}")
    return changes


@register_check("temp-files")
def check_temp_files(project: BeadsProject, fix: bool) -> CheckResult:
    data_dir = project.paths.data_dir
    leftovers = []
    if os.path.isdir(data_dir):
        for dirpath, _, filenames in os.walk(data_dir):
            leftovers.extend(os.path.join(dirpath, n) for n in filenames if n.endswith(".tmp"))
    if not leftovers:
        return CheckResult("temp-files", OK, "no leftover temp files")
    result = CheckResult("temp-files", WARN,
                         f"{len(leftovers)} temp file(s) from interrupted writes",
                         details=[os.path.relpath(p, data_dir) for p in sorted(leftovers)],
                         fixable=True, suggestion="Run 'bd doctor --fix' to delete them")
    if fix:
        for path in leftovers:
            os.unlink(path)
            result.changes.append(f"deleted {os.path.relpath(path, data_dir)}")
        result.status, result.fixed = OK, True
    return result


# --- Identifier mapping and records ---

@register_check("id-mapping")
def check_id_mapping(project: BeadsProject, fix: bool) -> CheckResult:
    name = "id-mapping"
    if not _data_readable(project):
        return _skipped(name)
    try:
        mapping = load_id_mapping(project.paths.data_dir)
    except MergeConflictError as e:
        return CheckResult(name, ERROR, str(e),
                           suggestion="Resolve the conflict in ids.yml by hand, then run 'bd sync'")
    except CorruptionError as e:
        return CheckResult(name, ERROR, str(e))

    ids = [i.id for i in project.store.list()]
    unmapped = [i for i in ids if extract_ulid(i) not in mapping.ulid_to_short]
    problems = []
    if mapping.duplicate_keys:
        problems.append(f"{len(mapping.duplicate_keys)} duplicate short ID key(s)")
    if unmapped:
        problems.append(f"{len(unmapped)} issue(s) without a short ID")
    if not problems:
        return CheckResult(name, OK, f"{len(mapping)} short ID(s), no duplicates")

    result = CheckResult(name, WARN, "; ".join(problems), fixable=True,
                         details=list(mapping.duplicate_keys) + unmapped,
                         suggestion="Run 'bd doctor --fix' to deduplicate and reconcile")
    if fix:
        duplicates = list(mapping.duplicate_keys)
        reconciled = reconcile_mappings(ids, mapping)
        save_id_mapping(project.paths.data_dir, mapping)
        result.changes = [f"removed duplicate key {k}" for k in duplicates]
        result.changes += [f"assigned short ID to {i}" for i in reconciled.created + reconciled.recovered]
        result.status, result.fixed = OK, True
    return result


@register_check("duplicate-ids")
def check_duplicate_ids(project: BeadsProject, fix: bool) -> CheckResult:
    name = "duplicate-ids"
    if not _data_readable(project):
        return _skipped(name)
    scan = project.store.scan()
    by_id: dict[str, list[str]] = defaultdict(list)
    mismatched = []
    for path in project.store.issue_files():
        if path in scan.errors:
            continue
        issue = read_issue_file(path)
        by_id[issue.id].append(os.path.basename(path))
        if os.path.basename(path) != issue.id + ISSUE_SUFFIX:
            mismatched.append(f"{os.path.basename(path)} contains {issue.id}")
    duplicates = [f"{i}: {', '.join(files)}" for i, files in sorted(by_id.items()) if len(files) > 1]
    if not duplicates and not mismatched:
        return CheckResult(name, OK, "every internal ID is unique")
    return CheckResult(name, ERROR,
                       f"{len(duplicates)} duplicated ID(s), {len(mismatched)} misnamed file(s)",
                       details=duplicates + mismatched,
                       suggestion="Decide which copy is current and remove the other by hand")


@register_check("issue-validity")
def check_issue_validity(project: BeadsProject, fix: bool) -> CheckResult:
    name = "issue-validity"
    if not _data_readable(project):
        return _skipped(name)
    scan = project.store.scan()
    details = [f"{os.path.basename(p)}: {e}" for p, e in sorted(scan.errors.items())]
    for issue in scan.issues:
        details.extend(f"{issue.id}: {problem}" for problem in issue.validate())
    if not details:
        return CheckResult(name, OK, f"{len(scan.issues)} issue(s) well-formed")
    return CheckResult(name, ERROR, f"{len(details)} problem(s) in issue files", details=details,
                       suggestion="Edit the listed files by hand")


@register_check("orphaned-dependencies")
def check_orphaned_dependencies(project: BeadsProject, fix: bool) -> CheckResult:
    name = "orphaned-dependencies"
    if not _data_readable(project):
        return _skipped(name)
    issues = project.store.list()
    known = {i.id for i in issues}
    details = []
    for issue in issues:
        details.extend(f"{issue.id} -> {dep.target} ({dep.type})"
                       for dep in issue.dependencies if dep.target not in known)
        if issue.parent_id and issue.parent_id not in known:
            details.append(f"{issue.id} -> parent {issue.parent_id}")
    if not details:
        return CheckResult(name, OK, "all references resolve")
    return CheckResult(name, WARN, f"{len(details)} reference(s) to missing issues", details=details,
                       suggestion="The targets may arrive with the next sync; otherwise remove them")


@register_check("sync-consistency")
def check_sync_consistency(project: BeadsProject, fix: bool) -> CheckResult:
    name = "sync-consistency"
    state = project.worktree.branch_state()
    branch = project.config.sync_branch
    if state.local is None:
        return CheckResult(name, WARN, f"local branch {branch} does not exist",
                           suggestion="Run 'bd sync' to create it")
    details = []
    status = OK
    if state.worktree_head and state.worktree_head != state.local:
        status = WARN
        details.append(f"worktree HEAD {state.worktree_head[:8]} != {branch} {state.local[:8]}")
    if state.remote_tracking is None:
        message = f"{branch} has never been pushed ({state.ahead} local commit(s))"
    elif state.ahead and state.behind:
        status = WARN
        message = f"{branch} diverged: {state.ahead} ahead, {state.behind} behind"
    elif state.behind:
        status = WARN
        message = f"{branch} is {state.behind} commit(s) behind"
    elif state.ahead:
        message = f"{branch} has {state.ahead} unpushed commit(s)"
    else:
        message = f"{branch} matches remote-tracking ref"
    suggestion = "Run 'bd sync'" if status != OK or state.ahead else None
    return CheckResult(name, status, message, details=details, suggestion=suggestion)
