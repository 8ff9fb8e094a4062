"""Sync protocol between the data worktree and the remote sync branch.

One ``sync`` call runs these phases in order. Each phase leaves the
repository consistent, so an interrupted sync is finished by running it
again:

1. make sure the worktree is usable (auto-repair safe states)
2. commit local changes in the worktree
3. fetch and count ahead/behind against the remote-tracking ref
4. merge remote changes, resolving divergent issue edits last-write-wins
   and archiving the losing side in the attic
5. push, retrying after a fetch and merge when the remote moved ahead
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from beadstore import git
from beadstore.codec import has_header_conflict_markers, parse_issue
from beadstore.config import IDS_FILE, ISSUES_DIR, MAPPINGS_DIR, load_state, save_state
from beadstore.errors import (
    MergeConflictError, SyncError, SyncErrorType, classify_sync_error, is_non_fast_forward,
)
from beadstore.id_mapping import (
    IdMapping, load_id_mapping, merge_id_mappings, parse_id_mapping_text,
    reconcile_mappings, save_id_mapping,
)
from beadstore.models import Issue, format_timestamp, now_utc
from beadstore.sync_summary import (
    SyncSummary, SyncTallies, format_commit_message, parse_git_diff, parse_git_status,
)
from beadstore.worktree import WorktreeHealth, WorktreeStatus
from beadstore.yaml_utils import has_merge_conflict_markers

if TYPE_CHECKING:
    from beadstore.project import BeadsProject


logger = logging.getLogger(__name__)

MAX_PUSH_ATTEMPTS = 3


@dataclass
class PushResult:
    attempted: bool = False
    success: bool = False
    attempts: int = 0
    error: str | None = None
    error_type: SyncErrorType | None = None
    unpushed_commits: int = 0

    @property
    def retryable(self) -> bool:
        return self.error_type == SyncErrorType.TRANSIENT

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "success": self.success,
            "attempts": self.attempts,
            "error": self.error,
            "error_type": self.error_type.value if self.error_type else None,
            "unpushed_commits": self.unpushed_commits,
        }


@dataclass
class SyncResult:
    summary: SyncSummary = field(default_factory=SyncSummary)
    push: PushResult = field(default_factory=PushResult)
    committed: bool = False
    ahead: int = 0
    behind: int = 0
    repaired: WorktreeStatus | None = None
    attic_entries: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return (not self.committed and self.ahead == 0 and self.behind == 0
                and self.summary.is_empty)

    @property
    def success(self) -> bool:
        return self.push.error is None

    def to_dict(self) -> dict:
        return {
            "in_sync": self.in_sync,
            "committed": self.committed,
            "ahead": self.ahead,
            "behind": self.behind,
            "repaired": self.repaired.value if self.repaired else None,
            "summary": self.summary.to_dict(),
            "push": self.push.to_dict(),
            "attic_entries": list(self.attic_entries),
        }


@dataclass
class SyncStatus:
    worktree: WorktreeHealth
    ahead: int = 0
    behind: int = 0
    local_changes: SyncTallies = field(default_factory=SyncTallies)
    pending_files: int = 0
    remote_branch_exists: bool = False
    incoming: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return self.ahead == 0 and self.behind == 0 and self.pending_files == 0

    def to_dict(self) -> dict:
        return {
            "worktree": self.worktree.status.value,
            "ahead": self.ahead,
            "behind": self.behind,
            "pending_files": self.pending_files,
            "local_changes": self.local_changes.to_dict(),
            "remote_branch_exists": self.remote_branch_exists,
            "incoming": list(self.incoming),
            "in_sync": self.in_sync,
        }


@dataclass
class _MergeOutcome:
    received: SyncTallies = field(default_factory=SyncTallies)
    conflicts: int = 0
    attic_entries: list[str] = field(default_factory=list)


def _pick_winner(local: Issue, remote: Issue) -> str:
    """Last write wins; ties go to the higher version, then to local."""
    if (remote.updated_at, remote.version) > (local.updated_at, local.version):
        return "remote"
    return "local"


class SyncEngine:
    def __init__(self, project: BeadsProject) -> None:
        self.project = project
        self.worktree = project.worktree
        self.remote = project.config.sync_remote
        self.branch = project.config.sync_branch
        self.root = project.paths.root
        self.wt = project.paths.worktree_dir
        self.data_rel = project.paths.data_dir_relative

    # --- Entry point ---

    def sync(self, push: bool = False, pull: bool = False, status: bool = False,
             fix: bool = False) -> SyncResult | SyncStatus:
        """Run a sync.

        ``push`` commits and pushes without merging first, ``pull`` only
        fetches and merges, neither (or both) does a full sync. A push that
        is rejected because the remote moved ahead still fetches and merges
        before retrying, so ``push`` can receive remote changes. ``status``
        reports without committing or merging.
        """
        if status:
            return self.status()

        before = self.worktree.require_usable(fix=fix)
        # Never commit on a detached HEAD: the branch ref would not move.
        self.worktree.ensure_attached()

        do_pull = pull or not push
        do_push = push or not pull
        result = SyncResult(repaired=None if before.healthy else before.status)

        result.committed = self.commit_local_changes()

        try:
            remote_has_branch = self.fetch()
        except SyncError as e:
            # Local commits are safe; report them as unpushed and let the caller retry.
            known = git.ref_exists(self.worktree.remote_ref, cwd=self.root)
            result.ahead = self._ahead(known)
            result.push = PushResult(error=str(e), error_type=e.error_type,
                                     unpushed_commits=result.ahead)
            logger.warning("Fetch failed (%s): %s", e.error_type.value, e)
            return result
        result.behind = self._behind() if remote_has_branch else 0

        if do_pull and result.behind:
            outcome = self.merge_remote()
            self._absorb(result, outcome)

        result.ahead = self._ahead(remote_has_branch)
        if do_push and result.ahead:
            self._push(result, remote_has_branch)
        else:
            result.push.unpushed_commits = result.ahead

        self._record_sync()
        logger.info("Sync finished: ahead=%d behind=%d conflicts=%d",
                    result.ahead, result.behind, result.summary.conflicts)
        return result

    def status(self) -> SyncStatus:
        health = self.worktree.check_health()
        st = SyncStatus(worktree=health)
        if health.status in (WorktreeStatus.HEALTHY, WorktreeStatus.DETACHED):
            porcelain = git.status_porcelain(self.wt)
            st.local_changes = parse_git_status(porcelain)
            st.pending_files = len(porcelain.splitlines())
        st.remote_branch_exists = self.fetch()
        state = self.worktree.branch_state()
        st.ahead = state.ahead
        st.behind = state.behind if st.remote_branch_exists else 0
        if st.behind:
            st.incoming = git.subjects(f"{self.worktree.branch_ref}..{self.worktree.remote_ref}",
                                       cwd=self.root)
        return st

    # --- Phases ---

    def commit_local_changes(self) -> bool:
        """Commit everything pending in the worktree. Returns True if a commit was made."""
        porcelain = git.status_porcelain(self.wt)
        if not porcelain:
            return False
        file_count = len(porcelain.splitlines())
        git.run_git("add", "-A", cwd=self.wt)
        self._check_staged_conflict_markers()
        message = format_commit_message(format_timestamp(now_utc()), file_count)
        git.run_git("commit", "--no-verify", "-m", message, cwd=self.wt)
        logger.info("Committed %d local file change(s)", file_count)
        return True

    def fetch(self) -> bool:
        """Fetch the sync branch. Returns False when the remote has no such branch."""
        if not git.remote_exists(self.remote, cwd=self.root):
            logger.debug("No remote %s configured", self.remote)
            return False
        result = git.try_git("fetch", self.remote, self.worktree.fetch_refspec, cwd=self.root)
        if result.ok:
            return True
        if "couldn't find remote ref" in result.output.lower():
            if git.ref_exists(self.worktree.remote_ref, cwd=self.root):
                git.run_git("update-ref", "-d", self.worktree.remote_ref, cwd=self.root)
            return False
        raise SyncError(f"Fetch from {self.remote} failed: {result.stderr.strip()}",
                        classify_sync_error(result.output))

    def merge_remote(self) -> _MergeOutcome:
        """Merge the remote-tracking ref into the worktree branch."""
        remote_ref = self.worktree.remote_ref
        outcome = _MergeOutcome()
        base = git.merge_base("HEAD", remote_ref, cwd=self.wt)
        diff_from = base or git.run_git("mktree", cwd=self.wt, input="")
        outcome.received = parse_git_diff(
            git.run_git("diff", "--name-status", diff_from, remote_ref, "--", self.data_rel,
                        cwd=self.wt))

        if base and git.is_ancestor("HEAD", remote_ref, cwd=self.wt):
            git.run_git("merge", "--ff-only", remote_ref, cwd=self.wt)
            logger.info("Fast-forwarded to %s", remote_ref)
            return outcome

        base_blobs = self._tree_blobs(base) if base else {}
        local_blobs = self._tree_blobs("HEAD")
        remote_blobs = self._tree_blobs(remote_ref)
        remote_mapping = self._mapping_at(remote_ref)

        args = ["merge", "--no-ff", "--no-commit"]
        if base is None:
            args.append("--allow-unrelated-histories")
        merge = git.try_git(*args, remote_ref, cwd=self.wt)
        if not merge.ok and git.rev_parse("MERGE_HEAD", cwd=self.wt) is None:
            raise SyncError(f"Merge of {remote_ref} failed: {merge.output}", SyncErrorType.UNKNOWN)

        conflicted = set(git.run_git("diff", "--name-only", "--diff-filter=U",
                                     cwd=self.wt).splitlines())
        mapping_rel = f"{self.data_rel}/{MAPPINGS_DIR}/{IDS_FILE}"
        issues_prefix = f"{self.data_rel}/{ISSUES_DIR}/"

        for path in sorted(set(local_blobs) | set(remote_blobs)):
            b, l, r = base_blobs.get(path), local_blobs.get(path), remote_blobs.get(path)
            diverged = l != b and r != b and l != r
            if path == mapping_rel:
                if diverged or path in conflicted:
                    self._merge_mapping_file(remote_mapping)
                continue
            if path.startswith(issues_prefix) and path.endswith(".md") and diverged:
                entry = self._resolve_issue(path, l, r)
                if entry:
                    outcome.conflicts += 1
                    outcome.attic_entries.append(entry)
            elif path in conflicted:
                # Non-record files (meta.yml, .gitkeep): keep ours, or theirs if ours is gone.
                side = "--ours" if l is not None else "--theirs"
                git.run_git("checkout", side, "--", path, cwd=self.wt)

        self._reconcile_after_merge(remote_mapping)
        git.run_git("add", "-A", cwd=self.wt)
        self._check_staged_conflict_markers()
        staged = git.run_git("diff", "--cached", "--name-only", "HEAD", cwd=self.wt).splitlines()
        message = format_commit_message(f"merge {self.remote}/{self.branch}", len(staged))
        git.run_git("commit", "--no-verify", "--allow-empty", "-m", message, cwd=self.wt)
        logger.info("Merged %s with %d conflict(s)", remote_ref, outcome.conflicts)
        return outcome

    # --- Merge helpers ---

    def _tree_blobs(self, rev: str) -> dict[str, str]:
        out = git.run_git("ls-tree", "-r", rev, "--", self.data_rel, cwd=self.wt)
        blobs = {}
        for line in out.splitlines():
            meta, _, path = line.partition("\t")
            blobs[path] = meta.split()[2]
        return blobs

    def _blob_text(self, blob: str) -> str:
        return git.run_git("cat-file", "blob", blob, cwd=self.wt) + "\n"

    def _mapping_at(self, rev: str) -> IdMapping:
        path = f"{self.data_rel}/{MAPPINGS_DIR}/{IDS_FILE}"
        result = git.try_git("show", f"{rev}:{path}", cwd=self.wt)
        if not result.ok:
            return IdMapping()
        return parse_id_mapping_text(result.stdout, f"{rev}:{path}")

    def _resolve_issue(self, path: str, local_blob: str | None,
                       remote_blob: str | None) -> str | None:
        """Settle one issue edited on both sides. Returns the attic entry key, if any."""
        abs_path = os.path.join(self.wt, path)
        if local_blob is None or remote_blob is None:
            # Deleted on one side, edited on the other: keep the edit.
            kept = local_blob or remote_blob
            with open(abs_path, "w", encoding="utf-8") as f:
                f.write(self._blob_text(kept))
            return None
        local = parse_issue(self._blob_text(local_blob), f"HEAD:{path}")
        remote = parse_issue(self._blob_text(remote_blob), f"{self.worktree.remote_ref}:{path}")
        winner_source = _pick_winner(local, remote)
        loser_source = "remote" if winner_source == "local" else "local"
        winner, loser = (local, remote) if winner_source == "local" else (remote, local)

        entry = self.project.attic.archive(loser, winner_source, loser_source, local, remote)
        winner.version = max(local.version, remote.version) + 1
        self.project.store.write(winner, bump_version=False)
        logger.warning("Conflict on %s: kept %s version, archived %s version",
                       local.id, winner_source, loser_source)
        return f"{entry.entity_id}@{entry.timestamp}"

    def _merge_mapping_file(self, remote_mapping: IdMapping) -> None:
        local_mapping = self._mapping_at("HEAD")
        merged = merge_id_mappings(local_mapping, remote_mapping,
                                   prefer=self.project.config.mapping_conflict_policy)
        save_id_mapping(self.project.paths.data_dir, merged)

    def _reconcile_after_merge(self, remote_mapping: IdMapping) -> None:
        data_dir = self.project.paths.data_dir
        mapping = load_id_mapping(data_dir)
        ids = [issue.id for issue in self.project.store.list()]
        result = reconcile_mappings(ids, mapping, historical=remote_mapping)
        if result.changed or mapping.duplicate_keys:
            save_id_mapping(data_dir, mapping)
            if result.created:
                logger.info("Assigned new short IDs to %d issue(s)", len(result.created))

    def _check_staged_conflict_markers(self) -> None:
        staged = git.run_git("diff", "--cached", "--name-only", "--diff-filter=AM",
                             cwd=self.wt).splitlines()
        issues_prefix = f"{self.data_rel}/{ISSUES_DIR}/"
        for rel in staged:
            path = os.path.join(self.wt, rel)
            if not os.path.isfile(path):
                continue
            with open(path, encoding="utf-8", errors="replace") as f:
                text = f.read()
            # Issue bodies are Markdown; only their header can carry a real conflict.
            if rel.startswith(issues_prefix) and rel.endswith(".md"):
                conflicted = has_header_conflict_markers(text)
            else:
                conflicted = has_merge_conflict_markers(text)
            if conflicted:
                raise MergeConflictError(path, "refusing to commit")

    def _absorb(self, result: SyncResult, outcome: _MergeOutcome) -> None:
        result.summary.received = result.summary.received + outcome.received
        result.summary.conflicts += outcome.conflicts
        result.attic_entries.extend(outcome.attic_entries)

    # --- Ahead/behind and push ---

    def _behind(self) -> int:
        return git.rev_list_count(f"{self.worktree.branch_ref}..{self.worktree.remote_ref}",
                                  cwd=self.root)

    def _ahead(self, remote_has_branch: bool) -> int:
        if remote_has_branch:
            return git.rev_list_count(
                f"{self.worktree.remote_ref}..{self.worktree.branch_ref}", cwd=self.root)
        return git.rev_list_count(self.worktree.branch_ref, cwd=self.root)

    def _outgoing(self, remote_has_branch: bool) -> SyncTallies:
        base = (self.worktree.remote_ref if remote_has_branch
                else git.run_git("mktree", cwd=self.root, input=""))
        out = git.run_git("diff", "--name-status", base, self.worktree.branch_ref,
                          "--", self.data_rel, cwd=self.root)
        return parse_git_diff(out)

    def _push(self, result: SyncResult, remote_has_branch: bool) -> None:
        push = result.push
        if not git.remote_exists(self.remote, cwd=self.root):
            push.error = f"No remote named {self.remote!r} is configured"
            push.error_type = SyncErrorType.PERMANENT
            push.unpushed_commits = result.ahead
            return

        outgoing = self._outgoing(remote_has_branch)
        refspec = f"{self.worktree.branch_ref}:{self.worktree.branch_ref}"
        push.attempted = True
        while push.attempts < MAX_PUSH_ATTEMPTS:
            push.attempts += 1
            attempt = git.try_git("push", self.remote, refspec, cwd=self.root)
            if attempt.ok:
                tip = git.rev_parse(self.worktree.branch_ref, cwd=self.root)
                git.run_git("update-ref", self.worktree.remote_ref, tip, cwd=self.root)
                push.success = True
                push.error = None
                push.error_type = None
                result.summary.sent = result.summary.sent + outgoing
                logger.info("Pushed %d commit(s) to %s/%s", result.ahead, self.remote, self.branch)
                return
            push.error = attempt.stderr.strip() or attempt.output
            push.error_type = classify_sync_error(attempt.output)
            if push.error_type == SyncErrorType.PERMANENT or not is_non_fast_forward(attempt.output):
                break
            if push.attempts >= MAX_PUSH_ATTEMPTS:
                break
            logger.info("Push rejected (remote moved ahead); fetching and merging before retry")
            remote_has_branch = self.fetch()
            if remote_has_branch and self._behind():
                self._absorb(result, self.merge_remote())
            result.ahead = self._ahead(remote_has_branch)
            outgoing = self._outgoing(remote_has_branch)

        push.unpushed_commits = self._ahead(remote_has_branch)
        logger.warning("Push failed (%s): %s", push.error_type.value if push.error_type else "unknown",
                       push.error)

    def _record_sync(self) -> None:
        beads_dir = self.project.paths.beads_dir
        state = load_state(beads_dir)
        state["last_sync_at"] = format_timestamp(now_utc())
        save_state(beads_dir, state)
