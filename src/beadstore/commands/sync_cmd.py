"""bd sync - commit, merge and push issue data on the sync branch."""

from __future__ import annotations

import sys

import click

from beadstore.cli import BeadsContext, pass_ctx
from beadstore.sync import SyncResult, SyncStatus
from beadstore.sync_summary import format_sync_summary


@click.command("sync")
@click.option("--push", is_flag=True, help="Only commit and push local changes")
@click.option("--pull", is_flag=True, help="Only fetch and merge remote changes")
@click.option("--status", "status_only", is_flag=True, help="Show what a sync would do")
@click.option("--fix", is_flag=True, help="Repair a deleted or corrupted worktree first")
@pass_ctx
def sync_cmd(ctx: BeadsContext, push: bool, pull: bool, status_only: bool, fix: bool) -> None:
    """Sync issue data with the remote sync branch."""
    project = ctx.ensure_project()
    result = project.sync(push=push, pull=pull, status=status_only, fix=fix)

    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    if isinstance(result, SyncStatus):
        _print_status(result)
        return
    _print_result(ctx, result)
    if result.push.error:
        sys.exit(1)


def _print_status(st: SyncStatus) -> None:
    click.echo(f"Worktree: {st.worktree.status.value}")
    if st.pending_files:
        click.echo(f"Uncommitted: {st.pending_files} file(s)")
    if not st.remote_branch_exists:
        click.echo("Remote: sync branch not pushed yet")
    click.echo(f"Ahead: {st.ahead}  Behind: {st.behind}")
    for subject in st.incoming:
        click.echo(f"  incoming: {subject}")
    if st.in_sync:
        click.echo("Already in sync.")


def _print_result(ctx: BeadsContext, result: SyncResult) -> None:
    if result.repaired is not None:
        click.echo(f"Repaired {result.repaired.value} worktree")
    if result.in_sync:
        if not ctx.quiet:
            click.echo("Already in sync.")
        return
    text = format_sync_summary(result.summary)
    if text and not ctx.quiet:
        click.echo(text)
    push = result.push
    if push.success:
        click.echo(f"Pushed {result.ahead} commit(s)")
    elif push.error:
        kind = push.error_type.value if push.error_type else "unknown"
        click.echo(f"Error: push failed ({kind}): {push.error}", err=True)
        click.echo(f"{push.unpushed_commits} commit(s) not pushed", err=True)
        if push.retryable:
            click.echo("This looks transient; run 'bd sync' again to retry.", err=True)
    elif push.unpushed_commits:
        click.echo(f"{push.unpushed_commits} commit(s) not pushed (run 'bd sync --push')")
