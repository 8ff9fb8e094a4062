"""bd attic - inspect and restore versions that lost a merge."""

from __future__ import annotations

import click

from beadstore.cli import BeadsContext, pass_ctx


@click.group("attic")
def attic() -> None:
    """Archived versions of issues superseded during sync."""


@attic.command("list")
@click.argument("issue_id", required=False)
@pass_ctx
def attic_list(ctx: BeadsContext, issue_id: str | None) -> None:
    """List attic entries, newest first."""
    ctx.ensure_initialized()
    assert ctx.project is not None and ctx.store is not None

    entity_id = ctx.resolve_issue_id(issue_id) if issue_id else None
    entries = ctx.project.attic.list(entity_id)

    if ctx.json_output:
        ctx.output([{**e.to_dict(), "key": e.key} for e in entries])
        return
    if not entries:
        click.echo("Attic is empty.")
        return
    for e in entries:
        click.echo(f"{ctx.store.display_id(e.entity_id):<10} {e.timestamp}  "
                   f"{e.loser_source} lost to {e.winner_source}")


@attic.command("show")
@click.argument("issue_id")
@click.argument("timestamp")
@pass_ctx
def attic_show(ctx: BeadsContext, issue_id: str, timestamp: str) -> None:
    """Show one archived version."""
    ctx.ensure_initialized()
    assert ctx.project is not None

    entry = ctx.project.attic.show(ctx.resolve_issue_id(issue_id), timestamp)
    if ctx.json_output:
        ctx.output(entry.to_dict())
        return
    click.echo(f"Entity:  {entry.entity_id}")
    click.echo(f"Lost at: {entry.timestamp} ({entry.loser_source} lost to {entry.winner_source})")
    for key, value in sorted(entry.context.items()):
        click.echo(f"  {key}: {value}")
    click.echo()
    click.echo(entry.content, nl=False)


@attic.command("restore")
@click.argument("issue_id")
@click.argument("timestamp")
@pass_ctx
def attic_restore(ctx: BeadsContext, issue_id: str, timestamp: str) -> None:
    """Make an archived version current again (as a new version)."""
    ctx.ensure_initialized()
    assert ctx.project is not None and ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    issue = ctx.project.attic.restore(ctx.store, full_id, timestamp)
    if ctx.json_output:
        ctx.output(issue.to_dict())
    elif not ctx.quiet:
        click.echo(f"Restored {ctx.store.display_id(full_id)} to the version from {timestamp} "
                   f"(now version {issue.version})")
