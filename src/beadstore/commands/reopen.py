"""bd reopen - reopen a closed issue."""

from __future__ import annotations

import click

from beadstore.cli import BeadsContext, pass_ctx


@click.command("reopen")
@click.argument("issue_id")
@pass_ctx
def reopen(ctx: BeadsContext, issue_id: str) -> None:
    """Reopen a closed issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    issue = ctx.store.reopen(full_id)
    display = ctx.store.display_id(full_id)

    if ctx.json_output:
        ctx.output({"id": display, "status": issue.status})
    elif not ctx.quiet:
        click.echo(f"Reopened {display}: {issue.title}")
