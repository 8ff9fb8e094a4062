"""bd close - close one or more issues."""

from __future__ import annotations

import click

from beadstore.cli import BeadsContext, pass_ctx


@click.command("close")
@click.argument("issue_ids", nargs=-1, required=True)
@click.option("--reason", "-r", default="", help="Close reason")
@pass_ctx
def close(ctx: BeadsContext, issue_ids: tuple[str, ...], reason: str) -> None:
    """Close one or more issues."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    closed_ids = []
    for partial_id in issue_ids:
        full_id = ctx.resolve_issue_id(partial_id)
        issue = ctx.store.get(full_id)
        display = ctx.store.display_id(full_id)
        if issue.is_closed:
            click.echo(f"Already closed: {display}", err=True)
            continue

        ctx.store.close(full_id, reason)
        closed_ids.append(display)

        if not ctx.quiet and not ctx.json_output:
            click.echo(f"Closed {display}: {issue.title}")

    if ctx.json_output:
        ctx.output({"closed": closed_ids})
