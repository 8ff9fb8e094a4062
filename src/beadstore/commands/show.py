"""bd show - display issue details."""

from __future__ import annotations

import click

from beadstore.cli import BeadsContext, pass_ctx
from beadstore.errors import NotFoundError
from beadstore.models import format_timestamp
from beadstore.utils import format_priority, format_time_ago, priority_label


@click.command("show")
@click.argument("issue_id")
@pass_ctx
def show(ctx: BeadsContext, issue_id: str) -> None:
    """Show detailed view of an issue."""
    ctx.ensure_initialized()
    store = ctx.store
    assert store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    issue = store.get(full_id)
    display = store.display_id(full_id)
    children = store.list_children(full_id)

    if ctx.json_output:
        data = issue.to_dict()
        data["display_id"] = display
        data["description"] = issue.description
        if issue.notes:
            data["notes"] = issue.notes
        data["_children"] = [store.display_id(c.id) for c in children]
        ctx.output(data)
        return

    click.echo(f"{'─' * 60}")
    click.echo(f"  {display}  ({issue.id})")
    click.echo(f"{'─' * 60}")
    click.echo(f"  Title:    {issue.title}")
    click.echo(f"  Status:   {issue.status}")
    click.echo(f"  Priority: {format_priority(issue.priority)} ({priority_label(issue.priority)})")
    click.echo(f"  Type:     {issue.kind}")
    click.echo(f"  Version:  {issue.version}")

    if issue.assignee:
        click.echo(f"  Assignee: {issue.assignee}")
    click.echo(f"  Created:  {format_time_ago(issue.created_at)}")
    click.echo(f"  Updated:  {format_time_ago(issue.updated_at)}")
    if issue.closed_at:
        click.echo(f"  Closed:   {format_time_ago(issue.closed_at)}")
    if issue.close_reason:
        click.echo(f"  Reason:   {issue.close_reason}")
    if issue.labels:
        click.echo(f"  Labels:   {', '.join(issue.labels)}")
    if issue.parent_id:
        click.echo(f"  Parent:   {store.display_id(issue.parent_id)}")
    if issue.spec_path:
        click.echo(f"  Spec:     {issue.spec_path}")
    if issue.external_issue_url:
        click.echo(f"  URL:      {issue.external_issue_url}")
    if issue.due_date:
        click.echo(f"  Due:      {format_timestamp(issue.due_date)}")
    if issue.deferred_until:
        click.echo(f"  Deferred: until {format_timestamp(issue.deferred_until)}")
    if issue.created_by:
        click.echo(f"  By:       {issue.created_by}")

    if issue.description:
        click.echo("\n  Description:")
        for line in issue.description.split("\n"):
            click.echo(f"    {line}")

    if issue.notes:
        click.echo("\n  Notes:")
        for line in issue.notes.split("\n"):
            click.echo(f"    {line}")

    if issue.dependencies:
        click.echo("\n  Dependencies:")
        for dep in issue.dependencies:
            try:
                target = store.get(dep.target)
                label = f"({target.status}) {target.title}"
            except NotFoundError:
                label = "(missing)"
            click.echo(f"    → {store.display_id(dep.target)} [{dep.type}] {label}")

    if children:
        click.echo(f"\n  Children ({len(children)}):")
        for child in children:
            click.echo(f"    {store.display_id(child.id)} ({child.status}) {child.title}")

    click.echo()
