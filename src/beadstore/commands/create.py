"""bd create - create a new issue."""

from __future__ import annotations

import click

from beadstore.cli import BeadsContext, pass_ctx, timestamp_option


@click.command("create")
@click.argument("title_arg", required=False, metavar="TITLE")
@click.option("--title", "-t", default=None, help="Issue title")
@click.option("--type", "kind", default="task",
              type=click.Choice(["bug", "feature", "task", "epic", "chore"]),
              help="Issue type")
@click.option("--priority", "-p", default=2, type=click.IntRange(0, 4),
              help="Priority (0=critical, 2=medium, 4=backlog)")
@click.option("--description", "-d", default="", help="Issue description")
@click.option("--notes", default="", help="Working notes")
@click.option("--due", "due_date", default=None, callback=timestamp_option,
              help="Due date (ISO 8601)")
@click.option("--defer", "deferred_until", default=None, callback=timestamp_option,
              help="Defer until date (ISO 8601)")
@click.option("--assignee", "-a", default="", help="Assignee")
@click.option("--labels", "-l", multiple=True, help="Labels (repeatable)")
@click.option("--parent", default="", help="Parent issue ID")
@click.option("--deps", multiple=True, help="Dependencies (issue IDs that block this)")
@click.option("--spec", "spec_path", default="", help="Path of the spec this issue implements")
@click.option("--url", "external_issue_url", default="", help="Linked external issue URL")
@click.option("--silent", is_flag=True, help="Only output the issue ID")
@pass_ctx
def create(ctx: BeadsContext, title_arg: str | None, title: str | None, kind: str,
           priority: int, description: str, notes: str, due_date, deferred_until,
           assignee: str, labels: tuple[str, ...], parent: str, deps: tuple[str, ...],
           spec_path: str, external_issue_url: str, silent: bool) -> None:
    """Create a new issue."""
    title = title or title_arg
    if not title:
        raise click.UsageError("a title is required (argument or --title)")
    ctx.ensure_initialized()
    assert ctx.store is not None

    parent_id = ctx.resolve_issue_id(parent) if parent else None
    dep_ids = [ctx.resolve_issue_id(d) for d in deps]

    issue = ctx.store.create(
        title,
        kind=kind,
        priority=priority,
        description=description,
        notes=notes,
        due_date=due_date or None,
        deferred_until=deferred_until or None,
        labels=list(labels),
        dependencies=dep_ids,
        parent_id=parent_id,
        assignee=assignee,
        spec_path=spec_path,
        external_issue_url=external_issue_url,
    )
    display = ctx.store.display_id(issue.id)

    if ctx.json_output:
        data = issue.to_dict()
        data["display_id"] = display
        ctx.output(data)
    elif silent:
        click.echo(display)
    else:
        click.echo(f"Created {kind} {display}: {title}")
