"""bd update - update an issue."""

from __future__ import annotations

import click

from beadstore.cli import BeadsContext, pass_ctx, timestamp_option


@click.command("update")
@click.argument("issue_id")
@click.option("--status", "-s", default=None,
              type=click.Choice(["open", "in_progress", "blocked", "deferred", "closed"]),
              help="New status")
@click.option("--priority", "-p", type=click.IntRange(0, 4), default=None, help="New priority (0-4)")
@click.option("--title", "-t", default=None, help="New title")
@click.option("--type", "kind", default=None,
              type=click.Choice(["bug", "feature", "task", "epic", "chore"]), help="New issue type")
@click.option("--assignee", "-a", default=None, help="New assignee (empty to clear)")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--notes", default=None, help="New working notes")
@click.option("--due", "due_date", default=None, callback=timestamp_option,
              help="New due date (ISO 8601, empty to clear)")
@click.option("--defer", "deferred_until", default=None, callback=timestamp_option,
              help="Defer until date (ISO 8601, empty to clear)")
@click.option("--add-label", multiple=True, help="Add label")
@click.option("--remove-label", multiple=True, help="Remove label")
@pass_ctx
def update(ctx: BeadsContext, issue_id: str, status: str | None, priority: int | None,
           title: str | None, kind: str | None, assignee: str | None,
           description: str | None, notes: str | None, due_date, deferred_until,
           add_label: tuple[str, ...],
           remove_label: tuple[str, ...]) -> None:
    """Update an existing issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    issue = ctx.store.get(full_id)

    updates: dict = {}
    if status is not None:
        updates["status"] = status
    if priority is not None:
        updates["priority"] = priority
    if title is not None:
        updates["title"] = title
    if kind is not None:
        updates["kind"] = kind
    if assignee is not None:
        updates["assignee"] = assignee or None
    if description is not None:
        updates["description"] = description
    if notes is not None:
        updates["notes"] = notes
    if due_date is not None:
        updates["due_date"] = due_date or None
    if deferred_until is not None:
        updates["deferred_until"] = deferred_until or None
    if add_label or remove_label:
        labels = (set(issue.labels) | set(add_label)) - set(remove_label)
        updates["labels"] = sorted(labels)

    if not updates:
        raise click.UsageError("no updates specified")

    updated = ctx.store.update(full_id, **updates)

    display = ctx.store.display_id(full_id)
    if ctx.json_output:
        data = updated.to_dict()
        data["display_id"] = display
        ctx.output(data)
    elif not ctx.quiet:
        click.echo(f"Updated {display}")
