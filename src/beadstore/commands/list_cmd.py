"""bd list - list issues."""

from __future__ import annotations

import click

from beadstore.cli import BeadsContext, pass_ctx
from beadstore.id_mapping import format_display_id
from beadstore.models import Status
from beadstore.utils import format_issue_row


@click.command("list")
@click.option("--status", "-s", "status", default=None, help="Filter by status")
@click.option("--priority", "-p", type=int, default=None, help="Filter by priority")
@click.option("--assignee", "-a", default=None, help="Filter by assignee")
@click.option("--type", "kind", default=None, help="Filter by issue type")
@click.option("--label", "-l", multiple=True, help="Filter by label (AND)")
@click.option("--parent", default=None, help="Only children of this issue, in hint order")
@click.option("--all", "show_all", is_flag=True, help="Include closed issues")
@click.option("--long", "-L", "long_format", is_flag=True, help="Long format with extra fields")
@pass_ctx
def list_cmd(ctx: BeadsContext, status: str | None, priority: int | None,
             assignee: str | None, kind: str | None, label: tuple[str, ...],
             parent: str | None, show_all: bool, long_format: bool) -> None:
    """List issues with filters."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    if parent:
        issues = ctx.store.list_children(ctx.resolve_issue_id(parent))
    else:
        issues = ctx.store.list()

    if status:
        issues = [i for i in issues if i.status == status]
    elif not show_all:
        issues = [i for i in issues if i.status != Status.CLOSED]
    if priority is not None:
        issues = [i for i in issues if i.priority == priority]
    if assignee:
        issues = [i for i in issues if i.assignee == assignee]
    if kind:
        issues = [i for i in issues if i.kind == kind]
    for lbl in label:
        issues = [i for i in issues if lbl in i.labels]

    mapping = ctx.store.load_mapping()
    prefix = ctx.store.id_prefix

    def display(issue_id: str) -> str:
        return format_display_id(issue_id, mapping, prefix)

    if ctx.json_output:
        out = []
        for issue in issues:
            data = issue.to_dict()
            data["display_id"] = display(issue.id)
            out.append(data)
        ctx.output(out)
        return

    if not issues:
        click.echo("No issues found.")
        return

    for issue in issues:
        click.echo(format_issue_row(issue, display(issue.id), long_format=long_format))

    if not ctx.quiet:
        click.echo(f"\n{len(issues)} issue(s)")
