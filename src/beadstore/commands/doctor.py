"""bd doctor - health checks."""

from __future__ import annotations

import sys

import click

from beadstore.cli import BeadsContext, pass_ctx
from beadstore.doctor import ERROR, OK, WARN


_MARKERS = {OK: "[OK]", WARN: "[WARN]", ERROR: "[ERROR]"}


@click.command("doctor")
@click.option("--fix", is_flag=True, help="Apply safe automatic fixes")
@pass_ctx
def doctor(ctx: BeadsContext, fix: bool) -> None:
    """Run health checks on the beads project."""
    project = ctx.ensure_project()
    results = project.doctor(fix=fix)

    if ctx.json_output:
        ctx.output([r.to_dict() for r in results])
    else:
        click.echo("Beads Doctor")
        click.echo("─" * 40)
        for r in results:
            click.echo(f"  {_MARKERS[r.status]:<8} {r.name}: {r.message}")
            for line in r.details:
                click.echo(f"             {line}")
            for change in r.changes:
                click.echo(f"             fixed: {change}")
            if r.suggestion and not r.ok:
                click.echo(f"             → {r.suggestion}")

        errors = sum(1 for r in results if r.status == ERROR)
        warnings = sum(1 for r in results if r.status == WARN)
        click.echo()
        if errors or warnings:
            click.echo(f"Found {errors} error(s), {warnings} warning(s)")
        else:
            click.echo("All checks passed!")

    if any(r.status == ERROR for r in results):
        sys.exit(1)
