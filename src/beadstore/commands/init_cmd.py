"""bd init - initialize .beads/ and the data worktree."""

from __future__ import annotations

import os

import click

from beadstore.cli import BeadsContext, pass_ctx
from beadstore.config import find_beads_dir
from beadstore.project import init_project


@click.command("init")
@click.option("--prefix", help="Display ID prefix (default: directory name)")
@click.option("--branch", "sync_branch", help="Sync branch name (default: beads-sync)")
@click.option("--remote", "sync_remote", help="Remote to sync with (default: origin)")
@pass_ctx
def init_cmd(ctx: BeadsContext, prefix: str | None, sync_branch: str | None,
             sync_remote: str | None) -> None:
    """Initialize a beads project in the current git repository."""
    cwd = os.getcwd()
    already = find_beads_dir(cwd) == os.path.join(cwd, ".beads")

    project = init_project(cwd, prefix=prefix, sync_branch=sync_branch, sync_remote=sync_remote)
    cfg = project.config

    if ctx.json_output:
        ctx.output({
            "beads_dir": project.paths.beads_dir,
            "id_prefix": cfg.id_prefix,
            "sync_branch": cfg.sync_branch,
            "sync_remote": cfg.sync_remote,
        })
        return
    if already:
        click.echo(f"Beads already initialized at {project.paths.beads_dir}")
        return
    click.echo(f"Initialized beads in {project.paths.beads_dir}")
    click.echo(f"  ID prefix:   {cfg.id_prefix}")
    click.echo(f"  Sync branch: {cfg.sync_remote}/{cfg.sync_branch}")
