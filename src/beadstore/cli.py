"""Click CLI root and global flags for bd."""

from __future__ import annotations

import json
import logging

import click

from beadstore import __version__
from beadstore.errors import BeadsError, ValidationError
from beadstore.models import parse_timestamp
from beadstore.project import BeadsProject
from beadstore.storage.file_store import FileStorage


class BeadsContext:
    """Shared context for all commands."""

    def __init__(self) -> None:
        self.project: BeadsProject | None = None
        self.store: FileStorage | None = None
        self.json_output: bool = False
        self.verbose: bool = False
        self.quiet: bool = False

    def ensure_project(self) -> BeadsProject:
        """Locate the project without touching the worktree."""
        if self.project is None:
            self.project = BeadsProject.discover()
        return self.project

    def ensure_initialized(self) -> None:
        """Locate the project and make its data worktree usable."""
        if self.store is not None:
            return
        project = self.ensure_project()
        project.ensure_worktree()
        self.store = project.store

    def resolve_issue_id(self, value: str) -> str:
        assert self.store is not None
        return self.store.resolve(value)

    def output(self, data: dict | list) -> None:
        """Output data as JSON."""
        click.echo(json.dumps(data, indent=2, default=str))


pass_ctx = click.make_pass_decorator(BeadsContext, ensure=True)


def timestamp_option(ctx: click.Context, param: click.Parameter, value: str | None):
    """Click callback: ISO date or datetime to an aware datetime. Empty stays empty."""
    if not value:
        return value
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


class BeadsGroup(click.Group):
    """Group that turns library errors into a one-line message and exit status."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except BeadsError as e:
            click.echo(f"Error: {e}", err=True)
            ctx.exit(2 if isinstance(e, ValidationError) else 1)


def configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(level)


@click.group(cls=BeadsGroup, invoke_without_command=True)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.version_option(__version__, prog_name="bd")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, verbose: bool, quiet: bool) -> None:
    """bd - git-native issue tracker"""
    bctx = ctx.ensure_object(BeadsContext)
    bctx.verbose = verbose
    bctx.quiet = quiet
    bctx.json_output = json_output
    configure_logging(verbose, quiet)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# --- Register all command groups ---

from beadstore.commands.attic_cmd import attic
from beadstore.commands.close import close
from beadstore.commands.create import create
from beadstore.commands.doctor import doctor
from beadstore.commands.init_cmd import init_cmd
from beadstore.commands.list_cmd import list_cmd
from beadstore.commands.reopen import reopen
from beadstore.commands.show import show
from beadstore.commands.sync_cmd import sync_cmd
from beadstore.commands.update import update

cli.add_command(init_cmd, "init")
cli.add_command(create, "create")
cli.add_command(create, "new")  # Alias
cli.add_command(list_cmd, "list")
cli.add_command(show, "show")
cli.add_command(update, "update")
cli.add_command(close, "close")
cli.add_command(reopen, "reopen")
cli.add_command(sync_cmd, "sync")
cli.add_command(doctor, "doctor")
cli.add_command(attic, "attic")


def main() -> None:
    cli(auto_envvar_prefix="BD")
