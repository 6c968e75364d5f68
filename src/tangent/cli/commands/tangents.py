"""tangent fork / merge / archive / branch -- thread lifecycle."""

from __future__ import annotations

import click

from tangent.cli.formatting import (
    format_archived,
    format_branch_result,
    format_merge_event,
    format_thread_created,
)


@click.command()
@click.argument("parent_thread_id")
@click.argument("highlighted_text")
@click.pass_context
def fork(ctx: click.Context, parent_thread_id: str, highlighted_text: str) -> None:
    """Open a tangent on PARENT_THREAD_ID exploring HIGHLIGHTED_TEXT."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        format_thread_created(ws.fork(parent_thread_id, highlighted_text), console)


@click.command()
@click.argument("thread_id")
@click.pass_context
def merge(ctx: click.Context, thread_id: str) -> None:
    """Merge tangent THREAD_ID back into its parent."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        format_merge_event(ws.merge(thread_id), console)


@click.command()
@click.argument("thread_id")
@click.pass_context
def archive(ctx: click.Context, thread_id: str) -> None:
    """Archive tangent THREAD_ID and its open descendants."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        format_archived(ws.archive(thread_id), console)


@click.command()
@click.argument("thread_id")
@click.option(
    "--archive-source/--keep-source",
    default=False,
    help="Archive the source tangent after branching (default: keep).",
)
@click.pass_context
def branch(ctx: click.Context, thread_id: str, archive_source: bool) -> None:
    """Copy THREAD_ID into a new standalone conversation."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        format_branch_result(ws.branch(thread_id, archive_source=archive_source), console)
