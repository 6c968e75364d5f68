"""tangent new / list / tree / delete -- conversation management."""

from __future__ import annotations

import click

from tangent.cli.formatting import (
    format_conversation_created,
    format_conversations,
    format_tree,
)


@click.command()
@click.option("-t", "--title", default=None, help="Conversation title.")
@click.pass_context
def new(ctx: click.Context, title: str | None) -> None:
    """Create a conversation with an empty main thread."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        format_conversation_created(ws.create_conversation(title), console)


@click.command(name="list")
@click.pass_context
def list_conversations(ctx: click.Context) -> None:
    """List conversations, most recently updated first."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        format_conversations(ws.list_conversations(), console)


@click.command()
@click.argument("conversation_id")
@click.pass_context
def tree(ctx: click.Context, conversation_id: str) -> None:
    """Show the thread tree of CONVERSATION_ID."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        format_tree(ws.get_conversation_tree(conversation_id), console)


@click.command()
@click.argument("conversation_id")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def delete(ctx: click.Context, conversation_id: str, yes: bool) -> None:
    """Delete CONVERSATION_ID with all of its threads and messages."""
    from tangent.cli import _workspace_session

    if not yes:
        click.confirm(f"Delete conversation {conversation_id}?", abort=True)
    with _workspace_session(ctx) as (ws, console):
        removed = ws.delete_conversation(conversation_id)
        console.print(f"Deleted conversation {conversation_id} ({removed} thread(s))")
