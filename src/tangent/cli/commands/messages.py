"""tangent say / messages / context -- reading and writing thread content."""

from __future__ import annotations

import json

import click

from tangent.cli.formatting import format_context, format_messages


@click.command()
@click.argument("thread_id")
@click.argument("content")
@click.option(
    "-r",
    "--role",
    default="user",
    type=click.Choice(["user", "assistant", "system"], case_sensitive=False),
    help="Message role (default: user).",
)
@click.pass_context
def say(ctx: click.Context, thread_id: str, content: str, role: str) -> None:
    """Append CONTENT to THREAD_ID."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        message = ws.append_message(thread_id, role, content)
        console.print(f"Appended [dim]{message.message_id}[/dim] (#{message.sequence})")


@click.command()
@click.argument("thread_id")
@click.pass_context
def messages(ctx: click.Context, thread_id: str) -> None:
    """Show the messages stored on THREAD_ID."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        format_messages(ws.get_thread_messages(thread_id), console)


@click.command()
@click.argument("thread_id")
@click.option("--json", "as_json", is_flag=True, help="Print the context as JSON.")
@click.pass_context
def context(ctx: click.Context, thread_id: str, as_json: bool) -> None:
    """Show the model context assembled for THREAD_ID."""
    from tangent.cli import _workspace_session

    with _workspace_session(ctx) as (ws, console):
        assembled = ws.build_context(thread_id)
        if as_json:
            click.echo(json.dumps([m.to_dict() for m in assembled], indent=2))
        else:
            format_context(assembled, console)
