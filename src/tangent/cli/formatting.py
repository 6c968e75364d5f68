"""Rich formatting helpers for the Tangent CLI.

Provides functions that format SDK data structures for terminal display.
Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from tangent.models.thread import ThreadStatus

if TYPE_CHECKING:
    from tangent.models.results import BranchResult, ConversationTree
    from tangent.models.thread import (
        ConversationInfo,
        MergeEventInfo,
        MessageInfo,
        ThreadInfo,
    )
    from tangent.protocols import ContextMessage

_STATUS_STYLE = {
    ThreadStatus.ACTIVE: "green",
    ThreadStatus.MERGED: "cyan",
    ThreadStatus.ARCHIVED: "dim",
}

_PREVIEW_CHARS = 40


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def _preview(text: str | None, limit: int = _PREVIEW_CHARS) -> str:
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def format_conversations(conversations: list[ConversationInfo], console: Console) -> None:
    """Display conversations as a compact table."""
    if not conversations:
        console.print("[dim]No conversations.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("ID", style="yellow")
    table.add_column("Updated", style="dim")
    table.add_column("Root", style="cyan")
    table.add_column("Title")

    for conv in conversations:
        table.add_row(
            conv.conversation_id,
            conv.updated_at.strftime("%Y-%m-%d %H:%M"),
            conv.root_thread_id or "",
            escape(conv.title),
        )
    console.print(table)


def format_conversation_created(conv: ConversationInfo, console: Console) -> None:
    console.print(f"Created conversation [yellow]{conv.conversation_id}[/yellow]")
    console.print(f"  Root thread: [cyan]{conv.root_thread_id}[/cyan]")


def _thread_label(thread: ThreadInfo) -> str:
    style = _STATUS_STYLE.get(thread.status, "")
    label = f"[{style}]{thread.thread_id}[/{style}] [dim]{thread.status.value.lower()}[/dim]"
    if thread.highlighted_text:
        label += f' "{escape(_preview(thread.highlighted_text))}"'
    return label


def format_tree(tree: ConversationTree, console: Console) -> None:
    """Render the thread tree rooted at the main thread."""
    root = tree.root
    view = Tree(f"[bold]{escape(tree.conversation.title)}[/bold] [dim]{root.thread_id}[/dim]")

    def add_children(node: Tree, parent_id: str) -> None:
        for child in tree.children_of(parent_id):
            add_children(node.add(_thread_label(child)), child.thread_id)

    add_children(view, root.thread_id)
    console.print(view)


def format_thread_created(thread: ThreadInfo, console: Console) -> None:
    console.print(f"Opened tangent [green]{thread.thread_id}[/green] (depth {thread.depth})")
    if thread.parent_message_id:
        console.print(f"  Anchored after: {thread.parent_message_id}")


def format_messages(messages: list[MessageInfo], console: Console) -> None:
    if not messages:
        console.print("[dim]No messages.[/dim]")
        return
    for msg in messages:
        role = msg.role.value.lower()
        console.print(f"[bold]{role}[/bold] [dim]{msg.message_id}[/dim]")
        console.print(escape(msg.content), highlight=False)


def format_context(context: list[ContextMessage], console: Console) -> None:
    """Display an assembled context, one entry per block."""
    if not context:
        console.print("[dim]Empty context.[/dim]")
        return
    for index, entry in enumerate(context):
        style = "magenta" if entry.role == "system" else "bold"
        console.print(f"[{style}]{index:>3} {entry.role}[/{style}]")
        console.print(escape(entry.content), highlight=False)


def format_merge_event(event: MergeEventInfo, console: Console) -> None:
    console.print(
        f"Merged [cyan]{event.source_thread_id}[/cyan] into "
        f"[cyan]{event.target_thread_id}[/cyan] after {event.after_message_id}"
    )
    if event.summary:
        console.print(f"  Summary: {escape(event.summary)}")
    else:
        console.print("  [dim]No summary.[/dim]")


def format_archived(archived_ids: list[str], console: Console) -> None:
    if not archived_ids:
        console.print("[dim]Nothing to archive.[/dim]")
        return
    console.print(f"Archived {len(archived_ids)} thread(s):")
    for thread_id in archived_ids:
        console.print(f"  [dim]{thread_id}[/dim]")


def format_branch_result(result: BranchResult, console: Console) -> None:
    conv = result.conversation
    console.print(
        f"Branched into conversation [yellow]{conv.conversation_id}[/yellow] "
        f"({escape(conv.title)})"
    )
    console.print(f"  Messages copied: {result.copied_message_count}")
    console.print(f"  Merges replicated: {len(result.merge_events)}")
    if result.dropped_merge_count:
        console.print(f"  [yellow]Merges dropped: {result.dropped_merge_count}[/yellow]")
    if result.archived_ids:
        console.print(f"  Source archived: {len(result.archived_ids)} thread(s)")


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {message}", highlight=False)
