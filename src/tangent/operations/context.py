"""Context assembly: flatten a thread's tree position into a prompt.

build_context() is read-only. Given the same store state it returns the
same list, and appending a message to the thread only extends the tail.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tangent.protocols import ContextMessage

if TYPE_CHECKING:
    from tangent.models.config import TangentConfig
    from tangent.storage.repositories import (
        MergeEventRepository,
        MessageRepository,
        ThreadRepository,
    )
    from tangent.storage.schema import MergeEventRow, MessageRow, ThreadRow

logger = logging.getLogger(__name__)

MERGE_END_MARKER = "[End of merged tangent thread context.]"


def focus_marker(highlighted_text: str) -> str:
    return (
        "[Tangent thread opened. The user highlighted the following text to "
        f'explore further: "{highlighted_text}". Focus your responses on this topic.]'
    )


def merge_summary_marker(summary: str) -> str:
    return f"[Merged tangent thread summary: {summary}]"


def _to_context(row: MessageRow) -> ContextMessage:
    return ContextMessage(role=row.role.value.lower(), content=row.content)


def _truncate_at(rows: list[MessageRow], anchor_id: str) -> list[MessageRow]:
    """Prefix of *rows* ending at *anchor_id* inclusive; empty if absent."""
    for index, row in enumerate(rows):
        if row.message_id == anchor_id:
            return rows[: index + 1]
    return []


def _inheritance_links(
    thread: ThreadRow,
    threads_by_id: dict[str, ThreadRow],
    *,
    full_ancestry: bool,
) -> list[ThreadRow]:
    """Anchored threads whose parent's prefix is inherited, topmost first.

    Starts at *thread* and climbs while each thread has both a parent and
    an anchor. One level only unless *full_ancestry*.
    """
    links: list[ThreadRow] = []
    seen: set[str] = set()
    current: ThreadRow | None = thread
    while (
        current is not None
        and current.parent_thread_id is not None
        and current.parent_message_id is not None
        and current.thread_id not in seen
    ):
        seen.add(current.thread_id)
        links.append(current)
        if not full_ancestry:
            break
        current = threads_by_id.get(current.parent_thread_id)
    links.reverse()
    return links


def _merge_splices(
    events: list[MergeEventRow],
    message_repo: MessageRepository,
    limit: int,
) -> dict[str, list[ContextMessage]]:
    """Group spliced merge blocks by anchor message, in event order."""
    splices: dict[str, list[ContextMessage]] = {}
    for event in events:
        block: list[ContextMessage] = []
        if event.summary:
            block.append(ContextMessage(role="system", content=merge_summary_marker(event.summary)))
        block.extend(
            _to_context(row) for row in message_repo.get_recent(event.source_thread_id, limit)
        )
        block.append(ContextMessage(role="system", content=MERGE_END_MARKER))
        splices.setdefault(event.after_message_id, []).extend(block)
    return splices


def build_context(
    thread: ThreadRow,
    *,
    thread_repo: ThreadRepository,
    message_repo: MessageRepository,
    merge_repo: MergeEventRepository,
    config: TangentConfig,
) -> list[ContextMessage]:
    """Build the ordered message list to hand a model for *thread*.

    Layout:
        1. Inherited context. For each anchored link from the top down,
           the parent's messages up to the anchor, then a SYSTEM focus
           marker when the child has highlighted text. With
           ``config.inherit_full_ancestry`` off only the immediate parent
           contributes. Ancestors' own merge splices are not inherited.
        2. The thread's own messages. After each one, every merge event
           anchored to it is spliced in creation order: an optional
           summary marker, the source's ``merge_context_limit`` most
           recent messages, then an end marker.

    Args:
        thread: The thread to assemble context for.
        thread_repo: Thread repository (ancestor lookup).
        message_repo: Message repository.
        merge_repo: Merge event repository.
        config: Assembly limits and inheritance mode.

    Returns:
        ContextMessage list with lowercased roles.
    """
    threads_by_id = {
        row.thread_id: row for row in thread_repo.get_all(thread.conversation_id)
    }
    links = _inheritance_links(
        thread, threads_by_id, full_ancestry=config.inherit_full_ancestry
    )

    needed = [link.parent_thread_id for link in links] + [thread.thread_id]
    messages_by_thread = message_repo.get_for_threads(list(dict.fromkeys(needed)))

    context: list[ContextMessage] = []
    for link in links:
        parent_rows = messages_by_thread.get(link.parent_thread_id, [])
        context.extend(_to_context(row) for row in _truncate_at(parent_rows, link.parent_message_id))
        if link.highlighted_text:
            context.append(ContextMessage(role="system", content=focus_marker(link.highlighted_text)))

    events = list(merge_repo.get_for_target(thread.thread_id))
    splices = _merge_splices(events, message_repo, config.merge_context_limit)

    for row in messages_by_thread.get(thread.thread_id, []):
        context.append(_to_context(row))
        context.extend(splices.get(row.message_id, ()))

    logger.debug(
        "Built context for %s: %d messages (%d inherited levels, %d merges)",
        thread.thread_id,
        len(context),
        len(links),
        len(events),
    )
    return context
