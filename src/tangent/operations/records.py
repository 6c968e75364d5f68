"""Row-to-model conversion for Tangent.

Storage rows never leave a transaction; operations hand these SDK-facing
models back to callers instead.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from tangent.models.thread import (
    ConversationInfo,
    MergeEventInfo,
    MessageInfo,
    ThreadInfo,
)

if TYPE_CHECKING:
    from tangent.storage.schema import (
        ConversationRow,
        MergeEventRow,
        MessageRow,
        ThreadRow,
    )


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how SQLite DateTime columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def conversation_info(
    row: ConversationRow, root_thread_id: str | None = None
) -> ConversationInfo:
    return ConversationInfo(
        conversation_id=row.conversation_id,
        user_id=row.user_id,
        title=row.title,
        root_thread_id=root_thread_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def thread_info(row: ThreadRow) -> ThreadInfo:
    return ThreadInfo(
        thread_id=row.thread_id,
        conversation_id=row.conversation_id,
        parent_thread_id=row.parent_thread_id,
        parent_message_id=row.parent_message_id,
        highlighted_text=row.highlighted_text,
        depth=row.depth,
        status=row.status,
        created_at=row.created_at,
        merged_at=row.merged_at,
    )


def message_info(row: MessageRow) -> MessageInfo:
    return MessageInfo(
        message_id=row.message_id,
        thread_id=row.thread_id,
        role=row.role,
        content=row.content,
        sequence=row.sequence,
        created_at=row.created_at,
    )


def merge_event_info(row: MergeEventRow) -> MergeEventInfo:
    return MergeEventInfo(
        merge_event_id=row.id,
        source_thread_id=row.source_thread_id,
        target_thread_id=row.target_thread_id,
        after_message_id=row.after_message_id,
        summary=row.summary,
        created_at=row.created_at,
    )
