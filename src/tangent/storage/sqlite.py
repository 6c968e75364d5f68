"""SQLite implementations of repository interfaces.

All repositories use SQLAlchemy 2.0-style queries (select() + session.execute()).
Each repository takes a Session in its constructor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from tangent.models.thread import MessageRole, ThreadStatus
from tangent.storage.repositories import (
    ConversationRepository,
    MergeEventRepository,
    MessageRepository,
    ThreadRepository,
)
from tangent.storage.schema import (
    ConversationRow,
    MergeEventRow,
    MessageRow,
    ThreadRow,
)


class SqliteConversationRepository(ConversationRepository):
    """SQLite implementation of conversation repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, conversation_id: str) -> ConversationRow | None:
        stmt = select(ConversationRow).where(
            ConversationRow.conversation_id == conversation_id
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def get_owned(self, conversation_id: str, user_id: str) -> ConversationRow | None:
        stmt = select(ConversationRow).where(
            ConversationRow.conversation_id == conversation_id,
            ConversationRow.user_id == user_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, conversation: ConversationRow) -> None:
        self._session.add(conversation)
        self._session.flush()

    def list_for_user(self, user_id: str) -> Sequence[ConversationRow]:
        stmt = (
            select(ConversationRow)
            .where(ConversationRow.user_id == user_id)
            .order_by(ConversationRow.updated_at.desc())
        )
        return list(self._session.execute(stmt).scalars().all())

    def touch(self, conversation_id: str, at: datetime) -> None:
        self._session.execute(
            update(ConversationRow)
            .where(ConversationRow.conversation_id == conversation_id)
            .values(updated_at=at)
        )

    def set_title(self, conversation_id: str, title: str, at: datetime) -> None:
        self._session.execute(
            update(ConversationRow)
            .where(ConversationRow.conversation_id == conversation_id)
            .values(title=title, updated_at=at)
        )

    def replace_title(self, conversation_id: str, expected: str, title: str) -> bool:
        """Compare-and-set on the title (used by async title refinement)."""
        result = self._session.execute(
            update(ConversationRow)
            .where(
                ConversationRow.conversation_id == conversation_id,
                ConversationRow.title == expected,
            )
            .values(title=title)
        )
        return result.rowcount > 0

    def delete(self, conversation_id: str) -> None:
        self._session.execute(
            delete(ConversationRow).where(
                ConversationRow.conversation_id == conversation_id
            )
        )


class SqliteThreadRepository(ThreadRepository):
    """SQLite implementation of thread repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, thread_id: str) -> ThreadRow | None:
        stmt = select(ThreadRow).where(ThreadRow.thread_id == thread_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def get_owned(self, thread_id: str, user_id: str) -> ThreadRow | None:
        stmt = (
            select(ThreadRow)
            .join(
                ConversationRow,
                ConversationRow.conversation_id == ThreadRow.conversation_id,
            )
            .where(ThreadRow.thread_id == thread_id, ConversationRow.user_id == user_id)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, thread: ThreadRow) -> None:
        self._session.add(thread)
        self._session.flush()

    def get_root(self, conversation_id: str) -> ThreadRow | None:
        stmt = select(ThreadRow).where(
            ThreadRow.conversation_id == conversation_id,
            ThreadRow.parent_thread_id.is_(None),
            ThreadRow.depth == 0,
        )
        return self._session.execute(stmt).scalars().first()

    def get_all(self, conversation_id: str) -> Sequence[ThreadRow]:
        stmt = (
            select(ThreadRow)
            .where(ThreadRow.conversation_id == conversation_id)
            .order_by(ThreadRow.created_at, ThreadRow.depth)
        )
        return list(self._session.execute(stmt).scalars().all())

    def get_by_ids(self, thread_ids: list[str]) -> dict[str, ThreadRow]:
        if not thread_ids:
            return {}
        stmt = select(ThreadRow).where(ThreadRow.thread_id.in_(thread_ids))
        return {row.thread_id: row for row in self._session.execute(stmt).scalars()}

    def get_active_links(self, conversation_id: str) -> list[tuple[str, str | None]]:
        stmt = (
            select(ThreadRow.thread_id, ThreadRow.parent_thread_id)
            .where(
                ThreadRow.conversation_id == conversation_id,
                ThreadRow.status == ThreadStatus.ACTIVE,
            )
            .order_by(ThreadRow.created_at)
        )
        return [(row[0], row[1]) for row in self._session.execute(stmt)]

    def set_status_bulk(
        self,
        thread_ids: list[str],
        status: ThreadStatus,
        *,
        only_from: ThreadStatus | None = None,
        merged_at: datetime | None = None,
    ) -> int:
        if not thread_ids:
            return 0
        conditions = [ThreadRow.thread_id.in_(thread_ids)]
        if only_from is not None:
            conditions.append(ThreadRow.status == only_from)
        values: dict[str, object] = {"status": status}
        if merged_at is not None:
            values["merged_at"] = merged_at
        result = self._session.execute(
            update(ThreadRow)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def detach_all(self, conversation_id: str) -> None:
        self._session.execute(
            update(ThreadRow)
            .where(ThreadRow.conversation_id == conversation_id)
            .values(parent_thread_id=None, parent_message_id=None)
            .execution_options(synchronize_session="fetch")
        )


class SqliteMessageRepository(MessageRepository):
    """SQLite implementation of message repository.

    Append-only: there is no update or delete; messages leave only via the
    thread/conversation cascade.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, message_id: str) -> MessageRow | None:
        stmt = select(MessageRow).where(MessageRow.message_id == message_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def append(self, message: MessageRow) -> None:
        """Append with sequence = current max + 1 within the thread."""
        current = self._session.execute(
            select(func.max(MessageRow.sequence)).where(
                MessageRow.thread_id == message.thread_id
            )
        ).scalar()
        message.sequence = 0 if current is None else current + 1
        self._session.add(message)
        self._session.flush()

    def get_for_thread(
        self, thread_id: str, *, exclude_system: bool = False
    ) -> Sequence[MessageRow]:
        stmt = select(MessageRow).where(MessageRow.thread_id == thread_id)
        if exclude_system:
            stmt = stmt.where(MessageRow.role != MessageRole.SYSTEM)
        stmt = stmt.order_by(MessageRow.created_at, MessageRow.sequence)
        return list(self._session.execute(stmt).scalars().all())

    def get_for_threads(self, thread_ids: list[str]) -> dict[str, list[MessageRow]]:
        """One query for all threads instead of one per thread."""
        result: dict[str, list[MessageRow]] = {tid: [] for tid in thread_ids}
        if not thread_ids:
            return result
        stmt = (
            select(MessageRow)
            .where(MessageRow.thread_id.in_(thread_ids))
            .order_by(MessageRow.thread_id, MessageRow.created_at, MessageRow.sequence)
        )
        for row in self._session.execute(stmt).scalars():
            result[row.thread_id].append(row)
        return result

    def get_latest(self, thread_id: str) -> MessageRow | None:
        stmt = (
            select(MessageRow)
            .where(MessageRow.thread_id == thread_id)
            .order_by(MessageRow.created_at.desc(), MessageRow.sequence.desc())
            .limit(1)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def get_recent(
        self, thread_id: str, limit: int, *, exclude_system: bool = False
    ) -> list[MessageRow]:
        if limit <= 0:
            return []
        stmt = select(MessageRow).where(MessageRow.thread_id == thread_id)
        if exclude_system:
            stmt = stmt.where(MessageRow.role != MessageRole.SYSTEM)
        stmt = stmt.order_by(
            MessageRow.created_at.desc(), MessageRow.sequence.desc()
        ).limit(limit)
        rows = list(self._session.execute(stmt).scalars().all())
        rows.reverse()
        return rows

    def count(self, thread_id: str) -> int:
        stmt = select(func.count()).select_from(MessageRow).where(
            MessageRow.thread_id == thread_id
        )
        return int(self._session.execute(stmt).scalar() or 0)


class SqliteMergeEventRepository(MergeEventRepository):
    """SQLite implementation of merge event repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, merge_event_id: int) -> MergeEventRow | None:
        stmt = select(MergeEventRow).where(MergeEventRow.id == merge_event_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, event: MergeEventRow) -> None:
        self._session.add(event)
        self._session.flush()

    def get_for_target(self, thread_id: str) -> Sequence[MergeEventRow]:
        stmt = (
            select(MergeEventRow)
            .where(MergeEventRow.target_thread_id == thread_id)
            .order_by(MergeEventRow.created_at, MergeEventRow.id)
        )
        return list(self._session.execute(stmt).scalars().all())

    def backfill_summary(self, merge_event_id: int, summary: str) -> bool:
        result = self._session.execute(
            update(MergeEventRow)
            .where(MergeEventRow.id == merge_event_id, MergeEventRow.summary.is_(None))
            .values(summary=summary)
        )
        return result.rowcount > 0

    def delete_for_threads(self, thread_ids: list[str]) -> int:
        if not thread_ids:
            return 0
        result = self._session.execute(
            delete(MergeEventRow).where(
                or_(
                    MergeEventRow.source_thread_id.in_(thread_ids),
                    MergeEventRow.target_thread_id.in_(thread_ids),
                )
            )
        )
        return result.rowcount
