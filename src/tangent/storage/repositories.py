"""Abstract repository interfaces for Tangent storage.

Defines ABC interfaces for all database operations. No SQLAlchemy
imports here -- pure abstract contracts.

Concrete implementations are in sqlite.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from datetime import datetime

    from tangent.models.thread import ThreadStatus
    from tangent.storage.schema import (
        ConversationRow,
        MergeEventRow,
        MessageRow,
        ThreadRow,
    )


class ConversationRepository(ABC):
    """Abstract interface for conversation storage operations."""

    @abstractmethod
    def get(self, conversation_id: str) -> ConversationRow | None:
        """Get a conversation by ID. Returns None if not found."""
        ...

    @abstractmethod
    def get_owned(self, conversation_id: str, user_id: str) -> ConversationRow | None:
        """Get a conversation only if it belongs to user_id."""
        ...

    @abstractmethod
    def save(self, conversation: ConversationRow) -> None:
        """Save a conversation to storage."""
        ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> Sequence[ConversationRow]:
        """List a user's conversations, most recently updated first."""
        ...

    @abstractmethod
    def touch(self, conversation_id: str, at: datetime) -> None:
        """Bump updated_at."""
        ...

    @abstractmethod
    def set_title(self, conversation_id: str, title: str, at: datetime) -> None:
        """Overwrite the title."""
        ...

    @abstractmethod
    def replace_title(self, conversation_id: str, expected: str, title: str) -> bool:
        """Set the title only if it still equals *expected*.

        Returns True if the title was replaced.
        """
        ...

    @abstractmethod
    def delete(self, conversation_id: str) -> None:
        """Delete a conversation row; threads and messages cascade."""
        ...


class ThreadRepository(ABC):
    """Abstract interface for thread storage operations."""

    @abstractmethod
    def get(self, thread_id: str) -> ThreadRow | None:
        """Get a thread by ID. Returns None if not found."""
        ...

    @abstractmethod
    def get_owned(self, thread_id: str, user_id: str) -> ThreadRow | None:
        """Get a thread only if its conversation belongs to user_id."""
        ...

    @abstractmethod
    def save(self, thread: ThreadRow) -> None:
        """Save a thread to storage."""
        ...

    @abstractmethod
    def get_root(self, conversation_id: str) -> ThreadRow | None:
        """Get the conversation's root thread (parent_thread_id IS NULL)."""
        ...

    @abstractmethod
    def get_all(self, conversation_id: str) -> Sequence[ThreadRow]:
        """Get all threads in a conversation, ordered by created_at ascending."""
        ...

    @abstractmethod
    def get_by_ids(self, thread_ids: list[str]) -> dict[str, ThreadRow]:
        """Batch-load threads by ID. Missing IDs are omitted."""
        ...

    @abstractmethod
    def get_active_links(self, conversation_id: str) -> list[tuple[str, str | None]]:
        """Get (thread_id, parent_thread_id) for every ACTIVE thread.

        One bulk query; used for in-memory descendant closure.
        """
        ...

    @abstractmethod
    def set_status_bulk(
        self,
        thread_ids: list[str],
        status: ThreadStatus,
        *,
        only_from: ThreadStatus | None = None,
        merged_at: datetime | None = None,
    ) -> int:
        """Set status on many threads in one UPDATE.

        Args:
            thread_ids: Threads to update.
            status: New status.
            only_from: If set, only rows currently in this status change.
            merged_at: Written alongside the status when given.

        Returns the number of rows updated.
        """
        ...

    @abstractmethod
    def detach_all(self, conversation_id: str) -> None:
        """Null parent_thread_id and parent_message_id on every thread.

        First phase of a conversation delete: breaks self-referential
        foreign keys so the cascade can proceed.
        """
        ...


class MessageRepository(ABC):
    """Abstract interface for append-only message storage."""

    @abstractmethod
    def get(self, message_id: str) -> MessageRow | None:
        """Get a message by ID. Returns None if not found."""
        ...

    @abstractmethod
    def append(self, message: MessageRow) -> None:
        """Append a message, assigning the next per-thread sequence."""
        ...

    @abstractmethod
    def get_for_thread(
        self, thread_id: str, *, exclude_system: bool = False
    ) -> Sequence[MessageRow]:
        """Get a thread's messages in (created_at, sequence) order."""
        ...

    @abstractmethod
    def get_for_threads(self, thread_ids: list[str]) -> dict[str, list[MessageRow]]:
        """Batch-load ordered messages for several threads."""
        ...

    @abstractmethod
    def get_latest(self, thread_id: str) -> MessageRow | None:
        """Get the most recent message in a thread."""
        ...

    @abstractmethod
    def get_recent(
        self, thread_id: str, limit: int, *, exclude_system: bool = False
    ) -> list[MessageRow]:
        """Get the *limit* most recent messages, returned oldest first."""
        ...

    @abstractmethod
    def count(self, thread_id: str) -> int:
        """Count messages in a thread."""
        ...


class MergeEventRepository(ABC):
    """Abstract interface for merge event storage.

    Merge events are immutable except for one summary backfill.
    """

    @abstractmethod
    def get(self, merge_event_id: int) -> MergeEventRow | None:
        """Get a merge event by ID. Returns None if not found."""
        ...

    @abstractmethod
    def save(self, event: MergeEventRow) -> None:
        """Save a merge event."""
        ...

    @abstractmethod
    def get_for_target(self, thread_id: str) -> Sequence[MergeEventRow]:
        """Get merge events targeting a thread, in creation order."""
        ...

    @abstractmethod
    def backfill_summary(self, merge_event_id: int, summary: str) -> bool:
        """Set summary only if it is still NULL.

        Returns True if the summary was written.
        """
        ...

    @abstractmethod
    def delete_for_threads(self, thread_ids: list[str]) -> int:
        """Delete merge events whose source or target is in thread_ids.

        Returns the number of events deleted.
        """
        ...
