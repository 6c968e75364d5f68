"""Result models for Tangent workspace operations.

ConversationTree: snapshot of every thread in a conversation.
BranchResult: outcome of branching a thread into a standalone conversation.
CloseResult: outcome of a fail-open close.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel

from tangent.models.thread import ConversationInfo, MergeEventInfo, ThreadInfo


class ConversationTree(BaseModel):
    """All threads of a conversation, ordered by creation time."""

    conversation: ConversationInfo
    threads: list[ThreadInfo] = []

    @property
    def root(self) -> ThreadInfo:
        for thread in self.threads:
            if thread.parent_thread_id is None:
                return thread
        raise LookupError(
            f"Conversation {self.conversation.conversation_id} has no root thread"
        )

    def children_of(self, thread_id: str) -> list[ThreadInfo]:
        return [t for t in self.threads if t.parent_thread_id == thread_id]


class ThreadDetail(BaseModel):
    """A thread together with the merge events that target it."""

    thread: ThreadInfo
    merges: list[MergeEventInfo] = []


@dataclass(frozen=True)
class BranchResult:
    """Result of branching a thread into a new standalone conversation.

    Attributes:
        conversation: The new conversation (title may be provisional).
        source_thread_id: The thread that was copied.
        copied_message_count: Non-SYSTEM messages copied from the source.
        merge_events: Merge events replicated onto the new root thread.
        dropped_merge_count: Source merge events whose anchor message could
            not be remapped (anchored to a filtered SYSTEM message).
        archived_ids: Threads archived because ``archive_source=True``.
    """

    conversation: ConversationInfo
    source_thread_id: str
    copied_message_count: int
    merge_events: list[MergeEventInfo] = field(default_factory=list)
    dropped_merge_count: int = 0
    archived_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CloseResult:
    """Result of a fail-open close.

    ``confirmed`` is False when the archive could not be confirmed; the
    local navigation view was still updated and the tangent may reappear
    on the next hydrate.
    """

    thread_id: str
    archived_ids: list[str]
    confirmed: bool
    error: str | None = None
