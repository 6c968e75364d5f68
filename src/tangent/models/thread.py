"""Thread-tree domain models for Tangent.

ThreadStatus and MessageRole are shared by the ORM schema and the
SDK-facing models below. The *Info classes are data-transfer models
returned by the Workspace facade -- not ORM rows.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ThreadStatus(str, enum.Enum):
    """Lifecycle status of a thread. MERGED and ARCHIVED are terminal."""

    ACTIVE = "ACTIVE"
    MERGED = "MERGED"
    ARCHIVED = "ARCHIVED"

    def __repr__(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


class MessageRole(str, enum.Enum):
    """Author role of a stored message."""

    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"

    def __repr__(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


class ConversationInfo(BaseModel):
    """SDK-facing conversation model.

    ``root_thread_id`` is the conversation's main thread (depth 0).
    """

    conversation_id: str
    user_id: str
    title: str
    root_thread_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def __str__(self) -> str:
        return f"{self.conversation_id[:8]} {self.title}"


class ThreadInfo(BaseModel):
    """SDK-facing thread model (root thread or tangent)."""

    thread_id: str
    conversation_id: str
    parent_thread_id: Optional[str] = None
    parent_message_id: Optional[str] = None
    highlighted_text: Optional[str] = None
    depth: int
    status: ThreadStatus
    created_at: datetime
    merged_at: Optional[datetime] = None

    @property
    def is_root(self) -> bool:
        return self.parent_thread_id is None

    @property
    def is_active(self) -> bool:
        return self.status == ThreadStatus.ACTIVE

    def __str__(self) -> str:
        label = "main" if self.is_root else (self.highlighted_text or "")
        if len(label) > 40:
            label = label[:37] + "..."
        return f"{self.thread_id[:8]} [{self.status.value}] {label}"


class MessageInfo(BaseModel):
    """SDK-facing message model. Messages are immutable once created."""

    message_id: str
    thread_id: str
    role: MessageRole
    content: str
    sequence: int
    created_at: datetime

    def __repr__(self) -> str:
        text = self.content
        if len(text) > 60:
            text = text[:57] + "..."
        return f"MessageInfo({self.message_id[:8]} {self.role.value} {text!r})"


class MergeEventInfo(BaseModel):
    """Record that a tangent was folded back into its parent.

    ``summary`` starts as None and may be backfilled once.
    """

    merge_event_id: int
    source_thread_id: str
    target_thread_id: str
    after_message_id: str
    summary: Optional[str] = None
    created_at: datetime
