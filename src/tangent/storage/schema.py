"""SQLAlchemy ORM schema for Tangent.

Defines all database tables: conversations, threads, messages,
merge_events, _tangent_meta.

IMPORTANT: ThreadStatus and MessageRole enums are imported from the domain
models -- they are NOT redefined here. The ORM uses the same Python enums.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from tangent.models.thread import MessageRole, ThreadStatus


class Base(DeclarativeBase):
    """Base class for all Tangent ORM models."""

    pass


class ConversationRow(Base):
    """A user's conversation. Owns its threads; deletion cascades to them."""

    __tablename__ = "conversations"

    conversation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    threads: Mapped[list["ThreadRow"]] = relationship(
        "ThreadRow",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_conversations_user_updated", "user_id", "updated_at"),
    )


class ThreadRow(Base):
    """One branch of a conversation: the root thread or a tangent.

    ``parent_thread_id`` is set once at creation. It is only ever nulled
    by the detach phase of a conversation delete.
    """

    __tablename__ = "threads"

    thread_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("conversations.conversation_id", ondelete="CASCADE"),
        nullable=False,
    )
    parent_thread_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("threads.thread_id"),
        nullable=True,
    )
    parent_message_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("messages.message_id", use_alter=True, name="fk_threads_parent_message"),
        nullable=True,
    )
    highlighted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ThreadStatus] = mapped_column(
        nullable=False, default=ThreadStatus.ACTIVE
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    merged_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    conversation: Mapped["ConversationRow"] = relationship(
        "ConversationRow", back_populates="threads"
    )

    __table_args__ = (
        Index("ix_threads_conversation_status", "conversation_id", "status"),
        Index("ix_threads_parent", "parent_thread_id"),
    )


class MessageRow(Base):
    """An immutable message in a thread.

    Ordered by (created_at, sequence); ``sequence`` is assigned per thread
    at append time so ties keep insertion order.
    """

    __tablename__ = "messages"

    message_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    thread_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("threads.thread_id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[MessageRole] = mapped_column(nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_messages_thread_order", "thread_id", "created_at", "sequence"),
    )


class MergeEventRow(Base):
    """A tangent folded back into its parent after ``after_message_id``.

    Immutable except for a single backfill of ``summary`` from NULL.
    """

    __tablename__ = "merge_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_thread_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("threads.thread_id"),
        nullable=False,
    )
    target_thread_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("threads.thread_id"),
        nullable=False,
    )
    after_message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("messages.message_id"),
        nullable=False,
    )
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_merge_events_target_time", "target_thread_id", "created_at"),
        Index("ix_merge_events_source", "source_thread_id"),
    )


class TangentMetaRow(Base):
    """Key-value metadata for the Tangent database itself (e.g., schema version)."""

    __tablename__ = "_tangent_meta"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
