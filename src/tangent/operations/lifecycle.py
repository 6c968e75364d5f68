"""Thread lifecycle operations -- fork, merge, archive, branch, delete.

Provides:
- create_conversation(): New conversation with its root thread
- append_message(): Validated, append-only message write
- fork_thread(): Open a tangent anchored at the parent's latest message
- merge_thread(): Fold a tangent into its parent, archiving its subtree
- archive_thread(): Retire a tangent and its ACTIVE descendants
- branch_thread(): Copy a thread into a new standalone conversation
- delete_conversation(): Explicit two-phase (detach, then delete) removal

Every function here runs inside the caller's transaction and never
commits; the Workspace facade owns transaction boundaries. Summary
generation is not performed here -- merge and branch return the input
needed for best-effort enrichment after commit.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from tangent.exceptions import InvalidStateError, TangentValidationError
from tangent.models.thread import MessageRole, ThreadStatus
from tangent.operations.dag import descendant_closure
from tangent.operations.records import utcnow
from tangent.storage.schema import (
    ConversationRow,
    MergeEventRow,
    MessageRow,
    ThreadRow,
)

if TYPE_CHECKING:
    from tangent.models.config import TangentConfig
    from tangent.storage.repositories import (
        ConversationRepository,
        MergeEventRepository,
        MessageRepository,
        ThreadRepository,
    )

logger = logging.getLogger(__name__)

EMPTY_TANGENT_SUMMARY = "Empty tangent thread"


# ------------------------------------------------------------------
# Input validation
# ------------------------------------------------------------------


def validate_highlight(text: str | None, config: TangentConfig) -> str:
    """Highlighted text must be non-blank and within the configured cap."""
    if text is None or not text.strip():
        raise TangentValidationError("highlighted_text", "must not be empty")
    if len(text) > config.max_highlight_chars:
        raise TangentValidationError(
            "highlighted_text",
            f"exceeds {config.max_highlight_chars} characters",
        )
    return text


def validate_content(content: str | None, config: TangentConfig) -> str:
    """Message content must be non-blank and within the configured cap."""
    if content is None or not content.strip():
        raise TangentValidationError("content", "must not be empty")
    if len(content) > config.max_message_chars:
        raise TangentValidationError(
            "content", f"exceeds {config.max_message_chars} characters"
        )
    return content


def validate_title(title: str | None, config: TangentConfig) -> str:
    if title is None or not title.strip():
        raise TangentValidationError("title", "must not be empty")
    title = title.strip()
    if len(title) > config.max_title_chars:
        raise TangentValidationError(
            "title", f"exceeds {config.max_title_chars} characters"
        )
    return title


def parse_role(role: MessageRole | str) -> MessageRole:
    """Accept a MessageRole or its case-insensitive name."""
    if isinstance(role, MessageRole):
        return role
    try:
        return MessageRole(str(role).upper())
    except ValueError:
        valid = ", ".join(r.value for r in MessageRole)
        raise TangentValidationError("role", f"{role!r} is not one of {valid}") from None


# ------------------------------------------------------------------
# Conversations and messages
# ------------------------------------------------------------------


def create_conversation(
    conversation_repo: ConversationRepository,
    thread_repo: ThreadRepository,
    *,
    user_id: str,
    title: str | None,
    config: TangentConfig,
) -> tuple[ConversationRow, ThreadRow]:
    """Create a conversation together with its root thread (depth 0, ACTIVE)."""
    title = validate_title(title, config) if title is not None else config.default_title
    now = utcnow()
    conversation = ConversationRow(
        conversation_id=uuid.uuid4().hex,
        user_id=user_id,
        title=title,
        created_at=now,
        updated_at=now,
    )
    conversation_repo.save(conversation)
    root = ThreadRow(
        thread_id=uuid.uuid4().hex,
        conversation_id=conversation.conversation_id,
        parent_thread_id=None,
        parent_message_id=None,
        highlighted_text=None,
        depth=0,
        status=ThreadStatus.ACTIVE,
        created_at=now,
    )
    thread_repo.save(root)
    return conversation, root


def append_message(
    message_repo: MessageRepository,
    conversation_repo: ConversationRepository,
    *,
    thread: ThreadRow,
    role: MessageRole | str,
    content: str,
    config: TangentConfig,
) -> MessageRow:
    """Append an immutable message and bump the conversation's updated_at."""
    if thread.status != ThreadStatus.ACTIVE:
        raise InvalidStateError(
            f"Thread is {thread.status.value.lower()} and read-only",
            thread_id=thread.thread_id,
        )
    role = parse_role(role)
    content = validate_content(content, config)
    now = utcnow()
    message = MessageRow(
        message_id=uuid.uuid4().hex,
        thread_id=thread.thread_id,
        role=role,
        content=content,
        created_at=now,
    )
    message_repo.append(message)
    conversation_repo.touch(thread.conversation_id, now)
    return message


# ------------------------------------------------------------------
# Fork
# ------------------------------------------------------------------


def fork_thread(
    thread_repo: ThreadRepository,
    message_repo: MessageRepository,
    *,
    parent: ThreadRow,
    highlighted_text: str,
    config: TangentConfig,
) -> ThreadRow:
    """Open a tangent under *parent*.

    The anchor (parent_message_id) is resolved here as the parent's most
    recent message; client-supplied message ids are never trusted. A
    parent without messages yields an unanchored tangent. The parent may
    be in any status.
    """
    highlighted_text = validate_highlight(highlighted_text, config)
    anchor = message_repo.get_latest(parent.thread_id)
    tangent = ThreadRow(
        thread_id=uuid.uuid4().hex,
        conversation_id=parent.conversation_id,
        parent_thread_id=parent.thread_id,
        parent_message_id=anchor.message_id if anchor is not None else None,
        highlighted_text=highlighted_text,
        depth=parent.depth + 1,
        status=ThreadStatus.ACTIVE,
        created_at=utcnow(),
    )
    thread_repo.save(tangent)
    logger.debug(
        "Forked %s from %s at depth %d", tangent.thread_id, parent.thread_id, tangent.depth
    )
    return tangent


# ------------------------------------------------------------------
# Merge / archive
# ------------------------------------------------------------------


@dataclass
class MergeOutcome:
    """Result of merge_thread() before commit.

    ``summary_input`` is the capped source history for the summary
    generator; None when the source had no non-SYSTEM messages and the
    summary was filled in directly.
    """

    event: MergeEventRow
    archived_ids: list[str] = field(default_factory=list)
    summary_input: list[dict[str, str]] | None = None


def collect_summary_input(
    message_repo: MessageRepository,
    thread_id: str,
    config: TangentConfig,
) -> list[dict[str, str]]:
    """Last non-SYSTEM messages of a thread, chronological, each truncated."""
    rows = message_repo.get_recent(
        thread_id, config.summary_source_limit, exclude_system=True
    )
    return [
        {
            "role": row.role.value.lower(),
            "content": row.content[: config.summary_message_chars],
        }
        for row in rows
    ]


def _active_subtree(
    thread_repo: ThreadRepository, thread: ThreadRow, *, include_start: bool
) -> list[str]:
    """ACTIVE descendants of a thread from one bulk query plus an in-memory BFS."""
    links = thread_repo.get_active_links(thread.conversation_id)
    return descendant_closure(thread.thread_id, links, include_start=include_start)


def merge_thread(
    thread_repo: ThreadRepository,
    message_repo: MessageRepository,
    merge_repo: MergeEventRepository,
    *,
    source: ThreadRow,
    config: TangentConfig,
) -> MergeOutcome:
    """Fold *source* into its parent.

    Creates the MergeEvent (summary NULL), flips the source to MERGED and
    archives its ACTIVE descendants. Everything happens in the caller's
    transaction; any failure leaves no partial cascade behind.

    Raises:
        InvalidStateError: If source is the root, is not ACTIVE, or its
            parent has no messages to anchor the merge.
    """
    if source.parent_thread_id is None:
        raise InvalidStateError(
            "Cannot merge the main thread", thread_id=source.thread_id
        )
    if source.status != ThreadStatus.ACTIVE:
        raise InvalidStateError(
            f"Thread is already {source.status.value.lower()}",
            thread_id=source.thread_id,
        )

    anchor = message_repo.get_latest(source.parent_thread_id)
    if anchor is None:
        raise InvalidStateError(
            "Parent thread has no messages", thread_id=source.thread_id
        )

    now = utcnow()
    event = MergeEventRow(
        source_thread_id=source.thread_id,
        target_thread_id=source.parent_thread_id,
        after_message_id=anchor.message_id,
        summary=None,
        created_at=now,
    )
    merge_repo.save(event)

    updated = thread_repo.set_status_bulk(
        [source.thread_id],
        ThreadStatus.MERGED,
        only_from=ThreadStatus.ACTIVE,
        merged_at=now,
    )
    if updated != 1:
        # A concurrent request already moved the source out of ACTIVE
        raise InvalidStateError(
            "Thread is already merged or archived", thread_id=source.thread_id
        )

    descendants = _active_subtree(thread_repo, source, include_start=False)
    thread_repo.set_status_bulk(
        descendants, ThreadStatus.ARCHIVED, only_from=ThreadStatus.ACTIVE
    )

    summary_input = collect_summary_input(message_repo, source.thread_id, config)
    if not summary_input:
        event.summary = EMPTY_TANGENT_SUMMARY
        merge_repo.save(event)
        summary_input = None

    logger.info(
        "Merged %s into %s after %s (%d descendants archived)",
        source.thread_id,
        source.parent_thread_id,
        anchor.message_id,
        len(descendants),
    )
    return MergeOutcome(event=event, archived_ids=descendants, summary_input=summary_input)


def archive_thread(
    thread_repo: ThreadRepository,
    *,
    thread: ThreadRow,
) -> list[str]:
    """Archive *thread* and all of its ACTIVE descendants.

    Idempotent: a thread already MERGED or ARCHIVED returns ``[]``.

    Raises:
        InvalidStateError: If *thread* is the root thread.
    """
    if thread.parent_thread_id is None:
        raise InvalidStateError(
            "Cannot archive the main thread", thread_id=thread.thread_id
        )
    if thread.status != ThreadStatus.ACTIVE:
        return []

    closure = _active_subtree(thread_repo, thread, include_start=True)
    updated = thread_repo.set_status_bulk(
        closure, ThreadStatus.ARCHIVED, only_from=ThreadStatus.ACTIVE
    )
    if updated == 0:
        return []
    logger.debug("Archived %d thread(s) rooted at %s", len(closure), thread.thread_id)
    return closure


# ------------------------------------------------------------------
# Branch
# ------------------------------------------------------------------


@dataclass
class BranchOutcome:
    """Result of branch_thread() before commit."""

    conversation: ConversationRow
    root: ThreadRow
    merge_events: list[MergeEventRow]
    copied_message_count: int
    dropped_merge_count: int
    provisional_title: str


def branch_preamble(highlighted_text: str) -> tuple[str, str]:
    """(hidden SYSTEM note, visible ASSISTANT callout) for a branched thread."""
    system_note = (
        "This conversation was branched from a parent discussion to explore "
        f'the following highlighted text: "{highlighted_text}". '
        "The messages below are from the original tangent thread."
    )
    quoted = highlighted_text.replace("\n", "\n> ")
    callout = f'> **Branched from:** "{quoted}"'
    return system_note, callout


def _snapshot_merged_source(
    thread_repo: ThreadRepository,
    message_repo: MessageRepository,
    *,
    original: ThreadRow,
    root: ThreadRow,
    anchor_id: str,
    config: TangentConfig,
) -> ThreadRow:
    """Copy a merged tangent under *root* so the branch owns its splice.

    Only the messages a merge splice shows (the last
    ``merge_context_limit``) are copied, with their timestamps.
    """
    snapshot = ThreadRow(
        thread_id=uuid.uuid4().hex,
        conversation_id=root.conversation_id,
        parent_thread_id=root.thread_id,
        parent_message_id=anchor_id,
        highlighted_text=original.highlighted_text,
        depth=root.depth + 1,
        status=ThreadStatus.MERGED,
        created_at=original.created_at,
        merged_at=original.merged_at,
    )
    thread_repo.save(snapshot)
    for message in message_repo.get_recent(original.thread_id, config.merge_context_limit):
        message_repo.append(
            MessageRow(
                message_id=uuid.uuid4().hex,
                thread_id=snapshot.thread_id,
                role=message.role,
                content=message.content,
                created_at=message.created_at,
            )
        )
    return snapshot


def branch_thread(
    conversation_repo: ConversationRepository,
    thread_repo: ThreadRepository,
    message_repo: MessageRepository,
    merge_repo: MergeEventRepository,
    *,
    source: ThreadRow,
    user_id: str,
    config: TangentConfig,
) -> BranchOutcome:
    """Copy *source* into a brand-new conversation.

    Non-SYSTEM messages are copied in order (keeping their timestamps)
    into the new root thread, behind a two-message preamble timestamped
    before the first copied message. Merge events that targeted the
    source are replicated with their anchors remapped by position, each
    pointing at a MERGED copy of its source tangent under the new root; an
    event anchored to a filtered SYSTEM message is dropped. The source
    thread is not modified.
    """
    copied = list(message_repo.get_for_thread(source.thread_id, exclude_system=True))
    now = utcnow()
    first_time = copied[0].created_at if copied else now

    if source.highlighted_text:
        provisional_title = source.highlighted_text[: config.title_max_chars]
    else:
        provisional_title = config.branch_fallback_title

    conversation = ConversationRow(
        conversation_id=uuid.uuid4().hex,
        user_id=user_id,
        title=provisional_title,
        created_at=now,
        updated_at=now,
    )
    conversation_repo.save(conversation)
    root = ThreadRow(
        thread_id=uuid.uuid4().hex,
        conversation_id=conversation.conversation_id,
        parent_thread_id=None,
        parent_message_id=None,
        highlighted_text=None,
        depth=0,
        status=ThreadStatus.ACTIVE,
        created_at=now,
    )
    thread_repo.save(root)

    new_messages: list[MessageRow] = []
    if source.highlighted_text:
        system_note, callout = branch_preamble(source.highlighted_text)
        for role, content, offset in (
            (MessageRole.SYSTEM, system_note, 2),
            (MessageRole.ASSISTANT, callout, 1),
        ):
            preamble = MessageRow(
                message_id=uuid.uuid4().hex,
                thread_id=root.thread_id,
                role=role,
                content=content,
                created_at=first_time - timedelta(seconds=offset),
            )
            message_repo.append(preamble)
            new_messages.append(preamble)
    preamble_offset = len(new_messages)

    for original in copied:
        clone = MessageRow(
            message_id=uuid.uuid4().hex,
            thread_id=root.thread_id,
            role=original.role,
            content=original.content,
            created_at=original.created_at,
        )
        message_repo.append(clone)
        new_messages.append(clone)

    position_of = {row.message_id: index for index, row in enumerate(copied)}
    events = list(merge_repo.get_for_target(source.thread_id))
    merged_sources = thread_repo.get_by_ids([e.source_thread_id for e in events])
    replicated: list[MergeEventRow] = []
    dropped = 0
    for event in events:
        index = position_of.get(event.after_message_id)
        if index is None:
            dropped += 1
            logger.debug(
                "Dropping merge event %d: anchor %s was not copied",
                event.id,
                event.after_message_id,
            )
            continue
        anchor_id = new_messages[preamble_offset + index].message_id
        snapshot = _snapshot_merged_source(
            thread_repo,
            message_repo,
            original=merged_sources[event.source_thread_id],
            root=root,
            anchor_id=anchor_id,
            config=config,
        )
        clone_event = MergeEventRow(
            source_thread_id=snapshot.thread_id,
            target_thread_id=root.thread_id,
            after_message_id=anchor_id,
            summary=event.summary,
            created_at=event.created_at,
        )
        merge_repo.save(clone_event)
        replicated.append(clone_event)

    logger.info(
        "Branched %s into conversation %s (%d messages, %d merges, %d dropped)",
        source.thread_id,
        conversation.conversation_id,
        len(copied),
        len(replicated),
        dropped,
    )
    return BranchOutcome(
        conversation=conversation,
        root=root,
        merge_events=replicated,
        copied_message_count=len(copied),
        dropped_merge_count=dropped,
        provisional_title=provisional_title,
    )


# ------------------------------------------------------------------
# Delete
# ------------------------------------------------------------------


def delete_conversation(
    conversation_repo: ConversationRepository,
    thread_repo: ThreadRepository,
    merge_repo: MergeEventRepository,
    *,
    conversation: ConversationRow,
) -> int:
    """Delete a conversation in two explicit phases.

    1. Detach: remove merge events touching its threads, then null every
       thread's parent pointers so no foreign key forms a cycle.
    2. Delete: remove the conversation; threads and messages cascade.

    Returns the number of threads removed.
    """
    thread_ids = [t.thread_id for t in thread_repo.get_all(conversation.conversation_id)]
    if thread_ids:
        merge_repo.delete_for_threads(thread_ids)
        thread_repo.detach_all(conversation.conversation_id)
    conversation_repo.delete(conversation.conversation_id)
    logger.debug(
        "Deleted conversation %s (%d threads)", conversation.conversation_id, len(thread_ids)
    )
    return len(thread_ids)
