"""Workspace -- the user-facing entry point to Tangent.

A Workspace binds one database, one user and an optional summary
generator. Every public method runs in its own session and transaction
(commit on success, rollback on any error) and scopes every lookup to
the workspace's user: someone else's conversation is reported exactly as
a missing one.

Merge summaries and conversation titles are enriched after the
structural change commits, on a worker thread by default. Enrichment is
best-effort: a failure is logged and the record keeps its null summary
or provisional title.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterator

from sqlalchemy.exc import SQLAlchemyError

from tangent.exceptions import NotFoundError, TangentError
from tangent.models.config import TangentConfig
from tangent.models.results import (
    BranchResult,
    CloseResult,
    ConversationTree,
    ThreadDetail,
)
from tangent.models.thread import MessageRole
from tangent.navigation import reconstruct_tangent_windows
from tangent.operations import context as context_ops
from tangent.operations import lifecycle
from tangent.operations.records import (
    conversation_info,
    merge_event_info,
    message_info,
    thread_info,
    utcnow,
)
from tangent.storage.engine import (
    create_session_factory,
    create_tangent_engine,
    init_db,
)
from tangent.storage.sqlite import (
    SqliteConversationRepository,
    SqliteMergeEventRepository,
    SqliteMessageRepository,
    SqliteThreadRepository,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session, sessionmaker

    from tangent.llm.protocols import Summarizer
    from tangent.models.thread import (
        ConversationInfo,
        MergeEventInfo,
        MessageInfo,
        ThreadInfo,
    )
    from tangent.navigation import TangentNavigator, TangentWindow
    from tangent.protocols import ContextMessage
    from tangent.storage.schema import ConversationRow, ThreadRow

logger = logging.getLogger(__name__)

AUTO_TITLE_MAX_MESSAGES = 3


@dataclass(frozen=True)
class _Repos:
    """Repositories bound to one transaction's session."""

    conversations: SqliteConversationRepository
    threads: SqliteThreadRepository
    messages: SqliteMessageRepository
    merges: SqliteMergeEventRepository

    @classmethod
    def for_session(cls, session: Session) -> _Repos:
        return cls(
            conversations=SqliteConversationRepository(session),
            threads=SqliteThreadRepository(session),
            messages=SqliteMessageRepository(session),
            merges=SqliteMergeEventRepository(session),
        )


class Workspace:
    """Conversation trees for one user, backed by one database.

    Use :meth:`open` to create instances::

        with Workspace.open("tangent.db", user_id="alice") as ws:
            conv = ws.create_conversation()
            ws.append_message(conv.root_thread_id, "user", "Hello")
    """

    def __init__(
        self,
        *,
        engine: Engine,
        session_factory: sessionmaker[Session],
        user_id: str,
        config: TangentConfig,
        summarizer: Summarizer | None = None,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._user_id = user_id
        self._config = config
        self._summarizer = summarizer
        self._executor: ThreadPoolExecutor | None = None
        self._pending: list[Future[None]] = []
        self._closed = False

    @classmethod
    def open(
        cls,
        path: str = ":memory:",
        *,
        user_id: str,
        summarizer: Summarizer | None = None,
        config: TangentConfig | None = None,
        url: str | None = None,
    ) -> Workspace:
        """Open (or create) a Tangent database for *user_id*.

        Args:
            path: SQLite path. ``":memory:"`` for in-memory (default).
            user_id: Owner scoping every read and write.
            summarizer: Summary generator for merge summaries and titles.
                Without one, summaries stay null and titles provisional.
            config: Workspace configuration. Defaults created if *None*.
            url: Full SQLAlchemy URL; overrides *path*.

        Returns:
            A ready-to-use ``Workspace``.
        """
        if not user_id:
            raise ValueError("user_id is required")
        if config is None:
            config = TangentConfig(db_path=path, db_url=url)
        engine = create_tangent_engine(config.db_path, url=url or config.db_url)
        init_db(engine)
        return cls(
            engine=engine,
            session_factory=create_session_factory(engine),
            user_id=user_id,
            config=config,
            summarizer=summarizer,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def config(self) -> TangentConfig:
        return self._config

    # ------------------------------------------------------------------
    # Transactions and ownership
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[_Repos]:
        if self._closed:
            raise TangentError("Workspace is closed")
        session = self._session_factory()
        try:
            yield _Repos.for_session(session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _owned_conversation(self, repos: _Repos, conversation_id: str) -> ConversationRow:
        row = repos.conversations.get_owned(conversation_id, self._user_id)
        if row is None:
            raise NotFoundError("conversation", conversation_id)
        return row

    def _owned_thread(self, repos: _Repos, thread_id: str) -> ThreadRow:
        row = repos.threads.get_owned(thread_id, self._user_id)
        if row is None:
            raise NotFoundError("thread", thread_id)
        return row

    @staticmethod
    def _conversation_info(repos: _Repos, row: ConversationRow) -> ConversationInfo:
        root = repos.threads.get_root(row.conversation_id)
        return conversation_info(row, root.thread_id if root is not None else None)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, title: str | None = None) -> ConversationInfo:
        """Create a conversation and its root thread."""
        with self._transaction() as repos:
            conversation, root = lifecycle.create_conversation(
                repos.conversations,
                repos.threads,
                user_id=self._user_id,
                title=title,
                config=self._config,
            )
            return conversation_info(conversation, root.thread_id)

    def list_conversations(self) -> list[ConversationInfo]:
        """The user's conversations, most recently updated first."""
        with self._transaction() as repos:
            return [
                self._conversation_info(repos, row)
                for row in repos.conversations.list_for_user(self._user_id)
            ]

    def get_conversation(self, conversation_id: str) -> ConversationInfo:
        with self._transaction() as repos:
            return self._conversation_info(
                repos, self._owned_conversation(repos, conversation_id)
            )

    def rename_conversation(self, conversation_id: str, title: str) -> ConversationInfo:
        title = lifecycle.validate_title(title, self._config)
        with self._transaction() as repos:
            row = self._owned_conversation(repos, conversation_id)
            repos.conversations.set_title(conversation_id, title, utcnow())
            return self._conversation_info(repos, row)

    def delete_conversation(self, conversation_id: str) -> int:
        """Delete a conversation with all its threads. Returns threads removed."""
        with self._transaction() as repos:
            row = self._owned_conversation(repos, conversation_id)
            return lifecycle.delete_conversation(
                repos.conversations, repos.threads, repos.merges, conversation=row
            )

    def get_conversation_tree(self, conversation_id: str) -> ConversationTree:
        with self._transaction() as repos:
            row = self._owned_conversation(repos, conversation_id)
            threads = [thread_info(t) for t in repos.threads.get_all(conversation_id)]
            root = next((t for t in threads if t.parent_thread_id is None), None)
            return ConversationTree(
                conversation=conversation_info(row, root.thread_id if root else None),
                threads=threads,
            )

    def get_tangent_windows(self, conversation_id: str) -> list[TangentWindow]:
        """Open tangents of a conversation, ready for a navigator hydrate."""
        tree = self.get_conversation_tree(conversation_id)
        return reconstruct_tangent_windows(tree.threads, tree.root.thread_id)

    # ------------------------------------------------------------------
    # Threads and messages
    # ------------------------------------------------------------------

    def get_thread(self, thread_id: str) -> ThreadDetail:
        with self._transaction() as repos:
            row = self._owned_thread(repos, thread_id)
            merges = [merge_event_info(e) for e in repos.merges.get_for_target(thread_id)]
            return ThreadDetail(thread=thread_info(row), merges=merges)

    def get_thread_messages(self, thread_id: str) -> list[MessageInfo]:
        with self._transaction() as repos:
            self._owned_thread(repos, thread_id)
            return [message_info(m) for m in repos.messages.get_for_thread(thread_id)]

    def get_thread_merge_events(self, thread_id: str) -> list[MergeEventInfo]:
        with self._transaction() as repos:
            self._owned_thread(repos, thread_id)
            return [merge_event_info(e) for e in repos.merges.get_for_target(thread_id)]

    def append_message(
        self, thread_id: str, role: MessageRole | str, content: str
    ) -> MessageInfo:
        """Append a message to an ACTIVE thread.

        The first user messages of a conversation still carrying the
        default title trigger a best-effort title refinement.
        """
        with self._transaction() as repos:
            thread = self._owned_thread(repos, thread_id)
            message = lifecycle.append_message(
                repos.messages,
                repos.conversations,
                thread=thread,
                role=role,
                content=content,
                config=self._config,
            )
            conversation = repos.conversations.get(thread.conversation_id)
            wants_title = (
                message.role == MessageRole.USER
                and thread.parent_thread_id is None
                and conversation is not None
                and conversation.title == self._config.default_title
                and repos.messages.count(thread_id) <= AUTO_TITLE_MAX_MESSAGES
            )
            info = message_info(message)

        if wants_title:
            self._enrich(
                self._refine_title,
                thread.conversation_id,
                self._config.default_title,
                info.content,
                True,
            )
        return info

    def fork(self, parent_thread_id: str, highlighted_text: str) -> ThreadInfo:
        """Open a tangent under *parent_thread_id*, anchored at its latest message."""
        with self._transaction() as repos:
            parent = self._owned_thread(repos, parent_thread_id)
            tangent = lifecycle.fork_thread(
                repos.threads,
                repos.messages,
                parent=parent,
                highlighted_text=highlighted_text,
                config=self._config,
            )
            return thread_info(tangent)

    def merge(self, thread_id: str) -> MergeEventInfo:
        """Merge a tangent into its parent.

        Returns the merge event as committed. The summary is filled in
        afterwards; with ``background_enrichment`` off it is already
        present on the returned event when generation succeeded.
        """
        with self._transaction() as repos:
            source = self._owned_thread(repos, thread_id)
            outcome = lifecycle.merge_thread(
                repos.threads,
                repos.messages,
                repos.merges,
                source=source,
                config=self._config,
            )
            event = merge_event_info(outcome.event)

        if outcome.summary_input is not None and self._summarizer is not None:
            self._enrich(self._backfill_summary, event.merge_event_id, outcome.summary_input)
            if not self._config.background_enrichment:
                return self._reload_merge_event(event)
        return event

    def archive(self, thread_id: str) -> list[str]:
        """Archive a tangent and its ACTIVE descendants. ``[]`` if already terminal."""
        with self._transaction() as repos:
            thread = self._owned_thread(repos, thread_id)
            return lifecycle.archive_thread(repos.threads, thread=thread)

    def close_tangent(
        self, thread_id: str, navigator: TangentNavigator | None = None
    ) -> CloseResult:
        """Dismiss a tangent without merging. Fail-open.

        Attempts :meth:`archive`. If that fails for any lifecycle or
        storage reason the failure is logged and reported as unconfirmed.
        Either way the tangent is removed from *navigator*; an unconfirmed
        close may reappear on the next hydrate.
        """
        try:
            archived = self.archive(thread_id)
        except (TangentError, SQLAlchemyError) as exc:
            logger.warning("Close of %s not confirmed: %s", thread_id, exc)
            result = CloseResult(thread_id=thread_id, archived_ids=[], confirmed=False, error=str(exc))
        else:
            result = CloseResult(thread_id=thread_id, archived_ids=archived, confirmed=True)
        if navigator is not None:
            navigator.close(thread_id)
        return result

    def branch(self, thread_id: str, *, archive_source: bool = False) -> BranchResult:
        """Copy a thread into a new standalone conversation.

        Args:
            thread_id: Source thread (any status).
            archive_source: Archive the source in a second transaction once
                the branch has committed. Ignored for a root thread.

        Returns:
            BranchResult with the new conversation under its provisional title.
        """
        with self._transaction() as repos:
            source = self._owned_thread(repos, thread_id)
            outcome = lifecycle.branch_thread(
                repos.conversations,
                repos.threads,
                repos.messages,
                repos.merges,
                source=source,
                user_id=self._user_id,
                config=self._config,
            )
            conversation = conversation_info(outcome.conversation, outcome.root.thread_id)
            merge_events = [merge_event_info(e) for e in outcome.merge_events]
            highlighted_text = source.highlighted_text
            is_root = source.parent_thread_id is None

        archived: list[str] = []
        if archive_source and not is_root:
            archived = self.archive(thread_id)

        if highlighted_text:
            self._enrich(
                self._refine_title,
                conversation.conversation_id,
                outcome.provisional_title,
                highlighted_text,
                False,
            )

        return BranchResult(
            conversation=conversation,
            source_thread_id=thread_id,
            copied_message_count=outcome.copied_message_count,
            merge_events=merge_events,
            dropped_merge_count=outcome.dropped_merge_count,
            archived_ids=archived,
        )

    def build_context(self, thread_id: str) -> list[ContextMessage]:
        """Assemble the prompt context for a thread."""
        with self._transaction() as repos:
            thread = self._owned_thread(repos, thread_id)
            return context_ops.build_context(
                thread,
                thread_repo=repos.threads,
                message_repo=repos.messages,
                merge_repo=repos.merges,
                config=self._config,
            )

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def _enrich(self, job: Callable[..., None], *args: Any) -> None:
        if self._summarizer is None:
            return
        if not self._config.background_enrichment:
            job(*args)
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="tangent-enrich"
            )
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(self._executor.submit(job, *args))

    def _backfill_summary(self, merge_event_id: int, summary_input: list[dict[str, str]]) -> None:
        assert self._summarizer is not None
        try:
            summary = self._summarizer.summarize(summary_input)
        except Exception as exc:
            logger.warning("Summary generation failed for merge %d: %s", merge_event_id, exc)
            return
        summary = summary.strip()[: self._config.summary_max_chars]
        if not summary:
            return
        try:
            with self._transaction() as repos:
                written = repos.merges.backfill_summary(merge_event_id, summary)
        except (TangentError, SQLAlchemyError) as exc:
            logger.warning("Could not store summary for merge %d: %s", merge_event_id, exc)
            return
        logger.debug("Summary backfill for merge %d: %s", merge_event_id, written)

    def _refine_title(
        self, conversation_id: str, expected: str, text: str, opening_message: bool
    ) -> None:
        assert self._summarizer is not None
        try:
            title = self._summarizer.title(text, opening_message=opening_message)
        except Exception as exc:
            logger.warning("Title generation failed for %s: %s", conversation_id, exc)
            return
        title = title.strip()[: self._config.title_max_chars]
        if not title:
            return
        try:
            with self._transaction() as repos:
                repos.conversations.replace_title(conversation_id, expected, title)
        except (TangentError, SQLAlchemyError) as exc:
            logger.warning("Could not store title for %s: %s", conversation_id, exc)

    def _reload_merge_event(self, event: MergeEventInfo) -> MergeEventInfo:
        with self._transaction() as repos:
            row = repos.merges.get(event.merge_event_id)
            return merge_event_info(row) if row is not None else event

    def wait_for_enrichment(self, timeout: float | None = None) -> None:
        """Block until queued summary/title jobs finish."""
        pending, self._pending = self._pending, []
        if pending:
            wait(pending, timeout=timeout)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Finish pending enrichment, then dispose the engine."""
        if self._closed:
            return
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self._closed = True
        self._engine.dispose()

    def __enter__(self) -> Workspace:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Workspace(user_id='{self._user_id}', closed={self._closed})"
