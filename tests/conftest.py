"""Shared test fixtures for Tangent.

Provides in-memory SQLite engine, session, and repository fixtures, plus
helpers for building workspaces and thread trees.
"""

import pytest
from sqlalchemy.orm import Session, sessionmaker

from tangent.exceptions import DependencyFailureError
from tangent.models.config import TangentConfig
from tangent.storage.engine import create_tangent_engine, init_db
from tangent.storage.sqlite import (
    SqliteConversationRepository,
    SqliteMergeEventRepository,
    SqliteMessageRepository,
    SqliteThreadRepository,
)


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_tangent_engine(":memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    """Session with automatic rollback after each test."""
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sess = SessionLocal()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def config() -> TangentConfig:
    return TangentConfig(background_enrichment=False)


@pytest.fixture
def conversation_repo(session: Session) -> SqliteConversationRepository:
    return SqliteConversationRepository(session)


@pytest.fixture
def thread_repo(session: Session) -> SqliteThreadRepository:
    return SqliteThreadRepository(session)


@pytest.fixture
def message_repo(session: Session) -> SqliteMessageRepository:
    return SqliteMessageRepository(session)


@pytest.fixture
def merge_repo(session: Session) -> SqliteMergeEventRepository:
    return SqliteMergeEventRepository(session)


# ------------------------------------------------------------------
# Shared test helpers
# ------------------------------------------------------------------


class FakeSummarizer:
    """Summarizer double that records calls and can be told to fail."""

    def __init__(
        self,
        summary: str = "Discussed the tangent",
        title: str = "Short Title",
        fail: bool = False,
    ) -> None:
        self.summary = summary
        self.title_text = title
        self.fail = fail
        self.summarize_calls: list[list[dict[str, str]]] = []
        self.title_calls: list[tuple[str, bool]] = []

    def summarize(self, messages, *, instructions=None):
        self.summarize_calls.append(messages)
        if self.fail:
            raise DependencyFailureError("summary service unavailable")
        return self.summary

    def title(self, text, *, opening_message=False):
        self.title_calls.append((text, opening_message))
        if self.fail:
            raise DependencyFailureError("summary service unavailable")
        return self.title_text


def make_workspace(user_id: str = "alice", summarizer=None, **config_overrides):
    """Create an in-memory Workspace with inline enrichment."""
    from tangent import Workspace

    config_overrides.setdefault("background_enrichment", False)
    return Workspace.open(
        ":memory:",
        user_id=user_id,
        summarizer=summarizer,
        config=TangentConfig(**config_overrides),
    )


def chat(ws, thread_id: str, *turns: str) -> list:
    """Append alternating user/assistant messages; returns MessageInfo list."""
    messages = []
    for index, text in enumerate(turns):
        role = "user" if index % 2 == 0 else "assistant"
        messages.append(ws.append_message(thread_id, role, text))
    return messages


def assert_depth_invariant(ws, conversation_id: str) -> None:
    """Root has depth 0; every tangent is one deeper than its parent."""
    tree = ws.get_conversation_tree(conversation_id)
    by_id = {t.thread_id: t for t in tree.threads}
    for thread in tree.threads:
        if thread.parent_thread_id is None:
            assert thread.depth == 0
        else:
            assert thread.depth == by_id[thread.parent_thread_id].depth + 1
