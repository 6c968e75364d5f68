"""Tests for fork, merge, archive, branch and delete.

Exercised through the Workspace facade so every operation runs in its own
transaction, as it does for callers.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from tangent.exceptions import InvalidStateError, NotFoundError, TangentValidationError
from tangent.models.thread import MessageRole, ThreadStatus
from tangent.operations.lifecycle import EMPTY_TANGENT_SUMMARY
from tangent.storage.schema import MergeEventRow, MessageRow, ThreadRow
from tangent.storage.sqlite import SqliteThreadRepository

from tests.conftest import FakeSummarizer, assert_depth_invariant, chat, make_workspace


@pytest.fixture
def ws():
    workspace = make_workspace()
    yield workspace
    workspace.close()


@pytest.fixture
def conv(ws):
    return ws.create_conversation()


def _status(ws, thread_id):
    return ws.get_thread(thread_id).thread.status


def _tree(ws, conv):
    """Main -> T1 -> T1a -> T1b, plus Main -> T2, each with one exchange."""
    root = conv.root_thread_id
    chat(ws, root, "hello", "hi there")
    t1 = ws.fork(root, "hi")
    chat(ws, t1.thread_id, "tell me more", "sure")
    t1a = ws.fork(t1.thread_id, "sure")
    chat(ws, t1a.thread_id, "deeper", "ok")
    t1b = ws.fork(t1a.thread_id, "ok")
    t2 = ws.fork(root, "hello")
    return t1, t1a, t1b, t2


# ---------------------------------------------------------------------------
# Conversations and messages
# ---------------------------------------------------------------------------


class TestConversation:
    def test_create_makes_root_thread(self, ws, conv):
        tree = ws.get_conversation_tree(conv.conversation_id)
        assert conv.title == "New Conversation"
        assert [t.thread_id for t in tree.threads] == [conv.root_thread_id]
        assert tree.root.depth == 0
        assert tree.root.status == ThreadStatus.ACTIVE

    def test_create_with_title(self, ws):
        assert ws.create_conversation("Trip planning").title == "Trip planning"

    def test_title_too_long(self, ws):
        with pytest.raises(TangentValidationError):
            ws.create_conversation("x" * 201)

    def test_append_assigns_sequence_and_bumps_updated_at(self, ws, conv):
        first, second = chat(ws, conv.root_thread_id, "a", "b")
        assert (first.sequence, second.sequence) == (0, 1)
        assert first.role == MessageRole.USER
        assert second.role == MessageRole.ASSISTANT
        refreshed = ws.get_conversation(conv.conversation_id)
        assert refreshed.updated_at >= second.created_at

    def test_list_orders_by_recent_activity(self, ws):
        older = ws.create_conversation("older")
        newer = ws.create_conversation("newer")
        ws.append_message(older.root_thread_id, "user", "bump")
        titles = [c.title for c in ws.list_conversations()]
        assert titles == ["older", "newer"]

    @pytest.mark.parametrize("content", ["", "   ", "x" * 50001])
    def test_invalid_content(self, ws, conv, content):
        with pytest.raises(TangentValidationError):
            ws.append_message(conv.root_thread_id, "user", content)

    def test_invalid_role(self, ws, conv):
        with pytest.raises(TangentValidationError):
            ws.append_message(conv.root_thread_id, "tool", "hi")

    def test_rename(self, ws, conv):
        assert ws.rename_conversation(conv.conversation_id, "  Renamed  ").title == "Renamed"
        assert ws.get_conversation(conv.conversation_id).title == "Renamed"


# ---------------------------------------------------------------------------
# Fork
# ---------------------------------------------------------------------------


class TestFork:
    def test_anchor_is_parents_latest_message(self, ws, conv):
        _, latest = chat(ws, conv.root_thread_id, "q", "a")
        tangent = ws.fork(conv.root_thread_id, "a")
        assert tangent.parent_message_id == latest.message_id
        assert tangent.parent_thread_id == conv.root_thread_id
        assert tangent.depth == 1
        assert tangent.status == ThreadStatus.ACTIVE

    def test_fork_without_messages_is_unanchored(self, ws, conv):
        assert ws.fork(conv.root_thread_id, "topic").parent_message_id is None

    def test_depth_invariant(self, ws, conv):
        _tree(ws, conv)
        assert_depth_invariant(ws, conv.conversation_id)

    @pytest.mark.parametrize("text", ["", "  ", "x" * 5001])
    def test_highlight_validation(self, ws, conv, text):
        with pytest.raises(TangentValidationError):
            ws.fork(conv.root_thread_id, text)

    @pytest.mark.parametrize("finish", ["merge", "archive"])
    def test_fork_from_terminal_parent(self, ws, conv, finish):
        chat(ws, conv.root_thread_id, "q")
        parent = ws.fork(conv.root_thread_id, "q")
        _, latest = chat(ws, parent.thread_id, "side q", "side a")
        getattr(ws, finish)(parent.thread_id)
        assert _status(ws, parent.thread_id) != ThreadStatus.ACTIVE

        tangent = ws.fork(parent.thread_id, "more")

        assert tangent.depth == parent.depth + 1
        assert tangent.status == ThreadStatus.ACTIVE
        assert tangent.parent_thread_id == parent.thread_id
        assert tangent.parent_message_id == latest.message_id

    def test_append_to_merged_thread_rejected(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "q")
        ws.merge(tangent.thread_id)
        with pytest.raises(InvalidStateError):
            ws.append_message(tangent.thread_id, "user", "late")


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestMerge:
    def test_merge_flips_status_and_records_event(self, ws, conv):
        _, anchor = chat(ws, conv.root_thread_id, "q", "a")
        tangent = ws.fork(conv.root_thread_id, "a")
        chat(ws, tangent.thread_id, "side question", "side answer")

        event = ws.merge(tangent.thread_id)

        assert event.source_thread_id == tangent.thread_id
        assert event.target_thread_id == conv.root_thread_id
        assert event.after_message_id == anchor.message_id
        detail = ws.get_thread(tangent.thread_id)
        assert detail.thread.status == ThreadStatus.MERGED
        assert detail.thread.merged_at is not None
        assert [e.merge_event_id for e in ws.get_thread_merge_events(conv.root_thread_id)] == [
            event.merge_event_id
        ]

    def test_anchor_is_parents_latest_at_merge_time(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "q")
        later = ws.append_message(conv.root_thread_id, "assistant", "later reply")
        assert ws.merge(tangent.thread_id).after_message_id == later.message_id

    def test_merge_archives_active_descendants(self, ws, conv):
        t1, t1a, t1b, t2 = _tree(ws, conv)
        ws.merge(t1.thread_id)
        assert _status(ws, t1.thread_id) == ThreadStatus.MERGED
        assert _status(ws, t1a.thread_id) == ThreadStatus.ARCHIVED
        assert _status(ws, t1b.thread_id) == ThreadStatus.ARCHIVED
        assert _status(ws, t2.thread_id) == ThreadStatus.ACTIVE

    def test_merge_root_rejected(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        with pytest.raises(InvalidStateError):
            ws.merge(conv.root_thread_id)

    def test_merge_twice_rejected(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "q")
        ws.merge(tangent.thread_id)
        with pytest.raises(InvalidStateError):
            ws.merge(tangent.thread_id)
        assert len(ws.get_thread_merge_events(conv.root_thread_id)) == 1

    def test_merge_into_empty_parent_rejected(self, ws, conv):
        tangent = ws.fork(conv.root_thread_id, "topic")
        with pytest.raises(InvalidStateError):
            ws.merge(tangent.thread_id)
        assert _status(ws, tangent.thread_id) == ThreadStatus.ACTIVE

    def test_empty_tangent_gets_literal_summary(self):
        summarizer = FakeSummarizer()
        ws = make_workspace(summarizer=summarizer)
        try:
            conv = ws.create_conversation()
            chat(ws, conv.root_thread_id, "q")
            tangent = ws.fork(conv.root_thread_id, "q")
            event = ws.merge(tangent.thread_id)
        finally:
            ws.close()
        assert event.summary == EMPTY_TANGENT_SUMMARY
        assert summarizer.summarize_calls == []

    def test_merge_is_atomic(self, ws, conv, monkeypatch):
        t1, t1a, _, _ = _tree(ws, conv)
        original = SqliteThreadRepository.set_status_bulk
        calls = []

        def flaky(self, thread_ids, status, **kwargs):
            calls.append(status)
            if status == ThreadStatus.ARCHIVED:
                raise RuntimeError("crash during cascade")
            return original(self, thread_ids, status, **kwargs)

        monkeypatch.setattr(SqliteThreadRepository, "set_status_bulk", flaky)
        with pytest.raises(RuntimeError):
            ws.merge(t1.thread_id)
        monkeypatch.undo()

        assert calls == [ThreadStatus.MERGED, ThreadStatus.ARCHIVED]
        assert _status(ws, t1.thread_id) == ThreadStatus.ACTIVE
        assert _status(ws, t1a.thread_id) == ThreadStatus.ACTIVE
        assert ws.get_thread_merge_events(conv.root_thread_id) == []

    def test_not_owned_is_not_found(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "q")
        other = type(ws)(
            engine=ws._engine,
            session_factory=ws._session_factory,
            user_id="mallory",
            config=ws.config,
        )
        with pytest.raises(NotFoundError) as exc_info:
            other.merge(tangent.thread_id)
        with pytest.raises(NotFoundError) as missing_info:
            other.merge("does-not-exist")
        assert str(exc_info.value) == f"Thread not found: {tangent.thread_id}"
        assert str(missing_info.value) == "Thread not found: does-not-exist"
        assert _status(ws, tangent.thread_id) == ThreadStatus.ACTIVE


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------


class TestArchive:
    def test_archive_cascades_to_exact_closure(self, ws, conv):
        t1, t1a, t1b, t2 = _tree(ws, conv)
        archived = ws.archive(t1.thread_id)
        assert set(archived) == {t1.thread_id, t1a.thread_id, t1b.thread_id}
        assert archived[0] == t1.thread_id
        assert _status(ws, t2.thread_id) == ThreadStatus.ACTIVE
        assert _status(ws, conv.root_thread_id) == ThreadStatus.ACTIVE

    def test_archive_is_idempotent(self, ws, conv):
        t1, *_ = _tree(ws, conv)
        assert ws.archive(t1.thread_id)
        assert ws.archive(t1.thread_id) == []

    def test_archive_merged_thread_is_noop(self, ws, conv):
        t1, *_ = _tree(ws, conv)
        ws.merge(t1.thread_id)
        assert ws.archive(t1.thread_id) == []
        assert _status(ws, t1.thread_id) == ThreadStatus.MERGED

    def test_archive_root_rejected(self, ws, conv):
        with pytest.raises(InvalidStateError):
            ws.archive(conv.root_thread_id)

    def test_archive_skips_already_terminal_descendants(self, ws, conv):
        t1, t1a, t1b, _ = _tree(ws, conv)
        ws.archive(t1a.thread_id)
        assert ws.archive(t1.thread_id) == [t1.thread_id]


# ---------------------------------------------------------------------------
# Branch
# ---------------------------------------------------------------------------


class TestBranch:
    def _tangent_with_merges(self, ws, conv):
        root = conv.root_thread_id
        chat(ws, root, "start", "reply")
        tangent = ws.fork(root, "reply")
        chat(ws, tangent.thread_id, "first", "answer one")
        sub1 = ws.fork(tangent.thread_id, "answer one")
        chat(ws, sub1.thread_id, "sub question")
        ws.merge(sub1.thread_id)
        chat(ws, tangent.thread_id, "second", "answer two")
        sub2 = ws.fork(tangent.thread_id, "answer two")
        ws.merge(sub2.thread_id)
        return tangent

    def test_branch_copies_messages_with_preamble(self, ws, conv):
        root = conv.root_thread_id
        chat(ws, root, "start", "line one\nline two")
        tangent = ws.fork(root, "line one\nline two")
        originals = chat(ws, tangent.thread_id, "why?", "because")

        result = ws.branch(tangent.thread_id)

        new_root = result.conversation.root_thread_id
        copied = ws.get_thread_messages(new_root)
        assert result.copied_message_count == 2
        assert [m.role for m in copied] == [
            MessageRole.SYSTEM, MessageRole.ASSISTANT, MessageRole.USER, MessageRole.ASSISTANT,
        ]
        assert "line one\nline two" in copied[0].content
        assert copied[1].content == '> **Branched from:** "line one\n> line two"'
        assert [m.content for m in copied[2:]] == ["why?", "because"]
        assert copied[0].created_at == originals[0].created_at - timedelta(seconds=2)
        assert copied[1].created_at == originals[0].created_at - timedelta(seconds=1)
        assert {m.message_id for m in copied}.isdisjoint({m.message_id for m in originals})

    def test_branch_provisional_title_from_highlight(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "y" * 80)
        assert ws.branch(tangent.thread_id).conversation.title == "y" * 50

    def test_branch_root_without_highlight(self, ws, conv):
        chat(ws, conv.root_thread_id, "q", "a")
        result = ws.branch(conv.root_thread_id)
        assert result.conversation.title == "Branched conversation"
        assert [m.content for m in ws.get_thread_messages(result.conversation.root_thread_id)] == [
            "q", "a",
        ]

    def test_branch_filters_system_messages(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "q")
        ws.append_message(tangent.thread_id, "system", "hidden note")
        ws.append_message(tangent.thread_id, "user", "visible")
        result = ws.branch(tangent.thread_id)
        contents = [m.content for m in ws.get_thread_messages(result.conversation.root_thread_id)]
        assert "hidden note" not in contents
        assert result.copied_message_count == 1

    def test_branch_remaps_merge_events(self, ws, conv):
        tangent = self._tangent_with_merges(ws, conv)
        source_events = ws.get_thread_merge_events(tangent.thread_id)

        result = ws.branch(tangent.thread_id)

        assert len(result.merge_events) == 2
        assert result.dropped_merge_count == 0
        new_root = result.conversation.root_thread_id
        new_messages = {m.message_id: m for m in ws.get_thread_messages(new_root)}
        old_messages = {m.message_id: m for m in ws.get_thread_messages(tangent.thread_id)}
        for old, new in zip(source_events, result.merge_events):
            assert new.target_thread_id == new_root
            assert new_messages[new.after_message_id].content == (
                old_messages[old.after_message_id].content
            )
            copy = ws.get_thread(new.source_thread_id).thread
            assert copy.conversation_id == result.conversation.conversation_id
            assert copy.parent_thread_id == new_root
            assert copy.parent_message_id == new.after_message_id
            assert copy.status == ThreadStatus.MERGED
            assert [m.content for m in ws.get_thread_messages(copy.thread_id)] == [
                m.content for m in ws.get_thread_messages(old.source_thread_id)
            ]
        assert len(ws.get_thread_merge_events(new_root)) == 2
        assert_depth_invariant(ws, result.conversation.conversation_id)

    def test_branch_survives_deleting_original(self, ws, conv):
        tangent = self._tangent_with_merges(ws, conv)
        result = ws.branch(tangent.thread_id)
        new_root = result.conversation.root_thread_id
        events_before = ws.get_thread_merge_events(new_root)
        context_before = ws.build_context(new_root)

        ws.delete_conversation(conv.conversation_id)

        assert ws.get_thread_merge_events(new_root) == events_before
        assert ws.build_context(new_root) == context_before
        assert "sub question" in [m.content for m in context_before]

    def test_branch_copies_only_spliced_window(self):
        ws = make_workspace(merge_context_limit=2)
        try:
            conv = ws.create_conversation()
            chat(ws, conv.root_thread_id, "q")
            tangent = ws.fork(conv.root_thread_id, "q")
            chat(ws, tangent.thread_id, "a")
            sub = ws.fork(tangent.thread_id, "a")
            chat(ws, sub.thread_id, "m1", "m2", "m3")
            ws.merge(sub.thread_id)
            result = ws.branch(tangent.thread_id)
            copy_id = result.merge_events[0].source_thread_id
            contents = [m.content for m in ws.get_thread_messages(copy_id)]
        finally:
            ws.close()
        assert contents == ["m2", "m3"]

    def test_branch_drops_merge_anchored_to_system_message(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "q")
        ws.append_message(tangent.thread_id, "user", "visible")
        ws.append_message(tangent.thread_id, "system", "hidden")
        sub = ws.fork(tangent.thread_id, "hidden")
        ws.merge(sub.thread_id)

        result = ws.branch(tangent.thread_id)

        assert result.merge_events == []
        assert result.dropped_merge_count == 1

    def test_branch_leaves_source_untouched(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "q")
        chat(ws, tangent.thread_id, "a")
        before = ws.get_thread_messages(tangent.thread_id)
        result = ws.branch(tangent.thread_id)
        assert result.archived_ids == []
        assert ws.get_thread_messages(tangent.thread_id) == before
        assert _status(ws, tangent.thread_id) == ThreadStatus.ACTIVE

    def test_branch_archive_source(self, ws, conv):
        t1, t1a, t1b, _ = _tree(ws, conv)
        result = ws.branch(t1.thread_id, archive_source=True)
        assert set(result.archived_ids) == {t1.thread_id, t1a.thread_id, t1b.thread_id}
        assert _status(ws, t1.thread_id) == ThreadStatus.ARCHIVED

    def test_branch_of_merged_thread_allowed(self, ws, conv):
        chat(ws, conv.root_thread_id, "q")
        tangent = ws.fork(conv.root_thread_id, "q")
        chat(ws, tangent.thread_id, "a")
        ws.merge(tangent.thread_id)
        assert ws.branch(tangent.thread_id).copied_message_count == 1


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_removes_everything(self, ws, conv):
        t1, *_ = _tree(ws, conv)
        ws.merge(t1.thread_id)
        removed = ws.delete_conversation(conv.conversation_id)
        assert removed == 5
        with pytest.raises(NotFoundError):
            ws.get_conversation_tree(conv.conversation_id)
        with ws._session_factory() as session:
            assert session.execute(select(func.count()).select_from(ThreadRow)).scalar() == 0
            assert session.execute(select(func.count()).select_from(MessageRow)).scalar() == 0
            assert session.execute(select(func.count()).select_from(MergeEventRow)).scalar() == 0

    def test_delete_leaves_other_conversations(self, ws, conv):
        other = ws.create_conversation("keep")
        chat(ws, other.root_thread_id, "hello")
        ws.delete_conversation(conv.conversation_id)
        assert [c.conversation_id for c in ws.list_conversations()] == [other.conversation_id]
        assert len(ws.get_thread_messages(other.root_thread_id)) == 1

    def test_delete_unknown(self, ws):
        with pytest.raises(NotFoundError):
            ws.delete_conversation("nope")
