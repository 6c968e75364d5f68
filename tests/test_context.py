"""Tests for context assembly (inheritance, focus markers, merge splicing)."""

import pytest

from tangent.exceptions import NotFoundError
from tangent.operations.context import MERGE_END_MARKER, focus_marker, merge_summary_marker
from tangent.protocols import ContextMessage

from tests.conftest import FakeSummarizer, chat, make_workspace


@pytest.fixture
def ws():
    workspace = make_workspace()
    yield workspace
    workspace.close()


def _pairs(context):
    return [(m.role, m.content) for m in context]


class TestOwnMessages:
    def test_root_thread_is_its_messages(self, ws):
        conv = ws.create_conversation()
        chat(ws, conv.root_thread_id, "hello", "hi")
        ws.append_message(conv.root_thread_id, "system", "note")
        assert _pairs(ws.build_context(conv.root_thread_id)) == [
            ("user", "hello"),
            ("assistant", "hi"),
            ("system", "note"),
        ]

    def test_empty_thread(self, ws):
        conv = ws.create_conversation()
        assert ws.build_context(conv.root_thread_id) == []

    def test_to_dict(self):
        assert ContextMessage("user", "x").to_dict() == {"role": "user", "content": "x"}


class TestInheritance:
    def test_tangent_inherits_parent_prefix(self, ws):
        conv = ws.create_conversation()
        root = conv.root_thread_id
        chat(ws, root, "q1", "a1")
        tangent = ws.fork(root, "a1")
        chat(ws, root, "q2 after fork")
        chat(ws, tangent.thread_id, "why a1?")

        assert _pairs(ws.build_context(tangent.thread_id)) == [
            ("user", "q1"),
            ("assistant", "a1"),
            ("system", focus_marker("a1")),
            ("user", "why a1?"),
        ]

    def test_unanchored_tangent_inherits_nothing(self, ws):
        conv = ws.create_conversation()
        tangent = ws.fork(conv.root_thread_id, "topic")
        chat(ws, tangent.thread_id, "hi")
        assert _pairs(ws.build_context(tangent.thread_id)) == [("user", "hi")]

    def test_full_ancestry_for_nested_tangent(self, ws):
        conv = ws.create_conversation()
        root = conv.root_thread_id
        chat(ws, root, "root q", "root a")
        t1 = ws.fork(root, "root a")
        chat(ws, t1.thread_id, "t1 q", "t1 a")
        t1a = ws.fork(t1.thread_id, "t1 a")
        chat(ws, t1.thread_id, "t1 after fork")
        chat(ws, t1a.thread_id, "t1a q")

        assert _pairs(ws.build_context(t1a.thread_id)) == [
            ("user", "root q"),
            ("assistant", "root a"),
            ("system", focus_marker("root a")),
            ("user", "t1 q"),
            ("assistant", "t1 a"),
            ("system", focus_marker("t1 a")),
            ("user", "t1a q"),
        ]

    def test_one_level_ancestry(self):
        ws = make_workspace(inherit_full_ancestry=False)
        try:
            conv = ws.create_conversation()
            root = conv.root_thread_id
            chat(ws, root, "root q", "root a")
            t1 = ws.fork(root, "root a")
            chat(ws, t1.thread_id, "t1 q")
            t1a = ws.fork(t1.thread_id, "t1 q")
            chat(ws, t1a.thread_id, "t1a q")
            context = _pairs(ws.build_context(t1a.thread_id))
        finally:
            ws.close()

        assert context == [
            ("user", "t1 q"),
            ("system", focus_marker("t1 q")),
            ("user", "t1a q"),
        ]

    def test_unanchored_link_stops_inheritance(self, ws):
        conv = ws.create_conversation()
        root = conv.root_thread_id
        chat(ws, root, "root q")
        t1 = ws.fork(root, "root q")
        t1a = ws.fork(t1.thread_id, "nothing yet")
        chat(ws, t1a.thread_id, "deep")
        chat(ws, t1.thread_id, "t1 q")
        t1a_anchored = ws.fork(t1.thread_id, "t1 q")

        assert _pairs(ws.build_context(t1a.thread_id)) == [("user", "deep")]
        assert _pairs(ws.build_context(t1a_anchored.thread_id)) == [
            ("user", "root q"),
            ("system", focus_marker("root q")),
            ("user", "t1 q"),
            ("system", focus_marker("t1 q")),
        ]


class TestMergeSplicing:
    def _merged(self, summarizer=None, **config):
        ws = make_workspace(summarizer=summarizer, **config)
        conv = ws.create_conversation()
        root = conv.root_thread_id
        chat(ws, root, "q1", "a1")
        tangent = ws.fork(root, "a1")
        chat(ws, tangent.thread_id, "side q", "side a")
        ws.merge(tangent.thread_id)
        return ws, root

    def test_splice_after_anchor_with_summary(self):
        ws, root = self._merged(summarizer=FakeSummarizer(summary="Side topic settled"))
        try:
            chat(ws, root, "q2")
            context = _pairs(ws.build_context(root))
        finally:
            ws.close()

        assert context == [
            ("user", "q1"),
            ("assistant", "a1"),
            ("system", merge_summary_marker("Side topic settled")),
            ("user", "side q"),
            ("assistant", "side a"),
            ("system", MERGE_END_MARKER),
            ("user", "q2"),
        ]

    def test_missing_summary_omits_summary_line(self):
        ws, root = self._merged()
        try:
            context = _pairs(ws.build_context(root))
        finally:
            ws.close()
        assert context[2:] == [
            ("user", "side q"),
            ("assistant", "side a"),
            ("system", MERGE_END_MARKER),
        ]

    def test_source_window_is_most_recent_messages(self):
        ws = make_workspace(merge_context_limit=2)
        try:
            conv = ws.create_conversation()
            root = conv.root_thread_id
            chat(ws, root, "q")
            tangent = ws.fork(root, "q")
            chat(ws, tangent.thread_id, "m1", "m2", "m3", "m4")
            ws.merge(tangent.thread_id)
            context = _pairs(ws.build_context(root))
        finally:
            ws.close()
        assert context == [
            ("user", "q"),
            ("user", "m3"),
            ("assistant", "m4"),
            ("system", MERGE_END_MARKER),
        ]

    def test_multiple_merges_same_anchor_in_creation_order(self, ws):
        conv = ws.create_conversation()
        root = conv.root_thread_id
        chat(ws, root, "q")
        first = ws.fork(root, "q")
        second = ws.fork(root, "q")
        chat(ws, first.thread_id, "from first")
        chat(ws, second.thread_id, "from second")
        ws.merge(second.thread_id)
        ws.merge(first.thread_id)

        assert _pairs(ws.build_context(root)) == [
            ("user", "q"),
            ("user", "from second"),
            ("system", MERGE_END_MARKER),
            ("user", "from first"),
            ("system", MERGE_END_MARKER),
        ]

    def test_ancestor_merges_not_inherited(self, ws):
        conv = ws.create_conversation()
        root = conv.root_thread_id
        chat(ws, root, "q")
        merged = ws.fork(root, "q")
        chat(ws, merged.thread_id, "merged content")
        ws.merge(merged.thread_id)
        chat(ws, root, "after merge")
        tangent = ws.fork(root, "after merge")

        contents = [c for _, c in _pairs(ws.build_context(tangent.thread_id))]
        assert "merged content" not in contents
        assert contents == ["q", "after merge", focus_marker("after merge")]


class TestPurity:
    def test_repeatable(self, ws):
        conv = ws.create_conversation()
        chat(ws, conv.root_thread_id, "q", "a")
        tangent = ws.fork(conv.root_thread_id, "a")
        chat(ws, tangent.thread_id, "x")
        assert ws.build_context(tangent.thread_id) == ws.build_context(tangent.thread_id)

    def test_prefix_stable_after_append(self, ws):
        conv = ws.create_conversation()
        root = conv.root_thread_id
        chat(ws, root, "q", "a")
        tangent = ws.fork(root, "a")
        chat(ws, tangent.thread_id, "x")
        before = ws.build_context(tangent.thread_id)
        ws.append_message(tangent.thread_id, "assistant", "y")
        after = ws.build_context(tangent.thread_id)
        assert after[: len(before)] == before
        assert after[len(before):] == [ContextMessage("assistant", "y")]

    def test_not_owned(self, ws):
        conv = ws.create_conversation()
        other = type(ws)(
            engine=ws._engine,
            session_factory=ws._session_factory,
            user_id="mallory",
            config=ws.config,
        )
        with pytest.raises(NotFoundError):
            other.build_context(conv.root_thread_id)
