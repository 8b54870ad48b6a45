# -*- coding: utf-8 -*-

"""
Unit tests for the tool pairing resolver (normalizer/pairing_resolver.py).
"""

from doproxy.normalizer.pairing_resolver import (
    INVOCATION_ACKNOWLEDGEMENT,
    MISSING_RESULT_PLACEHOLDER,
    make_orphan_message,
    resolve_tool_pairing,
)
from doproxy.normalizer.report import NormalizationReport
from doproxy.transcript import Message, ToolInvocation
from tests.builders import assistant, shape, system, tool, user


class TestSystemDiversion:
    """Tests for system message handling."""

    def test_systems_are_diverted_in_order(self):
        """
        What it does: Verifies systems go to the front list in original order.
        Purpose: Ensure systems never take part in pairing or alternation.
        """
        report = NormalizationReport()
        messages = [system("a"), user(), system("b"), assistant()]

        systems, conversation = resolve_tool_pairing(messages, report)

        print(f"Systems: {shape(systems)}")
        assert [m.content for m in systems] == ["a", "b"]
        assert [m.role for m in conversation] == ["user", "assistant"]
        assert report.relocated_system == 1


class TestPairing:
    """Tests for attaching results to their invocations."""

    def test_in_place_result_is_kept(self):
        """
        What it does: Verifies an already adjacent result stays where it is.
        Purpose: Ensure well-formed transcripts pass through unchanged.
        """
        report = NormalizationReport()
        messages = [user(), assistant("ok", "t1"), tool("t1", "out")]

        _, conversation = resolve_tool_pairing(messages, report)

        assert shape(conversation) == shape(messages)
        assert report.reordered_results == 0
        assert report.synthesized_results == 0

    def test_late_result_moves_after_invocation(self):
        """
        What it does: Verifies a result that arrives after a user turn moves up.
        Purpose: Ensure results always sit right after their invocations.
        """
        report = NormalizationReport()
        messages = [user("hi"), assistant("ok", "t1"), user("more"), tool("t1", "file contents")]

        _, conversation = resolve_tool_pairing(messages, report)

        print(f"Conversation: {shape(conversation)}")
        assert shape(conversation) == [
            ("user", "hi", ()),
            ("assistant", "ok", ("t1",)),
            ("tool", "file contents", "t1"),
            ("user", "more", ()),
        ]
        assert report.reordered_results == 1

    def test_results_follow_invocation_order(self):
        """
        What it does: Verifies results are emitted in invocation order, not input order.
        Purpose: Ensure the backend sees results matching the call order.
        """
        messages = [user(), assistant("ok", "a", "b"), tool("b", "B"), tool("a", "A")]

        _, conversation = resolve_tool_pairing(messages)

        assert [m.result_ref for m in conversation[2:]] == ["a", "b"]
        assert [m.content for m in conversation[2:]] == ["A", "B"]

    def test_missing_result_is_synthesized(self):
        """
        What it does: Verifies an invocation without any result gets a placeholder.
        Purpose: Ensure invocations are never left unpaired.
        """
        report = NormalizationReport()
        messages = [user(), assistant("ok", "t1"), user("next")]

        _, conversation = resolve_tool_pairing(messages, report)

        print(f"Conversation: {shape(conversation)}")
        assert shape(conversation)[2] == ("tool", MISSING_RESULT_PLACEHOLDER, "t1")
        assert report.synthesized_results == 1

    def test_repeated_id_consumes_results_fifo(self):
        """
        What it does: Verifies two invocations with the same id take results in order.
        Purpose: Ensure duplicate ids across turns pair deterministically.
        """
        messages = [
            user(),
            assistant("a", "t1"),
            tool("t1", "first"),
            user("again"),
            assistant("b", "t1"),
            tool("t1", "second"),
        ]

        _, conversation = resolve_tool_pairing(messages)

        assert [m.content for m in conversation if m.role == "tool"] == ["first", "second"]

    def test_empty_assistant_text_gets_acknowledgement(self):
        """
        What it does: Verifies an invoking assistant with collapsed text gets fixed text.
        Purpose: Ensure invoking turns are never empty.
        """
        report = NormalizationReport()
        messages = [user(), assistant("...", "t1"), tool("t1")]

        _, conversation = resolve_tool_pairing(messages, report)

        assert conversation[1].content == INVOCATION_ACKNOWLEDGEMENT


class TestMalformedInvocations:
    """Tests for dropping invocations that cannot be paired."""

    def test_malformed_ids_are_dropped(self):
        """
        What it does: Verifies invocations with id=None are dropped, others kept.
        Purpose: Ensure malformed invocations never reach the backend.
        """
        report = NormalizationReport()
        msg = Message(
            role="assistant",
            content="ok",
            invocations=[ToolInvocation(id=None, name="X"), ToolInvocation(id="t1", name="Read")],
        )

        _, conversation = resolve_tool_pairing([user(), msg, tool("t1")], report)

        assert conversation[1].invocation_ids() == ["t1"]
        assert report.dropped_invocations == 1

    def test_all_malformed_leaves_plain_assistant(self):
        """
        What it does: Verifies an assistant whose invocations are all dropped becomes plain.
        Purpose: Ensure no empty tool run is expected afterwards.
        """
        msg = Message(role="assistant", content="text", invocations=[ToolInvocation(id=None, name="X")])

        _, conversation = resolve_tool_pairing([user(), msg])

        assert conversation[1].invocations == []
        assert conversation[1].content == "text"


class TestOrphans:
    """Tests for results no invocation consumes."""

    def test_never_invoked_result_is_demoted_in_place(self):
        """
        What it does: Verifies a result for an unknown id becomes a user message at its position.
        Purpose: Ensure stale results keep their text and position.
        """
        report = NormalizationReport()
        messages = [user("a"), assistant("b"), tool("ghost", "stale"), user("c")]

        _, conversation = resolve_tool_pairing(messages, report)

        print(f"Conversation: {shape(conversation)}")
        assert conversation[2].role == "user"
        assert conversation[2].content == "[Previous tool output for ghost]:\nstale"
        assert conversation[3].content == "c"
        assert report.orphan_results == 1

    def test_surplus_duplicate_is_demoted(self):
        """
        What it does: Verifies a second result for a once-invoked id is demoted.
        Purpose: Ensure exactly one tool message per invocation.
        """
        messages = [user(), assistant("ok", "t1"), tool("t1", "a"), tool("t1", "b")]

        _, conversation = resolve_tool_pairing(messages)

        assert shape(conversation)[2] == ("tool", "a", "t1")
        assert conversation[3].role == "user"
        assert conversation[3].content.endswith("\nb")

    def test_every_result_is_emitted_exactly_once(self):
        """
        What it does: Verifies early, surplus and never-invoked results each appear once.
        Purpose: Ensure orphan demotion neither loses nor duplicates tool output.
        """
        report = NormalizationReport()
        messages = [
            user(),
            tool("t1", "early"),
            tool("t1", "dup"),
            assistant("ok", "t1"),
            tool("t9", "stale"),
        ]

        _, conversation = resolve_tool_pairing(messages, report)

        print(f"Conversation: {shape(conversation)}")
        assert [m.role for m in conversation] == ["user", "user", "assistant", "tool", "user"]
        for text in ("early", "dup", "stale"):
            assert sum(text in m.content for m in conversation) == 1
        assert conversation[3].content == "early"
        assert report.orphan_results == 2

    def test_unreferenced_result_is_demoted(self):
        """
        What it does: Verifies a tool message without tool_call_id becomes a user message.
        Purpose: Ensure unreferenced results never remain tool turns.
        """
        _, conversation = resolve_tool_pairing([user(), tool(None, "loose")])

        assert conversation[1].content == "[Previous tool output]:\nloose"

    def test_make_orphan_message(self):
        msg = make_orphan_message("x1", "text")
        assert (msg.role, msg.content) == ("user", "[Previous tool output for x1]:\ntext")
