# -*- coding: utf-8 -*-

"""
Unit tests for the final invariant validator (normalizer/invariant_validator.py).

The validator is fed transcripts that earlier phases would never produce, to
check that every residual violation still gets a deterministic repair.
"""

from doproxy.normalizer.invariant_validator import demote_tool_message, validate_invariants
from doproxy.normalizer.pairing_resolver import INVOCATION_ACKNOWLEDGEMENT, MISSING_RESULT_PLACEHOLDER
from doproxy.normalizer.report import NormalizationReport
from doproxy.transcript import Message, ToolInvocation
from tests.builders import assert_grammar, assistant, shape, tool, user


class TestValidateInvariants:
    """Tests for defensive re-derivation of the grammar."""

    def test_valid_transcript_is_untouched(self):
        """
        What it does: Verifies a valid transcript passes through unchanged.
        Purpose: Ensure the validator is a no-op after a correct pipeline.
        """
        report = NormalizationReport()
        messages = [user(), assistant("ok", "t1"), tool("t1"), assistant("done"), user("thanks")]

        result = validate_invariants(messages, report)

        assert shape(result) == shape(messages)
        assert report.rewrites == 0

    def test_stray_tool_is_demoted(self):
        """
        What it does: Verifies a tool message after a plain user turn is demoted.
        Purpose: Ensure no tool turn survives outside its invoker's run.
        """
        report = NormalizationReport()

        result = validate_invariants([user("a"), tool("t1", "out"), assistant("b")], report)

        print(f"Result: {shape(result)}")
        assert shape(result) == [
            ("user", "a\n\n[Unpaired tool output for t1]:\nout", ()),
            ("assistant", "b", ()),
        ]
        assert report.demoted_results == 1
        assert_grammar(result)

    def test_mismatched_result_is_demoted_and_placeholder_added(self):
        """
        What it does: Verifies a run with the wrong id gets a placeholder and a demotion.
        Purpose: Ensure pairing completeness is re-derived from ids, not positions.
        """
        report = NormalizationReport()

        result = validate_invariants([user(), assistant("ok", "t1"), tool("t2", "wrong")], report)

        print(f"Result: {shape(result)}")
        assert shape(result)[2] == ("tool", MISSING_RESULT_PLACEHOLDER, "t1")
        assert report.synthesized_results == 1
        assert report.demoted_results == 1
        assert_grammar(result)

    def test_out_of_order_run_is_reordered(self):
        result = validate_invariants([user(), assistant("ok", "a", "b"), tool("b", "B"), tool("a", "A")])
        assert [m.result_ref for m in result[2:]] == ["a", "b"]

    def test_malformed_invocation_is_dropped(self):
        """
        What it does: Verifies invocations without id are dropped by the validator too.
        Purpose: Ensure the validator does not trust earlier phases.
        """
        report = NormalizationReport()
        msg = Message(role="assistant", content="ok", invocations=[ToolInvocation(id=None, name="X")])

        result = validate_invariants([user(), msg, tool("t1", "x")], report)

        assert result[1].invocations == []
        assert report.dropped_invocations == 1
        assert_grammar(result)

    def test_empty_content_is_filled(self):
        """
        What it does: Verifies empty content gets a role placeholder.
        Purpose: Ensure no message is ever forwarded empty.
        """
        report = NormalizationReport()

        result = validate_invariants([user(""), assistant("", "t1"), tool("t1", "")], report)

        assert result[0].content == "."
        assert result[1].content == INVOCATION_ACKNOWLEDGEMENT
        assert result[2].content == "(empty output)"
        assert report.content_rewrites == 3

    def test_empty_input(self):
        assert validate_invariants([]) == []

    def test_demote_tool_message_without_ref(self):
        msg = demote_tool_message(tool(None, "x"))
        assert (msg.role, msg.content) == ("user", "[Unpaired tool output]:\nx")
