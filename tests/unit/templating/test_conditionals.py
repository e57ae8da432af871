"""Tests for ConditionalProcessor."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import pytest

from flun.core.templating.transformers import ConditionalProcessor, TransformContext


def process(content: str, variables: Optional[Dict[str, Any]] = None, **kwargs: Any) -> str:
    context = TransformContext(variables=dict(variables or {}), **kwargs)
    return ConditionalProcessor().transform(content, context)


class TestBranches:
    def test_if_true(self) -> None:
        assert process("{{if 1 < 2}}yes{{endif}}") == "yes"

    def test_if_false_without_else(self) -> None:
        assert process("a{{if 1 > 2}}yes{{endif}}b") == "ab"

    def test_else(self) -> None:
        assert process("{{if flag}}on{{else}}off{{endif}}", {"flag": False}) == "off"

    def test_else_if_chain(self) -> None:
        assert process("{{if 1>2}}A{{else if 2>1}}B{{else}}C{{endif}}") == "B"

    def test_first_true_branch_wins(self) -> None:
        tpl = "{{if n > 10}}big{{else if n > 5}}medium{{else if n > 0}}small{{else}}zero{{endif}}"
        assert process(tpl, {"n": 7}) == "medium"
        assert process(tpl, {"n": 3}) == "small"
        assert process(tpl, {"n": 0}) == "zero"

    def test_branch_content_is_kept_verbatim(self) -> None:
        assert process("{{if true}} {{name}} {{endif}}") == " {{name}} "

    def test_multiple_sequential_blocks(self) -> None:
        assert process("{{if true}}1{{endif}}-{{if false}}2{{else}}3{{endif}}") == "1-3"

    def test_whitespace_inside_tags(self) -> None:
        assert process("{{ if  x }}X{{ else }}Y{{ endif }}", {"x": 1}) == "X"


class TestNesting:
    def test_nested_if_resolved_in_extra_pass(self) -> None:
        tpl = "{{if a}}A{{if b}}B{{else}}notB{{endif}}{{endif}}"
        assert process(tpl, {"a": True, "b": False}) == "AnotB"

    def test_else_of_outer_block_not_confused_with_inner(self) -> None:
        tpl = "{{if a}}{{if b}}AB{{endif}}{{else}}notA{{endif}}"
        assert process(tpl, {"a": False, "b": True}) == "notA"
        assert process(tpl, {"a": True, "b": True}) == "AB"

    def test_twenty_levels(self) -> None:
        depth = 20
        tpl = "{{if true}}" * depth + "deep" + "{{endif}}" * depth
        assert process(tpl) == "deep"

    def test_conditional_pass_cap(self) -> None:
        tpl = "{{if true}}{{if true}}{{if true}}x{{endif}}{{endif}}{{endif}}"
        assert process(tpl, max_conditional_passes=1) == "{{if true}}{{if true}}x{{endif}}{{endif}}"


class TestFailures:
    def test_evaluation_error_is_falsy(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="flun"):
            assert process("{{if undefined_var.x}}A{{else}}B{{endif}}") == "B"
        assert "Expression evaluation failed" in caplog.text

    def test_unclosed_if_left_as_text(self) -> None:
        assert process("{{if true}}open") == "{{if true}}open"

    def test_stray_tags_left_as_text(self) -> None:
        assert process("{{else}}x{{endif}}") == "{{else}}x{{endif}}"
