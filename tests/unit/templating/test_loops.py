"""Tests for LoopExpander.

Loop bodies are rendered through the full pipeline, so conditionals and
variables inside a body see the current iteration's bindings.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import pytest

from flun.core.templating.transformers import LoopExpander, TransformContext, build_pipeline


def render(content: str, variables: Optional[Dict[str, Any]] = None) -> str:
    pipeline = build_pipeline()
    context = TransformContext(variables=dict(variables or {}), pipeline=pipeline)
    return pipeline.execute(content, context)


def expand(content: str, variables: Optional[Dict[str, Any]] = None) -> str:
    """Run only the loop phase (bodies still go through the pipeline)."""
    context = TransformContext(variables=dict(variables or {}), pipeline=build_pipeline())
    return LoopExpander().transform(content, context)


class TestBasicLoops:
    def test_simple_list(self) -> None:
        assert render("{{for x in items}}[{{x}}]{{endfor}}", {"items": ["a", "b"]}) == "[a][b]"

    def test_literal_array(self) -> None:
        assert render("{{for p in [1,2]}}{{p}}{{endfor}}") == "12"

    def test_index_metadata(self) -> None:
        assert render("{{for p in [1,2]}}{{p_index}}{{endfor}}") == "01"

    def test_first_and_last_flags(self) -> None:
        out = render("{{for p in [1,2]}}{{p_isFirst}}/{{p_isLast}};{{endfor}}")
        assert out == "true/false;false/true;"

    def test_separator_with_conditional(self) -> None:
        out = render("{{for it in items}}{{it}}{{if !it_isLast}}, {{endif}}{{endfor}}", {"items": ["a", "b", "c"]})
        assert out == "a, b, c"

    def test_surrounding_text_preserved(self) -> None:
        assert expand("<ul>{{for x in [1]}}<li>{{x}}</li>{{endfor}}</ul>") == "<ul><li>1</li></ul>"


class TestEmptyBranch:
    def test_empty_list_renders_empty_branch(self) -> None:
        assert render("{{for p in []}}X{{empty}}Y{{endfor}}") == "Y"

    def test_empty_without_branch(self) -> None:
        assert render("a{{for p in []}}X{{endfor}}b") == "ab"

    @pytest.mark.parametrize("value", [None, {}, [], False])
    def test_empty_values(self, value: Any) -> None:
        assert render("{{for p in v}}X{{empty}}none{{endfor}}", {"v": value}) == "none"

    def test_empty_branch_is_rendered(self) -> None:
        assert render("{{for p in []}}X{{empty}}{{msg}}{{endfor}}", {"msg": "nothing"}) == "nothing"

    def test_nested_empty_belongs_to_inner_loop(self) -> None:
        tpl = "{{for a in [1]}}{{for b in []}}in{{empty}}inner-empty{{endfor}}{{empty}}outer-empty{{endfor}}"
        assert render(tpl) == "inner-empty"


class TestKeyValueLoops:
    def test_mapping_items(self) -> None:
        out = render("{{for k, v in data}}{{k}}={{v}};{{endfor}}", {"data": {"a": 1, "b": 2}})
        assert out == "a=1;b=2;"

    def test_list_pairs_index_and_value(self) -> None:
        out = render("{{for i, v in items}}{{i}}:{{v}} {{endfor}}", {"items": ["x", "y"]})
        assert out == "0:x 1:y "

    def test_single_name_over_mapping_binds_keys(self) -> None:
        assert render("{{for k in data}}{{k}}{{endfor}}", {"data": {"a": 1, "b": 2}}) == "ab"

    def test_object_items_and_paths(self) -> None:
        users = [{"name": "Ada", "langs": ["py", "js"]}, {"name": "Bob", "langs": []}]
        tpl = "{{for u in users}}{{u.name}}({{for l in u.langs}}{{l}}{{empty}}-{{endfor}}) {{endfor}}"
        assert render(tpl, {"users": users}) == "Ada(pyjs) Bob(-) "


class TestLoopControl:
    def test_break_keeps_current_iteration(self) -> None:
        tpl = "{{for n in [1,2,3,4]}}{{n}}{{if n == 2}}{{break}}{{endif}}{{endfor}}"
        assert render(tpl) == "12"

    def test_continue_discards_current_iteration(self) -> None:
        tpl = "{{for n in [1,2,3]}}{{if n == 2}}{{continue}}{{endif}}{{n}}{{endfor}}"
        assert render(tpl) == "13"

    def test_inner_break_does_not_stop_outer_loop(self) -> None:
        tpl = "{{for a in [1,2]}}{{for b in [1,2,3]}}{{b}}{{if b == 1}}{{break}}{{endif}}{{endfor}}|{{endfor}}"
        assert render(tpl) == "1|1|"


class TestLoopFailures:
    def test_unsafe_binding_name(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="flun"):
            assert render("a{{for constructor in [1]}}X{{endfor}}b") == "ab"
        assert "unsafe variable name" in caplog.text

    def test_evaluation_error_yields_empty(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="flun"):
            assert render("a{{for x in missing.list}}X{{empty}}E{{endfor}}b") == "ab"
        assert "Failed to evaluate loop collection" in caplog.text

    def test_deeply_nested_collection_yields_empty(self, caplog: pytest.LogCaptureFixture) -> None:
        expression = "(" * 400 + "[1]" + ")" * 400
        with caplog.at_level(logging.WARNING, logger="flun"):
            assert render("a{{for x in " + expression + "}}{{x}}{{endfor}}b") == "ab"
        assert "Failed to evaluate loop collection" in caplog.text

    def test_non_iterable_scalar(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="flun"):
            assert render("{{for x in 5}}X{{endfor}}") == ""
        assert "not iterable" in caplog.text

    def test_unclosed_loop_is_left_alone(self) -> None:
        assert expand("{{for x in [1]}}open") == "{{for x in [1]}}open"

    def test_bindings_do_not_leak(self) -> None:
        context = TransformContext(variables={"x": "outer"}, pipeline=build_pipeline())
        LoopExpander().transform("{{for x in [1]}}{{x}}{{endfor}}", context)
        assert context.variables == {"x": "outer"}
