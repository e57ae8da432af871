"""Tests for the fixpoint TransformerPipeline."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pytest

from flun.core.templating.transformers import (
    ContentTransformer,
    FunctionRegistry,
    TransformContext,
    TransformerPipeline,
    build_pipeline,
)


class _Recorder(ContentTransformer):
    def __init__(self) -> None:
        self.calls = 0

    def transform(self, content: str, context: TransformContext) -> str:
        self.calls += 1
        return content


def run(
    content: str,
    variables: Optional[Dict[str, Any]] = None,
    functions: Optional[FunctionRegistry] = None,
) -> str:
    pipeline = build_pipeline()
    context = TransformContext(variables=dict(variables or {}), functions=functions, pipeline=pipeline)
    return pipeline.execute(content, context)


class TestFixpoint:
    def test_stops_when_no_tags_remain(self) -> None:
        recorder = _Recorder()
        pipeline = TransformerPipeline([recorder])
        assert pipeline.execute("plain", TransformContext()) == "plain"
        assert recorder.calls == 1

    def test_stops_when_unchanged(self) -> None:
        recorder = _Recorder()
        pipeline = TransformerPipeline([recorder])
        assert pipeline.execute("{{break}}", TransformContext()) == "{{break}}"
        assert recorder.calls == 1

    def test_variable_expanding_into_conditional(self) -> None:
        out = run("{{snippet}}", {"snippet": "{{if on}}ON{{else}}OFF{{endif}}", "on": True})
        assert out == "ON"

    def test_function_output_is_processed_on_next_pass(self) -> None:
        registry = FunctionRegistry()
        registry.add("t.greet", lambda: "Hello {{name}}")
        assert run("{{user: t.greet()}}", {"name": "Ada"}, registry) == "Hello Ada"

    def test_phase_order(self) -> None:
        tpl = "{{for i in items}}{{if i > 1}}{{user: t.fmt({{i}})}}{{endif}}{{endfor}}"
        registry = FunctionRegistry()
        registry.add("t.fmt", lambda v: f"<{v}>")
        assert run(tpl, {"items": [1, 2, 3]}, registry) == "<2><3>"


class TestPassCap:
    def test_runaway_template_stops_after_cap(self, caplog: pytest.LogCaptureFixture) -> None:
        calls: List[int] = []

        def grow() -> str:
            calls.append(1)
            return f"x{{{{user: t.grow()}}}}"

        registry = FunctionRegistry()
        registry.add("t.grow", grow)

        with caplog.at_level(logging.WARNING, logger="flun"):
            out = run("{{user: t.grow()}}", functions=registry)

        assert len(calls) == 10
        assert out == "x" * 10 + "{{user: t.grow()}}"
        assert "still changing after 10 passes" in caplog.text

    def test_custom_cap(self) -> None:
        calls: List[int] = []

        def grow() -> str:
            calls.append(1)
            return "{{user: t.grow()}}!"

        registry = FunctionRegistry()
        registry.add("t.grow", grow)
        pipeline = build_pipeline(max_passes=3)
        context = TransformContext(functions=registry, pipeline=pipeline)

        assert pipeline.execute("{{user: t.grow()}}", context) == "{{user: t.grow()}}!!!"
        assert len(calls) == 3

    def test_no_warning_when_converged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="flun"):
            assert run("{{a}}", {"a": "{{b}}", "b": "done"}) == "done"
        assert "passes" not in caplog.text
