"""Tests for FunctionRegistry, argument parsing and FunctionTransformer."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pytest

from flun.core.templating.transformers import (
    FunctionRegistry,
    FunctionTransformer,
    TransformContext,
    parse_arguments,
)


class TestFunctionRegistry:
    """Test function registration and lookup."""

    def test_register_decorator(self) -> None:
        registry = FunctionRegistry()

        @registry.register("site.hello")
        def hello() -> str:
            return "Hello!"

        assert "site.hello" in registry
        assert registry.get("site.hello")() == "Hello!"

    def test_add_and_list(self) -> None:
        registry = FunctionRegistry()
        registry.add("a.one", lambda: 1)
        registry.add("a.two", lambda: 2)

        assert registry.list_functions() == ["a.one", "a.two"]
        assert len(registry) == 2

    def test_missing_function_returns_none(self) -> None:
        assert FunctionRegistry().get("nope") is None

    def test_call(self) -> None:
        registry = FunctionRegistry()
        registry.add("m.add", lambda a, b: a + b)

        assert registry.call("m.add", 2, 3) == 5
        with pytest.raises(KeyError):
            registry.call("m.missing")

    def test_clear(self) -> None:
        registry = FunctionRegistry()
        registry.add("x", lambda: None)
        registry.clear()
        assert "x" not in registry


class TestParseArguments:
    def test_literal_kinds(self) -> None:
        args = parse_arguments("'text', \"dq\", true, false, null, 42, -1.5", {})
        assert args == ["text", "dq", True, False, None, 42, -1.5]

    def test_undefined_is_dropped(self) -> None:
        assert parse_arguments("1, undefined, 2", {}) == [1, 2]

    def test_variable_reference(self) -> None:
        variables: Dict[str, Any] = {"title": "Home", "items": [1, 2]}
        assert parse_arguments("{{title}}, {{items}}", variables) == ["Home", [1, 2]]

    def test_bare_identifier_lookup_and_fallback(self) -> None:
        assert parse_arguments("count, unknown", {"count": 3}) == [3, "unknown"]

    def test_unsafe_names_are_dropped_and_shift_positions(self) -> None:
        args = parse_arguments("{{constructor}}, __proto__, 'ok'", {"constructor": "x"})
        assert args == ["ok"]

    def test_empty_arguments_are_skipped(self) -> None:
        assert parse_arguments(" , 1 ,, ", {}) == [1]
        assert parse_arguments("", {}) == []

    def test_naive_comma_split(self) -> None:
        # A comma inside quotes splits the argument.
        assert parse_arguments("'a, b'", {}) == ["'a", "b'"]


class TestFunctionTransformer:
    def _transform(
        self, content: str, registry: FunctionRegistry, variables: Optional[Dict[str, Any]] = None
    ) -> str:
        context = TransformContext(variables=dict(variables or {}), functions=registry)
        return FunctionTransformer().transform(content, context)

    def test_calls_registered_function(self) -> None:
        registry = FunctionRegistry()
        registry.add("text.upper", lambda s: s.upper())

        assert self._transform("<b>{{user: text.upper('hi')}}</b>", registry) == "<b>HI</b>"

    def test_arguments_from_variables(self) -> None:
        registry = FunctionRegistry()
        seen: List[Any] = []

        def record(*args: Any) -> str:
            seen.extend(args)
            return "ok"

        registry.add("t.record", record)
        out = self._transform("{{user:t.record({{name}}, 2, flag)}}", registry, {"name": "Ada", "flag": True})

        assert out == "ok"
        assert seen == ["Ada", 2, True]

    def test_result_is_stringified(self) -> None:
        registry = FunctionRegistry()
        registry.add("d.data", lambda: {"a": [1, 2]})
        registry.add("d.none", lambda: None)

        assert self._transform("{{user: d.data()}}|{{user: d.none()}}", registry) == '{"a":[1,2]}|'

    def test_missing_function_logs_error(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="flun"):
            assert self._transform("a{{user: nope.fn()}}b", FunctionRegistry()) == "ab"
        assert "User function not found: nope.fn" in caplog.text

    def test_raising_function_logs_error(self, caplog: pytest.LogCaptureFixture) -> None:
        registry = FunctionRegistry()

        def boom() -> str:
            raise RuntimeError("kaput")

        registry.add("x.boom", boom)
        with caplog.at_level(logging.ERROR, logger="flun"):
            assert self._transform("[{{user: x.boom()}}]", registry) == "[]"
        assert "kaput" in caplog.text

    def test_unsafe_function_name(self) -> None:
        registry = FunctionRegistry()
        registry.add("constructor", lambda: "leak")
        assert self._transform("{{user: constructor()}}", registry) == ""

    def test_no_registry(self) -> None:
        context = TransformContext()
        assert FunctionTransformer().transform("{{user: a.b()}}", context) == ""
