"""Tests for VariableTransformer."""
from __future__ import annotations

from typing import Any, Dict, Optional

import pytest

from flun.core.templating.transformers import TransformContext, VariableTransformer, is_reserved_tag


def substitute(content: str, variables: Optional[Dict[str, Any]] = None) -> str:
    context = TransformContext(variables=dict(variables or {}))
    return VariableTransformer().transform(content, context)


class TestSubstitution:
    def test_plain_variable(self) -> None:
        assert substitute("Hello {{name}}!", {"name": "Ada"}) == "Hello Ada!"

    def test_whitespace_tolerant(self) -> None:
        assert substitute("{{  name }}", {"name": "Ada"}) == "Ada"

    def test_dotted_path(self) -> None:
        variables = {"site": {"meta": {"title": "Flun"}}}
        assert substitute("<title>{{site.meta.title}}</title>", variables) == "<title>Flun</title>"

    def test_missing_dotted_path_renders_empty(self) -> None:
        assert substitute("[{{site.nope.deep}}]", {"site": {}}) == "[]"

    def test_value_stringification(self) -> None:
        variables = {"n": 3.0, "ok": True, "nothing": None, "tags": ["a", "b"]}
        assert substitute("{{n}} {{ok}} [{{nothing}}] {{tags}}", variables) == '3 true [] ["a","b"]'

    def test_regex_special_characters_in_key(self) -> None:
        # Literal replacement: the value is not treated as a regex template.
        assert substitute("{{price}}", {"price": r"$1 \g<0>"}) == r"$1 \g<0>"

    def test_free_expression(self) -> None:
        assert substitute("{{ year + 1 }}", {"year": 2024}) == "2025"

    def test_non_ascii_digit_path_segment_renders_empty(self) -> None:
        assert substitute("<{{items.²}}>", {"items": [1]}) == "<>"

    def test_unknown_name_renders_empty(self) -> None:
        assert substitute("a{{ghost}}b") == "ab"

    def test_empty_expression_renders_empty(self) -> None:
        assert substitute("a{{ }}b{{}}c") == "abc"

    def test_escaped_form_is_restored_and_evaluated(self) -> None:
        assert substitute("x `{{ name }}` y", {"name": "Ada"}) == "x Ada y"


class TestSafety:
    def test_proto_never_substitutes(self) -> None:
        assert substitute("[{{__proto__}}]", {"__proto__": "leak"}) == "[]"

    def test_constructor_key_never_substitutes(self) -> None:
        out = substitute("[{{constructor}}|{{ constructor }}|{{obj.constructor}}]",
                         {"constructor": "leak", "obj": {"constructor": "leak"}})
        assert "leak" not in out
        assert out == "[||]"

    def test_process_and_require_are_null(self) -> None:
        assert substitute("[{{process}}][{{require('fs')}}]") == "[][]"


class TestReservedTags:
    @pytest.mark.parametrize(
        "tag",
        [
            "{{if x}}",
            "{{else}}",
            "{{else if y}}",
            "{{endif}}",
            "{{for a in b}}",
            "{{endfor}}",
            "{{empty}}",
            "{{break}}",
            "{{continue}}",
            "{{user: f.g()}}",
        ],
    )
    def test_left_verbatim(self, tag: str) -> None:
        assert substitute(tag, {"x": 1, "b": [1]}) == tag

    def test_is_reserved_tag(self) -> None:
        assert is_reserved_tag(" endif ")
        assert not is_reserved_tag("iffy")
        assert not is_reserved_tag("format")
