"""Variable and expression substitution.

Handles, in order:
- `{{expr}}`  - escaped form; the backticks are removed so the tag is
                evaluated only now, after loops, conditionals and functions
- {{a.b.c}}   - dotted paths, resolved by safe own-key traversal
- {{name}}    - plain variables, literal replacement
- {{expr}}    - anything else, evaluated in the sandbox
"""
from __future__ import annotations

import logging
import re

from flun.core.templating.sandbox import get_by_path, is_unsafe_key, to_display_string

from .base import ContentTransformer, TransformContext

logger = logging.getLogger(__name__)

# Tag bodies that belong to another phase and must survive untouched.
RESERVED_EXACT = frozenset({"else", "endif", "endfor", "empty", "break", "continue"})
RESERVED_PREFIXES = ("if ", "else if ", "for ")


def is_reserved_tag(expression: str) -> bool:
    """Return True for structural keywords and user-function calls."""
    if "user:" in expression:
        return True
    trimmed = expression.strip()
    return trimmed in RESERVED_EXACT or trimmed.startswith(RESERVED_PREFIXES)


class VariableTransformer(ContentTransformer):
    """Substitute variables and evaluate free expressions.

    Example:
        Variables: {"site": {"name": "Flun"}, "year": 2024}
        Template:  {{site.name}} (c) {{year}} - {{year + 1}}
        Output:    Flun (c) 2024 - 2025
    """

    QUOTED_PATTERN = re.compile(r"`\s*\{\{(.*?)\}\}\s*`")
    PATH_PATTERN = re.compile(r"\{\{(\w+\.\w+(?:\.\w+)*)\}\}")
    EXPRESSION_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
    EMPTY_PATTERN = re.compile(r"\{\{\s*\}\}")

    def transform(self, content: str, context: TransformContext) -> str:
        result = self.QUOTED_PATTERN.sub(lambda m: "{{" + m.group(1) + "}}", content)
        result = self._substitute_paths(result, context)
        result = self._substitute_names(result, context)
        return self._evaluate_expressions(result, context)

    def _substitute_paths(self, content: str, context: TransformContext) -> str:
        def replacer(match: re.Match[str]) -> str:
            return to_display_string(get_by_path(context.variables, match.group(1)))

        return self.PATH_PATTERN.sub(replacer, content)

    def _substitute_names(self, content: str, context: TransformContext) -> str:
        result = content
        for key, value in context.variables.items():
            if not isinstance(key, str) or is_unsafe_key(key):
                continue
            pattern = re.compile(r"\{\{\s*" + re.escape(key) + r"\s*\}\}")
            if pattern.search(result):
                text = to_display_string(value)
                result = pattern.sub(lambda _m: text, result)
        return result

    def _evaluate_expressions(self, content: str, context: TransformContext) -> str:
        def replacer(match: re.Match[str]) -> str:
            expression = match.group(1)
            if is_reserved_tag(expression):
                return match.group(0)
            return to_display_string(context.evaluator.evaluate(expression.strip(), context.variables))

        result = self.EMPTY_PATTERN.sub("", content)
        return self.EXPRESSION_PATTERN.sub(replacer, result)


__all__ = ["VariableTransformer", "is_reserved_tag"]
