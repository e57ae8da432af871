"""Loop transformer for dynamic content.

Handles:
- {{for item in expr}}...{{endfor}}        - iterate a list (item) or mapping (key)
- {{for key, value in expr}}...{{endfor}}  - (index, value) over lists, (key, value) over mappings
- {{empty}}                                - alternate branch for empty collections
- {{item_index}}, {{item_isFirst}}, {{item_isLast}} - per-iteration metadata
- {{break}}, {{continue}}                  - loop control inside the body
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from flun.core.exceptions import ExpressionError
from flun.core.templating.sandbox import is_unsafe_key

from .base import ContentTransformer, TransformContext

logger = logging.getLogger(__name__)

# Names a loop may not bind: they would shadow the template keywords.
RESERVED_LOOP_NAMES = frozenset({"if", "else", "endif", "for", "endfor", "empty", "break", "continue", "in"})


@dataclass(frozen=True)
class _LoopMatch:
    start: int
    end: int
    names: Tuple[str, ...]
    expression: str
    body: str
    empty_body: Optional[str]


class LoopExpander(ContentTransformer):
    """Expand ``{{for}}`` loops, outermost first.

    Each iteration's body is run through the full pipeline with the loop
    bindings overlaid on the variables, so nested loops and conditionals
    inside the body see the current item.

    Example:
        Variables: {"items": ["a", "b"]}
        Template:  {{for it in items}}{{it}}{{if !it_isLast}}, {{endif}}{{endfor}}
        Output:    a, b
    """

    TAG_PATTERN = re.compile(
        r"\{\{\s*(?:"
        r"for\s+(?P<first>\w+)(?:\s*,\s*(?P<second>\w+))?\s+in\s+(?P<expr>[^}]+?)"
        r"|(?P<close>endfor)"
        r"|(?P<empty>empty)"
        r")\s*\}\}"
    )
    BREAK_PATTERN = re.compile(r"\{\{\s*break\s*\}\}")
    CONTINUE_PATTERN = re.compile(r"\{\{\s*continue\s*\}\}")

    def transform(self, content: str, context: TransformContext) -> str:
        result = content
        search_from = 0
        while True:
            loop = self._find_outermost_loop(result, search_from)
            if loop is None:
                break
            expanded = self._expand_loop(loop, context)
            result = result[:loop.start] + expanded + result[loop.end:]
            # Expanded output was already rendered; never rescan it here.
            search_from = loop.start + len(expanded)
        return result

    def _find_outermost_loop(self, content: str, search_from: int) -> Optional[_LoopMatch]:
        """Locate the first top-level loop at or after ``search_from``.

        Nested ``for``/``endfor`` pairs are tracked by depth; an ``{{empty}}``
        only splits the body when it belongs to the outermost loop.
        """
        depth = 0
        opener: Optional[re.Match[str]] = None
        empty_at: Optional[re.Match[str]] = None

        for match in self.TAG_PATTERN.finditer(content, search_from):
            if match.group("first"):
                if depth == 0:
                    opener = match
                    empty_at = None
                depth += 1
            elif depth == 0:
                continue
            elif match.group("close"):
                depth -= 1
                if depth == 0 and opener is not None:
                    body_end = empty_at.start() if empty_at else match.start()
                    names = tuple(n for n in (opener.group("first"), opener.group("second")) if n)
                    return _LoopMatch(
                        start=opener.start(),
                        end=match.end(),
                        names=names,
                        expression=opener.group("expr").strip(),
                        body=content[opener.end():body_end],
                        empty_body=content[empty_at.end():match.start()] if empty_at else None,
                    )
            elif depth == 1 and empty_at is None:
                empty_at = match
        return None

    def _expand_loop(self, loop: _LoopMatch, context: TransformContext) -> str:
        bad = [n for n in loop.names if is_unsafe_key(n) or n in RESERVED_LOOP_NAMES]
        if bad:
            logger.warning("Refusing loop with unsafe variable name(s): %s", ", ".join(bad))
            return ""

        try:
            collection = context.evaluator.evaluate_strict(loop.expression, context.variables)
        except ExpressionError as exc:
            logger.warning("Failed to evaluate loop collection %r: %s", loop.expression, exc)
            return ""

        if _is_empty(collection):
            return context.render(loop.empty_body) if loop.empty_body else ""

        entries = _entries(collection, key_value=len(loop.names) > 1)
        if entries is None:
            logger.warning(
                "Loop collection %r is not iterable (got %s)", loop.expression, type(collection).__name__
            )
            return ""

        primary = loop.names[0]
        total = len(entries)
        output: List[str] = []
        for index, (key, value) in enumerate(entries):
            bindings = {
                primary: key if len(loop.names) > 1 else value,
                f"{primary}_index": index,
                f"{primary}_isFirst": index == 0,
                f"{primary}_isLast": index == total - 1,
            }
            if len(loop.names) > 1:
                bindings[loop.names[1]] = value

            rendered = context.with_variables(bindings).render(loop.body)
            if self.BREAK_PATTERN.search(rendered):
                output.append(self.BREAK_PATTERN.sub("", rendered))
                break
            if self.CONTINUE_PATTERN.search(rendered):
                continue
            output.append(rendered)

        return "".join(output)


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    return isinstance(value, (list, tuple, dict)) and len(value) == 0


def _entries(collection: Any, *, key_value: bool) -> Optional[List[Tuple[Any, Any]]]:
    """Normalize a collection to ``(key, value)`` pairs.

    Lists pair indices with items. Mappings pair keys with values, except in
    single-name form where the key is also the bound value.
    """
    items: Iterable[Tuple[Any, Any]]
    if isinstance(collection, dict):
        items = collection.items() if key_value else ((k, k) for k in collection)
    elif isinstance(collection, (list, tuple)):
        items = enumerate(collection)
    else:
        return None
    return list(items)


__all__ = ["LoopExpander", "RESERVED_LOOP_NAMES"]
